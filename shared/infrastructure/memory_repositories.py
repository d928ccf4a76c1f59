"""
In-memory Repository Implementations (Infrastructure Adapter)

Thread-safe stores for local runs and tests. Reads hand out copies, so a
caller always works on a consistent snapshot and never mutates stored state
behind the repository's back.
"""

import copy
import threading
from datetime import datetime
from typing import Dict, List, Optional

from ..domain.entities import Booking, BookingStatus, Provider
from ..domain.exceptions import ConflictError
from ..domain.repositories import IBookingRepository, IProviderRepository


class InMemoryProviderRepository(IProviderRepository):
    """Dict-backed provider store"""

    def __init__(self):
        self._guard = threading.RLock()
        self._providers: Dict[str, Provider] = {}

    def get_by_id(self, provider_id: str) -> Optional[Provider]:
        with self._guard:
            provider = self._providers.get(provider_id)
            return copy.deepcopy(provider) if provider else None

    def list_by_owner(self, owner_id: str) -> List[Provider]:
        with self._guard:
            return [
                copy.deepcopy(p) for p in self._providers.values()
                if p.owner_id == owner_id
            ]

    def save(self, provider: Provider) -> None:
        with self._guard:
            self._providers[provider.provider_id] = copy.deepcopy(provider)


class InMemoryBookingRepository(IBookingRepository):
    """Dict-backed booking store with version checks on update"""

    def __init__(self):
        self._guard = threading.RLock()
        self._bookings: Dict[str, Booking] = {}

    def _snapshot(self, bookings) -> List[Booking]:
        return [
            copy.deepcopy(b)
            for b in sorted(bookings, key=lambda b: (b.start_time, b.booking_id))
        ]

    def get_by_id(self, booking_id: str) -> Optional[Booking]:
        with self._guard:
            booking = self._bookings.get(booking_id)
            return copy.deepcopy(booking) if booking else None

    def list_by_provider(
        self,
        provider_id: str,
        from_date: datetime,
        to_date: datetime
    ) -> List[Booking]:
        with self._guard:
            return self._snapshot(
                b for b in self._bookings.values()
                if b.provider_id == provider_id and from_date <= b.start_time < to_date
            )

    def list_by_client(self, client_id: str) -> List[Booking]:
        with self._guard:
            return self._snapshot(b for b in self._bookings.values() if b.client_id == client_id)

    def list_by_status(self, status: BookingStatus) -> List[Booking]:
        with self._guard:
            return self._snapshot(b for b in self._bookings.values() if b.status == status)

    def list_all(self) -> List[Booking]:
        with self._guard:
            return self._snapshot(self._bookings.values())

    def add(self, booking: Booking) -> None:
        with self._guard:
            if booking.booking_id in self._bookings:
                raise ConflictError(f"Booking {booking.booking_id} already exists")
            self._bookings[booking.booking_id] = copy.deepcopy(booking)

    def update(self, booking: Booking, expected_version: int) -> None:
        with self._guard:
            stored = self._bookings.get(booking.booking_id)
            if stored is None:
                raise ConflictError(f"Booking {booking.booking_id} does not exist")
            if stored.version != expected_version:
                raise ConflictError(
                    f"Booking {booking.booking_id} changed concurrently "
                    f"(expected version {expected_version}, found {stored.version})"
                )
            booking.version = expected_version + 1
            self._bookings[booking.booking_id] = copy.deepcopy(booking)
