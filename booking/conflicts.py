"""
Conflict Checker (Domain Layer)

Admission check for a candidate interval: it must fit inside the provider's
effective availability and must not overlap another booking that still holds
its slot.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from availability.model import effective_intervals, local_day_of
from shared.domain.entities import Booking, Interval, Provider
from shared.utils import to_iso_string


@dataclass(frozen=True)
class AdmissionDecision:
    """Outcome of an admission check"""
    admissible: bool
    reason: Optional[str] = None
    conflicting_booking_ids: Tuple[str, ...] = ()

    def __bool__(self) -> bool:
        return self.admissible


class ConflictChecker:
    """
    Decides whether a candidate interval can be booked with a provider

    Only bookings in PENDING or CONFIRMED occupy time. Callers run the
    check and the subsequent write inside the provider's admission scope,
    so the first committed booking wins.
    """

    def check(
        self,
        provider: Provider,
        candidate: Interval,
        existing_bookings: Iterable[Booking],
        exclude_booking_id: Optional[str] = None
    ) -> AdmissionDecision:
        window = self._containing_window(provider, candidate)
        if window is None:
            return AdmissionDecision(
                admissible=False,
                reason=(
                    f"Requested time {to_iso_string(candidate.start)} - "
                    f"{to_iso_string(candidate.end)} is outside the provider's availability"
                )
            )

        conflicts = tuple(
            booking.booking_id
            for booking in existing_bookings
            if booking.provider_id == provider.provider_id
            and booking.booking_id != exclude_booking_id
            and booking.is_active()
            and booking.overlaps_with(candidate)
        )
        if conflicts:
            return AdmissionDecision(
                admissible=False,
                reason=(
                    f"Time slot {to_iso_string(candidate.start)} - "
                    f"{to_iso_string(candidate.end)} overlaps an existing booking"
                ),
                conflicting_booking_ids=conflicts
            )

        return AdmissionDecision(admissible=True)

    def is_admissible(
        self,
        provider: Provider,
        candidate: Interval,
        existing_bookings: Iterable[Booking],
        exclude_booking_id: Optional[str] = None
    ) -> bool:
        return self.check(provider, candidate, existing_bookings, exclude_booking_id).admissible

    @staticmethod
    def _containing_window(provider: Provider, candidate: Interval) -> Optional[Interval]:
        """The single effective interval that fully contains the candidate"""
        day = local_day_of(provider, candidate.start)
        for window in effective_intervals(provider, day):
            if window.contains(candidate):
                return window
        return None
