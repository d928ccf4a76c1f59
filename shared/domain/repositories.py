"""
Repository Interfaces (Ports)

Following Hexagonal Architecture:
- Define contracts in domain layer
- Infrastructure implements these interfaces
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import date, datetime
from typing import Iterator, List, Optional

from .entities import (
    Actor, AvailabilityException, AvailabilityTemplate, Booking, BookingStatus,
    DomainEvent, Provider
)


class IProviderRepository(ABC):
    """Port for Provider aggregate persistence"""

    @abstractmethod
    def get_by_id(self, provider_id: str) -> Optional[Provider]:
        """Retrieve provider with its template and exceptions"""
        pass

    @abstractmethod
    def list_by_owner(self, owner_id: str) -> List[Provider]:
        """List providers owned by a user account"""
        pass

    @abstractmethod
    def save(self, provider: Provider) -> None:
        """Persist provider profile, services, template and exceptions"""
        pass


class IAvailabilityRepository(ABC):
    """Port for Provider Availability records"""

    @abstractmethod
    def get_template(self, provider_id: str) -> AvailabilityTemplate:
        """Get weekly availability for provider"""
        pass

    @abstractmethod
    def save_template(self, provider_id: str, template: AvailabilityTemplate) -> None:
        """Replace the weekly availability"""
        pass

    @abstractmethod
    def list_exceptions(
        self,
        provider_id: str,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None
    ) -> List[AvailabilityException]:
        """Get exceptions, optionally restricted to a date range (inclusive)"""
        pass

    @abstractmethod
    def save_exception(self, provider_id: str, exception: AvailabilityException) -> None:
        """Create or replace the exception for its date"""
        pass

    @abstractmethod
    def delete_exception(self, provider_id: str, day: date) -> None:
        """Remove the exception for a date"""
        pass


class IBookingRepository(ABC):
    """Port for Booking operations"""

    @abstractmethod
    def get_by_id(self, booking_id: str) -> Optional[Booking]:
        """Retrieve booking by ID"""
        pass

    @abstractmethod
    def list_by_provider(
        self,
        provider_id: str,
        from_date: datetime,
        to_date: datetime
    ) -> List[Booking]:
        """List bookings for provider whose start falls in [from_date, to_date)"""
        pass

    @abstractmethod
    def list_by_client(self, client_id: str) -> List[Booking]:
        """List bookings made by a client"""
        pass

    @abstractmethod
    def list_by_status(self, status: BookingStatus) -> List[Booking]:
        """List bookings currently in a status"""
        pass

    @abstractmethod
    def list_all(self) -> List[Booking]:
        """List every booking (admin)"""
        pass

    @abstractmethod
    def add(self, booking: Booking) -> None:
        """
        Insert a new booking
        Raises: ConflictError if the booking id already exists
        """
        pass

    @abstractmethod
    def update(self, booking: Booking, expected_version: int) -> None:
        """
        Compare-and-commit update; bumps booking.version on success
        Raises: ConflictError if the stored version differs
        """
        pass


class IEventPublisher(ABC):
    """Port for domain event delivery to collaborators"""

    @abstractmethod
    def publish(self, event: DomainEvent) -> None:
        """Hand the event to the bus; may raise on transport failure"""
        pass


class IProviderLock(ABC):
    """
    Port for the per-provider admission scope

    Check-then-commit sequences for one provider run while the lock is held;
    different providers never contend.
    """

    @abstractmethod
    def acquire(self, provider_id: str) -> str:
        """
        Acquire the provider's lock, retrying a bounded number of times
        Returns: lease token for release
        Raises: LockContentionError when attempts are exhausted
        """
        pass

    @abstractmethod
    def release(self, provider_id: str, token: str) -> None:
        """Release a lease obtained from acquire"""
        pass

    @contextmanager
    def hold(self, provider_id: str) -> Iterator[str]:
        token = self.acquire(provider_id)
        try:
            yield token
        finally:
            self.release(provider_id, token)


class IIdentityProvider(ABC):
    """Port for the authenticated caller"""

    @abstractmethod
    def current_actor(self) -> Actor:
        """
        Resolve the actor of the current request
        Raises: UnauthenticatedError when no valid identity is present
        """
        pass
