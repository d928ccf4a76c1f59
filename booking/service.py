"""
Booking Application Services (Application Layer)

Use cases for the booking lifecycle: admission with overbooking prevention,
status transitions, rescheduling, role-scoped listing and the completion
sweep.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator, List, Optional

from availability.model import MAX_BOOKING_SPAN
from booking.conflicts import ConflictChecker
from booking.state_machine import BookingStateMachine
from shared.domain.entities import (
    Actor,
    ActorRole,
    Booking,
    BookingEvent,
    BookingFilter,
    BookingStatus,
    DomainEvent,
    DomainEventType,
    Interval,
    Provider,
    StatusChange,
)
from shared.domain.exceptions import (
    ConflictError,
    DomainError,
    EntityNotFoundError,
    InvalidTransitionError,
    LockContentionError,
    SlotNotAvailableError,
    UnauthenticatedError,
    UnauthorizedError,
    ValidationError,
)
from shared.domain.repositories import (
    IBookingRepository,
    IEventPublisher,
    IProviderLock,
    IProviderRepository,
)
from shared.utils import Logger, generate_id, to_iso_string, utc_now

# Anything that can overlap a candidate starts at most this long before it
_LOOKBACK = MAX_BOOKING_SPAN

_EARLIEST = datetime.min.replace(tzinfo=timezone.utc)
_LATEST = datetime.max.replace(tzinfo=timezone.utc)


class SchedulingService:
    """
    Service for creating and managing bookings

    Responsibilities:
    - Admit bookings against availability and existing bookings
    - Drive status transitions through the state machine
    - Reschedule active bookings
    - Role-scoped booking queries
    - Publish domain events after every committed mutation

    Check-then-commit sequences run inside the provider's admission scope,
    so two requests racing for the same slot cannot both succeed.
    """

    def __init__(
        self,
        provider_repo: IProviderRepository,
        booking_repo: IBookingRepository,
        event_publisher: IEventPublisher,
        provider_lock: IProviderLock,
        conflict_checker: Optional[ConflictChecker] = None,
        state_machine: Optional[BookingStateMachine] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self._provider_repo = provider_repo
        self._booking_repo = booking_repo
        self._event_publisher = event_publisher
        self._provider_lock = provider_lock
        self._conflict_checker = conflict_checker or ConflictChecker()
        self._state_machine = state_machine or BookingStateMachine()
        self._clock = clock or utc_now
        self.logger = Logger()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create_booking(
        self,
        actor: Optional[Actor],
        provider_id: str,
        service_id: str,
        start: datetime,
        end: Optional[datetime] = None,
        notes: Optional[str] = None,
        client_id: Optional[str] = None
    ) -> Booking:
        """
        Create a new booking with validation

        Business rules:
        1. Clients book for themselves; provider accounts (for their own
           provider) and admins may book on behalf of `client_id`
        2. Service must belong to the provider and be active
        3. Interval is [start, start + service duration) and lies in the future
        4. Interval fits inside one effective availability interval and does
           not overlap an active booking of the provider

        Args:
            actor: Authenticated caller
            provider_id: Provider identifier
            service_id: Service identifier
            start: Booking start (timezone-aware)
            end: Optional end; must match the service duration when given
            notes: Additional notes (optional)
            client_id: Client to book for (provider/admin only)

        Returns:
            Created Booking entity, PENDING or CONFIRMED per provider policy

        Raises:
            UnauthenticatedError: No actor
            UnauthorizedError: Actor may not book for this client/provider
            EntityNotFoundError: Provider or service not found
            ValidationError: Invalid input
            SlotNotAvailableError: Interval is not admissible
        """
        actor = self._require_actor(actor)
        booking_client_id = self._resolve_client(actor, provider_id, client_id)
        self._require_aware(start, "start")

        provider = self._get_provider(provider_id)
        service = provider.get_service(service_id)
        if service is None:
            raise EntityNotFoundError("Service", service_id)
        if not service.is_available():
            raise ValidationError(f"Service {service_id} is not active")
        if provider.is_owned_by(booking_client_id):
            raise ValidationError("Providers cannot book their own services")

        interval = Interval.from_duration(start.astimezone(timezone.utc), service.duration_minutes)
        if end is not None:
            self._require_aware(end, "end")
            if end != interval.end:
                raise ValidationError(
                    f"Booking end must be {to_iso_string(interval.end)} "
                    f"for a {service.duration_minutes} minute service"
                )

        now = self._clock()
        if interval.start <= now:
            raise ValidationError("Cannot create booking in the past")

        with self._admission_scope(provider_id):
            # Availability may have changed while we waited for the scope
            provider = self._get_provider(provider_id)
            if not provider.active:
                raise SlotNotAvailableError(f"Provider {provider_id} is not accepting bookings")

            self._admit(provider, interval)

            status = self._state_machine.initial_status(provider)
            booking = Booking(
                booking_id=generate_id('bkg'),
                provider_id=provider_id,
                client_id=booking_client_id,
                service_id=service_id,
                start_time=interval.start,
                duration_minutes=service.duration_minutes,
                status=status,
                created_at=now,
                updated_at=now,
                service_name=service.name,
                price=service.price,
                notes=notes,
                status_history=[StatusChange(
                    from_status=None,
                    to_status=status,
                    at=now,
                    actor_id=actor.actor_id
                )]
            )

            try:
                self._booking_repo.add(booking)
            except ConflictError:
                raise SlotNotAvailableError(
                    f"Time slot {to_iso_string(interval.start)} - {to_iso_string(interval.end)} was just booked"
                )

        self.logger.info(
            "Booking created",
            booking_id=booking.booking_id,
            provider_id=provider_id,
            client_id=booking_client_id,
            status=status.value,
            start=to_iso_string(interval.start)
        )

        self._emit(DomainEvent(
            event_type=DomainEventType.BOOKING_CREATED,
            booking_id=booking.booking_id,
            provider_id=provider_id,
            client_id=booking_client_id,
            new_status=status,
            interval=interval
        ))
        return booking

    def transition(
        self,
        actor: Optional[Actor],
        booking_id: str,
        event: BookingEvent,
        reason: Optional[str] = None
    ) -> Booking:
        """
        Apply a lifecycle event to a booking

        Raises:
            UnauthenticatedError: No actor
            EntityNotFoundError: Booking not found
            UnauthorizedError: Actor is not a participant or lacks the role
            InvalidTransitionError: Event not allowed from the current status
            ConflictError: Booking changed concurrently
        """
        actor = self._require_actor(actor)
        if not isinstance(event, BookingEvent):
            raise ValidationError(f"Unknown booking event: {event}")
        return self._apply_event(actor, booking_id, event, reason, self._clock())

    def reschedule(
        self,
        actor: Optional[Actor],
        booking_id: str,
        new_start: datetime
    ) -> Booking:
        """
        Move an active booking to a new start, keeping its duration and status

        The booking's own current slot does not count as a conflict. The
        previous interval is appended to the reschedule history.

        Raises:
            UnauthenticatedError: No actor
            EntityNotFoundError: Booking not found
            UnauthorizedError: Actor is not a participant
            InvalidTransitionError: Booking is no longer active
            ValidationError: Past or unchanged interval
            SlotNotAvailableError: New interval is not admissible
        """
        actor = self._require_actor(actor)
        self._require_aware(new_start, "new_start")

        booking = self._get_booking(booking_id)
        if actor.role == ActorRole.SYSTEM or not self._is_participant(actor, booking):
            raise UnauthorizedError(f"Actor {actor.actor_id} may not reschedule booking {booking_id}")

        now = self._clock()
        with self._admission_scope(booking.provider_id):
            booking = self._get_booking(booking_id)
            if booking.is_terminal():
                raise InvalidTransitionError(
                    f"Booking {booking_id} is {booking.status.value} and cannot be rescheduled"
                )

            candidate = Interval.from_duration(new_start.astimezone(timezone.utc), booking.duration_minutes)
            previous = booking.interval
            if candidate == previous:
                raise ValidationError("New interval is the same as the current one")
            if candidate.start <= now:
                raise ValidationError("Cannot reschedule a booking into the past")

            provider = self._get_provider(booking.provider_id)
            self._admit(provider, candidate, exclude_booking_id=booking_id)

            expected_version = booking.version
            booking.reschedule_history.append(previous)
            booking.start_time = candidate.start
            booking.updated_at = now
            self._booking_repo.update(booking, expected_version)

        self.logger.info(
            "Booking rescheduled",
            booking_id=booking_id,
            provider_id=booking.provider_id,
            previous_start=to_iso_string(previous.start),
            new_start=to_iso_string(candidate.start)
        )

        self._emit(DomainEvent(
            event_type=DomainEventType.BOOKING_RESCHEDULED,
            booking_id=booking_id,
            provider_id=booking.provider_id,
            client_id=booking.client_id,
            old_status=booking.status,
            new_status=booking.status,
            interval=candidate,
            previous_interval=previous
        ))
        return booking

    def complete_elapsed_bookings(self, now: Optional[datetime] = None) -> List[str]:
        """
        Completion sweep: CONFIRMED bookings whose interval has ended

        Safe to run repeatedly; a booking completed by an earlier run (or
        concurrently) is skipped. Per-booking failures are logged and left
        for the next run.

        Returns:
            Ids of the bookings completed by this run
        """
        now = now or self._clock()
        system = Actor.system()
        completed: List[str] = []

        for booking in self._booking_repo.list_by_status(BookingStatus.CONFIRMED):
            if booking.end_time > now:
                continue
            try:
                self._apply_event(system, booking.booking_id, BookingEvent.COMPLETE, None, now)
                completed.append(booking.booking_id)
            except InvalidTransitionError:
                self.logger.debug("Booking no longer completable", booking_id=booking.booking_id)
            except DomainError as e:
                self.logger.error(
                    "Failed to complete booking",
                    booking_id=booking.booking_id,
                    error=str(e),
                    kind=e.kind
                )

        self.logger.info("Completion sweep finished", completed=len(completed))
        return completed

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_booking(self, actor: Optional[Actor], booking_id: str) -> Booking:
        """
        Get booking by ID

        Non-participants get NotFound so that ids do not leak.
        """
        actor = self._require_actor(actor)
        booking = self._get_booking(booking_id)
        if not self._is_participant(actor, booking):
            raise EntityNotFoundError("Booking", booking_id)
        return booking

    def list_bookings(
        self,
        actor: Optional[Actor],
        booking_filter: Optional[BookingFilter] = None
    ) -> List[Booking]:
        """
        List the bookings visible to the actor, ordered by start

        Clients see their own bookings, provider accounts the bookings of
        providers they own, admins and the system everything.
        """
        actor = self._require_actor(actor)
        booking_filter = booking_filter or BookingFilter()

        if actor.role == ActorRole.CLIENT:
            if booking_filter.client_id and booking_filter.client_id != actor.actor_id:
                raise UnauthorizedError("Clients can only list their own bookings")
            candidates = self._booking_repo.list_by_client(actor.actor_id)

        elif actor.role == ActorRole.PROVIDER:
            owned = [p.provider_id for p in self._provider_repo.list_by_owner(actor.actor_id)]
            if booking_filter.provider_id:
                if booking_filter.provider_id not in owned:
                    raise UnauthorizedError(
                        f"Provider {booking_filter.provider_id} is not owned by {actor.actor_id}"
                    )
                owned = [booking_filter.provider_id]
            candidates = []
            for provider_id in owned:
                candidates.extend(self._bookings_in_range(provider_id, booking_filter))

        elif booking_filter.provider_id:
            candidates = self._bookings_in_range(booking_filter.provider_id, booking_filter)
        elif booking_filter.client_id:
            candidates = self._booking_repo.list_by_client(booking_filter.client_id)
        else:
            candidates = self._booking_repo.list_all()

        bookings = sorted(
            (b for b in candidates if booking_filter.matches(b)),
            key=lambda b: (b.start_time, b.booking_id)
        )

        end = None if booking_filter.limit is None else booking_filter.offset + booking_filter.limit
        return bookings[booking_filter.offset:end]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextmanager
    def _admission_scope(self, provider_id: str) -> Iterator[None]:
        """Hold the provider's lock; contention surfaces as SlotUnavailable"""
        try:
            token = self._provider_lock.acquire(provider_id)
        except LockContentionError as e:
            self.logger.warning("Admission scope unavailable", provider_id=provider_id, error=str(e))
            raise SlotNotAvailableError(
                f"Provider {provider_id} is busy, please try another time or retry"
            )
        try:
            yield
        finally:
            self._provider_lock.release(provider_id, token)

    def _admit(
        self,
        provider: Provider,
        candidate: Interval,
        exclude_booking_id: Optional[str] = None
    ) -> None:
        existing = self._booking_repo.list_by_provider(
            provider.provider_id,
            candidate.start - _LOOKBACK,
            candidate.end
        )
        decision = self._conflict_checker.check(provider, candidate, existing, exclude_booking_id)
        if not decision:
            self.logger.warning(
                "Booking rejected",
                provider_id=provider.provider_id,
                start=to_iso_string(candidate.start),
                reason=decision.reason,
                conflicts=list(decision.conflicting_booking_ids)
            )
            raise SlotNotAvailableError(decision.reason)

    def _apply_event(
        self,
        actor: Actor,
        booking_id: str,
        event: BookingEvent,
        reason: Optional[str],
        at: datetime
    ) -> Booking:
        booking = self._get_booking(booking_id)
        if not self._is_participant(actor, booking):
            raise UnauthorizedError(f"Actor {actor.actor_id} is not a participant of booking {booking_id}")

        with self._admission_scope(booking.provider_id):
            booking = self._get_booking(booking_id)
            expected_version = booking.version
            old_status = self._state_machine.apply(booking, event, actor, at, reason)
            self._booking_repo.update(booking, expected_version)

        self.logger.info(
            "Booking status changed",
            booking_id=booking_id,
            event=event.value,
            old_status=old_status.value,
            new_status=booking.status.value,
            actor_id=actor.actor_id
        )

        self._emit(DomainEvent(
            event_type=DomainEventType.BOOKING_STATUS_CHANGED,
            booking_id=booking_id,
            provider_id=booking.provider_id,
            client_id=booking.client_id,
            old_status=old_status,
            new_status=booking.status,
            interval=booking.interval,
            reason=reason,
            review_eligible=booking.status == BookingStatus.COMPLETED
        ))
        return booking

    def _emit(self, event: DomainEvent) -> None:
        """Publish after commit; delivery problems never reach the caller"""
        try:
            self._event_publisher.publish(event)
        except Exception as e:
            self.logger.error(
                "Failed to publish domain event",
                event_type=event.event_type.value,
                booking_id=event.booking_id,
                error=str(e)
            )

    def _resolve_client(self, actor: Actor, provider_id: str, client_id: Optional[str]) -> str:
        if actor.role == ActorRole.CLIENT:
            if client_id and client_id != actor.actor_id:
                raise UnauthorizedError("Clients can only book for themselves")
            return actor.actor_id

        if actor.role == ActorRole.PROVIDER:
            if not client_id:
                raise ValidationError("client_id is required when booking on behalf of a client")
            provider = self._get_provider(provider_id)
            if not provider.is_owned_by(actor.actor_id):
                raise UnauthorizedError(f"Provider {provider_id} is not owned by {actor.actor_id}")
            return client_id

        if actor.role == ActorRole.ADMIN:
            if not client_id:
                raise ValidationError("client_id is required when booking on behalf of a client")
            return client_id

        raise UnauthorizedError(f"Role {actor.role.value} cannot create bookings")

    def _is_participant(self, actor: Actor, booking: Booking) -> bool:
        if actor.is_privileged():
            return True
        if actor.role == ActorRole.CLIENT:
            return booking.client_id == actor.actor_id
        if actor.role == ActorRole.PROVIDER:
            provider = self._provider_repo.get_by_id(booking.provider_id)
            return provider is not None and provider.is_owned_by(actor.actor_id)
        return False

    def _bookings_in_range(self, provider_id: str, booking_filter: BookingFilter) -> List[Booking]:
        return self._booking_repo.list_by_provider(
            provider_id,
            booking_filter.date_from or _EARLIEST,
            booking_filter.date_to or _LATEST
        )

    def _get_provider(self, provider_id: str) -> Provider:
        provider = self._provider_repo.get_by_id(provider_id)
        if not provider:
            raise EntityNotFoundError("Provider", provider_id)
        return provider

    def _get_booking(self, booking_id: str) -> Booking:
        booking = self._booking_repo.get_by_id(booking_id)
        if not booking:
            raise EntityNotFoundError("Booking", booking_id)
        return booking

    @staticmethod
    def _require_actor(actor: Optional[Actor]) -> Actor:
        if actor is None:
            raise UnauthenticatedError("Authentication required")
        return actor

    @staticmethod
    def _require_aware(value: datetime, name: str) -> None:
        if not isinstance(value, datetime):
            raise ValidationError(f"{name} must be a datetime")
        if value.tzinfo is None:
            raise ValidationError(f"{name} must be timezone-aware")
