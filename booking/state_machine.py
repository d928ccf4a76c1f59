"""
Booking State Machine

Owns the lifecycle of a single booking:

    PENDING --ACCEPT--> CONFIRMED --COMPLETE--> COMPLETED
    PENDING --DECLINE--> DECLINED
    PENDING/CONFIRMED --CLIENT_CANCEL--> CANCELLED_BY_CLIENT
    CONFIRMED --PROVIDER_CANCEL--> CANCELLED_BY_PROVIDER

COMPLETED, DECLINED and both cancelled states are terminal.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional, Tuple

from shared.domain.entities import (
    Actor,
    ActorRole,
    Booking,
    BookingEvent,
    BookingStatus,
    Provider,
    StatusChange,
)
from shared.domain.exceptions import InvalidTransitionError, UnauthorizedError


@dataclass(frozen=True)
class Transition:
    """A single legal status change and the roles allowed to trigger it"""
    from_status: BookingStatus
    event: BookingEvent
    to_status: BookingStatus
    allowed_roles: FrozenSet[ActorRole]


_PROVIDER_SIDE = frozenset({ActorRole.PROVIDER, ActorRole.ADMIN})
_CLIENT_SIDE = frozenset({ActorRole.CLIENT, ActorRole.ADMIN})
_TIME_TRIGGERED = frozenset({ActorRole.SYSTEM, ActorRole.ADMIN})

CANCELLATION_EVENTS = frozenset({BookingEvent.CLIENT_CANCEL, BookingEvent.PROVIDER_CANCEL})


class BookingStateMachine:
    """
    Applies lifecycle events to bookings

    Role checks happen here; ownership (is this client's booking, does this
    provider account own the provider) is the caller's job.
    """

    TRANSITIONS: Dict[Tuple[BookingStatus, BookingEvent], Transition] = {
        (t.from_status, t.event): t
        for t in [
            Transition(BookingStatus.PENDING, BookingEvent.ACCEPT,
                       BookingStatus.CONFIRMED, _PROVIDER_SIDE),
            Transition(BookingStatus.PENDING, BookingEvent.DECLINE,
                       BookingStatus.DECLINED, _PROVIDER_SIDE),
            Transition(BookingStatus.PENDING, BookingEvent.CLIENT_CANCEL,
                       BookingStatus.CANCELLED_BY_CLIENT, _CLIENT_SIDE),
            Transition(BookingStatus.CONFIRMED, BookingEvent.CLIENT_CANCEL,
                       BookingStatus.CANCELLED_BY_CLIENT, _CLIENT_SIDE),
            Transition(BookingStatus.CONFIRMED, BookingEvent.PROVIDER_CANCEL,
                       BookingStatus.CANCELLED_BY_PROVIDER, _PROVIDER_SIDE),
            Transition(BookingStatus.CONFIRMED, BookingEvent.COMPLETE,
                       BookingStatus.COMPLETED, _TIME_TRIGGERED),
        ]
    }

    @staticmethod
    def initial_status(provider: Provider) -> BookingStatus:
        """New bookings start PENDING unless the provider auto-confirms"""
        return BookingStatus.CONFIRMED if provider.auto_confirm else BookingStatus.PENDING

    def valid_events(self, status: BookingStatus) -> List[BookingEvent]:
        """Events that have a transition out of `status`"""
        return [event for (from_status, event) in self.TRANSITIONS if from_status == status]

    def resolve(self, booking: Booking, event: BookingEvent, actor: Actor, at: datetime) -> Transition:
        """
        Find the transition for `event` or explain why there is none

        Raises:
            InvalidTransitionError: terminal state, undefined event, or a
                completion before the booking has ended
            UnauthorizedError: actor role not allowed for this transition
        """
        if booking.is_terminal():
            raise InvalidTransitionError(
                f"Booking {booking.booking_id} is {booking.status.value}; no further transitions allowed"
            )

        transition = self.TRANSITIONS.get((booking.status, event))
        if transition is None:
            valid = [e.value for e in self.valid_events(booking.status)]
            raise InvalidTransitionError(
                f"Cannot apply {event.value} to a {booking.status.value} booking. Valid events: {valid}"
            )

        if actor.role not in transition.allowed_roles:
            raise UnauthorizedError(
                f"Role {actor.role.value} may not apply {event.value} to booking {booking.booking_id}"
            )

        if event == BookingEvent.COMPLETE and booking.end_time > at:
            raise InvalidTransitionError(
                f"Booking {booking.booking_id} cannot be completed before it ends"
            )

        return transition

    def apply(
        self,
        booking: Booking,
        event: BookingEvent,
        actor: Actor,
        at: datetime,
        reason: Optional[str] = None
    ) -> BookingStatus:
        """
        Apply `event` to `booking` in place

        Returns:
            The status the booking held before the transition
        """
        transition = self.resolve(booking, event, actor, at)

        old_status = booking.status
        booking.status = transition.to_status
        booking.updated_at = at
        if event in CANCELLATION_EVENTS:
            booking.cancellation_reason = reason
        booking.status_history.append(StatusChange(
            from_status=old_status,
            to_status=transition.to_status,
            at=at,
            actor_id=actor.actor_id,
            reason=reason
        ))
        return old_status
