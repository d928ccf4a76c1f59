"""
Unit tests for the booking lifecycle
"""

import unittest
from datetime import datetime, timedelta, timezone

from booking.state_machine import BookingStateMachine
from shared.domain.entities import (
    Actor,
    ActorRole,
    Booking,
    BookingEvent,
    BookingStatus,
    Provider,
)
from shared.domain.exceptions import InvalidTransitionError, UnauthorizedError


START = datetime(2030, 1, 7, 10, 0, tzinfo=timezone.utc)

CLIENT = Actor("c1", ActorRole.CLIENT)
PROVIDER = Actor("owner_1", ActorRole.PROVIDER)
ADMIN = Actor("admin_1", ActorRole.ADMIN)
SYSTEM = Actor.system()


def make_booking(status):
    return Booking(
        booking_id="bkg_1",
        provider_id="pro_1",
        client_id="c1",
        service_id="svc_1",
        start_time=START,
        duration_minutes=60,
        status=status
    )


class TestBookingStateMachine(unittest.TestCase):

    def setUp(self):
        self.machine = BookingStateMachine()
        self.before = START - timedelta(days=1)
        self.after = START + timedelta(hours=2)

    def test_initial_status_follows_provider_policy(self):
        provider = Provider(provider_id="pro_1", owner_id="owner_1", name="Studio")
        self.assertEqual(self.machine.initial_status(provider), BookingStatus.PENDING)
        provider.auto_confirm = True
        self.assertEqual(self.machine.initial_status(provider), BookingStatus.CONFIRMED)

    def test_legal_transitions(self):
        cases = [
            (BookingStatus.PENDING, BookingEvent.ACCEPT, PROVIDER, BookingStatus.CONFIRMED),
            (BookingStatus.PENDING, BookingEvent.DECLINE, PROVIDER, BookingStatus.DECLINED),
            (BookingStatus.PENDING, BookingEvent.CLIENT_CANCEL, CLIENT, BookingStatus.CANCELLED_BY_CLIENT),
            (BookingStatus.CONFIRMED, BookingEvent.CLIENT_CANCEL, CLIENT, BookingStatus.CANCELLED_BY_CLIENT),
            (BookingStatus.CONFIRMED, BookingEvent.PROVIDER_CANCEL, PROVIDER, BookingStatus.CANCELLED_BY_PROVIDER),
        ]
        for from_status, event, actor, expected in cases:
            with self.subTest(from_status=from_status, event=event):
                booking = make_booking(from_status)
                old = self.machine.apply(booking, event, actor, self.before)
                self.assertEqual(old, from_status)
                self.assertEqual(booking.status, expected)

    def test_complete_after_end(self):
        booking = make_booking(BookingStatus.CONFIRMED)
        self.machine.apply(booking, BookingEvent.COMPLETE, SYSTEM, self.after)
        self.assertEqual(booking.status, BookingStatus.COMPLETED)

    def test_complete_exactly_at_end(self):
        booking = make_booking(BookingStatus.CONFIRMED)
        self.machine.apply(booking, BookingEvent.COMPLETE, SYSTEM, booking.end_time)
        self.assertEqual(booking.status, BookingStatus.COMPLETED)

    def test_complete_before_end_rejected(self):
        booking = make_booking(BookingStatus.CONFIRMED)
        with self.assertRaises(InvalidTransitionError):
            self.machine.apply(booking, BookingEvent.COMPLETE, ADMIN, START + timedelta(minutes=59))

    def test_terminal_states_reject_every_event(self):
        terminal = [
            BookingStatus.COMPLETED,
            BookingStatus.DECLINED,
            BookingStatus.CANCELLED_BY_CLIENT,
            BookingStatus.CANCELLED_BY_PROVIDER,
        ]
        for status in terminal:
            for event in BookingEvent:
                with self.subTest(status=status, event=event):
                    booking = make_booking(status)
                    with self.assertRaises(InvalidTransitionError):
                        self.machine.apply(booking, event, ADMIN, self.after)
                    self.assertEqual(booking.status, status)
                    self.assertEqual(booking.status_history, [])

    def test_undefined_event_lists_valid_events(self):
        booking = make_booking(BookingStatus.PENDING)
        with self.assertRaises(InvalidTransitionError) as cm:
            self.machine.apply(booking, BookingEvent.PROVIDER_CANCEL, PROVIDER, self.before)
        self.assertIn("ACCEPT", cm.exception.message)

    def test_wrong_role_is_unauthorized(self):
        cases = [
            (BookingStatus.PENDING, BookingEvent.ACCEPT, CLIENT),
            (BookingStatus.PENDING, BookingEvent.CLIENT_CANCEL, PROVIDER),
            (BookingStatus.CONFIRMED, BookingEvent.PROVIDER_CANCEL, CLIENT),
            (BookingStatus.CONFIRMED, BookingEvent.COMPLETE, CLIENT),
            (BookingStatus.CONFIRMED, BookingEvent.COMPLETE, PROVIDER),
        ]
        for status, event, actor in cases:
            with self.subTest(status=status, event=event, role=actor.role):
                with self.assertRaises(UnauthorizedError):
                    self.machine.apply(make_booking(status), event, actor, self.after)

    def test_cancellation_records_reason_and_history(self):
        booking = make_booking(BookingStatus.CONFIRMED)
        self.machine.apply(booking, BookingEvent.PROVIDER_CANCEL, PROVIDER, self.before, reason="Ill")

        self.assertEqual(booking.cancellation_reason, "Ill")
        change = booking.status_history[-1]
        self.assertEqual(
            (change.from_status, change.to_status, change.actor_id, change.reason),
            (BookingStatus.CONFIRMED, BookingStatus.CANCELLED_BY_PROVIDER, "owner_1", "Ill")
        )
        self.assertEqual(booking.updated_at, self.before)

    def test_valid_events(self):
        self.assertEqual(
            set(self.machine.valid_events(BookingStatus.CONFIRMED)),
            {BookingEvent.CLIENT_CANCEL, BookingEvent.PROVIDER_CANCEL, BookingEvent.COMPLETE}
        )
        self.assertEqual(self.machine.valid_events(BookingStatus.DECLINED), [])


if __name__ == '__main__':
    unittest.main()
