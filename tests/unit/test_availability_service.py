import unittest
from datetime import date, datetime, timedelta, timezone
from unittest.mock import MagicMock

from availability.service import AvailabilityManagementService, AvailabilityService
from booking.locks import InMemoryProviderLock
from shared.domain.entities import (
    Actor,
    ActorRole,
    AvailabilityTemplate,
    Booking,
    BookingStatus,
    DayAvailability,
    Provider,
    ServiceOffering,
    TimeRange,
)
from shared.domain.exceptions import (
    EntityNotFoundError,
    UnauthenticatedError,
    UnauthorizedError,
    ValidationError,
)
from shared.infrastructure.memory_repositories import (
    InMemoryBookingRepository,
    InMemoryProviderRepository,
)

MONDAY = date(2030, 1, 7)
NOW = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)


def weekday_template():
    template = AvailabilityTemplate()
    for code in ("MON", "TUE", "WED", "THU", "FRI"):
        template.set_day(DayAvailability(code, [TimeRange("09:00", "17:00")], [TimeRange("12:00", "13:00")]))
    return template


def utc(hour, minute=0, day=MONDAY):
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)


def make_provider():
    return Provider(
        provider_id="pro-1",
        owner_id="owner-1",
        name="Studio",
        services=[
            ServiceOffering(service_id="svc-1", name="Test Service", duration_minutes=60, price=100),
            ServiceOffering(service_id="svc-off", name="Retired", duration_minutes=30, active=False),
        ],
        template=weekday_template()
    )


class TestAvailabilityService(unittest.TestCase):
    def setUp(self):
        self.provider_repo = InMemoryProviderRepository()
        self.booking_repo = InMemoryBookingRepository()
        self.provider = make_provider()
        self.provider_repo.save(self.provider)

        self.service = AvailabilityService(
            self.provider_repo,
            self.booking_repo,
            slot_interval_minutes=60,  # 1 hour slots for easier testing
            clock=lambda: NOW
        )

    def _book(self, hour, status=BookingStatus.CONFIRMED, booking_id="bkg-1"):
        self.booking_repo.add(Booking(
            booking_id=booking_id,
            provider_id="pro-1",
            client_id="client-1",
            service_id="svc-1",
            start_time=utc(hour),
            duration_minutes=60,
            status=status
        ))

    def test_slots_follow_template_and_break(self):
        slots = self.service.get_available_slots("pro-1", "svc-1", MONDAY)

        self.assertEqual([s.start.hour for s in slots], [9, 10, 11, 13, 14, 15, 16])

    def test_booked_slot_is_excluded(self):
        self._book(10)

        slots = self.service.get_available_slots("pro-1", "svc-1", "2030-01-07")

        self.assertNotIn(utc(10), [s.start for s in slots])
        self.assertEqual(len(slots), 6)

    def test_cancelled_booking_frees_slot(self):
        self._book(10, status=BookingStatus.CANCELLED_BY_CLIENT)

        slots = self.service.get_available_slots("pro-1", "svc-1", MONDAY)

        self.assertIn(utc(10), [s.start for s in slots])

    def test_finer_step_skips_partially_overlapping_candidates(self):
        self._book(10)
        service = AvailabilityService(self.provider_repo, self.booking_repo, slot_interval_minutes=30, clock=lambda: NOW)

        starts = [s.start for s in service.get_available_slots("pro-1", "svc-1", MONDAY)]

        self.assertIn(utc(9), starts)
        self.assertNotIn(utc(9, 30), starts)
        self.assertNotIn(utc(10, 30), starts)
        self.assertIn(utc(11), starts)

    def test_past_slots_are_not_offered(self):
        slots = self.service.get_available_slots("pro-1", "svc-1", MONDAY, now=utc(13, 30))

        self.assertEqual([s.start.hour for s in slots], [14, 15, 16])

    def test_closed_day_has_no_slots(self):
        self.assertEqual(self.service.get_available_slots("pro-1", "svc-1", date(2030, 1, 12)), [])

    def test_inactive_provider_has_no_slots(self):
        self.provider.active = False
        self.provider_repo.save(self.provider)

        self.assertEqual(self.service.get_available_slots("pro-1", "svc-1", MONDAY), [])

    def test_inactive_service_is_invalid(self):
        with self.assertRaises(ValidationError):
            self.service.get_available_slots("pro-1", "svc-off", MONDAY)

    def test_unknown_service(self):
        with self.assertRaises(EntityNotFoundError):
            self.service.get_available_slots("pro-1", "svc-missing", MONDAY)

    def test_unknown_provider(self):
        with self.assertRaises(EntityNotFoundError):
            self.service.get_effective_availability("pro-missing", MONDAY)

    def test_invalid_date(self):
        with self.assertRaises(ValidationError):
            self.service.get_available_slots("pro-1", "svc-1", "07/01/2030")

    def test_effective_availability(self):
        intervals = self.service.get_effective_availability("pro-1", MONDAY)

        self.assertEqual(
            [(i.start, i.end) for i in intervals],
            [(utc(9), utc(12)), (utc(13), utc(17))]
        )

    def test_non_positive_step_rejected(self):
        with self.assertRaises(ValueError):
            AvailabilityService(self.provider_repo, self.booking_repo, slot_interval_minutes=0)


class TestAvailabilityManagementService(unittest.TestCase):
    def setUp(self):
        self.provider_repo = InMemoryProviderRepository()
        self.provider_repo.save(make_provider())
        self.service = AvailabilityManagementService(self.provider_repo, InMemoryProviderLock())
        self.owner = Actor("owner-1", ActorRole.PROVIDER)

    def test_set_day_availability_from_dicts(self):
        day = self.service.set_day_availability(
            self.owner, "pro-1", "sat",
            time_ranges=[{"start": "10:00", "end": "14:00"}],
            breaks=[{"startTime": "12:00", "endTime": "12:30"}]
        )

        self.assertEqual(day.day_of_week, "SAT")
        stored = self.provider_repo.get_by_id("pro-1").template.for_day("SAT")
        self.assertEqual(stored.time_ranges, [TimeRange("10:00", "14:00")])
        self.assertEqual(stored.breaks, [TimeRange("12:00", "12:30")])

    def test_set_day_requires_ranges(self):
        with self.assertRaises(ValidationError):
            self.service.set_day_availability(self.owner, "pro-1", "MON", time_ranges=[])

    def test_malformed_range(self):
        with self.assertRaises(ValidationError):
            self.service.set_day_availability(self.owner, "pro-1", "MON", time_ranges=[{"from": "10:00"}])

    def test_clear_day(self):
        template = self.service.clear_day_availability(self.owner, "pro-1", "mon")

        self.assertIsNone(template.for_day("MON"))
        self.assertIsNone(self.provider_repo.get_by_id("pro-1").template.for_day("MON"))

    def test_clear_unknown_day(self):
        with self.assertRaises(ValidationError):
            self.service.clear_day_availability(self.owner, "pro-1", "XYZ")

    def test_full_day_exception_then_remove(self):
        self.service.add_exception(self.owner, "pro-1", "2030-01-07", reason="Holiday")
        self.assertTrue(self.provider_repo.get_by_id("pro-1").exception_for(MONDAY).is_full_day_block)

        self.service.remove_exception(self.owner, "pro-1", MONDAY)
        self.assertIsNone(self.provider_repo.get_by_id("pro-1").exception_for(MONDAY))

    def test_remove_missing_exception(self):
        with self.assertRaises(EntityNotFoundError):
            self.service.remove_exception(self.owner, "pro-1", MONDAY)

    def test_non_owner_is_unauthorized(self):
        with self.assertRaises(UnauthorizedError):
            self.service.add_exception(Actor("owner-2", ActorRole.PROVIDER), "pro-1", MONDAY)

    def test_admin_can_manage_any_provider(self):
        self.service.add_exception(Actor("admin", ActorRole.ADMIN), "pro-1", MONDAY, [{"start": "10:00", "end": "11:00"}])
        self.assertFalse(self.provider_repo.get_by_id("pro-1").exception_for(MONDAY).is_full_day_block)

    def test_missing_actor(self):
        with self.assertRaises(UnauthenticatedError):
            self.service.clear_day_availability(None, "pro-1", "MON")

    def test_changes_run_inside_provider_lock(self):
        lock = MagicMock()
        service = AvailabilityManagementService(self.provider_repo, lock)

        service.clear_day_availability(self.owner, "pro-1", "TUE")

        lock.hold.assert_called_once_with("pro-1")

    def test_exception_changes_slot_search(self):
        self.service.add_exception(self.owner, "pro-1", MONDAY, [{"start": "15:00", "end": "17:00"}])
        slots = AvailabilityService(
            self.provider_repo, InMemoryBookingRepository(), slot_interval_minutes=60, clock=lambda: NOW
        ).get_available_slots("pro-1", "svc-1", MONDAY)

        self.assertEqual([s.start.hour for s in slots], [15, 16])

    def test_describe(self):
        self.service.add_exception(self.owner, "pro-1", MONDAY + timedelta(days=7))
        self.service.add_exception(self.owner, "pro-1", MONDAY)

        described = self.service.describe("pro-1")

        self.assertEqual(len(described["days"]), 5)
        self.assertEqual([e["date"] for e in described["exceptions"]], ["2030-01-07", "2030-01-14"])


if __name__ == '__main__':
    unittest.main()
