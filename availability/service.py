"""
Slot Calculation Service (Application Layer)

Read side: effective availability and bookable slots per provider and date.
Write side: owner/admin management of the weekly template and date
exceptions.
"""

from contextlib import nullcontext
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union

from availability.model import MAX_BOOKING_SPAN, effective_intervals
from booking.conflicts import ConflictChecker
from shared.config import SchedulingConfig
from shared.domain.entities import (
    DAYS_OF_WEEK,
    Actor,
    AvailabilityException,
    AvailabilityTemplate,
    DayAvailability,
    Interval,
    Provider,
    TimeRange,
)
from shared.domain.exceptions import (
    EntityNotFoundError,
    UnauthenticatedError,
    UnauthorizedError,
    ValidationError,
)
from shared.domain.repositories import IBookingRepository, IProviderLock, IProviderRepository
from shared.utils import Logger, to_iso_string, utc_now

TimeRangeInput = Union[TimeRange, Dict[str, str]]


def to_time_range(value: TimeRangeInput) -> TimeRange:
    """Accept TimeRange or {start, end} / {startTime, endTime} dicts"""
    if isinstance(value, TimeRange):
        return value
    if not isinstance(value, dict):
        raise ValidationError(f"Invalid time range: {value!r}")
    try:
        return TimeRange.from_dict(value)
    except KeyError:
        raise ValidationError(f"Time range needs start and end: {value!r}")


def to_date(value: Union[date, str]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid date: {value!r}. Use YYYY-MM-DD")


class AvailabilityService:
    """
    Service for calculating available time slots
    Single Responsibility: slot generation logic
    """

    def __init__(
        self,
        provider_repo: IProviderRepository,
        booking_repo: IBookingRepository,
        conflict_checker: Optional[ConflictChecker] = None,
        slot_interval_minutes: int = SchedulingConfig.SLOT_INTERVAL_MINUTES,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Args:
            slot_interval_minutes: Interval between slot start times
        """
        if slot_interval_minutes <= 0:
            raise ValueError("slot_interval_minutes must be positive")
        self.provider_repo = provider_repo
        self.booking_repo = booking_repo
        self.conflict_checker = conflict_checker or ConflictChecker()
        self.slot_interval_minutes = slot_interval_minutes
        self._clock = clock or utc_now
        self.logger = Logger()

    def get_effective_availability(self, provider_id: str, day: Union[date, str]) -> List[Interval]:
        """Bookable intervals for the provider's local calendar date"""
        provider = self._get_provider(provider_id)
        return effective_intervals(provider, to_date(day))

    def get_available_slots(
        self,
        provider_id: str,
        service_id: str,
        day: Union[date, str],
        now: Optional[datetime] = None
    ) -> List[Interval]:
        """
        Calculate available time slots

        Candidate starts step through each effective interval every
        `slot_interval_minutes`; a candidate is returned when it starts in
        the future and the conflict checker would admit it right now.

        Raises:
            EntityNotFoundError: Provider or service doesn't exist
            ValidationError: Service is not active
        """
        day = to_date(day)
        now = now or self._clock()

        self.logger.info(
            "Calculating available slots",
            provider_id=provider_id,
            service_id=service_id,
            day=day.isoformat()
        )

        provider = self._get_provider(provider_id)
        service = provider.get_service(service_id)
        if not service:
            raise EntityNotFoundError("Service", service_id)
        if not service.is_available():
            raise ValidationError(f"Service {service_id} is not active")
        if not provider.active:
            return []

        windows = effective_intervals(provider, day)
        if not windows:
            return []

        existing = self.booking_repo.list_by_provider(
            provider_id,
            windows[0].start - MAX_BOOKING_SPAN,
            windows[-1].end
        )

        step = timedelta(minutes=self.slot_interval_minutes)
        duration = timedelta(minutes=service.duration_minutes)
        slots: List[Interval] = []

        for window in windows:
            cursor = window.start
            while cursor + duration <= window.end:
                candidate = Interval(cursor, cursor + duration)
                if candidate.start > now and self.conflict_checker.is_admissible(provider, candidate, existing):
                    slots.append(candidate)
                cursor += step

        self.logger.info(
            "Slots calculated",
            provider_id=provider_id,
            day=day.isoformat(),
            available_count=len(slots)
        )
        return slots

    def _get_provider(self, provider_id: str) -> Provider:
        provider = self.provider_repo.get_by_id(provider_id)
        if not provider:
            raise EntityNotFoundError("Provider", provider_id)
        return provider


class AvailabilityManagementService:
    """
    Service for managing provider availability schedules
    Open/Closed Principle: separated from read-only availability service

    When a provider lock is given, changes are applied inside the same
    per-provider scope booking admission uses.
    """

    def __init__(
        self,
        provider_repo: IProviderRepository,
        provider_lock: Optional[IProviderLock] = None
    ):
        self.provider_repo = provider_repo
        self.provider_lock = provider_lock
        self.logger = Logger()

    def set_day_availability(
        self,
        actor: Optional[Actor],
        provider_id: str,
        day_of_week: str,
        time_ranges: List[TimeRangeInput],
        breaks: Optional[List[TimeRangeInput]] = None
    ) -> DayAvailability:
        """
        Set availability schedule for a specific day of the week

        Args:
            day_of_week: Day code (MON, TUE, WED, THU, FRI, SAT, SUN)
            time_ranges: Open ranges, "HH:MM" start/end
            breaks: Optional ranges removed from the open ranges
        """
        if not time_ranges:
            raise ValidationError("At least one time range is required; clear the day instead")

        availability = DayAvailability(
            day_of_week=day_of_week,
            time_ranges=[to_time_range(tr) for tr in time_ranges],
            breaks=[to_time_range(br) for br in breaks or []]
        )

        with self._scope(provider_id):
            provider = self._get_owned_provider(actor, provider_id)
            provider.template.set_day(availability)
            self.provider_repo.save(provider)

        self.logger.info(
            "Provider availability set",
            provider_id=provider_id,
            day_of_week=availability.day_of_week,
            ranges=len(availability.time_ranges),
            breaks=len(availability.breaks)
        )
        return availability

    def clear_day_availability(
        self,
        actor: Optional[Actor],
        provider_id: str,
        day_of_week: str
    ) -> AvailabilityTemplate:
        code = (day_of_week or "").upper()
        if code not in DAYS_OF_WEEK:
            raise ValidationError(f"Invalid day of week: {day_of_week}")

        with self._scope(provider_id):
            provider = self._get_owned_provider(actor, provider_id)
            provider.template.clear_day(code)
            self.provider_repo.save(provider)

        self.logger.info("Provider availability cleared", provider_id=provider_id, day_of_week=code)
        return provider.template

    def add_exception(
        self,
        actor: Optional[Actor],
        provider_id: str,
        day: Union[date, str],
        time_ranges: Optional[List[TimeRangeInput]] = None,
        reason: Optional[str] = None
    ) -> AvailabilityException:
        """
        Override the template for one date

        Without time ranges the whole date is blocked. Existing bookings on
        the date are left untouched.
        """
        exception = AvailabilityException(
            day=to_date(day),
            time_ranges=[to_time_range(tr) for tr in time_ranges or []],
            reason=reason
        )

        with self._scope(provider_id):
            provider = self._get_owned_provider(actor, provider_id)
            provider.exceptions[exception.day] = exception
            self.provider_repo.save(provider)

        self.logger.info(
            "Availability exception added",
            provider_id=provider_id,
            day=exception.day.isoformat(),
            full_day=exception.is_full_day_block
        )
        return exception

    def remove_exception(
        self,
        actor: Optional[Actor],
        provider_id: str,
        day: Union[date, str]
    ) -> None:
        day = to_date(day)

        with self._scope(provider_id):
            provider = self._get_owned_provider(actor, provider_id)
            if day not in provider.exceptions:
                raise EntityNotFoundError("AvailabilityException", day.isoformat())
            del provider.exceptions[day]
            self.provider_repo.save(provider)

        self.logger.info("Availability exception removed", provider_id=provider_id, day=day.isoformat())

    def describe(self, provider_id: str) -> Dict[str, Any]:
        """Template and exceptions as plain data for resolvers"""
        provider = self.provider_repo.get_by_id(provider_id)
        if not provider:
            raise EntityNotFoundError("Provider", provider_id)
        return {
            'providerId': provider.provider_id,
            'timezone': provider.timezone,
            'days': [
                {
                    'dayOfWeek': day.day_of_week,
                    'timeRanges': [tr.to_dict() for tr in day.time_ranges],
                    'breaks': [br.to_dict() for br in day.breaks],
                }
                for day in provider.template.days.values()
            ],
            'exceptions': [
                {
                    'date': e.day.isoformat(),
                    'timeRanges': [tr.to_dict() for tr in e.time_ranges],
                    'reason': e.reason,
                }
                for e in sorted(provider.exceptions.values(), key=lambda e: e.day)
            ],
            'generatedAt': to_iso_string(utc_now()),
        }

    def _scope(self, provider_id: str):
        if self.provider_lock is None:
            return nullcontext()
        return self.provider_lock.hold(provider_id)

    def _get_owned_provider(self, actor: Optional[Actor], provider_id: str) -> Provider:
        if actor is None:
            raise UnauthenticatedError("Authentication required")
        provider = self.provider_repo.get_by_id(provider_id)
        if not provider:
            raise EntityNotFoundError("Provider", provider_id)
        if not (actor.is_admin() or provider.is_owned_by(actor.actor_id)):
            raise UnauthorizedError(f"Provider {provider_id} is not owned by {actor.actor_id}")
        return provider
