"""
Domain Entities for the Service Marketplace scheduling core

Following Hexagonal Architecture principles:
- Pure domain objects
- No infrastructure dependencies
- Business logic encapsulation
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, UTC
from typing import Optional, List, Dict, Any
from enum import Enum

import pytz

from .exceptions import ValidationError
from ..utils import generate_id, parse_iso_datetime, to_iso_string


DAYS_OF_WEEK = ("MON", "TUE", "WED", "THU", "FRI", "SAT", "SUN")


def day_code(day: date) -> str:
    """MON..SUN code for a calendar date"""
    return DAYS_OF_WEEK[day.weekday()]


class ActorRole(Enum):
    """Roles an authenticated actor can hold"""
    CLIENT = "CLIENT"
    PROVIDER = "PROVIDER"
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


class UserStatus(Enum):
    """User account status"""
    ACTIVE = "ACTIVE"
    DISABLED = "DISABLED"


class BookingStatus(Enum):
    """Booking lifecycle states"""
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED_BY_CLIENT = "CANCELLED_BY_CLIENT"
    CANCELLED_BY_PROVIDER = "CANCELLED_BY_PROVIDER"
    DECLINED = "DECLINED"

    def is_active(self) -> bool:
        """Active bookings hold their slot"""
        return self in (BookingStatus.PENDING, BookingStatus.CONFIRMED)

    def is_terminal(self) -> bool:
        return not self.is_active()


class BookingEvent(Enum):
    """Events that drive booking status transitions"""
    ACCEPT = "ACCEPT"
    DECLINE = "DECLINE"
    CLIENT_CANCEL = "CLIENT_CANCEL"
    PROVIDER_CANCEL = "PROVIDER_CANCEL"
    COMPLETE = "COMPLETE"


class DomainEventType(Enum):
    """Facts published after a successful booking mutation"""
    BOOKING_CREATED = "BookingCreated"
    BOOKING_STATUS_CHANGED = "BookingStatusChanged"
    BOOKING_RESCHEDULED = "BookingRescheduled"


@dataclass(frozen=True)
class Actor:
    """Value Object for the authenticated caller"""
    actor_id: str
    role: ActorRole

    def __post_init__(self):
        if not self.actor_id:
            raise ValueError("Actor id is required")

    @classmethod
    def system(cls) -> 'Actor':
        """Internal actor for time-triggered transitions"""
        return cls(actor_id="system", role=ActorRole.SYSTEM)

    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN

    def is_privileged(self) -> bool:
        """Admins and the system see and act on everything"""
        return self.role in (ActorRole.ADMIN, ActorRole.SYSTEM)


@dataclass
class UserRoleEntity:
    """Role assignment for a user account"""
    user_id: str
    email: str
    role: ActorRole
    status: UserStatus = UserStatus.ACTIVE
    name: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE


@dataclass
class TimeRange:
    """Value Object for wall-clock ranges within a day"""
    start_time: str  # Format: "HH:MM"
    end_time: str    # Format: "HH:MM", "24:00" allowed as end of day

    def __post_init__(self):
        start = self._parse(self.start_time, allow_midnight_end=False)
        end = self._parse(self.end_time, allow_midnight_end=True)
        if end <= start:
            raise ValidationError(
                f"Time range end {self.end_time} must be after start {self.start_time}"
            )

    @staticmethod
    def _parse(time_str: str, allow_midnight_end: bool) -> int:
        try:
            hours, minutes = map(int, time_str.split(':'))
        except (ValueError, AttributeError):
            raise ValidationError(f"Invalid time format: {time_str}. Use HH:MM")
        if allow_midnight_end and hours == 24 and minutes == 0:
            return 24 * 60
        if not (0 <= hours < 24 and 0 <= minutes < 60):
            raise ValidationError(f"Invalid time format: {time_str}. Use HH:MM")
        return hours * 60 + minutes

    @property
    def start_minutes(self) -> int:
        return self._parse(self.start_time, allow_midnight_end=False)

    @property
    def end_minutes(self) -> int:
        return self._parse(self.end_time, allow_midnight_end=True)

    @classmethod
    def from_minutes(cls, start: int, end: int) -> 'TimeRange':
        return cls(f"{start // 60:02d}:{start % 60:02d}", f"{end // 60:02d}:{end % 60:02d}")

    def overlaps_with(self, other: 'TimeRange') -> bool:
        """Check if this time range overlaps with another"""
        return self.start_minutes < other.end_minutes and other.start_minutes < self.end_minutes

    def to_dict(self) -> Dict[str, str]:
        return {'start': self.start_time, 'end': self.end_time}

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> 'TimeRange':
        return cls(data.get('start') or data['startTime'], data.get('end') or data['endTime'])


@dataclass(frozen=True)
class Interval:
    """
    Value Object for a half-open instant range [start, end)

    Touching intervals (one ends at 10:00, the next starts at 10:00)
    do not overlap.
    """
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValidationError("Interval bounds must be timezone-aware")
        if self.end <= self.start:
            raise ValidationError("Interval end must be after its start")

    @classmethod
    def from_duration(cls, start: datetime, duration_minutes: int) -> 'Interval':
        if duration_minutes is None or duration_minutes <= 0:
            raise ValidationError("Duration must be a positive number of minutes")
        return cls(start, start + timedelta(minutes=duration_minutes))

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    def overlaps(self, other: 'Interval') -> bool:
        return self.start < other.end and other.start < self.end

    def contains(self, other: 'Interval') -> bool:
        return self.start <= other.start and other.end <= self.end

    def to_dict(self) -> Dict[str, str]:
        return {'start': to_iso_string(self.start), 'end': to_iso_string(self.end)}

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> 'Interval':
        return cls(parse_iso_datetime(data['start']), parse_iso_datetime(data['end']))


@dataclass
class ServiceOffering:
    """Service a provider publishes"""
    service_id: str
    name: str
    duration_minutes: int
    price: Optional[float] = None
    active: bool = True

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ValidationError("Service name is required")
        if not isinstance(self.duration_minutes, int) or self.duration_minutes <= 0:
            raise ValidationError("Service duration must be a positive number of minutes")
        if self.price is not None and self.price < 0:
            raise ValidationError("Service price cannot be negative")

    def is_available(self) -> bool:
        """Check if service can be booked"""
        return self.active and self.duration_minutes > 0


@dataclass
class DayAvailability:
    """Provider availability for one day of the week"""
    day_of_week: str  # MON, TUE, WED, THU, FRI, SAT, SUN
    time_ranges: List[TimeRange]
    breaks: List[TimeRange] = field(default_factory=list)

    def __post_init__(self):
        self.day_of_week = (self.day_of_week or "").upper()
        if self.day_of_week not in DAYS_OF_WEEK:
            raise ValidationError(
                f"Invalid day of week: {self.day_of_week}. Use one of {', '.join(DAYS_OF_WEEK)}"
            )


@dataclass
class AvailabilityTemplate:
    """Recurring weekly schedule: day code -> open ranges"""
    days: Dict[str, DayAvailability] = field(default_factory=dict)

    def for_day(self, code: str) -> Optional[DayAvailability]:
        return self.days.get(code)

    def set_day(self, availability: DayAvailability) -> None:
        self.days[availability.day_of_week] = availability

    def clear_day(self, code: str) -> None:
        self.days.pop(code.upper(), None)


@dataclass
class AvailabilityException:
    """
    Date-specific override of the weekly template

    No time ranges means the whole date is blocked; otherwise the ranges
    replace the template for that date.
    """
    day: date
    time_ranges: List[TimeRange] = field(default_factory=list)
    reason: Optional[str] = None

    @property
    def is_full_day_block(self) -> bool:
        return not self.time_ranges


@dataclass
class Provider:
    """Provider aggregate root"""
    provider_id: str
    owner_id: str
    name: str
    services: List[ServiceOffering] = field(default_factory=list)
    template: AvailabilityTemplate = field(default_factory=AvailabilityTemplate)
    exceptions: Dict[date, AvailabilityException] = field(default_factory=dict)
    timezone: str = "UTC"
    auto_confirm: bool = False
    active: bool = True
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def tzinfo(self) -> pytz.BaseTzInfo:
        try:
            return pytz.timezone(self.timezone)
        except pytz.UnknownTimeZoneError:
            raise ValidationError(f"Unknown timezone: {self.timezone}")

    def get_service(self, service_id: str) -> Optional[ServiceOffering]:
        for service in self.services:
            if service.service_id == service_id:
                return service
        return None

    def add_service(self, service: ServiceOffering) -> None:
        """Append keeping ids and names unique"""
        if self.get_service(service.service_id):
            raise ValidationError(f"Service {service.service_id} already exists")
        name = service.name.strip().lower()
        if any(s.name.strip().lower() == name for s in self.services):
            raise ValidationError(f"Service named '{service.name}' already exists")
        self.services.append(service)

    def is_owned_by(self, actor_id: str) -> bool:
        return self.owner_id == actor_id

    def exception_for(self, day: date) -> Optional[AvailabilityException]:
        return self.exceptions.get(day)


@dataclass
class StatusChange:
    """Append-only record of one status transition"""
    from_status: Optional[BookingStatus]
    to_status: BookingStatus
    at: datetime
    actor_id: str
    reason: Optional[str] = None


@dataclass
class Booking:
    """Booking aggregate root"""
    booking_id: str
    provider_id: str
    client_id: str
    service_id: str
    start_time: datetime
    duration_minutes: int
    status: BookingStatus
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    cancellation_reason: Optional[str] = None
    reschedule_history: List[Interval] = field(default_factory=list)
    status_history: List[StatusChange] = field(default_factory=list)
    service_name: Optional[str] = None
    price: Optional[float] = None
    notes: Optional[str] = None
    version: int = 0

    @property
    def end_time(self) -> datetime:
        return self.start_time + timedelta(minutes=self.duration_minutes)

    @property
    def interval(self) -> Interval:
        return Interval(self.start_time, self.end_time)

    def is_active(self) -> bool:
        """Check if booking holds its slot"""
        return self.status.is_active()

    def is_terminal(self) -> bool:
        return self.status.is_terminal()

    def overlaps_with(self, other: Interval) -> bool:
        return self.interval.overlaps(other)


@dataclass(frozen=True)
class DomainEvent:
    """Fact emitted after a booking mutation has been persisted"""
    event_type: DomainEventType
    booking_id: str
    provider_id: str
    client_id: str
    new_status: BookingStatus
    interval: Interval
    old_status: Optional[BookingStatus] = None
    previous_interval: Optional[Interval] = None
    reason: Optional[str] = None
    review_eligible: bool = False
    event_id: str = field(default_factory=lambda: generate_id('evt'))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def idempotency_key(self) -> str:
        """Consumers deduplicate redeliveries on this key"""
        parts = [self.booking_id, self.event_type.value, self.new_status.value]
        if self.event_type == DomainEventType.BOOKING_RESCHEDULED:
            parts.append(to_iso_string(self.interval.start))
        return "#".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'eventId': self.event_id,
            'eventType': self.event_type.value,
            'bookingId': self.booking_id,
            'providerId': self.provider_id,
            'clientId': self.client_id,
            'oldStatus': self.old_status.value if self.old_status else None,
            'newStatus': self.new_status.value,
            'interval': self.interval.to_dict(),
            'reviewEligible': self.review_eligible,
            'occurredAt': to_iso_string(self.occurred_at),
            'idempotencyKey': self.idempotency_key,
        }
        if self.previous_interval:
            data['previousInterval'] = self.previous_interval.to_dict()
        if self.reason:
            data['reason'] = self.reason
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DomainEvent':
        previous = data.get('previousInterval')
        return cls(
            event_type=DomainEventType(data['eventType']),
            booking_id=data['bookingId'],
            provider_id=data['providerId'],
            client_id=data['clientId'],
            new_status=BookingStatus(data['newStatus']),
            interval=Interval.from_dict(data['interval']),
            old_status=BookingStatus(data['oldStatus']) if data.get('oldStatus') else None,
            previous_interval=Interval.from_dict(previous) if previous else None,
            reason=data.get('reason'),
            review_eligible=bool(data.get('reviewEligible', False)),
            event_id=data.get('eventId') or generate_id('evt'),
            occurred_at=parse_iso_datetime(data['occurredAt']) if data.get('occurredAt') else datetime.now(UTC),
        )


@dataclass
class BookingFilter:
    """Read-side filter for booking listings"""
    statuses: Optional[List[BookingStatus]] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    provider_id: Optional[str] = None
    client_id: Optional[str] = None
    offset: int = 0
    limit: Optional[int] = None

    def __post_init__(self):
        if self.date_from and self.date_from.tzinfo is None:
            raise ValidationError("date_from must be timezone-aware")
        if self.date_to and self.date_to.tzinfo is None:
            raise ValidationError("date_to must be timezone-aware")
        if self.date_from and self.date_to and self.date_to < self.date_from:
            raise ValidationError("date_to must not be before date_from")
        if self.offset < 0:
            raise ValidationError("offset cannot be negative")
        if self.limit is not None and self.limit <= 0:
            raise ValidationError("limit must be positive")

    def matches(self, booking: Booking) -> bool:
        """date_from is inclusive, date_to exclusive, both on start time"""
        if self.statuses and booking.status not in self.statuses:
            return False
        if self.date_from and booking.start_time < self.date_from:
            return False
        if self.date_to and booking.start_time >= self.date_to:
            return False
        if self.provider_id and booking.provider_id != self.provider_id:
            return False
        if self.client_id and booking.client_id != self.client_id:
            return False
        return True
