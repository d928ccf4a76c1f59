"""
Shared pytest fixtures: in-memory wiring and a provider with a weekday template
"""

import pytest
from datetime import datetime, timedelta, timezone

from booking.locks import InMemoryProviderLock
from booking.service import SchedulingService
from shared.domain.entities import (
    Actor,
    ActorRole,
    AvailabilityTemplate,
    DayAvailability,
    Provider,
    ServiceOffering,
    TimeRange,
)
from shared.infrastructure.event_bus import InMemoryEventBus
from shared.infrastructure.memory_repositories import (
    InMemoryBookingRepository,
    InMemoryProviderRepository,
)


def weekday_template():
    """MON-FRI 09:00-17:00 with a lunch break"""
    template = AvailabilityTemplate()
    for code in ("MON", "TUE", "WED", "THU", "FRI"):
        template.set_day(DayAvailability(
            day_of_week=code,
            time_ranges=[TimeRange("09:00", "17:00")],
            breaks=[TimeRange("12:00", "13:00")]
        ))
    return template


@pytest.fixture
def monday():
    """A Monday at least a week in the future"""
    today = datetime.now(timezone.utc).date()
    days_ahead = (0 - today.weekday()) % 7 or 7
    return today + timedelta(days=days_ahead + 7)


@pytest.fixture
def at():
    """at(day, "HH:MM", tz=UTC) -> aware datetime"""
    def _at(day, hhmm, tz=timezone.utc):
        hours, minutes = map(int, hhmm.split(":"))
        return datetime(day.year, day.month, day.day, hours, minutes, tzinfo=tz)
    return _at


@pytest.fixture
def provider():
    return Provider(
        provider_id="pro_1",
        owner_id="owner_1",
        name="Ana's Studio",
        services=[
            ServiceOffering(service_id="svc_60", name="Haircut", duration_minutes=60, price=30.0),
            ServiceOffering(service_id="svc_30", name="Beard trim", duration_minutes=30, price=15.0),
        ],
        template=weekday_template(),
        timezone="UTC",
    )


@pytest.fixture
def provider_repo(provider):
    repo = InMemoryProviderRepository()
    repo.save(provider)
    return repo


@pytest.fixture
def booking_repo():
    return InMemoryBookingRepository()


@pytest.fixture
def event_bus():
    return InMemoryEventBus()


@pytest.fixture
def scheduling_service(provider_repo, booking_repo, event_bus):
    return SchedulingService(
        provider_repo=provider_repo,
        booking_repo=booking_repo,
        event_publisher=event_bus,
        provider_lock=InMemoryProviderLock(),
    )


@pytest.fixture
def client_actor():
    return Actor(actor_id="client_1", role=ActorRole.CLIENT)


@pytest.fixture
def other_client():
    return Actor(actor_id="client_2", role=ActorRole.CLIENT)


@pytest.fixture
def provider_actor():
    return Actor(actor_id="owner_1", role=ActorRole.PROVIDER)


@pytest.fixture
def admin_actor():
    return Actor(actor_id="admin_1", role=ActorRole.ADMIN)
