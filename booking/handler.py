"""
Booking Lambda Handler (Adapter Layer)

AWS Lambda function for booking operations
"""

from functools import lru_cache
from typing import Optional

from booking.locks import InMemoryProviderLock
from booking.service import SchedulingService
from shared.config import SchedulingConfig
from shared.domain.entities import (
    Actor,
    ActorRole,
    Booking,
    BookingEvent,
    BookingFilter,
    BookingStatus,
)
from shared.domain.exceptions import (
    ConflictError,
    DomainError,
    EntityNotFoundError,
    InvalidTransitionError,
    SlotNotAvailableError,
    UnauthenticatedError,
    UnauthorizedError,
    ValidationError,
)
from shared.domain.repositories import IEventPublisher, IProviderLock
from shared.infrastructure.dynamodb_repositories import (
    DynamoDBBookingRepository,
    DynamoDBProviderRepository,
)
from shared.infrastructure.event_bus import InMemoryEventBus, SQSEventPublisher
from shared.infrastructure.identity import AppSyncIdentityAdapter
from shared.infrastructure.provider_lock import DynamoDBProviderLock
from shared.infrastructure.user_role_repository import DynamoDBUserRoleRepository
from shared.utils import (
    Logger,
    error_response,
    extract_appsync_event,
    parse_iso_datetime,
    success_response,
    to_iso_string,
)


logger = Logger()


def build_event_publisher() -> IEventPublisher:
    """SQS when a queue is configured, otherwise a local bus"""
    if SchedulingConfig.EVENTS_QUEUE_URL:
        return SQSEventPublisher()
    logger.warning("EVENTS_QUEUE_URL not set, domain events stay in-process")
    return InMemoryEventBus()


def build_provider_lock() -> IProviderLock:
    if SchedulingConfig.LOCKS_TABLE:
        return DynamoDBProviderLock()
    return InMemoryProviderLock()


@lru_cache(maxsize=1)
def get_scheduling_service() -> SchedulingService:
    """Dependencies are created once per Lambda container"""
    return SchedulingService(
        provider_repo=DynamoDBProviderRepository(),
        booking_repo=DynamoDBBookingRepository(),
        event_publisher=build_event_publisher(),
        provider_lock=build_provider_lock()
    )


@lru_cache(maxsize=1)
def get_user_role_repository() -> DynamoDBUserRoleRepository:
    return DynamoDBUserRoleRepository()


def resolve_actor(event: dict) -> Actor:
    return AppSyncIdentityAdapter(event, get_user_role_repository()).current_actor()


def lambda_handler(event: dict, context) -> dict:
    """
    Lambda handler for booking operations

    Supports operations:
    - createBooking: Create new booking with admission check
    - acceptBooking / declineBooking: Provider decision on a pending booking
    - cancelBooking: Cancel as client or provider
    - completeBooking: Mark an ended booking completed (admin)
    - transitionBooking: Apply an explicit lifecycle event
    - rescheduleBooking: Move a booking to a new start
    - getBooking: Get booking details
    - listBookings: Role-scoped listing with filters
    """
    try:
        field, input_data = extract_appsync_event(event)
        actor = resolve_actor(event)

        logger.info(
            "Booking operation",
            field=field,
            actor_id=actor.actor_id,
            role=actor.role.value
        )

        service = get_scheduling_service()

        # Route to appropriate handler
        if field == 'createBooking':
            return handle_create_booking(service, actor, input_data)

        elif field == 'acceptBooking':
            return handle_transition(service, actor, input_data, BookingEvent.ACCEPT)

        elif field == 'declineBooking':
            return handle_transition(service, actor, input_data, BookingEvent.DECLINE)

        elif field == 'cancelBooking':
            return handle_cancel_booking(service, actor, input_data)

        elif field == 'completeBooking':
            return handle_transition(service, actor, input_data, BookingEvent.COMPLETE)

        elif field == 'transitionBooking':
            return handle_transition(service, actor, input_data, BookingEvent(input_data.get('event')))

        elif field == 'rescheduleBooking':
            return handle_reschedule_booking(service, actor, input_data)

        elif field == 'getBooking':
            return handle_get_booking(service, actor, input_data)

        elif field == 'listBookings':
            return handle_list_bookings(service, actor, input_data)

        else:
            return error_response(f"Unknown operation: {field}", 400, 'INVALID_INPUT')

    except EntityNotFoundError as e:
        logger.warning("Entity not found", error=e.message)
        return error_response(e.message, e.status_code, e.kind)

    except (UnauthenticatedError, UnauthorizedError) as e:
        logger.warning("Access denied", error=e.message, kind=e.kind)
        return error_response(e.message, e.status_code, e.kind)

    except (SlotNotAvailableError, InvalidTransitionError, ConflictError) as e:
        logger.warning("Business rule violation", error=e.message, kind=e.kind)
        return error_response(e.message, e.status_code, e.kind)

    except ValidationError as e:
        logger.warning("Validation error", error=e.message)
        return error_response(e.message, e.status_code, e.kind)

    except DomainError as e:
        logger.error("Unhandled domain error", error=e.message, kind=e.kind)
        return error_response(e.message, e.status_code, e.kind)

    except ValueError as e:
        logger.warning("Invalid input", error=str(e))
        return error_response(str(e), 400, 'INVALID_INPUT')

    except Exception as e:
        logger.error("Unexpected error", error=str(e), error_type=type(e).__name__)
        return error_response("Internal server error", 500, 'INTERNAL')


def handle_create_booking(service: SchedulingService, actor: Actor, input_data: dict) -> dict:
    """
    Create a new booking

    Input:
    {
        "providerId": "pro_456",
        "serviceId": "svc_123",
        "start": "2025-12-05T10:00:00Z",
        "end": "2025-12-05T11:00:00Z",      (optional)
        "notes": "First time client",        (optional)
        "clientId": "usr_789"                (provider/admin only)
    }
    """
    required = ['providerId', 'serviceId', 'start']
    missing = [f for f in required if not input_data.get(f)]
    if missing:
        return error_response(f"Missing required fields: {', '.join(missing)}", 400, 'INVALID_INPUT')

    booking = service.create_booking(
        actor,
        provider_id=input_data['providerId'],
        service_id=input_data['serviceId'],
        start=parse_iso_datetime(input_data['start']),
        end=parse_iso_datetime(input_data['end']) if input_data.get('end') else None,
        notes=input_data.get('notes'),
        client_id=input_data.get('clientId')
    )
    return success_response(booking_to_dict(booking), 201)


def handle_transition(
    service: SchedulingService,
    actor: Actor,
    input_data: dict,
    event: BookingEvent
) -> dict:
    booking_id = input_data.get('bookingId')
    if not booking_id:
        return error_response("Missing bookingId", 400, 'INVALID_INPUT')

    booking = service.transition(actor, booking_id, event, reason=input_data.get('reason'))
    return success_response(booking_to_dict(booking))


def handle_cancel_booking(service: SchedulingService, actor: Actor, input_data: dict) -> dict:
    """
    Cancel a booking

    Input:
    {
        "bookingId": "bkg_123",
        "reason": "Schedule conflict",   (optional)
        "cancelledBy": "CLIENT"          (admin only: CLIENT or PROVIDER)
    }
    """
    return handle_transition(service, actor, input_data, cancellation_event(actor, input_data.get('cancelledBy')))


def cancellation_event(actor: Actor, cancelled_by: Optional[str] = None) -> BookingEvent:
    """Which cancel event a caller means, derived from its role"""
    if actor.role == ActorRole.CLIENT:
        return BookingEvent.CLIENT_CANCEL
    if actor.role == ActorRole.PROVIDER:
        return BookingEvent.PROVIDER_CANCEL
    side = (cancelled_by or 'CLIENT').upper()
    if side not in ('CLIENT', 'PROVIDER'):
        raise ValidationError(f"cancelledBy must be CLIENT or PROVIDER, got {cancelled_by}")
    return BookingEvent.CLIENT_CANCEL if side == 'CLIENT' else BookingEvent.PROVIDER_CANCEL


def handle_reschedule_booking(service: SchedulingService, actor: Actor, input_data: dict) -> dict:
    """
    Input:
    {
        "bookingId": "bkg_123",
        "newStart": "2025-12-06T10:00:00Z"
    }
    """
    if not input_data.get('bookingId') or not input_data.get('newStart'):
        return error_response("Missing bookingId or newStart", 400, 'INVALID_INPUT')

    booking = service.reschedule(
        actor,
        input_data['bookingId'],
        parse_iso_datetime(input_data['newStart'])
    )
    return success_response(booking_to_dict(booking))


def handle_get_booking(service: SchedulingService, actor: Actor, input_data: dict) -> dict:
    booking_id = input_data.get('bookingId')
    if not booking_id:
        return error_response("Missing bookingId", 400, 'INVALID_INPUT')

    booking = service.get_booking(actor, booking_id)
    return success_response(booking_to_dict(booking))


def handle_list_bookings(service: SchedulingService, actor: Actor, input_data: dict) -> dict:
    """
    Input (all optional):
    {
        "statuses": ["PENDING", "CONFIRMED"],
        "dateFrom": "2025-12-01T00:00:00Z",
        "dateTo": "2025-12-31T00:00:00Z",
        "providerId": "pro_456",
        "clientId": "usr_789",
        "offset": 0,
        "limit": 20
    }
    """
    statuses = input_data.get('statuses')
    booking_filter = BookingFilter(
        statuses=[BookingStatus(s) for s in statuses] if statuses else None,
        date_from=parse_iso_datetime(input_data['dateFrom']) if input_data.get('dateFrom') else None,
        date_to=parse_iso_datetime(input_data['dateTo']) if input_data.get('dateTo') else None,
        provider_id=input_data.get('providerId'),
        client_id=input_data.get('clientId'),
        offset=int(input_data.get('offset') or 0),
        limit=int(input_data['limit']) if input_data.get('limit') else None
    )

    bookings = service.list_bookings(actor, booking_filter)
    return success_response({
        'items': [booking_to_dict(b) for b in bookings],
        'count': len(bookings),
        'offset': booking_filter.offset
    })


def booking_to_dict(booking: Booking) -> dict:
    """Convert Booking entity to dict"""
    return {
        'bookingId': booking.booking_id,
        'providerId': booking.provider_id,
        'clientId': booking.client_id,
        'serviceId': booking.service_id,
        'serviceName': booking.service_name,
        'price': booking.price,
        'start': to_iso_string(booking.start_time),
        'end': to_iso_string(booking.end_time),
        'durationMinutes': booking.duration_minutes,
        'status': booking.status.value,
        'notes': booking.notes,
        'cancellationReason': booking.cancellation_reason,
        'rescheduleHistory': [interval.to_dict() for interval in booking.reschedule_history],
        'statusHistory': [
            {
                'from': change.from_status.value if change.from_status else None,
                'to': change.to_status.value,
                'at': to_iso_string(change.at),
                'actorId': change.actor_id,
                'reason': change.reason,
            }
            for change in booking.status_history
        ],
        'createdAt': to_iso_string(booking.created_at),
        'updatedAt': to_iso_string(booking.updated_at),
        'version': booking.version
    }
