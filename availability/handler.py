"""
Availability Lambda Handler (Adapter Layer)

AWS Lambda function for availability operations
"""

from functools import lru_cache

from availability.service import AvailabilityManagementService, AvailabilityService
from booking.handler import build_provider_lock, resolve_actor
from shared.domain.exceptions import (
    DomainError,
    EntityNotFoundError,
    UnauthenticatedError,
    UnauthorizedError,
    ValidationError,
)
from shared.domain.repositories import IProviderRepository
from shared.infrastructure.dynamodb_repositories import (
    DynamoDBBookingRepository,
    DynamoDBProviderRepository,
)
from shared.utils import Logger, error_response, extract_appsync_event, success_response


logger = Logger()


@lru_cache(maxsize=1)
def get_provider_repository() -> IProviderRepository:
    return DynamoDBProviderRepository()


@lru_cache(maxsize=1)
def get_availability_service() -> AvailabilityService:
    return AvailabilityService(get_provider_repository(), DynamoDBBookingRepository())


@lru_cache(maxsize=1)
def get_management_service() -> AvailabilityManagementService:
    return AvailabilityManagementService(get_provider_repository(), build_provider_lock())


def lambda_handler(event: dict, context) -> dict:
    """
    Lambda handler for availability operations

    Supports operations:
    - getAvailableSlots: Bookable slots for a service on a date (public)
    - getEffectiveAvailability: Open intervals for a date (public)
    - getProviderAvailability: Weekly template and exceptions (public)
    - setDayAvailability / clearDayAvailability: Weekly template (owner/admin)
    - addAvailabilityException / removeAvailabilityException: Date overrides (owner/admin)
    """
    try:
        field, input_data = extract_appsync_event(event)
        logger.info("Availability operation", field=field)

        provider_id = input_data.get('providerId')
        if not provider_id:
            return error_response("Missing required field: providerId", 400, 'INVALID_INPUT')

        if field == 'getAvailableSlots':
            if not input_data.get('serviceId') or not input_data.get('date'):
                return error_response("Missing required fields: serviceId, date", 400, 'INVALID_INPUT')
            slots = get_availability_service().get_available_slots(
                provider_id, input_data['serviceId'], input_data['date']
            )
            return success_response([slot.to_dict() for slot in slots])

        elif field == 'getEffectiveAvailability':
            if not input_data.get('date'):
                return error_response("Missing required field: date", 400, 'INVALID_INPUT')
            intervals = get_availability_service().get_effective_availability(provider_id, input_data['date'])
            return success_response([interval.to_dict() for interval in intervals])

        elif field == 'getProviderAvailability':
            return success_response(get_management_service().describe(provider_id))

        # Everything below mutates provider state
        actor = resolve_actor(event)
        management = get_management_service()

        if field == 'setDayAvailability':
            day = management.set_day_availability(
                actor,
                provider_id,
                input_data.get('dayOfWeek'),
                input_data.get('timeRanges') or [],
                input_data.get('breaks') or []
            )
            return success_response({
                'providerId': provider_id,
                'dayOfWeek': day.day_of_week,
                'timeRanges': [tr.to_dict() for tr in day.time_ranges],
                'breaks': [br.to_dict() for br in day.breaks],
            })

        elif field == 'clearDayAvailability':
            management.clear_day_availability(actor, provider_id, input_data.get('dayOfWeek'))
            return success_response({'providerId': provider_id, 'dayOfWeek': input_data.get('dayOfWeek')})

        elif field == 'addAvailabilityException':
            exception = management.add_exception(
                actor,
                provider_id,
                input_data.get('date'),
                input_data.get('timeRanges') or [],
                input_data.get('reason')
            )
            return success_response({
                'providerId': provider_id,
                'date': exception.day.isoformat(),
                'timeRanges': [tr.to_dict() for tr in exception.time_ranges],
                'fullDay': exception.is_full_day_block,
                'reason': exception.reason,
            })

        elif field == 'removeAvailabilityException':
            management.remove_exception(actor, provider_id, input_data.get('date'))
            return success_response({'providerId': provider_id, 'date': input_data.get('date')})

        else:
            return error_response(f"Unknown operation: {field}", 400, 'INVALID_INPUT')

    except EntityNotFoundError as e:
        logger.warning("Entity not found", error=e.message)
        return error_response(e.message, e.status_code, e.kind)

    except (UnauthenticatedError, UnauthorizedError) as e:
        logger.warning("Access denied", error=e.message, kind=e.kind)
        return error_response(e.message, e.status_code, e.kind)

    except ValidationError as e:
        logger.warning("Validation error", error=e.message)
        return error_response(e.message, e.status_code, e.kind)

    except DomainError as e:
        logger.warning("Availability error", error=e.message, kind=e.kind)
        return error_response(e.message, e.status_code, e.kind)

    except ValueError as e:
        logger.warning("Invalid input", error=str(e))
        return error_response(str(e), 400, 'INVALID_INPUT')

    except Exception as e:
        logger.error("Unexpected error", error=str(e), error_type=type(e).__name__)
        return error_response("Internal server error", 500, 'INTERNAL')
