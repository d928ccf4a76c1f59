"""
Catalog Lambda Handler (Adapter Layer)

AWS Lambda function for provider profiles and the services they publish
"""

from functools import lru_cache

from booking.handler import build_provider_lock, resolve_actor
from catalog.service import ServiceCatalogService
from shared.domain.entities import Provider, ServiceOffering
from shared.domain.exceptions import (
    DomainError,
    EntityNotFoundError,
    UnauthenticatedError,
    UnauthorizedError,
    ValidationError,
)
from shared.infrastructure.dynamodb_repositories import DynamoDBProviderRepository
from shared.utils import Logger, error_response, extract_appsync_event, success_response, to_iso_string


logger = Logger()


@lru_cache(maxsize=1)
def get_catalog_service() -> ServiceCatalogService:
    return ServiceCatalogService(DynamoDBProviderRepository(), provider_lock=build_provider_lock())


def lambda_handler(event: dict, context) -> dict:
    """
    Lambda handler for catalog operations

    Supports operations:
    - getProvider, listServices (public)
    - registerProvider, addService, updateService, deactivateService,
      setAutoConfirm (owner/admin)
    """
    try:
        field, input_data = extract_appsync_event(event)
        logger.info("Catalog operation", field=field)
        catalog = get_catalog_service()

        if field == 'getProvider':
            return success_response(provider_to_dict(catalog.get_provider(input_data.get('providerId'))))

        elif field == 'listServices':
            services = catalog.list_services(
                input_data.get('providerId'),
                include_inactive=bool(input_data.get('includeInactive'))
            )
            return success_response([service_to_dict(s) for s in services])

        actor = resolve_actor(event)

        if field == 'registerProvider':
            provider = catalog.register_provider(
                actor,
                name=input_data.get('name'),
                timezone=input_data.get('timezone') or 'UTC',
                auto_confirm=input_data.get('autoConfirm'),
                owner_id=input_data.get('ownerId')
            )
            return success_response(provider_to_dict(provider), 201)

        elif field == 'addService':
            service = catalog.add_service(
                actor,
                input_data.get('providerId'),
                name=input_data.get('name'),
                duration_minutes=input_data.get('durationMinutes'),
                price=input_data.get('price')
            )
            return success_response(service_to_dict(service), 201)

        elif field == 'updateService':
            service = catalog.update_service(
                actor,
                input_data.get('providerId'),
                input_data.get('serviceId'),
                name=input_data.get('name'),
                duration_minutes=input_data.get('durationMinutes'),
                price=input_data.get('price')
            )
            return success_response(service_to_dict(service))

        elif field == 'deactivateService':
            service = catalog.deactivate_service(actor, input_data.get('providerId'), input_data.get('serviceId'))
            return success_response(service_to_dict(service))

        elif field == 'setAutoConfirm':
            provider = catalog.set_auto_confirm(
                actor, input_data.get('providerId'), bool(input_data.get('enabled'))
            )
            return success_response(provider_to_dict(provider))

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
        logger.warning("Catalog error", error=e.message, kind=e.kind)
        return error_response(e.message, e.status_code, e.kind)

    except Exception as e:
        logger.error("Unexpected error", error=str(e), error_type=type(e).__name__)
        return error_response("Internal server error", 500, 'INTERNAL')


def service_to_dict(service: ServiceOffering) -> dict:
    return {
        'serviceId': service.service_id,
        'name': service.name,
        'durationMinutes': service.duration_minutes,
        'price': service.price,
        'active': service.active,
    }


def provider_to_dict(provider: Provider) -> dict:
    return {
        'providerId': provider.provider_id,
        'ownerId': provider.owner_id,
        'name': provider.name,
        'timezone': provider.timezone,
        'autoConfirm': provider.auto_confirm,
        'active': provider.active,
        'services': [service_to_dict(s) for s in provider.services],
        'createdAt': to_iso_string(provider.created_at),
    }
