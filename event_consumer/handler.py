"""
Domain Event Consumer

SQS-triggered Lambda reacting to booking events: provider metrics and
participant notifications. Failed records are reported back as partial
batch failures so only they are redelivered.
"""

import json
from functools import lru_cache

from shared.domain.entities import DomainEvent
from shared.infrastructure.dynamodb_repositories import DynamoDBProviderRepository
from shared.infrastructure.idempotency import DynamoDBIdempotencyStore
from shared.infrastructure.notifications import EmailService, NotificationDispatcher
from shared.infrastructure.user_role_repository import DynamoDBUserRoleRepository
from shared.metrics import MetricsService
from shared.utils import Logger

logger = Logger()


@lru_cache(maxsize=1)
def get_metrics_service() -> MetricsService:
    return MetricsService()


@lru_cache(maxsize=1)
def get_idempotency_store() -> DynamoDBIdempotencyStore:
    return DynamoDBIdempotencyStore()


@lru_cache(maxsize=1)
def get_dispatcher() -> NotificationDispatcher:
    user_roles = DynamoDBUserRoleRepository()
    providers = DynamoDBProviderRepository()

    def owner_of(provider_id):
        provider = providers.get_by_id(provider_id)
        return provider.owner_id if provider else None

    return NotificationDispatcher(
        email_service=EmailService(),
        contact_lookup=user_roles.get_email,
        owner_lookup=owner_of
    )


def process_event(event: DomainEvent) -> None:
    """
    Metrics then notifications, each deduplicated on its own marker

    Either step may fail and be retried on redelivery without repeating the
    other one once it has completed.
    """
    counted = get_metrics_service().record_event(event)

    notify_key = f"notify#{event.idempotency_key}"
    store = get_idempotency_store()
    if store.is_processed(notify_key):
        logger.info("Notifications already sent", idempotency_key=event.idempotency_key)
        return

    sent = get_dispatcher().dispatch(event)
    store.mark_processed(notify_key)
    logger.info(
        "Domain event processed",
        event_type=event.event_type.value,
        booking_id=event.booking_id,
        counted=counted,
        notifications=sent
    )


def lambda_handler(event, context):
    failures = []

    for record in event.get('Records', []):
        message_id = record.get('messageId')
        try:
            domain_event = DomainEvent.from_dict(json.loads(record['body']))
            process_event(domain_event)
        except Exception as e:
            logger.error("Failed to process domain event", message_id=message_id, error=str(e))
            failures.append({'itemIdentifier': message_id})

    return {'batchItemFailures': failures}
