"""
Domain Event Publishers (Infrastructure Adapter)

InMemoryEventBus dispatches synchronously to local subscribers (local runs
and tests). SQSEventPublisher hands events to the queue consumed by
event_consumer/handler.py.
"""

import hashlib
import json
import threading
from typing import Callable, List, Optional, Tuple

import boto3

from ..config import SchedulingConfig
from ..domain.entities import DomainEvent, DomainEventType
from ..domain.repositories import IEventPublisher
from ..utils import Logger

logger = Logger()

Subscriber = Callable[[DomainEvent], None]


class InMemoryEventBus(IEventPublisher):
    """
    Synchronous publish/subscribe

    A failing subscriber is logged and skipped; the remaining subscribers
    still receive the event.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._subscribers: List[Tuple[Optional[DomainEventType], Subscriber]] = []
        self.published: List[DomainEvent] = []

    def subscribe(self, handler: Subscriber, event_type: Optional[DomainEventType] = None) -> None:
        """Register `handler` for one event type, or for all when None"""
        with self._guard:
            self._subscribers.append((event_type, handler))

    def publish(self, event: DomainEvent) -> None:
        with self._guard:
            self.published.append(event)
            subscribers = list(self._subscribers)

        for event_type, handler in subscribers:
            if event_type is not None and event_type != event.event_type:
                continue
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    "Event subscriber failed",
                    event_type=event.event_type.value,
                    booking_id=event.booking_id,
                    subscriber=getattr(handler, '__name__', repr(handler)),
                    error=str(e)
                )


class SQSEventPublisher(IEventPublisher):
    """
    Publishes domain events to SQS

    FIFO queues keep per-provider ordering (MessageGroupId) and let SQS
    drop redeliveries of the same fact (MessageDeduplicationId).
    """

    def __init__(self, queue_url: Optional[str] = None, region_name: Optional[str] = None):
        self.queue_url = queue_url or SchedulingConfig.EVENTS_QUEUE_URL
        if not self.queue_url:
            raise ValueError("EVENTS_QUEUE_URL is not configured")
        self.client = boto3.client('sqs', region_name=region_name or SchedulingConfig.AWS_REGION)

    @property
    def is_fifo(self) -> bool:
        return self.queue_url.endswith('.fifo')

    def publish(self, event: DomainEvent) -> None:
        params = {
            'QueueUrl': self.queue_url,
            'MessageBody': json.dumps(event.to_dict()),
            'MessageAttributes': {
                'eventType': {'DataType': 'String', 'StringValue': event.event_type.value}
            }
        }
        if self.is_fifo:
            params['MessageGroupId'] = event.provider_id
            params['MessageDeduplicationId'] = hashlib.sha256(
                event.idempotency_key.encode()
            ).hexdigest()

        response = self.client.send_message(**params)
        logger.info(
            "Domain event published",
            event_type=event.event_type.value,
            booking_id=event.booking_id,
            message_id=response.get('MessageId')
        )
