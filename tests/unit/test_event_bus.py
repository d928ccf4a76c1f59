import hashlib
import json
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from shared.domain.entities import BookingStatus, DomainEvent, DomainEventType, Interval
from shared.infrastructure.event_bus import InMemoryEventBus, SQSEventPublisher


def make_event(event_type=DomainEventType.BOOKING_CREATED, status=BookingStatus.PENDING):
    return DomainEvent(
        event_type=event_type,
        booking_id="bkg_1",
        provider_id="pro_1",
        client_id="client_1",
        new_status=status,
        interval=Interval(
            datetime(2030, 1, 7, 10, tzinfo=timezone.utc),
            datetime(2030, 1, 7, 11, tzinfo=timezone.utc)
        )
    )


class TestInMemoryEventBus:

    def test_records_and_dispatches(self):
        bus = InMemoryEventBus()
        received = []
        bus.subscribe(received.append)

        event = make_event()
        bus.publish(event)

        assert bus.published == [event]
        assert received == [event]

    def test_type_filtered_subscription(self):
        bus = InMemoryEventBus()
        created = []
        bus.subscribe(created.append, DomainEventType.BOOKING_CREATED)

        bus.publish(make_event(DomainEventType.BOOKING_STATUS_CHANGED, BookingStatus.CONFIRMED))
        bus.publish(make_event())

        assert [e.event_type for e in created] == [DomainEventType.BOOKING_CREATED]

    def test_failing_subscriber_does_not_block_others(self):
        bus = InMemoryEventBus()
        received = []

        def broken(event):
            raise RuntimeError("subscriber down")

        bus.subscribe(broken)
        bus.subscribe(received.append)

        bus.publish(make_event())

        assert len(received) == 1


class TestSQSEventPublisher:

    @patch('boto3.client')
    def test_standard_queue(self, mock_client):
        mock_client.return_value.send_message.return_value = {'MessageId': 'm-1'}
        publisher = SQSEventPublisher("https://sqs.us-east-1.amazonaws.com/123/booking-events")

        event = make_event()
        publisher.publish(event)

        params = mock_client.return_value.send_message.call_args.kwargs
        assert json.loads(params['MessageBody']) == event.to_dict()
        assert params['MessageAttributes']['eventType']['StringValue'] == "BookingCreated"
        assert 'MessageGroupId' not in params

    @patch('boto3.client')
    def test_fifo_queue_groups_by_provider_and_dedupes(self, mock_client):
        mock_client.return_value.send_message.return_value = {'MessageId': 'm-1'}
        publisher = SQSEventPublisher("https://sqs.us-east-1.amazonaws.com/123/booking-events.fifo")

        event = make_event()
        publisher.publish(event)

        params = mock_client.return_value.send_message.call_args.kwargs
        assert params['MessageGroupId'] == "pro_1"
        assert params['MessageDeduplicationId'] == hashlib.sha256(event.idempotency_key.encode()).hexdigest()

    @patch('boto3.client')
    def test_send_failure_propagates(self, mock_client):
        mock_client.return_value.send_message.side_effect = RuntimeError("throttled")
        publisher = SQSEventPublisher("https://sqs.us-east-1.amazonaws.com/123/q")

        with pytest.raises(RuntimeError):
            publisher.publish(make_event())

    @patch('shared.infrastructure.event_bus.SchedulingConfig')
    def test_requires_queue_url(self, mock_config):
        mock_config.EVENTS_QUEUE_URL = ""

        with pytest.raises(ValueError):
            SQSEventPublisher()
