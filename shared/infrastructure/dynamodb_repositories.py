"""
DynamoDB Repository Implementation (Infrastructure Adapter)

Implements repository interfaces using AWS DynamoDB.

Bookings table (PK bookingId), start stored as a fixed-width sort key:
    GSI clientId-start-index    clientId (HASH), start (RANGE)
    GSI status-start-index      status (HASH), start (RANGE)

Provider schedule table (PK providerId, SK slotKey = <start>#<bookingId>):
    copy of each booking, written in the same transaction; read with
    ConsistentRead for admission checks

Providers table (single-table, PK/SK):
    PROFILE               provider profile, services, policy
    DAY#<MON..SUN>        weekly template (see availability_repository)
    EXCEPTION#<date>      date overrides (see availability_repository)
    GSI ownerId-index     ownerId (HASH), sparse on PROFILE items
"""

import boto3
from decimal import Decimal
from typing import Any, Dict, List, Optional
from datetime import datetime
from boto3.dynamodb.conditions import Key, Attr
from botocore.exceptions import ClientError

from ..config import SchedulingConfig
from ..domain.entities import (
    Booking, BookingStatus, Interval, Provider, ServiceOffering, StatusChange
)
from ..domain.repositories import (
    IAvailabilityRepository, IBookingRepository, IProviderRepository
)
from ..domain.exceptions import ConflictError
from ..utils import Logger, parse_iso_datetime, to_iso_string, to_sort_key
from .availability_repository import DynamoDBAvailabilityRepository


logger = Logger()

PROFILE_SK = 'PROFILE'


def convert_floats_to_decimals(obj):
    """Recursively convert float to Decimal for DynamoDB"""
    if isinstance(obj, float):
        return Decimal(str(obj))
    if isinstance(obj, dict):
        return {k: convert_floats_to_decimals(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [convert_floats_to_decimals(v) for v in obj]
    return obj


def _decimal_to_float(value) -> Optional[float]:
    return float(value) if value is not None else None


def _query_all(table, **kwargs) -> List[Dict[str, Any]]:
    """Run a query following LastEvaluatedKey until exhausted"""
    items: List[Dict[str, Any]] = []
    while True:
        response = table.query(**kwargs)
        items.extend(response.get('Items', []))
        last_key = response.get('LastEvaluatedKey')
        if not last_key:
            return items
        kwargs['ExclusiveStartKey'] = last_key


def transaction_condition_failed(error: ClientError) -> bool:
    """True when a transact_write_items call was cancelled by a condition check"""
    if error.response['Error']['Code'] != 'TransactionCanceledException':
        return False
    reasons = error.response.get('CancellationReasons') or []
    return any(reason.get('Code') == 'ConditionalCheckFailed' for reason in reasons)


def _scan_all(table, **kwargs) -> List[Dict[str, Any]]:
    items: List[Dict[str, Any]] = []
    while True:
        response = table.scan(**kwargs)
        items.extend(response.get('Items', []))
        last_key = response.get('LastEvaluatedKey')
        if not last_key:
            return items
        kwargs['ExclusiveStartKey'] = last_key


class DynamoDBProviderRepository(IProviderRepository):
    """DynamoDB implementation of the Provider aggregate repository"""

    def __init__(
        self,
        table_name: Optional[str] = None,
        availability_repo: Optional[IAvailabilityRepository] = None
    ):
        self.dynamodb = boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name or SchedulingConfig.PROVIDERS_TABLE)
        self.availability_repo = availability_repo or DynamoDBAvailabilityRepository(
            table_name or SchedulingConfig.PROVIDERS_TABLE
        )

    def get_by_id(self, provider_id: str) -> Optional[Provider]:
        try:
            response = self.table.get_item(Key={'PK': provider_id, 'SK': PROFILE_SK})
        except ClientError as e:
            logger.error("Error getting provider", provider_id=provider_id, error=str(e))
            raise

        item = response.get('Item')
        if not item:
            return None

        provider = self._item_to_entity(item)
        provider.template = self.availability_repo.get_template(provider_id)
        provider.exceptions = {
            exception.day: exception
            for exception in self.availability_repo.list_exceptions(provider_id)
        }
        return provider

    def list_by_owner(self, owner_id: str) -> List[Provider]:
        try:
            items = _query_all(
                self.table,
                IndexName='ownerId-index',
                KeyConditionExpression=Key('ownerId').eq(owner_id)
            )
        except ClientError as e:
            logger.error("Error listing providers", owner_id=owner_id, error=str(e))
            raise

        # Profiles only; availability is loaded on demand via get_by_id
        return [self._item_to_entity(item) for item in items]

    def save(self, provider: Provider) -> None:
        item = {
            'PK': provider.provider_id,
            'SK': PROFILE_SK,
            'providerId': provider.provider_id,
            'ownerId': provider.owner_id,
            'name': provider.name,
            'timezone': provider.timezone,
            'autoConfirm': provider.auto_confirm,
            'active': provider.active,
            'services': [
                {
                    'serviceId': s.service_id,
                    'name': s.name,
                    'durationMinutes': s.duration_minutes,
                    'price': s.price,
                    'active': s.active,
                }
                for s in provider.services
            ],
            'createdAt': to_iso_string(provider.created_at)
        }

        self.table.put_item(Item=convert_floats_to_decimals(item))
        self.availability_repo.save_template(provider.provider_id, provider.template)

        stored_days = {e.day for e in self.availability_repo.list_exceptions(provider.provider_id)}
        for day in stored_days - set(provider.exceptions):
            self.availability_repo.delete_exception(provider.provider_id, day)
        for exception in provider.exceptions.values():
            self.availability_repo.save_exception(provider.provider_id, exception)

    def _item_to_entity(self, item: dict) -> Provider:
        return Provider(
            provider_id=item['providerId'],
            owner_id=item['ownerId'],
            name=item['name'],
            services=[
                ServiceOffering(
                    service_id=s['serviceId'],
                    name=s['name'],
                    duration_minutes=int(s['durationMinutes']),
                    price=_decimal_to_float(s.get('price')),
                    active=s.get('active', True)
                )
                for s in item.get('services', [])
            ],
            timezone=item.get('timezone', 'UTC'),
            auto_confirm=item.get('autoConfirm', False),
            active=item.get('active', True),
            created_at=parse_iso_datetime(item['createdAt'])
        )


class DynamoDBBookingRepository(IBookingRepository):
    """
    DynamoDB implementation of Booking repository

    Inserts are conditional on the id being new; updates are conditional on
    the stored version, so a lost race surfaces as ConflictError instead of
    a silent overwrite.

    Every write also upserts the booking's row in the provider schedule
    table (providerId HASH, slotKey RANGE = "<start>#<bookingId>") in the
    same transaction. Provider range reads go to that table with
    ConsistentRead: a GSI could still miss a booking committed just before
    the provider lock changed hands.
    """

    def __init__(self, table_name: Optional[str] = None, schedule_table_name: Optional[str] = None):
        self.dynamodb = boto3.resource('dynamodb')
        self.table_name = table_name or SchedulingConfig.BOOKINGS_TABLE
        self.schedule_table_name = schedule_table_name or SchedulingConfig.SCHEDULE_TABLE
        self.table = self.dynamodb.Table(self.table_name)
        self.schedule_table = self.dynamodb.Table(self.schedule_table_name)

    def get_by_id(self, booking_id: str) -> Optional[Booking]:
        try:
            response = self.table.get_item(Key={'bookingId': booking_id}, ConsistentRead=True)
        except ClientError as e:
            logger.error("Error getting booking", booking_id=booking_id, error=str(e))
            raise

        item = response.get('Item')
        return self._item_to_entity(item) if item else None

    def list_by_provider(
        self,
        provider_id: str,
        from_date: datetime,
        to_date: datetime
    ) -> List[Booking]:
        # Slot keys carry a "#<bookingId>" suffix, so between() keeps starts
        # equal to from_date and drops starts equal to to_date
        try:
            items = _query_all(
                self.schedule_table,
                KeyConditionExpression=Key('providerId').eq(provider_id) &
                Key('slotKey').between(to_sort_key(from_date), to_sort_key(to_date)),
                ConsistentRead=True
            )
        except ClientError as e:
            logger.error("Error querying provider schedule", provider_id=provider_id, error=str(e))
            raise
        return [self._item_to_entity(item) for item in items]

    def list_by_client(self, client_id: str) -> List[Booking]:
        items = self._query_index('clientId-start-index', Key('clientId').eq(client_id))
        return [self._item_to_entity(item) for item in items]

    def list_by_status(self, status: BookingStatus) -> List[Booking]:
        items = self._query_index('status-start-index', Key('status').eq(status.value))
        return [self._item_to_entity(item) for item in items]

    def list_all(self) -> List[Booking]:
        try:
            items = _scan_all(self.table, FilterExpression=Attr('bookingId').exists())
        except ClientError as e:
            logger.error("Error scanning bookings", error=str(e))
            raise
        return [self._item_to_entity(item) for item in items]

    def add(self, booking: Booking) -> None:
        item = self._entity_to_item(booking)
        self._transact(
            [
                {'Put': {
                    'TableName': self.table_name,
                    'Item': item,
                    'ConditionExpression': 'attribute_not_exists(bookingId)'
                }},
                {'Put': {'TableName': self.schedule_table_name, 'Item': self._schedule_item(item)}},
            ],
            f"Booking {booking.booking_id} already exists"
        )

    def update(self, booking: Booking, expected_version: int) -> None:
        stored = self.get_by_id(booking.booking_id)
        if stored is None:
            raise ConflictError(f"Booking {booking.booking_id} does not exist")

        item = self._entity_to_item(booking)
        item['version'] = expected_version + 1
        schedule_item = self._schedule_item(item)
        actions = [
            {'Put': {
                'TableName': self.table_name,
                'Item': item,
                'ConditionExpression': 'attribute_exists(bookingId) AND #version = :expected',
                'ExpressionAttributeNames': {'#version': 'version'},
                'ExpressionAttributeValues': {':expected': expected_version}
            }},
            {'Put': {'TableName': self.schedule_table_name, 'Item': schedule_item}},
        ]
        old_slot_key = self._slot_key(to_sort_key(stored.start_time), stored.booking_id)
        if old_slot_key != schedule_item['slotKey']:
            actions.append({'Delete': {
                'TableName': self.schedule_table_name,
                'Key': {'providerId': stored.provider_id, 'slotKey': old_slot_key}
            }})

        self._transact(
            actions,
            f"Booking {booking.booking_id} changed concurrently (expected version {expected_version})"
        )
        booking.version = expected_version + 1

    def _transact(self, actions: List[Dict[str, Any]], conflict_message: str) -> None:
        try:
            self.dynamodb.meta.client.transact_write_items(TransactItems=actions)
        except ClientError as e:
            if transaction_condition_failed(e):
                raise ConflictError(conflict_message)
            logger.error("Booking transaction failed", error=str(e))
            raise

    @staticmethod
    def _slot_key(start_key: str, booking_id: str) -> str:
        return f"{start_key}#{booking_id}"

    def _schedule_item(self, item: Dict[str, Any]) -> Dict[str, Any]:
        schedule_item = dict(item)
        schedule_item['slotKey'] = self._slot_key(item['start'], item['bookingId'])
        return schedule_item

    def _query_index(self, index_name: str, key_condition) -> List[Dict[str, Any]]:
        try:
            return _query_all(self.table, IndexName=index_name, KeyConditionExpression=key_condition)
        except ClientError as e:
            logger.error("Error querying bookings", index=index_name, error=str(e))
            raise

    def _entity_to_item(self, booking: Booking) -> Dict[str, Any]:
        item = {
            'bookingId': booking.booking_id,
            'providerId': booking.provider_id,
            'clientId': booking.client_id,
            'serviceId': booking.service_id,
            'start': to_sort_key(booking.start_time),
            'endTime': to_iso_string(booking.end_time),
            'durationMinutes': booking.duration_minutes,
            'status': booking.status.value,
            'createdAt': to_iso_string(booking.created_at),
            'updatedAt': to_iso_string(booking.updated_at),
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
            'version': booking.version,
        }

        if booking.service_name:
            item['serviceName'] = booking.service_name
        if booking.price is not None:
            item['price'] = booking.price
        if booking.notes:
            item['notes'] = booking.notes
        if booking.cancellation_reason:
            item['cancellationReason'] = booking.cancellation_reason

        return convert_floats_to_decimals(item)

    def _item_to_entity(self, item: dict) -> Booking:
        return Booking(
            booking_id=item['bookingId'],
            provider_id=item['providerId'],
            client_id=item['clientId'],
            service_id=item['serviceId'],
            start_time=parse_iso_datetime(item['start']),
            duration_minutes=int(item['durationMinutes']),
            status=BookingStatus(item['status']),
            created_at=parse_iso_datetime(item['createdAt']),
            updated_at=parse_iso_datetime(item.get('updatedAt') or item['createdAt']),
            cancellation_reason=item.get('cancellationReason'),
            reschedule_history=[Interval.from_dict(i) for i in item.get('rescheduleHistory', [])],
            status_history=[
                StatusChange(
                    from_status=BookingStatus(c['from']) if c.get('from') else None,
                    to_status=BookingStatus(c['to']),
                    at=parse_iso_datetime(c['at']),
                    actor_id=c['actorId'],
                    reason=c.get('reason')
                )
                for c in item.get('statusHistory', [])
            ],
            service_name=item.get('serviceName'),
            price=_decimal_to_float(item.get('price')),
            notes=item.get('notes'),
            version=int(item.get('version', 0))
        )
