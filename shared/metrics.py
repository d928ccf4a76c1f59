"""
Metrics Module for Provider Analytics

Pre-aggregated booking counters per provider using DynamoDB atomic counters,
fed by domain events from the event consumer.

Usage:
    from shared.metrics import MetricsService

    metrics = MetricsService()
    metrics.record_event(event)

    summary = metrics.get_provider_metrics(provider_id)
"""

import boto3
from datetime import datetime, timezone, timedelta
from typing import Dict, Any, List, Optional
from decimal import Decimal
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from shared.config import SchedulingConfig
from shared.domain.entities import BookingStatus, DomainEvent, DomainEventType
from shared.infrastructure.dynamodb_repositories import transaction_condition_failed
from shared.utils import Logger

logger = Logger()


class MetricsService:
    """
    Service for tracking and retrieving provider metrics.
    Uses DynamoDB atomic counters for low-latency pre-aggregation.
    """

    def __init__(self, table_name: Optional[str] = None):
        self.dynamodb = boto3.resource("dynamodb")
        self.table_name = table_name or SchedulingConfig.METRICS_TABLE
        self.table = self.dynamodb.Table(self.table_name)

    def _get_periods(self, at: Optional[datetime] = None) -> Dict[str, str]:
        """Aggregation periods for an instant (default now)"""
        at = (at or datetime.now(timezone.utc)).astimezone(timezone.utc)
        return {
            "month": at.strftime("%Y-%m"),
            "day": at.strftime("%Y-%m-%d"),
        }

    def _calculate_ttl(self, months: int = 13) -> int:
        """Calculate TTL timestamp (default 13 months for yearly comparison)"""
        future = datetime.now(timezone.utc) + timedelta(days=months * 30)
        return int(future.timestamp())

    def _counter_update(
        self,
        provider_id: str,
        sk: str,
        attribute: str,
        count: int = 1,
    ) -> Dict[str, Any]:
        """Transaction action that atomically adds to one counter"""
        return {
            "Update": {
                "TableName": self.table_name,
                "Key": {"PK": f"PROVIDER#{provider_id}", "SK": sk},
                "UpdateExpression": "ADD #attr :inc SET #ttl = if_not_exists(#ttl, :ttl), #updatedAt = :now",
                "ExpressionAttributeNames": {
                    "#attr": attribute,
                    "#ttl": "ttl",
                    "#updatedAt": "updatedAt",
                },
                "ExpressionAttributeValues": {
                    ":inc": Decimal(count),
                    ":ttl": self._calculate_ttl(),
                    ":now": datetime.now(timezone.utc).isoformat(),
                },
            }
        }

    def _processed_marker(self, event: DomainEvent) -> Dict[str, Any]:
        """Transaction action recording the event's idempotency key; fails if already recorded"""
        return {
            "Put": {
                "TableName": self.table_name,
                "Item": {
                    "PK": f"PROVIDER#{event.provider_id}",
                    "SK": f"EVENT#{event.idempotency_key}",
                    "eventId": event.event_id,
                    "ttl": self._calculate_ttl(months=1),
                },
                "ConditionExpression": "attribute_not_exists(SK)",
            }
        }

    # ==================== Event Recording ====================

    def record_event(self, event: DomainEvent) -> bool:
        """
        Update counters for a domain event.

        Counters and the processed marker are written in one transaction, so
        a failed attempt leaves nothing behind and the redelivery counts it.

        Returns:
            False if the event was a redelivery and nothing was counted
        """
        actions = self._counter_updates(event)
        actions.append(self._processed_marker(event))

        try:
            self.dynamodb.meta.client.transact_write_items(TransactItems=actions)
        except ClientError as e:
            if transaction_condition_failed(e):
                logger.info(
                    "Duplicate event skipped",
                    idempotency_key=event.idempotency_key,
                    provider_id=event.provider_id,
                )
                return False
            raise
        return True

    def _counter_updates(self, event: DomainEvent) -> List[Dict[str, Any]]:
        periods = self._get_periods(event.interval.start)
        provider_id = event.provider_id

        if event.event_type == DomainEventType.BOOKING_CREATED:
            return [
                self._counter_update(provider_id, f"MONTH#{periods['month']}", "bookings"),
                self._counter_update(provider_id, f"DAY#{periods['day']}", "bookings"),
            ] + self.status_updates(provider_id, None, event.new_status.value, periods)

        if event.event_type == DomainEventType.BOOKING_STATUS_CHANGED:
            old_status = event.old_status.value if event.old_status else None
            actions = self.status_updates(provider_id, old_status, event.new_status.value, periods)
            if event.new_status == BookingStatus.COMPLETED:
                # Lifetime total shown on the provider profile
                actions.append(self._counter_update(provider_id, "TOTAL", "completedBookings"))
            return actions

        if event.event_type == DomainEventType.BOOKING_RESCHEDULED:
            return [self._counter_update(provider_id, f"MONTH#{periods['month']}", "reschedules")]

        return []

    def status_updates(
        self,
        provider_id: str,
        old_status: Optional[str],
        new_status: str,
        periods: Optional[Dict[str, str]] = None,
    ) -> List[Dict[str, Any]]:
        """Counter actions moving one booking between status buckets"""
        periods = periods or self._get_periods()
        if old_status == new_status:
            return []

        actions = []
        # Decrement old status
        if old_status:
            actions.append(self._counter_update(
                provider_id, f"STATUS#{old_status}#{periods['month']}", "count", count=-1
            ))

        # Increment new status
        actions.append(self._counter_update(
            provider_id, f"STATUS#{new_status}#{periods['month']}", "count"
        ))
        return actions

    # ==================== Query Operations ====================

    def get_provider_metrics(self, provider_id: str, month: Optional[str] = None) -> Dict[str, Any]:
        """
        Get counters for one provider and month (default current month).
        """
        month = month or self._get_periods()["month"]

        response = self.table.query(
            KeyConditionExpression=Key("PK").eq(f"PROVIDER#{provider_id}")
        )
        items = response.get("Items", [])

        result = {
            "period": month,
            "bookings": 0,
            "reschedules": 0,
            "completedBookings": 0,
            "daily": [],
            "bookingStatus": {status.value: 0 for status in BookingStatus},
        }

        for item in items:
            sk = item.get("SK", "")

            if sk == f"MONTH#{month}":
                result["bookings"] = int(item.get("bookings", 0))
                result["reschedules"] = int(item.get("reschedules", 0))

            elif sk == "TOTAL":
                result["completedBookings"] = int(item.get("completedBookings", 0))

            elif sk.startswith(f"DAY#{month}"):
                result["daily"].append(
                    {
                        "date": sk.replace("DAY#", ""),
                        "bookings": int(item.get("bookings", 0)),
                    }
                )

            elif sk.startswith("STATUS#") and sk.endswith(f"#{month}"):
                status = sk.split("#")[1]
                if status in result["bookingStatus"]:
                    result["bookingStatus"][status] = int(item.get("count", 0))

        result["daily"] = sorted(result["daily"], key=lambda x: x["date"])
        return result
