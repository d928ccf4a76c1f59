"""
DynamoDB Idempotency Store (Infrastructure Adapter)

One item per side effect that already happened:
    idempotencyKey  e.g. notify#<bookingId>#<eventType>#<status>
    processedAt     ISO timestamp
    ttl             epoch seconds; markers outlive the queue's redelivery window
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import boto3
from botocore.exceptions import ClientError

from ..config import SchedulingConfig
from ..utils import Logger, to_iso_string

logger = Logger()


class DynamoDBIdempotencyStore:
    """Remembers which side effects were completed so redeliveries skip them"""

    def __init__(self, table_name: Optional[str] = None, ttl_days: int = 30):
        self.dynamodb = boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name or SchedulingConfig.IDEMPOTENCY_TABLE)
        self.ttl_days = ttl_days

    def is_processed(self, key: str) -> bool:
        try:
            response = self.table.get_item(Key={'idempotencyKey': key}, ConsistentRead=True)
        except ClientError as e:
            logger.error("Failed to read idempotency marker", key=key, error=str(e))
            raise
        return 'Item' in response

    def mark_processed(self, key: str) -> None:
        """Record a completed side effect; must run only after it succeeded"""
        now = datetime.now(timezone.utc)
        self.table.put_item(Item={
            'idempotencyKey': key,
            'processedAt': to_iso_string(now),
            'ttl': int((now + timedelta(days=self.ttl_days)).timestamp())
        })
