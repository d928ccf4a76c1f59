"""
DynamoDB Provider Lock (Infrastructure Adapter)

Lease item per provider in the locks table:
    lockKey     PROVIDER#<providerId>
    owner       token of the current holder
    expiresAt   epoch seconds; an expired lease may be taken over

A crashed holder therefore blocks its provider for at most one lease period.
"""

import time
import uuid
from typing import Callable, Optional

import boto3
from botocore.exceptions import ClientError

from ..config import SchedulingConfig
from ..domain.exceptions import LockContentionError
from ..domain.repositories import IProviderLock
from ..utils import Logger

logger = Logger()


class DynamoDBProviderLock(IProviderLock):
    """Conditional-put lease lock with bounded retries and linear backoff"""

    def __init__(
        self,
        table_name: Optional[str] = None,
        max_attempts: int = SchedulingConfig.LOCK_MAX_ATTEMPTS,
        retry_delay_seconds: float = SchedulingConfig.LOCK_RETRY_DELAY_SECONDS,
        lease_seconds: int = SchedulingConfig.LOCK_LEASE_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time
    ):
        self.dynamodb = boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name or SchedulingConfig.LOCKS_TABLE)
        self.max_attempts = max_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self.lease_seconds = lease_seconds
        self._sleep = sleep
        self._clock = clock

    @staticmethod
    def _lock_key(provider_id: str) -> str:
        return f"PROVIDER#{provider_id}"

    def acquire(self, provider_id: str) -> str:
        token = uuid.uuid4().hex

        for attempt in range(1, self.max_attempts + 1):
            now = int(self._clock())
            try:
                self.table.put_item(
                    Item={
                        'lockKey': self._lock_key(provider_id),
                        'owner': token,
                        'expiresAt': now + self.lease_seconds
                    },
                    ConditionExpression='attribute_not_exists(lockKey) OR expiresAt < :now',
                    ExpressionAttributeValues={':now': now}
                )
                return token
            except ClientError as e:
                if e.response['Error']['Code'] != 'ConditionalCheckFailedException':
                    raise
                logger.debug("Provider lock busy", provider_id=provider_id, attempt=attempt)

            if attempt < self.max_attempts:
                self._sleep(self.retry_delay_seconds * attempt)

        logger.warning(
            "Provider lock contention exhausted",
            provider_id=provider_id,
            attempts=self.max_attempts
        )
        raise LockContentionError(provider_id, self.max_attempts)

    def release(self, provider_id: str, token: str) -> None:
        try:
            self.table.delete_item(
                Key={'lockKey': self._lock_key(provider_id)},
                ConditionExpression='#owner = :token',
                ExpressionAttributeNames={'#owner': 'owner'},
                ExpressionAttributeValues={':token': token}
            )
        except ClientError as e:
            if e.response['Error']['Code'] != 'ConditionalCheckFailedException':
                raise
            # Lease expired and was taken over; nothing left to release
            logger.warning("Provider lock lease lost before release", provider_id=provider_id)
