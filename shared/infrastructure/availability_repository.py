"""
DynamoDB Availability Repository Implementation

Items live in the providers table next to the PROFILE item:
    PK=<providerId>  SK=DAY#<MON..SUN>        weekly template
    PK=<providerId>  SK=EXCEPTION#<YYYY-MM-DD> date override
ISO dates sort lexically, so exception ranges are SK range queries.
"""

import boto3
from datetime import date
from typing import List, Optional
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from ..config import SchedulingConfig
from ..domain.entities import (
    DAYS_OF_WEEK, AvailabilityException, AvailabilityTemplate, DayAvailability, TimeRange
)
from ..domain.repositories import IAvailabilityRepository
from ..utils import Logger, to_iso_string, utc_now

logger = Logger()

DAY_PREFIX = 'DAY#'
EXCEPTION_PREFIX = 'EXCEPTION#'


class DynamoDBAvailabilityRepository(IAvailabilityRepository):
    """DynamoDB implementation of Availability repository"""

    def __init__(self, table_name: Optional[str] = None):
        self.dynamodb = boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name or SchedulingConfig.PROVIDERS_TABLE)

    def get_template(self, provider_id: str) -> AvailabilityTemplate:
        try:
            response = self.table.query(
                KeyConditionExpression=Key('PK').eq(provider_id) & Key('SK').begins_with(DAY_PREFIX)
            )
        except ClientError as e:
            logger.error("Error getting availability", provider_id=provider_id, error=str(e))
            raise

        template = AvailabilityTemplate()
        for item in response.get('Items', []):
            template.set_day(self._item_to_day(item))
        return template

    def save_template(self, provider_id: str, template: AvailabilityTemplate) -> None:
        with self.table.batch_writer() as batch:
            for code in DAYS_OF_WEEK:
                day = template.for_day(code)
                if day is None:
                    batch.delete_item(Key={'PK': provider_id, 'SK': f"{DAY_PREFIX}{code}"})
                    continue
                batch.put_item(Item={
                    'PK': provider_id,
                    'SK': f"{DAY_PREFIX}{code}",
                    'providerId': provider_id,
                    'dayOfWeek': code,
                    'timeRanges': [tr.to_dict() for tr in day.time_ranges],
                    'breaks': [br.to_dict() for br in day.breaks],
                    'updatedAt': to_iso_string(utc_now())
                })

    def list_exceptions(
        self,
        provider_id: str,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None
    ) -> List[AvailabilityException]:
        if from_date or to_date:
            lower = f"{EXCEPTION_PREFIX}{(from_date or date.min).isoformat()}"
            upper = f"{EXCEPTION_PREFIX}{(to_date or date.max).isoformat()}"
            key_condition = Key('PK').eq(provider_id) & Key('SK').between(lower, upper)
        else:
            key_condition = Key('PK').eq(provider_id) & Key('SK').begins_with(EXCEPTION_PREFIX)

        try:
            response = self.table.query(KeyConditionExpression=key_condition)
        except ClientError as e:
            logger.error("Error getting exceptions", provider_id=provider_id, error=str(e))
            raise

        return [self._item_to_exception(item) for item in response.get('Items', [])]

    def save_exception(self, provider_id: str, exception: AvailabilityException) -> None:
        item = {
            'PK': provider_id,
            'SK': f"{EXCEPTION_PREFIX}{exception.day.isoformat()}",
            'providerId': provider_id,
            'date': exception.day.isoformat(),
            'timeRanges': [tr.to_dict() for tr in exception.time_ranges],
            'updatedAt': to_iso_string(utc_now())
        }
        if exception.reason:
            item['reason'] = exception.reason

        self.table.put_item(Item=item)

    def delete_exception(self, provider_id: str, day: date) -> None:
        self.table.delete_item(Key={'PK': provider_id, 'SK': f"{EXCEPTION_PREFIX}{day.isoformat()}"})

    def _item_to_day(self, item: dict) -> DayAvailability:
        return DayAvailability(
            day_of_week=item['dayOfWeek'],
            time_ranges=[TimeRange.from_dict(tr) for tr in item.get('timeRanges', [])],
            breaks=[TimeRange.from_dict(br) for br in item.get('breaks', [])]
        )

    def _item_to_exception(self, item: dict) -> AvailabilityException:
        return AvailabilityException(
            day=date.fromisoformat(item['date']),
            time_ranges=[TimeRange.from_dict(tr) for tr in item.get('timeRanges', [])],
            reason=item.get('reason')
        )
