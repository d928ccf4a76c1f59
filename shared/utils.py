"""
Shared utilities: ids, time helpers, structured logging and Lambda responses
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional, Tuple

from .config import SchedulingConfig


def generate_id(prefix: str = 'id') -> str:
    """Generate a unique ID with prefix"""
    return f"{prefix}_{uuid.uuid4().hex[:8]}"


def utc_now() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(timezone.utc)


def parse_iso_datetime(value: str) -> datetime:
    """
    Parse an ISO 8601 timestamp

    Accepts the trailing 'Z' AppSync sends. Naive values are rejected:
    every instant handled by the scheduling core must carry an offset.

    Raises:
        ValueError: malformed or naive timestamp
    """
    if not value or not isinstance(value, str):
        raise ValueError(f"Invalid datetime: {value!r}")

    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        raise ValueError(f"Datetime must include a UTC offset: {value}")
    return parsed.astimezone(timezone.utc)


def to_iso_string(value: Optional[datetime]) -> Optional[str]:
    """Serialize an aware datetime as ISO 8601 UTC with 'Z' suffix"""
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat().replace('+00:00', 'Z')


def to_sort_key(value: datetime) -> str:
    """
    Fixed-width UTC timestamp for DynamoDB range keys

    Always carries microseconds, so lexicographic order matches time order.
    """
    return value.astimezone(timezone.utc).isoformat(timespec='microseconds').replace('+00:00', 'Z')


class Logger:
    """
    Structured logger

    Usage:
        logger = Logger()
        logger.info("Booking created", booking_id="bkg_123", provider_id="pro_1")

    Each call emits a single JSON line so CloudWatch Logs Insights can
    filter on the keyword fields.
    """

    def __init__(self, name: str = "marketplace", level: Optional[str] = None):
        self._logger = logging.getLogger(name)
        self._logger.setLevel(
            getattr(logging, (level or SchedulingConfig.LOG_LEVEL).upper(), logging.INFO)
        )

    def _log(self, level: int, message: str, **fields: Any) -> None:
        if not self._logger.isEnabledFor(level):
            return
        payload = {"level": logging.getLevelName(level), "message": message}
        payload.update(fields)
        self._logger.log(level, json.dumps(payload, default=str))

    def debug(self, message: str, **fields: Any) -> None:
        self._log(logging.DEBUG, message, **fields)

    def info(self, message: str, **fields: Any) -> None:
        self._log(logging.INFO, message, **fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._log(logging.WARNING, message, **fields)

    def error(self, message: str, **fields: Any) -> None:
        self._log(logging.ERROR, message, **fields)


def lambda_response(body: Any, status_code: int = 200) -> dict:
    """Build a Lambda proxy style response"""
    return {
        'statusCode': status_code,
        'headers': {
            'Content-Type': 'application/json',
            'Access-Control-Allow-Origin': '*'
        },
        'body': json.dumps(body, default=str)
    }


def success_response(data: Any, status_code: int = 200) -> dict:
    """Successful response wrapper"""
    return lambda_response(data, status_code)


def error_response(message: str, status_code: int = 400, kind: Optional[str] = None) -> dict:
    """
    Error response wrapper

    `kind` is the stable error category clients switch on; the message is
    for humans.
    """
    body = {'error': message}
    if kind:
        body['kind'] = kind
    return lambda_response(body, status_code)


def extract_appsync_event(event: dict) -> Tuple[Optional[str], dict]:
    """
    Extract (field name, arguments) from an AppSync resolver event

    Direct invocations use {"field": ..., "arguments": {...}}.
    """
    field = None
    info = event.get('info') or {}
    if 'fieldName' in info:
        field = info['fieldName']
    elif 'field' in event:
        field = event['field']

    arguments = event.get('arguments') or {}
    input_data = arguments.get('input', arguments)
    if isinstance(input_data, str):
        input_data = json.loads(input_data)

    return field, input_data or {}
