"""
Completion Sweep Worker

EventBridge Scheduler target that completes CONFIRMED bookings whose
interval has ended. Input is ignored except for an optional "now"
override (ISO 8601) used for backfills.
"""

from booking.handler import get_scheduling_service
from shared.utils import Logger, parse_iso_datetime

logger = Logger()


def lambda_handler(event, context):
    event = event or {}
    now = parse_iso_datetime(event['now']) if event.get('now') else None

    try:
        completed = get_scheduling_service().complete_elapsed_bookings(now=now)
    except Exception as e:
        logger.error("Completion sweep failed", error=str(e), error_type=type(e).__name__)
        raise

    logger.info("Completion sweep done", completed=len(completed))
    return {'completed': completed, 'count': len(completed)}
