import os


class SchedulingConfig:
    """Scheduling Core Configuration Constants"""

    # DynamoDB Table Names (from env or default)
    BOOKINGS_TABLE = os.environ.get("BOOKINGS_TABLE", "Marketplace-Bookings")
    PROVIDERS_TABLE = os.environ.get("PROVIDERS_TABLE", "Marketplace-Providers")
    LOCKS_TABLE = os.environ.get("LOCKS_TABLE", "Marketplace-ProviderLocks")
    USER_ROLES_TABLE = os.environ.get("USER_ROLES_TABLE", "Marketplace-UserRoles")
    METRICS_TABLE = os.environ.get("METRICS_TABLE", "Marketplace-ProviderMetrics")
    SCHEDULE_TABLE = os.environ.get("SCHEDULE_TABLE", "Marketplace-ProviderSchedule")
    IDEMPOTENCY_TABLE = os.environ.get("IDEMPOTENCY_TABLE", "Marketplace-Idempotency")

    # Domain event queue (empty disables SQS publishing)
    EVENTS_QUEUE_URL = os.environ.get("EVENTS_QUEUE_URL", "")

    AWS_REGION = os.environ.get("AWS_REGION", "us-east-1")

    # Per-provider admission scope
    LOCK_MAX_ATTEMPTS = int(os.environ.get("LOCK_MAX_ATTEMPTS", "5"))
    LOCK_RETRY_DELAY_SECONDS = float(os.environ.get("LOCK_RETRY_DELAY_SECONDS", "0.05"))
    LOCK_LEASE_SECONDS = int(os.environ.get("LOCK_LEASE_SECONDS", "10"))

    # Slot search granularity
    SLOT_INTERVAL_MINUTES = int(os.environ.get("SLOT_INTERVAL_MINUTES", "15"))

    # Auto-confirm policy for newly registered providers
    DEFAULT_AUTO_CONFIRM = os.environ.get("DEFAULT_AUTO_CONFIRM", "false").lower() == "true"

    # Notifications
    NOTIFICATION_SENDER = os.environ.get("NOTIFICATION_SENDER", "no-reply@marketplace.local")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
