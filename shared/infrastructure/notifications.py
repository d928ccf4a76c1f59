import boto3
from typing import Callable, List, Optional, Tuple
from botocore.exceptions import ClientError

from ..config import SchedulingConfig
from ..domain.entities import BookingStatus, DomainEvent, DomainEventType
from ..utils import Logger, to_iso_string

logger = Logger()


class EmailService:
    """
    Generic Infrastructure Adapter for sending emails via Amazon SES.
    """

    def __init__(self, region_name: Optional[str] = None):
        self.client = boto3.client("ses", region_name=region_name or SchedulingConfig.AWS_REGION)

    def send_email(
        self,
        source: str,
        to_addresses: List[str],
        subject: str,
        body_html: str,
        body_text: str,
    ) -> bool:
        """
        Sends an email using Amazon SES.

        Returns:
            bool: True if the email was sent successfully, False otherwise.
        """
        try:
            response = self.client.send_email(
                Source=source,
                Destination={"ToAddresses": to_addresses},
                Message={
                    "Subject": {"Data": subject, "Charset": "UTF-8"},
                    "Body": {
                        "Html": {"Data": body_html, "Charset": "UTF-8"},
                        "Text": {"Data": body_text, "Charset": "UTF-8"},
                    },
                },
            )
            logger.info("Email sent", to=to_addresses, message_id=response.get("MessageId"))
            return True
        except ClientError as e:
            logger.error("Failed to send email", to=to_addresses, error=e.response["Error"]["Message"])
            return False


# (recipient side, subject, text) per event; side is "client" or "provider"
Message = Tuple[str, str, str]


class NotificationDispatcher:
    """
    Turns booking domain events into e-mails for the participants

    `contact_lookup` maps a user id to an e-mail address (or None);
    `owner_lookup` maps a provider id to its owning user id.
    """

    def __init__(
        self,
        email_service: EmailService,
        contact_lookup: Callable[[str], Optional[str]],
        owner_lookup: Callable[[str], Optional[str]],
        sender: Optional[str] = None,
    ):
        self.email_service = email_service
        self.contact_lookup = contact_lookup
        self.owner_lookup = owner_lookup
        self.sender = sender or SchedulingConfig.NOTIFICATION_SENDER

    def messages_for(self, event: DomainEvent) -> List[Message]:
        when = to_iso_string(event.interval.start)

        if event.event_type == DomainEventType.BOOKING_CREATED:
            if event.new_status == BookingStatus.CONFIRMED:
                return [
                    ("client", "Booking confirmed", f"Your booking for {when} is confirmed."),
                    ("provider", "New booking", f"A new booking for {when} was confirmed automatically."),
                ]
            return [
                ("client", "Booking request sent", f"Your booking request for {when} is waiting for the provider."),
                ("provider", "New booking request", f"You have a new booking request for {when}."),
            ]

        if event.event_type == DomainEventType.BOOKING_RESCHEDULED:
            text = f"Booking {event.booking_id} was moved to {when}."
            return [("client", "Booking rescheduled", text), ("provider", "Booking rescheduled", text)]

        status = event.new_status
        if status == BookingStatus.CONFIRMED:
            return [("client", "Booking confirmed", f"Your booking for {when} was accepted.")]
        if status == BookingStatus.DECLINED:
            return [("client", "Booking declined", f"Your booking request for {when} was declined.")]
        if status == BookingStatus.CANCELLED_BY_CLIENT:
            return [("provider", "Booking cancelled", self._with_reason(f"The client cancelled the booking for {when}.", event))]
        if status == BookingStatus.CANCELLED_BY_PROVIDER:
            return [("client", "Booking cancelled", self._with_reason(f"The provider cancelled your booking for {when}.", event))]
        if status == BookingStatus.COMPLETED and event.review_eligible:
            return [("client", "How did it go?", f"Your booking on {when} is complete. You can now leave a review.")]
        return []

    @staticmethod
    def _with_reason(text: str, event: DomainEvent) -> str:
        return f"{text} Reason: {event.reason}" if event.reason else text

    def dispatch(self, event: DomainEvent) -> int:
        """Send the e-mails for `event`; returns how many were sent"""
        sent = 0
        for side, subject, text in self.messages_for(event):
            user_id = event.client_id if side == "client" else self.owner_lookup(event.provider_id)
            address = self.contact_lookup(user_id) if user_id else None
            if not address:
                logger.warning(
                    "No contact address for notification",
                    booking_id=event.booking_id,
                    recipient=side,
                )
                continue
            if self.email_service.send_email(self.sender, [address], subject, f"<p>{text}</p>", text):
                sent += 1
        return sent
