import logging
from functools import partial

from flask import current_app

from models import db
from services.retry_queue import RetryPolicy, RetryQueue
from utils.errors import DeliveryError

logger = logging.getLogger(__name__)

EMAIL = "email"
WHATSAPP = "whatsapp"
CHANNELS = (WHATSAPP, EMAIL)


def render_email(payload: dict):
    recipient = payload.get("recipient") or {}
    subject = f"Booking #{payload['booking_id']}: {payload['title']}"
    name = recipient.get("name")
    lines = [
        f"Hello {name}," if name else "Hello,",
        "",
        payload["message"],
        "",
        f"Service: {payload.get('service') or '-'}",
    ]
    if payload.get("scheduled_date"):
        lines.append(f"Scheduled for: {payload['scheduled_date']} {payload.get('scheduled_time') or ''}".rstrip())
    if payload.get("cancellation_reason"):
        lines.append(f"Reason: {payload['cancellation_reason']}")
    return subject, "\n".join(lines)


def render_whatsapp(payload: dict) -> str:
    text = f"*{payload['title']}*\n\n{payload['message']}"
    if payload.get("scheduled_date"):
        text += f"\n\n{payload['scheduled_date']} {payload.get('scheduled_time') or ''}".rstrip()
    return text


class NotificationDispatcher:
    """
    Delivers booking status notifications over WhatsApp and email.

    A failed channel never fails the caller: the payload is handed to the
    retry queue under ``"<channel>-<notification_id>"`` and the queue calls
    back into ``deliver`` on each retry.
    """

    def __init__(self, email_sender, whatsapp_sender, retry_queue: RetryQueue, policies=None, executor=None):
        self.senders = {EMAIL: email_sender, WHATSAPP: whatsapp_sender}
        self.retry_queue = retry_queue
        self.executor = executor
        policies = policies or {}
        for channel in CHANNELS:
            retry_queue.register(channel, partial(self.deliver, channel), policies.get(channel) or RetryPolicy())

    def channels_for(self, payload: dict):
        recipient = payload.get("recipient") or {}
        address = {EMAIL: recipient.get("email"), WHATSAPP: recipient.get("phone")}
        return [c for c in CHANNELS if address[c] and self.senders[c].is_configured()]

    def deliver(self, channel: str, payload: dict):
        recipient = payload.get("recipient") or {}
        sender = self.senders[channel]
        if channel == EMAIL:
            subject, body = render_email(payload)
            ok = sender.send(recipient["email"], subject, body)
        else:
            ok = sender.send(recipient["phone"], render_whatsapp(payload))
        if not ok:
            raise DeliveryError(f"{channel} sender reported failure")

    def send(self, channel: str, payload: dict) -> bool:
        try:
            self.deliver(channel, payload)
        except Exception as exc:
            op_key = f"{channel}-{payload['notification_id']}"
            self.retry_queue.enqueue(op_key, channel, payload, error=exc)
            return False
        logger.info(f"{channel} notification {payload['notification_id']} sent for booking {payload['booking_id']}")
        return True

    def dispatch(self, payload: dict):
        channels = self.channels_for(payload)
        if not channels:
            logger.info(f"No delivery channel for notification {payload['notification_id']}")
            return []

        if self.executor is None:
            return [self.send(channel, payload) for channel in channels]

        app = current_app._get_current_object()
        return [self.executor.submit(self._send_in_context, app, channel, payload) for channel in channels]

    def _send_in_context(self, app, channel, payload):
        with app.app_context():
            try:
                return self.send(channel, payload)
            except Exception:
                db.session.rollback()
                logger.exception(f"Could not deliver or queue {channel} notification {payload['notification_id']}")
                return False
