import logging
import re

import httpx
from flask import current_app

from utils.errors import DeliveryError

logger = logging.getLogger(__name__)

COUNTRY_CODE = "55"


def format_phone_number(phone: str) -> str:
    """Normalise to digits with the Brazilian country code, e.g. 5511987654321."""
    digits = re.sub(r"\D", "", phone or "")
    if digits.startswith(COUNTRY_CODE) and len(digits) >= 12:
        return digits
    if len(digits) in (10, 11):
        return COUNTRY_CODE + digits
    return digits


class WhatsAppSender:
    """Sends text messages through the ChatPro HTTP API."""

    channel = "whatsapp"

    def is_configured(self) -> bool:
        cfg = current_app.config
        return bool(cfg.get("CHATPRO_API_URL") and cfg.get("CHATPRO_API_KEY"))

    def send(self, phone: str, message: str) -> bool:
        cfg = current_app.config
        base_url = (cfg.get("CHATPRO_API_URL") or "").rstrip("/")
        api_key = cfg.get("CHATPRO_API_KEY")
        if not base_url or not api_key:
            raise DeliveryError("WhatsApp API not configured")

        number = format_phone_number(phone)
        try:
            response = httpx.post(
                f"{base_url}/send-message",
                json={"number": number, "message": message},
                headers={"Authorization": f"Bearer {api_key}"},
                timeout=cfg.get("WHATSAPP_TIMEOUT_SECONDS", 10),
            )
        except httpx.HTTPError as exc:
            raise DeliveryError(f"WhatsApp request to {number} failed: {exc}") from exc

        if response.status_code >= 400:
            raise DeliveryError(f"WhatsApp API returned {response.status_code}: {response.text[:200]}")

        logger.info(f"WhatsApp message sent to {number}")
        return True
