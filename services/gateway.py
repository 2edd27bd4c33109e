import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

import stripe

from utils.errors import GatewayPaymentNotFoundError, GatewayUnavailableError

logger = logging.getLogger(__name__)

# Stripe PaymentIntent.status -> gateway status vocabulary used by reconciliation
STRIPE_STATUSES = {
    "succeeded": "approved",
    "processing": "in_process",
    "requires_capture": "in_process",
    "requires_payment_method": "pending",
    "requires_confirmation": "pending",
    "requires_action": "pending",
    "canceled": "cancelled",
}

ZERO_DECIMAL_CURRENCIES = {"bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga", "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf"}


def to_minor_units(amount, currency: str) -> int:
    amount = Decimal(str(amount))
    if currency.lower() in ZERO_DECIMAL_CURRENCIES:
        return int(amount)
    return int((amount * 100).to_integral_value())


def from_minor_units(value: int, currency: str) -> Decimal:
    if currency.lower() in ZERO_DECIMAL_CURRENCIES:
        return Decimal(value)
    return (Decimal(value) / 100).quantize(Decimal("0.01"))


@dataclass
class PaymentDetails:
    id: str
    status: str
    amount: Decimal
    currency: str
    metadata: dict = field(default_factory=dict)
    external_reference: Optional[str] = None
    payment_method: Optional[str] = None


class StripeGateway:
    name = "STRIPE"

    def __init__(self, api_key: str, timeout: int = 10, currency: str = "BRL"):
        self.api_key = api_key
        self.timeout = timeout
        self.currency = currency.lower()
        self._http_client = None

    def _configure(self):
        if not self.api_key:
            raise GatewayUnavailableError("Stripe secret key missing (STRIPE_SECRET_KEY)")
        if self._http_client is None:
            self._http_client = stripe.RequestsClient(timeout=self.timeout)
        stripe.api_key = self.api_key
        stripe.default_http_client = self._http_client

    def create_preference(self, items, payer, urls, metadata=None, external_reference=None) -> dict:
        self._configure()
        meta = {k: str(v) for k, v in (metadata or {}).items() if v is not None}
        if external_reference:
            meta["external_reference"] = external_reference

        params = dict(
            mode="payment",
            line_items=[{
                "price_data": {
                    "currency": self.currency,
                    "product_data": {"name": item["title"]},
                    "unit_amount": to_minor_units(item["unit_price"], self.currency),
                },
                "quantity": int(item.get("quantity", 1)),
            } for item in items],
            success_url=urls["success"],
            cancel_url=urls["failure"],
            client_reference_id=external_reference,
            metadata=meta,
            # copied so PaymentIntent webhooks carry the correlation ids
            payment_intent_data={"metadata": meta},
        )
        if payer.get("email"):
            params["customer_email"] = payer["email"]

        try:
            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as exc:
            raise self._unavailable(exc)

        logger.info(f"Stripe checkout session {session['id']} created for {external_reference}")
        return {"id": session["id"], "checkout_url": session["url"]}

    def fetch_payment(self, payment_id: str) -> PaymentDetails:
        self._configure()
        try:
            intent = stripe.PaymentIntent.retrieve(payment_id, expand=["latest_charge"])
        except stripe.InvalidRequestError as exc:
            logger.warning(f"Stripe rejected lookup of {payment_id}: {exc}")
            raise GatewayPaymentNotFoundError(f"Payment {payment_id} not found at gateway")
        except stripe.StripeError as exc:
            raise self._unavailable(exc)
        return self._to_details(intent)

    def _to_details(self, intent) -> PaymentDetails:
        status = STRIPE_STATUSES.get(intent.get("status"), intent.get("status"))
        charge = intent.get("latest_charge")
        if charge and not isinstance(charge, str) and charge.get("refunded"):
            status = "refunded"

        currency = intent.get("currency") or self.currency
        metadata = {k: v for k, v in (intent.get("metadata") or {}).items()}
        methods = intent.get("payment_method_types") or []
        return PaymentDetails(
            id=intent["id"],
            status=status,
            amount=from_minor_units(intent.get("amount_received") or intent.get("amount") or 0, currency),
            currency=currency.upper(),
            metadata=metadata,
            external_reference=metadata.get("external_reference"),
            payment_method=methods[0] if methods else None,
        )

    def _unavailable(self, exc) -> GatewayUnavailableError:
        logger.error(f"Stripe request failed: {exc.__class__.__name__}: {exc}")
        return GatewayUnavailableError(f"Payment gateway error: {exc.__class__.__name__}")
