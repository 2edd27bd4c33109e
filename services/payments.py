"""
Payment intents and gateway webhook reconciliation.

Local Payment rows are matched to gateway payments in this order:

1. exact ``gateway_payment_id``
2. the correlation ``reference`` echoed back in gateway metadata
3. the most recent in-flight row for (booking, payer, gateway) without a
   gateway id
4. a new row built from the gateway data

Steps 2 and 3 claim the row with a compare-and-swap UPDATE on
``gateway_payment_id IS NULL`` so two deliveries never bind the same row.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy.exc import IntegrityError

from models import db
from models.payment import IN_FLIGHT_STATUSES, SETTLED_STATUSES, Payment, PaymentPurpose, PaymentStatus
from models.service_provider import ServiceProvider
from models.service_request import ServiceRequest
from models.subscription import Plan, Subscription, SubscriptionStatus
from models.user import User
from services.acceptance import latest_settled_unlock
from services.gateway import PaymentDetails
from utils.audit import log_event
from utils.errors import GatewayPaymentNotFoundError, GatewayUnavailableError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

GATEWAY_STATUSES = {
    "approved": PaymentStatus.APPROVED,
    "pending": PaymentStatus.PENDING,
    "in_process": PaymentStatus.PROCESSING,
    "rejected": PaymentStatus.REJECTED,
    "cancelled": PaymentStatus.REJECTED,
    "refunded": PaymentStatus.REFUNDED,
    "charged_back": PaymentStatus.REFUNDED,
}

DESCRIPTIONS = {
    PaymentPurpose.BOOKING: "Service payment",
    PaymentPurpose.UNLOCK: "Client contact unlock",
    PaymentPurpose.SUBSCRIPTION: "Plan subscription",
}


def map_gateway_status(status: str) -> PaymentStatus:
    return GATEWAY_STATUSES.get((status or "").lower(), PaymentStatus.PENDING)


def _meta_int(metadata: dict, *keys):
    for key in keys:
        value = metadata.get(key)
        if value in (None, ""):
            continue
        try:
            return int(value)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring non-numeric metadata {key}={value!r}")
    return None


@dataclass
class WebhookResult:
    handled: bool
    message: str
    payment_id: Optional[int] = None


class PaymentGatewayAdapter:
    def __init__(self, gateway, currency="BRL", success_url=None, failure_url=None, unlimited_plan_name="Enterprise"):
        self.gateway = gateway
        self.currency = currency
        self.success_url = success_url
        self.failure_url = failure_url
        self.unlimited_plan_name = unlimited_plan_name

    # intents

    def create_intent(self, purpose, payer: User, amount, correlation=None) -> dict:
        purpose = PaymentPurpose(purpose)
        correlation = correlation or {}
        try:
            amount = Decimal(str(amount))
            if not amount.is_finite():
                raise InvalidOperation(amount)
            amount = amount.quantize(Decimal("0.01"))
        except (InvalidOperation, ValueError):
            raise ValidationError("amount must be a number")
        if amount <= 0:
            raise ValidationError("amount must be positive")

        booking_id = correlation.get("booking_id")
        if purpose != PaymentPurpose.SUBSCRIPTION and not booking_id:
            raise ValidationError("booking_id is required for booking and unlock payments")

        reference = uuid.uuid4().hex
        external_reference = f"{purpose.value.lower()}-{reference}"
        payment = Payment(
            user_id=payer.id,
            service_request_id=booking_id if purpose != PaymentPurpose.SUBSCRIPTION else None,
            purpose=purpose,
            amount=amount,
            currency=self.currency,
            gateway=self.gateway.name,
            reference=reference,
            status=PaymentStatus.PENDING,
            description=(correlation.get("description") or DESCRIPTIONS[purpose])[:255],
        )
        db.session.add(payment)
        db.session.flush()

        metadata = {
            "purpose": purpose.value,
            "payment_ref": reference,
            "user_id": payer.id,
            "booking_id": booking_id,
            "provider_id": correlation.get("provider_id"),
            "plan_id": correlation.get("plan_id"),
        }
        try:
            preference = self.gateway.create_preference(
                items=[{"id": external_reference, "title": payment.description, "quantity": 1, "unit_price": amount}],
                payer={"id": payer.id, "name": payer.name, "email": payer.email},
                urls={"success": self.success_url, "failure": self.failure_url},
                metadata=metadata,
                external_reference=external_reference,
            )
        except Exception:
            db.session.rollback()
            raise

        payment.gateway_preference_id = preference["id"]
        db.session.commit()
        log_event(
            "PAYMENT_INTENT_CREATED",
            user_id=payer.id,
            entity="payment",
            entity_id=payment.id,
            metadata={"purpose": purpose.value, "preference_id": preference["id"], "amount": str(amount)},
        )
        return {
            "external_id": preference["id"],
            "checkout_url": preference["checkout_url"],
            "payment_id": payment.id,
            "reference": reference,
        }

    def unlock_status(self, booking_id: int, provider_id: int) -> bool:
        payment = latest_settled_unlock(booking_id, provider_id)
        return payment is not None and payment.status == PaymentStatus.APPROVED

    # lookups

    def find_payment(self, payment_id=None, booking_id=None) -> Payment:
        if payment_id is not None:
            payment = db.session.get(Payment, payment_id)
        elif booking_id is not None:
            payment = (
                Payment.query.filter_by(service_request_id=booking_id)
                .order_by(Payment.created_at.desc(), Payment.id.desc())
                .first()
            )
        else:
            raise ValidationError("bookingId or paymentId is required")
        if payment is None:
            raise NotFoundError("Payment not found")
        return payment

    def refresh_payment(self, payment: Payment) -> Payment:
        """
        Re-read an in-flight payment from the gateway, for when its webhook
        was lost. Settled rows and rows the gateway never bound are returned
        as stored; so is the row when the gateway cannot answer.
        """
        if payment.status not in IN_FLIGHT_STATUSES or not payment.gateway_payment_id:
            return payment
        if payment.gateway != self.gateway.name:
            return payment

        try:
            details = self.gateway.fetch_payment(payment.gateway_payment_id)
        except (GatewayPaymentNotFoundError, GatewayUnavailableError) as e:
            logger.warning(f"Could not refresh payment {payment.id} from gateway: {e}")
            return payment

        previous = payment.status
        self._apply(payment, details, map_gateway_status(details.status))
        self._activate_if_subscription(payment, details)
        db.session.commit()

        if payment.status != previous:
            logger.info(f"Payment {payment.id} refreshed from gateway: {previous.value} -> {payment.status.value}")
            log_event(
                "PAYMENT_RECONCILED",
                user_id=payment.user_id,
                entity="payment",
                entity_id=payment.id,
                metadata={"gateway_payment_id": details.id, "gateway_status": details.status, "status": payment.status.value},
                source="poll",
            )
        return payment

    # webhooks

    def handle_webhook(self, event: dict) -> WebhookResult:
        event = event or {}
        event_type = event.get("type")
        if event_type != "payment":
            logger.info(f"Ignoring gateway notification of type {event_type!r}")
            return WebhookResult(False, f"Unhandled notification type: {event_type}")

        gateway_id = str((event.get("data") or {}).get("id") or "").strip()
        if not gateway_id:
            logger.warning("Payment notification without a payment id")
            return WebhookResult(False, "Missing payment id")

        try:
            details = self.gateway.fetch_payment(gateway_id)
        except GatewayPaymentNotFoundError:
            logger.warning(f"Gateway has no payment {gateway_id}, acknowledging notification")
            return WebhookResult(False, "Payment not found at gateway")

        status = map_gateway_status(details.status)
        payment = self._reconcile(details, status)
        if payment is None:
            return WebhookResult(False, "Payment could not be matched or recorded")

        message = f"Payment {payment.id} is {payment.status.value}"
        subscription = self._activate_if_subscription(payment, details)
        if subscription is not None:
            message += f", subscription {subscription.id} active until {subscription.end_date:%Y-%m-%d}"

        db.session.commit()
        logger.info(f"Gateway payment {details.id} ({details.status}) reconciled: {message}")
        log_event(
            "PAYMENT_RECONCILED",
            user_id=payment.user_id,
            entity="payment",
            entity_id=payment.id,
            metadata={"gateway_payment_id": details.id, "gateway_status": details.status, "status": payment.status.value},
            source="webhook",
        )
        return WebhookResult(True, message, payment.id)

    def _reconcile(self, details: PaymentDetails, status: PaymentStatus):
        try:
            payment = self._bind(details, status)
        except IntegrityError:
            # a concurrent delivery recorded this gateway id first
            db.session.rollback()
            payment = self._by_gateway_id(details.id)
            if payment is None:
                raise
        if payment is not None:
            self._apply(payment, details, status)
        return payment

    def _bind(self, details: PaymentDetails, status: PaymentStatus):
        payment = self._by_gateway_id(details.id)
        if payment is not None:
            return payment
        payment = self._claim_by_reference(details)
        if payment is not None:
            return payment
        payment = self._claim_latest_in_flight(details)
        if payment is not None:
            return payment
        return self._create_from_gateway(details, status)

    def _by_gateway_id(self, gateway_id: str):
        return Payment.query.filter_by(gateway_payment_id=gateway_id).first()

    def _claim(self, candidate_id: int, gateway_id: str):
        claimed = (
            Payment.query
            .filter(Payment.id == candidate_id, Payment.gateway_payment_id.is_(None))
            .update({"gateway_payment_id": gateway_id}, synchronize_session=False)
        )
        if claimed != 1:
            logger.info(f"Payment {candidate_id} already bound by another notification")
            return None
        logger.info(f"Bound gateway payment {gateway_id} to payment {candidate_id}")
        return db.session.get(Payment, candidate_id, populate_existing=True)

    def _claim_by_reference(self, details: PaymentDetails):
        reference = details.metadata.get("payment_ref")
        if not reference and details.external_reference:
            # "<purpose>-<reference>"
            reference = details.external_reference.rpartition("-")[2]
        if not reference:
            return None
        candidate = Payment.query.filter_by(reference=reference).first()
        if candidate is None or candidate.gateway_payment_id is not None:
            return None
        return self._claim(candidate.id, details.id)

    def _claim_latest_in_flight(self, details: PaymentDetails):
        payer_id = _meta_int(details.metadata, "user_id", "userId")
        if payer_id is None:
            return None
        booking_id = _meta_int(details.metadata, "booking_id", "bookingId")

        query = Payment.query.filter(
            Payment.user_id == payer_id,
            Payment.gateway == self.gateway.name,
            Payment.status.in_(IN_FLIGHT_STATUSES),
            Payment.gateway_payment_id.is_(None),
        )
        if booking_id is not None:
            query = query.filter(Payment.service_request_id == booking_id)
        else:
            query = query.filter(Payment.service_request_id.is_(None))

        for candidate in query.order_by(Payment.created_at.desc(), Payment.id.desc()).all():
            payment = self._claim(candidate.id, details.id)
            if payment is not None:
                return payment
        return None

    def _create_from_gateway(self, details: PaymentDetails, status: PaymentStatus):
        payer_id = _meta_int(details.metadata, "user_id", "userId")
        if payer_id is None or db.session.get(User, payer_id) is None:
            logger.error(f"Gateway payment {details.id} has no known payer in metadata, not recorded")
            return None

        booking_id = _meta_int(details.metadata, "booking_id", "bookingId")
        if booking_id is not None and db.session.get(ServiceRequest, booking_id) is None:
            logger.warning(f"Gateway payment {details.id} references unknown booking {booking_id}")
            booking_id = None

        try:
            purpose = PaymentPurpose(str(details.metadata.get("purpose") or "").upper())
        except ValueError:
            purpose = PaymentPurpose.BOOKING

        payment = Payment(
            user_id=payer_id,
            service_request_id=booking_id,
            purpose=purpose,
            amount=details.amount,
            currency=details.currency or self.currency,
            payment_method=details.payment_method,
            gateway=self.gateway.name,
            gateway_payment_id=details.id,
            status=status,
            description=DESCRIPTIONS[purpose],
        )
        db.session.add(payment)
        db.session.flush()
        logger.info(f"Recorded payment {payment.id} from gateway payment {details.id}")
        return payment

    def _apply(self, payment: Payment, details: PaymentDetails, status: PaymentStatus):
        if payment.status in SETTLED_STATUSES and status in IN_FLIGHT_STATUSES:
            logger.info(f"Payment {payment.id} is {payment.status.value}, ignoring stale {status.value}")
        else:
            if status == PaymentStatus.APPROVED and payment.approved_at is None:
                payment.approved_at = datetime.utcnow()
            payment.status = status
        if details.amount:
            payment.amount = details.amount
        if details.currency:
            payment.currency = details.currency
        if details.payment_method:
            payment.payment_method = details.payment_method

    # subscriptions

    def _activate_if_subscription(self, payment: Payment, details: PaymentDetails):
        if (
            payment.status == PaymentStatus.APPROVED
            and payment.purpose == PaymentPurpose.SUBSCRIPTION
            and payment.subscription_id is None
        ):
            return self._activate_subscription(payment, details)
        return None

    def _activate_subscription(self, payment: Payment, details: PaymentDetails):
        profile = None
        provider_id = _meta_int(details.metadata, "provider_id", "providerId")
        if provider_id is not None:
            profile = db.session.get(ServiceProvider, provider_id)
        if profile is None:
            profile = ServiceProvider.query.filter_by(user_id=payment.user_id).first()
        if profile is None:
            logger.error(f"Subscription payment {payment.id} has no provider profile, not activated")
            return None

        plan = None
        plan_id = _meta_int(details.metadata, "plan_id", "planId")
        if plan_id is not None:
            plan = db.session.get(Plan, plan_id)
        if plan is None or not plan.is_active:
            plan = Plan.query.filter_by(name=self.unlimited_plan_name, is_active=True).first()
        if plan is None:
            logger.error(f"No active plan for subscription payment {payment.id}, not activated")
            return None

        now = datetime.utcnow()
        current = Subscription.query.filter_by(
            service_provider_id=profile.id, status=SubscriptionStatus.ACTIVE
        ).first()

        if current is not None and current.plan_id == plan.id:
            start = max(now, current.end_date) if current.end_date else now
            current.end_date = start + relativedelta(months=1)
            subscription = current
            action = "SUBSCRIPTION_EXTENDED"
        else:
            if current is not None:
                current.status = SubscriptionStatus.CANCELLED
                current.cancelled_at = now
                db.session.flush()
            subscription = Subscription(
                service_provider_id=profile.id,
                plan_id=plan.id,
                status=SubscriptionStatus.ACTIVE,
                start_date=now,
                end_date=now + relativedelta(months=1),
            )
            db.session.add(subscription)
            db.session.flush()
            action = "SUBSCRIPTION_CREATED"

        payment.subscription_id = subscription.id
        log_event(
            action,
            user_id=payment.user_id,
            entity="subscription",
            entity_id=subscription.id,
            metadata={"plan": plan.name, "payment_id": payment.id, "end_date": subscription.end_date},
            source="webhook",
            commit=False,
        )
        return subscription
