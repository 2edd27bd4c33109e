"""
Acceptance gate: decides whether a provider may accept a booking.

The decision is a short-circuit chain of checks. Each check looks at one
source of entitlement and answers ALLOW, DENY or CONTINUE; the first
non-CONTINUE answer wins and an exhausted chain means payment is required.
"""
import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from models.payment import Payment, PaymentStatus
from models.service_provider import ServiceProvider
from models.service_request import BookingStatus, ServiceRequest
from models.subscription import Plan, Subscription, SubscriptionStatus
from utils.errors import ForbiddenError, InvalidTransitionError, PaymentRequiredError
from utils.settings import get_unlock_price

logger = logging.getLogger(__name__)


class Outcome(str, enum.Enum):
    ALLOW = "ALLOW"
    DENY = "DENY"
    CONTINUE = "CONTINUE"


class DenyReason(str, enum.Enum):
    FORBIDDEN = "FORBIDDEN"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    PAYMENT_REQUIRED = "PAYMENT_REQUIRED"


@dataclass(frozen=True)
class GateDecision:
    outcome: Outcome
    reason: Optional[DenyReason] = None
    granted_by: Optional[str] = None
    detail: dict = field(default_factory=dict)

    @property
    def allowed(self) -> bool:
        return self.outcome == Outcome.ALLOW

    @classmethod
    def allow(cls, granted_by: str, **detail):
        return cls(Outcome.ALLOW, granted_by=granted_by, detail=detail)

    @classmethod
    def deny(cls, reason: DenyReason, **detail):
        return cls(Outcome.DENY, reason=reason, detail=detail)


CONTINUE = GateDecision(Outcome.CONTINUE)


@dataclass
class AcceptanceContext:
    booking: ServiceRequest
    provider_id: int
    now: datetime


def latest_settled_unlock(booking_id: int, provider_id: int):
    """Most recent APPROVED or REFUNDED payment by this provider for this booking."""
    return (
        Payment.query
        .filter(
            Payment.service_request_id == booking_id,
            Payment.user_id == provider_id,
            Payment.status.in_([PaymentStatus.APPROVED, PaymentStatus.REFUNDED]),
        )
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .first()
    )


class SubscriptionCheck:
    name = "subscription"

    def __call__(self, ctx: AcceptanceContext) -> GateDecision:
        profile = ServiceProvider.query.filter_by(user_id=ctx.provider_id).first()
        if profile is None:
            return CONTINUE
        subscription = (
            Subscription.query
            .join(Plan, Subscription.plan_id == Plan.id)
            .filter(
                Subscription.service_provider_id == profile.id,
                Subscription.status == SubscriptionStatus.ACTIVE,
                Plan.unlimited_acceptance.is_(True),
            )
            .order_by(Subscription.created_at.desc())
            .first()
        )
        if subscription is not None and subscription.is_current(ctx.now):
            return GateDecision.allow(self.name, subscription_id=subscription.id)
        return CONTINUE


class UnlockPaymentCheck:
    name = "unlock_payment"

    def __call__(self, ctx: AcceptanceContext) -> GateDecision:
        payment = latest_settled_unlock(ctx.booking.id, ctx.provider_id)
        if payment is not None and payment.status == PaymentStatus.APPROVED:
            return GateDecision.allow(self.name, payment_id=payment.id)
        return CONTINUE


class AcceptanceGate:
    def __init__(self, ledger, checks=None):
        self.ledger = ledger
        self.checks = list(checks) if checks is not None else [SubscriptionCheck(), UnlockPaymentCheck()]

    def authorize_acceptance(self, booking_id: int, acting_provider_id: int, now: datetime = None) -> GateDecision:
        booking = self.ledger.get(booking_id)
        if booking.provider_id != acting_provider_id:
            return GateDecision.deny(DenyReason.FORBIDDEN)
        if booking.is_terminal:
            return GateDecision.deny(DenyReason.INVALID_TRANSITION, current_status=booking.status.value)

        ctx = AcceptanceContext(booking=booking, provider_id=acting_provider_id, now=now or datetime.utcnow())
        for check in self.checks:
            decision = check(ctx)
            if decision.outcome != Outcome.CONTINUE:
                logger.info(f"Acceptance of booking {booking_id} by {acting_provider_id}: {decision.outcome.value} via {check.name}")
                return decision

        return GateDecision.deny(DenyReason.PAYMENT_REQUIRED, unlock_price=get_unlock_price())

    def error_for(self, decision: GateDecision):
        if decision.reason == DenyReason.FORBIDDEN:
            return ForbiddenError("Only the booking's provider can accept it")
        if decision.reason == DenyReason.INVALID_TRANSITION:
            return InvalidTransitionError("Booking can no longer be accepted", **decision.detail)
        return PaymentRequiredError(unlock_price=decision.detail.get("unlock_price"))

    def accept(self, booking_id: int, acting_provider_id: int, notes=None):
        decision = self.authorize_acceptance(booking_id, acting_provider_id)
        if not decision.allowed:
            raise self.error_for(decision)
        return self.ledger.transition(booking_id, BookingStatus.ACCEPTED, notes=notes)
