from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from models import BookingStatus, PaymentStatus, Plan, SubscriptionStatus, SystemSetting, db
from services.acceptance import CONTINUE, AcceptanceGate, DenyReason, GateDecision, Outcome
from utils.errors import ForbiddenError, InvalidTransitionError, NotFoundError, PaymentRequiredError

from conftest import add_payment, add_subscription


def test_no_entitlement_requires_payment(fulfillment, make_booking, people):
    booking = make_booking()

    decision = fulfillment.gate.authorize_acceptance(booking.id, people.provider.id)

    assert decision.outcome == Outcome.DENY
    assert decision.reason == DenyReason.PAYMENT_REQUIRED
    assert decision.detail["unlock_price"] == Decimal("4.90")


def test_unlock_price_comes_from_settings(fulfillment, make_booking, people):
    db.session.add(SystemSetting(key="PLAN_UNLOCK_PRICE", value="7.5"))
    db.session.commit()
    booking = make_booking()

    with pytest.raises(PaymentRequiredError) as exc:
        fulfillment.gate.accept(booking.id, people.provider.id)

    assert exc.value.status_code == 402
    assert exc.value.as_dict()["unlock_price"] == "7.50"
    assert fulfillment.ledger.get(booking.id).status == BookingStatus.PENDING


def test_approved_unlock_payment_allows(fulfillment, make_booking, people):
    booking = make_booking()
    payment = add_payment(people.provider, booking)

    decision = fulfillment.gate.authorize_acceptance(booking.id, people.provider.id)

    assert decision.allowed
    assert decision.granted_by == "unlock_payment"
    assert decision.detail["payment_id"] == payment.id


def test_payment_by_someone_else_does_not_count(fulfillment, make_booking, people):
    booking = make_booking()
    add_payment(people.client, booking)

    decision = fulfillment.gate.authorize_acceptance(booking.id, people.provider.id)

    assert decision.reason == DenyReason.PAYMENT_REQUIRED


def test_pending_payment_does_not_count(fulfillment, make_booking, people):
    booking = make_booking()
    add_payment(people.provider, booking, status=PaymentStatus.PENDING)

    assert not fulfillment.gate.authorize_acceptance(booking.id, people.provider.id).allowed


def test_refund_after_approval_revokes_entitlement(fulfillment, make_booking, people):
    booking = make_booking()
    earlier = datetime.utcnow() - timedelta(hours=1)
    add_payment(people.provider, booking, status=PaymentStatus.APPROVED, created_at=earlier)
    add_payment(people.provider, booking, status=PaymentStatus.REFUNDED)

    decision = fulfillment.gate.authorize_acceptance(booking.id, people.provider.id)

    assert decision.reason == DenyReason.PAYMENT_REQUIRED


def test_active_unlimited_subscription_allows(fulfillment, make_booking, people, unlimited_plan):
    booking = make_booking()
    subscription = add_subscription(people.profile, unlimited_plan, datetime.utcnow() + timedelta(days=10))

    decision = fulfillment.gate.authorize_acceptance(booking.id, people.provider.id)

    assert decision.allowed
    assert decision.granted_by == "subscription"
    assert decision.detail["subscription_id"] == subscription.id


def test_subscription_and_payment_both_present(fulfillment, make_booking, people, unlimited_plan):
    booking = make_booking()
    add_subscription(people.profile, unlimited_plan, datetime.utcnow() + timedelta(days=10))
    add_payment(people.provider, booking)

    decision = fulfillment.gate.authorize_acceptance(booking.id, people.provider.id)

    assert decision.allowed
    assert decision.granted_by == "subscription"


def test_expired_subscription_denies(fulfillment, make_booking, people, unlimited_plan):
    booking = make_booking()
    add_subscription(people.profile, unlimited_plan, datetime.utcnow() - timedelta(minutes=1))

    assert fulfillment.gate.authorize_acceptance(booking.id, people.provider.id).reason == DenyReason.PAYMENT_REQUIRED


def test_cancelled_subscription_denies(fulfillment, make_booking, people, unlimited_plan):
    booking = make_booking()
    add_subscription(
        people.profile, unlimited_plan, datetime.utcnow() + timedelta(days=5), status=SubscriptionStatus.CANCELLED
    )

    assert not fulfillment.gate.authorize_acceptance(booking.id, people.provider.id).allowed


def test_limited_plan_does_not_grant_acceptance(fulfillment, make_booking, people):
    basic = Plan(name="Basic", price=Decimal("19.90"), unlimited_acceptance=False)
    db.session.add(basic)
    db.session.commit()
    booking = make_booking()
    add_subscription(people.profile, basic, datetime.utcnow() + timedelta(days=10))

    assert not fulfillment.gate.authorize_acceptance(booking.id, people.provider.id).allowed


def test_other_provider_is_forbidden(fulfillment, make_booking, people):
    booking = make_booking()
    add_payment(people.other_provider, booking)

    decision = fulfillment.gate.authorize_acceptance(booking.id, people.other_provider.id)
    assert decision.reason == DenyReason.FORBIDDEN

    with pytest.raises(ForbiddenError):
        fulfillment.gate.accept(booking.id, people.other_provider.id)


def test_terminal_booking_is_invalid_transition(fulfillment, make_booking, people):
    booking = make_booking(status=BookingStatus.CANCELLED)
    add_payment(people.provider, booking)

    decision = fulfillment.gate.authorize_acceptance(booking.id, people.provider.id)
    assert decision.reason == DenyReason.INVALID_TRANSITION

    with pytest.raises(InvalidTransitionError):
        fulfillment.gate.accept(booking.id, people.provider.id)


def test_missing_booking(fulfillment, people):
    with pytest.raises(NotFoundError):
        fulfillment.gate.authorize_acceptance(404, people.provider.id)


def test_accept_moves_booking_to_accepted(fulfillment, make_booking, people):
    booking = make_booking(expires_at=datetime.utcnow() + timedelta(hours=1))
    add_payment(people.provider, booking)

    result = fulfillment.gate.accept(booking.id, people.provider.id)

    assert result.booking.status == BookingStatus.ACCEPTED
    assert result.booking.expires_at is None


def test_checks_are_pluggable(fulfillment, make_booking, people):
    booking = make_booking()
    seen = []

    class Blocklist:
        name = "blocklist"

        def __call__(self, ctx):
            seen.append(ctx.booking.id)
            return GateDecision.deny(DenyReason.FORBIDDEN, blocked=True)

    class Never:
        name = "never"

        def __call__(self, ctx):
            raise AssertionError("chain should have stopped")

    gate = AcceptanceGate(fulfillment.ledger, checks=[lambda ctx: CONTINUE, Blocklist(), Never()])
    decision = gate.authorize_acceptance(booking.id, people.provider.id)

    assert seen == [booking.id]
    assert decision.detail == {"blocked": True}
