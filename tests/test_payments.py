from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from models import (
    Payment,
    PaymentPurpose,
    PaymentStatus,
    Plan,
    Subscription,
    SubscriptionStatus,
    db,
)
from services.payments import map_gateway_status
from utils.errors import GatewayUnavailableError, NotFoundError, ValidationError

from conftest import add_payment, add_subscription


def _event(gateway_id):
    return {"type": "payment", "data": {"id": gateway_id}}


@pytest.mark.parametrize("gateway_status, expected", [
    ("approved", PaymentStatus.APPROVED),
    ("pending", PaymentStatus.PENDING),
    ("in_process", PaymentStatus.PROCESSING),
    ("rejected", PaymentStatus.REJECTED),
    ("cancelled", PaymentStatus.REJECTED),
    ("refunded", PaymentStatus.REFUNDED),
    ("charged_back", PaymentStatus.REFUNDED),
    ("something_new", PaymentStatus.PENDING),
    (None, PaymentStatus.PENDING),
])
def test_map_gateway_status(gateway_status, expected):
    assert map_gateway_status(gateway_status) == expected


def test_create_intent_writes_pending_row_and_correlates(fulfillment, make_booking, people, gateway):
    booking = make_booking()

    intent = fulfillment.payments.create_intent(
        PaymentPurpose.UNLOCK, people.provider, Decimal("4.90"), {"booking_id": booking.id}
    )

    payment = db.session.get(Payment, intent["payment_id"])
    assert payment.status == PaymentStatus.PENDING
    assert payment.gateway_payment_id is None
    assert payment.gateway_preference_id == intent["external_id"] == "cs_test_1"
    assert intent["checkout_url"] == "https://checkout.test/cs_test_1"

    preference = gateway.preferences[0]
    assert preference["external_reference"] == f"unlock-{payment.reference}"
    assert preference["metadata"]["payment_ref"] == payment.reference
    assert preference["metadata"]["user_id"] == str(people.provider.id)
    assert preference["metadata"]["booking_id"] == str(booking.id)
    assert preference["items"][0]["unit_price"] == Decimal("4.90")


def test_create_intent_validation(fulfillment, people):
    with pytest.raises(ValidationError):
        fulfillment.payments.create_intent(PaymentPurpose.UNLOCK, people.provider, "4.90", {})
    with pytest.raises(ValidationError):
        fulfillment.payments.create_intent(PaymentPurpose.SUBSCRIPTION, people.provider, 0, {})


def test_create_intent_gateway_failure_leaves_no_row(fulfillment, make_booking, people, gateway):
    booking = make_booking()
    gateway.unavailable = True

    with pytest.raises(GatewayUnavailableError):
        fulfillment.payments.create_intent(PaymentPurpose.UNLOCK, people.provider, "4.90", {"booking_id": booking.id})

    assert Payment.query.count() == 0


def test_webhook_ignores_other_types(fulfillment):
    result = fulfillment.payments.handle_webhook({"type": "merchant_order", "data": {"id": "1"}})

    assert result.handled is False
    assert "merchant_order" in result.message


def test_webhook_unknown_gateway_payment_is_acknowledged(fulfillment):
    result = fulfillment.payments.handle_webhook(_event("pi_missing"))

    assert result.handled is False
    assert Payment.query.count() == 0


def test_webhook_gateway_unavailable_propagates(fulfillment, gateway):
    gateway.unavailable = True

    with pytest.raises(GatewayUnavailableError):
        fulfillment.payments.handle_webhook(_event("pi_1"))


def test_webhook_binds_intent_by_reference(fulfillment, make_booking, people, gateway):
    booking = make_booking()
    intent = fulfillment.payments.create_intent(PaymentPurpose.UNLOCK, people.provider, "4.90", {"booking_id": booking.id})
    gateway.put("pi_100", "approved", **gateway.preferences[0]["metadata"])

    result = fulfillment.payments.handle_webhook(_event("pi_100"))

    assert result.handled is True
    assert result.payment_id == intent["payment_id"]
    payment = db.session.get(Payment, intent["payment_id"])
    assert payment.gateway_payment_id == "pi_100"
    assert payment.status == PaymentStatus.APPROVED
    assert payment.approved_at is not None
    assert Payment.query.count() == 1


def test_webhook_falls_back_to_latest_in_flight_row(fulfillment, make_booking, people, gateway):
    booking = make_booking()
    older = add_payment(people.provider, booking, status=PaymentStatus.PENDING,
                        created_at=datetime.utcnow() - timedelta(hours=1), gateway="STRIPE")
    newer = add_payment(people.provider, booking, status=PaymentStatus.PENDING, gateway="STRIPE")
    gateway.put("pi_200", "approved", user_id=people.provider.id, booking_id=booking.id)

    result = fulfillment.payments.handle_webhook(_event("pi_200"))

    assert result.payment_id == newer.id
    assert db.session.get(Payment, newer.id).gateway_payment_id == "pi_200"
    assert db.session.get(Payment, older.id).gateway_payment_id is None
    assert Payment.query.count() == 2


def test_lost_claim_moves_on_to_next_candidate(fulfillment, make_booking, people, gateway, monkeypatch):
    booking = make_booking()
    older = add_payment(people.provider, booking, status=PaymentStatus.PENDING,
                        created_at=datetime.utcnow() - timedelta(hours=1), gateway="STRIPE")
    newer = add_payment(people.provider, booking, status=PaymentStatus.PENDING, gateway="STRIPE")
    gateway.put("pi_210", "approved", user_id=people.provider.id, booking_id=booking.id)

    claim = fulfillment.payments._claim
    attempts = []

    def racing_claim(candidate_id, gateway_id):
        attempts.append(candidate_id)
        if candidate_id == newer.id:
            # another delivery binds the newest row after it was selected
            Payment.query.filter_by(id=newer.id).update({"gateway_payment_id": "pi_other"}, synchronize_session=False)
        return claim(candidate_id, gateway_id)

    monkeypatch.setattr(fulfillment.payments, "_claim", racing_claim)

    result = fulfillment.payments.handle_webhook(_event("pi_210"))

    assert attempts == [newer.id, older.id]
    assert result.payment_id == older.id
    assert db.session.get(Payment, older.id, populate_existing=True).gateway_payment_id == "pi_210"
    assert db.session.get(Payment, newer.id, populate_existing=True).gateway_payment_id == "pi_other"
    assert Payment.query.count() == 2


def test_webhook_binds_by_external_reference_without_metadata(fulfillment, make_booking, people, gateway):
    booking = make_booking()
    intent = fulfillment.payments.create_intent(PaymentPurpose.UNLOCK, people.provider, "4.90", {"booking_id": booking.id})
    gateway.put("pi_220", "approved", external_reference=gateway.preferences[0]["external_reference"])

    result = fulfillment.payments.handle_webhook(_event("pi_220"))

    assert result.payment_id == intent["payment_id"]
    assert db.session.get(Payment, intent["payment_id"]).gateway_payment_id == "pi_220"


def test_webhook_creates_row_when_nothing_matches(fulfillment, make_booking, people, gateway):
    booking = make_booking()
    gateway.put("pi_300", "in_process", amount="12.00", user_id=people.provider.id,
                booking_id=booking.id, purpose="BOOKING")

    result = fulfillment.payments.handle_webhook(_event("pi_300"))

    payment = db.session.get(Payment, result.payment_id)
    assert payment.gateway_payment_id == "pi_300"
    assert payment.status == PaymentStatus.PROCESSING
    assert payment.amount == Decimal("12.00")
    assert payment.service_request_id == booking.id


def test_webhook_without_payer_metadata_is_not_recorded(fulfillment, gateway):
    gateway.put("pi_400", "approved")

    result = fulfillment.payments.handle_webhook(_event("pi_400"))

    assert result.handled is False
    assert Payment.query.count() == 0


def test_duplicate_delivery_is_idempotent(fulfillment, make_booking, people, gateway):
    booking = make_booking()
    fulfillment.payments.create_intent(PaymentPurpose.UNLOCK, people.provider, "4.90", {"booking_id": booking.id})
    gateway.put("pi_500", "approved", **gateway.preferences[0]["metadata"])

    first = fulfillment.payments.handle_webhook(_event("pi_500"))
    second = fulfillment.payments.handle_webhook(_event("pi_500"))

    assert first.payment_id == second.payment_id
    assert Payment.query.count() == 1
    assert Payment.query.one().status == PaymentStatus.APPROVED


def test_settled_status_does_not_regress(fulfillment, make_booking, people, gateway):
    booking = make_booking()
    add_payment(people.provider, booking, status=PaymentStatus.APPROVED, gateway_payment_id="pi_600")
    gateway.put("pi_600", "pending", user_id=people.provider.id)

    fulfillment.payments.handle_webhook(_event("pi_600"))

    assert Payment.query.filter_by(gateway_payment_id="pi_600").one().status == PaymentStatus.APPROVED


def test_refund_moves_approved_to_refunded(fulfillment, make_booking, people, gateway):
    booking = make_booking()
    add_payment(people.provider, booking, status=PaymentStatus.APPROVED, gateway_payment_id="pi_700")
    gateway.put("pi_700", "refunded", user_id=people.provider.id)

    fulfillment.payments.handle_webhook(_event("pi_700"))

    assert Payment.query.filter_by(gateway_payment_id="pi_700").one().status == PaymentStatus.REFUNDED
    assert fulfillment.payments.unlock_status(booking.id, people.provider.id) is False


def test_approved_unlock_webhook_lets_provider_accept(fulfillment, make_booking, people, gateway):
    booking = make_booking()
    fulfillment.payments.create_intent(PaymentPurpose.UNLOCK, people.provider, "4.90", {"booking_id": booking.id})
    assert not fulfillment.gate.authorize_acceptance(booking.id, people.provider.id).allowed

    gateway.put("pi_800", "approved", **gateway.preferences[0]["metadata"])
    fulfillment.payments.handle_webhook(_event("pi_800"))

    assert fulfillment.payments.unlock_status(booking.id, people.provider.id) is True
    assert fulfillment.gate.authorize_acceptance(booking.id, people.provider.id).allowed


def _subscribe(fulfillment, people, gateway, plan, gateway_id):
    fulfillment.payments.create_intent(
        PaymentPurpose.SUBSCRIPTION, people.provider, plan.price, {"provider_id": people.profile.id, "plan_id": plan.id}
    )
    gateway.put(gateway_id, "approved", amount=str(plan.price), **gateway.preferences[-1]["metadata"])
    return fulfillment.payments.handle_webhook(_event(gateway_id))


def test_approved_subscription_payment_creates_subscription(fulfillment, people, gateway, unlimited_plan):
    before = datetime.utcnow()

    result = _subscribe(fulfillment, people, gateway, unlimited_plan, "pi_s1")

    subscription = Subscription.query.one()
    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.plan_id == unlimited_plan.id
    assert subscription.service_provider_id == people.profile.id
    assert before + timedelta(days=27) < subscription.end_date < datetime.utcnow() + timedelta(days=32)
    assert db.session.get(Payment, result.payment_id).subscription_id == subscription.id


def test_renewal_extends_from_current_end(fulfillment, people, gateway, unlimited_plan):
    end = datetime.utcnow() + timedelta(days=10)
    current = add_subscription(people.profile, unlimited_plan, end)

    _subscribe(fulfillment, people, gateway, unlimited_plan, "pi_s2")

    assert Subscription.query.count() == 1
    extended = db.session.get(Subscription, current.id).end_date
    assert end + timedelta(days=27) < extended < end + timedelta(days=32)


def test_duplicate_subscription_webhook_extends_once(fulfillment, people, gateway, unlimited_plan):
    _subscribe(fulfillment, people, gateway, unlimited_plan, "pi_s3")
    end_after_first = Subscription.query.one().end_date

    fulfillment.payments.handle_webhook(_event("pi_s3"))

    assert Subscription.query.one().end_date == end_after_first


def test_plan_change_cancels_previous_subscription(fulfillment, people, gateway, unlimited_plan):
    basic = Plan(name="Basic", price=Decimal("19.90"), unlimited_acceptance=False)
    db.session.add(basic)
    db.session.commit()
    old = add_subscription(people.profile, basic, datetime.utcnow() + timedelta(days=3))

    _subscribe(fulfillment, people, gateway, unlimited_plan, "pi_s4")

    assert db.session.get(Subscription, old.id).status == SubscriptionStatus.CANCELLED
    active = Subscription.query.filter_by(status=SubscriptionStatus.ACTIVE).one()
    assert active.plan_id == unlimited_plan.id


def test_subscription_without_known_plan_still_records_payment(fulfillment, people, gateway):
    gateway.put("pi_s5", "approved", purpose="SUBSCRIPTION", user_id=people.provider.id, plan_id=999)

    result = fulfillment.payments.handle_webhook(_event("pi_s5"))

    assert result.handled is True
    assert Subscription.query.count() == 0
    assert db.session.get(Payment, result.payment_id).subscription_id is None


def test_refresh_settles_pending_payment_after_lost_webhook(fulfillment, make_booking, people, gateway):
    booking = make_booking()
    payment = add_payment(people.provider, booking, status=PaymentStatus.PENDING,
                          gateway="STRIPE", gateway_payment_id="pi_900")
    gateway.put("pi_900", "approved", user_id=people.provider.id)

    refreshed = fulfillment.payments.refresh_payment(payment)

    assert refreshed.status == PaymentStatus.APPROVED
    assert refreshed.approved_at is not None
    assert fulfillment.payments.unlock_status(booking.id, people.provider.id) is True


def test_refresh_keeps_stored_row_when_gateway_is_down(fulfillment, make_booking, people, gateway):
    booking = make_booking()
    payment = add_payment(people.provider, booking, status=PaymentStatus.PENDING,
                          gateway="STRIPE", gateway_payment_id="pi_901")
    gateway.unavailable = True

    assert fulfillment.payments.refresh_payment(payment).status == PaymentStatus.PENDING


def test_refresh_leaves_settled_and_unbound_rows_alone(fulfillment, make_booking, people, gateway):
    booking = make_booking()
    settled = add_payment(people.provider, booking, status=PaymentStatus.REJECTED, gateway_payment_id="pi_902")
    unbound = add_payment(people.provider, booking, status=PaymentStatus.PENDING)
    gateway.put("pi_902", "approved")

    assert fulfillment.payments.refresh_payment(settled).status == PaymentStatus.REJECTED
    assert fulfillment.payments.refresh_payment(unbound).status == PaymentStatus.PENDING


def test_refresh_activates_subscription(fulfillment, people, gateway, unlimited_plan):
    payment = add_payment(people.provider, status=PaymentStatus.PROCESSING, purpose=PaymentPurpose.SUBSCRIPTION,
                          amount="59.90", gateway="STRIPE", gateway_payment_id="pi_903")
    gateway.put("pi_903", "approved", amount="59.90", provider_id=people.profile.id, plan_id=unlimited_plan.id)

    fulfillment.payments.refresh_payment(payment)

    subscription = Subscription.query.one()
    assert payment.subscription_id == subscription.id


def test_find_payment(fulfillment, make_booking, people):
    booking = make_booking()
    add_payment(people.provider, booking, created_at=datetime.utcnow() - timedelta(hours=1))
    latest = add_payment(people.provider, booking, status=PaymentStatus.PENDING)

    assert fulfillment.payments.find_payment(booking_id=booking.id).id == latest.id
    assert fulfillment.payments.find_payment(payment_id=latest.id).id == latest.id
    with pytest.raises(NotFoundError):
        fulfillment.payments.find_payment(payment_id=999)
    with pytest.raises(ValidationError):
        fulfillment.payments.find_payment()
