import enum
from datetime import datetime
from models.db import db


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class Plan(db.Model):
    __tablename__ = "plans"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(80), unique=True, nullable=False)  # e.g. Enterprise
    price = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    # grants acceptance of any booking without per-booking unlock payments
    unlimited_acceptance = db.Column(db.Boolean, default=False, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)


class Subscription(db.Model):
    __tablename__ = "subscriptions"

    id = db.Column(db.Integer, primary_key=True)
    service_provider_id = db.Column(db.Integer, db.ForeignKey("service_providers.id"), nullable=False, index=True)
    plan_id = db.Column(db.Integer, db.ForeignKey("plans.id"), nullable=False)

    status = db.Column(db.Enum(SubscriptionStatus, native_enum=False, length=20), nullable=False, default=SubscriptionStatus.ACTIVE)
    start_date = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    end_date = db.Column(db.DateTime, nullable=True)  # null = open-ended
    cancelled_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    plan = db.relationship("Plan")
    payments = db.relationship("Payment", backref="subscription", lazy=True)

    __table_args__ = (
        # at most one ACTIVE subscription per provider
        db.Index(
            "uq_subscriptions_one_active",
            "service_provider_id",
            unique=True,
            sqlite_where=db.text("status = 'ACTIVE'"),
            postgresql_where=db.text("status = 'ACTIVE'"),
        ),
    )

    def is_current(self, now: datetime) -> bool:
        return self.status == SubscriptionStatus.ACTIVE and (self.end_date is None or self.end_date > now)
