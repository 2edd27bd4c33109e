import enum
from datetime import datetime
from models.db import db


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    REFUNDED = "REFUNDED"


class PaymentPurpose(str, enum.Enum):
    BOOKING = "BOOKING"
    UNLOCK = "UNLOCK"
    SUBSCRIPTION = "SUBSCRIPTION"


IN_FLIGHT_STATUSES = frozenset({PaymentStatus.PENDING, PaymentStatus.PROCESSING})
SETTLED_STATUSES = frozenset({PaymentStatus.APPROVED, PaymentStatus.REJECTED, PaymentStatus.REFUNDED})


class Payment(db.Model):
    __tablename__ = "payments"

    id = db.Column(db.Integer, primary_key=True)

    # payer; for unlock payments this is the provider, not the client
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    service_request_id = db.Column(db.Integer, db.ForeignKey("service_requests.id"), nullable=True, index=True)
    subscription_id = db.Column(db.Integer, db.ForeignKey("subscriptions.id"), nullable=True, index=True)

    purpose = db.Column(db.Enum(PaymentPurpose, native_enum=False, length=20), nullable=False, default=PaymentPurpose.BOOKING)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(10), nullable=False, default="BRL")
    payment_method = db.Column(db.String(30), nullable=True)
    description = db.Column(db.String(255), nullable=True)

    gateway = db.Column(db.String(20), nullable=False, default="STRIPE")
    gateway_payment_id = db.Column(db.String(255), nullable=True, unique=True, index=True)
    gateway_preference_id = db.Column(db.String(255), nullable=True, index=True)
    # locally generated correlation id, echoed back by the gateway in metadata
    reference = db.Column(db.String(64), nullable=True, unique=True, index=True)

    status = db.Column(db.Enum(PaymentStatus, native_enum=False, length=20), nullable=False, default=PaymentStatus.PENDING, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    approved_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "service_request_id": self.service_request_id,
            "purpose": self.purpose.value,
            "amount": str(self.amount),
            "currency": self.currency,
            "gateway": self.gateway,
            "gateway_payment_id": self.gateway_payment_id,
            "payment_method": self.payment_method,
            "status": self.status.value,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
        }
