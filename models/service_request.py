import enum
from datetime import datetime
from models.db import db


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class RequestType(str, enum.Enum):
    QUOTE = "QUOTE"
    SCHEDULING = "SCHEDULING"
    HOLD = "HOLD"


class CancelledBy(str, enum.Enum):
    CLIENT = "CLIENT"
    PROVIDER = "PROVIDER"


ALLOWED_TRANSITIONS = {
    BookingStatus.PENDING: frozenset({BookingStatus.ACCEPTED, BookingStatus.REJECTED, BookingStatus.EXPIRED}),
    BookingStatus.ACCEPTED: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.REJECTED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.EXPIRED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, nxt in ALLOWED_TRANSITIONS.items() if not nxt)

# statuses that occupy a provider's slot
ACTIVE_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.ACCEPTED, BookingStatus.COMPLETED})

_ACTIVE_SQL = "status IN ('PENDING', 'ACCEPTED', 'COMPLETED')"


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


class ServiceRequest(db.Model):
    __tablename__ = "service_requests"

    id = db.Column(db.Integer, primary_key=True)

    client_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    provider_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    service_id = db.Column(db.Integer, db.ForeignKey("services.id"), nullable=False, index=True)

    request_type = db.Column(db.Enum(RequestType, native_enum=False, length=20), nullable=False, default=RequestType.QUOTE)
    status = db.Column(db.Enum(BookingStatus, native_enum=False, length=20), nullable=False, default=BookingStatus.PENDING, index=True)
    description = db.Column(db.Text, nullable=True)

    scheduled_date = db.Column(db.Date, nullable=True)
    scheduled_time = db.Column(db.String(5), nullable=True)  # "HH:MM"

    estimated_price = db.Column(db.Numeric(10, 2), nullable=True)
    final_price = db.Column(db.Numeric(10, 2), nullable=True)
    payment_method = db.Column(db.String(30), nullable=True)

    # hold deadline, cleared once the provider answers
    expires_at = db.Column(db.DateTime, nullable=True, index=True)

    cancellation_reason = db.Column(db.String(500), nullable=True)
    cancelled_by = db.Column(db.Enum(CancelledBy, native_enum=False, length=20), nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)

    provider_rating = db.Column(db.Integer, nullable=True)
    provider_review_comment = db.Column(db.Text, nullable=True)
    provider_reviewed_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    client = db.relationship("User", foreign_keys=[client_id])
    provider = db.relationship("User", foreign_keys=[provider_id])
    service = db.relationship("Service")

    __table_args__ = (
        # Hard business-rule: one active booking per provider slot
        db.Index(
            "uq_service_requests_active_slot",
            "provider_id", "scheduled_date", "scheduled_time",
            unique=True,
            sqlite_where=db.text(_ACTIVE_SQL),
            postgresql_where=db.text(_ACTIVE_SQL),
        ),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "provider_id": self.provider_id,
            "service_id": self.service_id,
            "request_type": self.request_type.value,
            "status": self.status.value,
            "description": self.description,
            "scheduled_date": self.scheduled_date.isoformat() if self.scheduled_date else None,
            "scheduled_time": self.scheduled_time,
            "estimated_price": str(self.estimated_price) if self.estimated_price is not None else None,
            "final_price": str(self.final_price) if self.final_price is not None else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "cancellation_reason": self.cancellation_reason,
            "cancelled_by": self.cancelled_by.value if self.cancelled_by else None,
            "provider_review": {
                "rating": self.provider_rating,
                "comment": self.provider_review_comment,
                "reviewed_at": self.provider_reviewed_at.isoformat() if self.provider_reviewed_at else None,
            },
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
