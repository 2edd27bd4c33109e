from .db import db
from .user import User, Role, user_roles
from .audit_log import AuditLog
from .service import Service
from .service_provider import ServiceProvider
from .service_request import (
    ServiceRequest,
    BookingStatus,
    RequestType,
    CancelledBy,
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    ACTIVE_STATUSES,
)
from .subscription import Plan, Subscription, SubscriptionStatus
from .payment import Payment, PaymentStatus, PaymentPurpose
from .notification import Notification
from .retry_operation import RetryOperation
from .system_setting import SystemSetting
