from .health import health_bp
from .bookings import bookings_bp
from .payments import payments_bp
from .webhooks import webhook_bp
