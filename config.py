import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Config:
    # Secrets (shared with the auth service that issues identity tokens)
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to the app as fulfillment.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "fulfillment.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Identity token (cookie or Authorization: Bearer)
    AUTH_COOKIE_NAME = "fulfillment_session"
    AUTH_TOKEN_MAX_AGE_SECONDS = 8 * 60 * 60

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Payment gateway (Stripe)
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
    STRIPE_SUCCESS_URL = os.getenv("STRIPE_SUCCESS_URL", "http://localhost:3000/status?payment=success")
    STRIPE_CANCEL_URL = os.getenv("STRIPE_CANCEL_URL", "http://localhost:3000/status?payment=failure")
    GATEWAY_TIMEOUT_SECONDS = int(os.getenv("GATEWAY_TIMEOUT_SECONDS", "10"))
    PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "BRL")

    # Pricing
    UNLOCK_PRICE_DEFAULT = os.getenv("UNLOCK_PRICE_DEFAULT", "4.90")  # overridden by SystemSetting PLAN_UNLOCK_PRICE
    SUBSCRIPTION_PRICE = os.getenv("SUBSCRIPTION_PRICE", "59.90")
    UNLIMITED_PLAN_NAME = os.getenv("UNLIMITED_PLAN_NAME", "Enterprise")

    # Email (SMTP)
    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USERNAME = os.getenv("SMTP_USERNAME")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
    SMTP_FROM_EMAIL = os.getenv("SMTP_FROM_EMAIL")
    SMTP_USE_TLS = _env_bool("SMTP_USE_TLS", "true")
    SMTP_TIMEOUT_SECONDS = 10

    # WhatsApp (ChatPro HTTP API)
    CHATPRO_API_URL = os.getenv("CHATPRO_API_URL")
    CHATPRO_API_KEY = os.getenv("CHATPRO_API_KEY")
    WHATSAPP_TIMEOUT_SECONDS = 10

    # Notification delivery
    NOTIFY_ASYNC = _env_bool("NOTIFY_ASYNC", "true")
    NOTIFY_MAX_WORKERS = int(os.getenv("NOTIFY_MAX_WORKERS", "4"))

    # Retry queue: delays in seconds
    RETRY_SWEEP_INTERVAL_SECONDS = 5
    RETRY_WORKER_EMBEDDED = _env_bool("RETRY_WORKER_EMBEDDED", "false")
    RETRY_BACKOFF_MULTIPLIER = 2
    RETRY_MAX_DELAY_SECONDS = 30
    EMAIL_MAX_RETRIES = 3
    EMAIL_INITIAL_DELAY_SECONDS = 5
    WHATSAPP_MAX_RETRIES = 5
    WHATSAPP_INITIAL_DELAY_SECONDS = 2

    # Basic app settings
    DEBUG = False
