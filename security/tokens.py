import logging

from flask import current_app
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

logger = logging.getLogger(__name__)

_SALT = "fulfillment-auth"


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=_SALT)


def issue_token(user_id: int) -> str:
    """
    Mint an identity token. In production the auth service owns this step and
    shares SECRET_KEY with us; it is used here by the CLI and tests.
    """
    return _serializer().dumps({"user_id": user_id})


def read_token(raw_token: str):
    """Returns the user id carried by a valid token, or None."""
    if not raw_token:
        return None
    max_age = current_app.config.get("AUTH_TOKEN_MAX_AGE_SECONDS", 8 * 60 * 60)
    try:
        data = _serializer().loads(raw_token, max_age=max_age)
    except SignatureExpired:
        logger.info("Auth token expired")
        return None
    except BadSignature:
        logger.warning("Invalid auth token signature")
        return None
    user_id = data.get("user_id") if isinstance(data, dict) else None
    return int(user_id) if user_id is not None else None
