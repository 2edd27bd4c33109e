from functools import wraps
from flask import current_app, g, jsonify, request

from models import db
from models.user import User
from security.tokens import read_token


def _raw_token_from_request():
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip()
    cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "fulfillment_session")
    return request.cookies.get(cookie_name)


def load_current_user():
    user_id = read_token(_raw_token_from_request())
    user = db.session.get(User, user_id) if user_id else None
    g.user = user if user is not None and user.is_active else None

def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if getattr(g, "user", None) is None:
            return jsonify(error="Authentication required"), 401
        return fn(*args, **kwargs)
    return wrapper
