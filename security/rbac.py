from functools import wraps
from flask import g, jsonify

CLIENT = "CLIENT"
SERVICE_PROVIDER = "SERVICE_PROVIDER"
ADMIN = "ADMIN"

def has_role(role_name: str) -> bool:
    user = getattr(g, "user", None)
    if not user:
        return False
    return user.has_role(role_name)

def require_roles(*role_names: str):
    """
    Usage: @require_roles("SERVICE_PROVIDER")
    ADMIN passes every role check.
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = getattr(g, "user", None)
            if user is None:
                return jsonify(error="Authentication required"), 401

            user_roles = {r.name for r in user.roles}
            if ADMIN not in user_roles and not user_roles.intersection(set(role_names)):
                return jsonify(error="Forbidden"), 403

            return fn(*args, **kwargs)
        return wrapper
    return decorator
