from decimal import Decimal, InvalidOperation

from flask import current_app

from models.system_setting import SystemSetting

UNLOCK_PRICE_KEY = "PLAN_UNLOCK_PRICE"


def get_setting(key: str, default=None):
    row = SystemSetting.query.filter_by(key=key).first()
    if not row or row.value in (None, ""):
        return default
    return row.value


def get_unlock_price() -> Decimal:
    default = current_app.config.get("UNLOCK_PRICE_DEFAULT", "4.90")
    raw = get_setting(UNLOCK_PRICE_KEY, default)
    try:
        price = Decimal(str(raw))
    except InvalidOperation:
        price = Decimal(str(default))
    if price <= 0:
        price = Decimal(str(default))
    return price.quantize(Decimal("0.01"))
