from decimal import Decimal

from flask import current_app

from models import db
from models.subscription import Plan
from models.system_setting import SystemSetting
from models.user import Role
from security.rbac import ADMIN, CLIENT, SERVICE_PROVIDER
from utils.settings import UNLOCK_PRICE_KEY

DEFAULT_ROLES = [CLIENT, SERVICE_PROVIDER, ADMIN]


def seed_roles():
    existing = {r.name for r in Role.query.all()}
    for name in DEFAULT_ROLES:
        if name not in existing:
            db.session.add(Role(name=name))
    db.session.commit()


def seed_plans():
    """Creates the unlimited-acceptance plan and the unlock price setting if missing."""
    name = current_app.config.get("UNLIMITED_PLAN_NAME", "Enterprise")
    plan = Plan.query.filter_by(name=name).first()
    if plan is None:
        plan = Plan(
            name=name,
            price=Decimal(current_app.config.get("SUBSCRIPTION_PRICE", "59.90")),
            unlimited_acceptance=True,
        )
        db.session.add(plan)

    if SystemSetting.query.filter_by(key=UNLOCK_PRICE_KEY).first() is None:
        db.session.add(SystemSetting(key=UNLOCK_PRICE_KEY, value=current_app.config.get("UNLOCK_PRICE_DEFAULT", "4.90")))

    db.session.commit()
    return plan
