import logging

from flask import Flask, jsonify
from flask_migrate import Migrate

from config import Config
from models import db
from routes import bookings_bp, health_bp, payments_bp, webhook_bp
from services import init_services
from services.retry_queue import RetryWorker
from utils.auth_context import load_current_user
from utils.errors import FulfillmentError

logger = logging.getLogger(__name__)


def _configure_logging(app):
    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.WARNING)


def create_app(config_overrides=None, gateway=None, email_sender=None, whatsapp_sender=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    _configure_logging(app)

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(bookings_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(webhook_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    fulfillment = init_services(app, gateway=gateway, email_sender=email_sender, whatsapp_sender=whatsapp_sender)

    @app.before_request
    def _load_user():
        load_current_user()

    @app.errorhandler(FulfillmentError)
    def _fulfillment_error(err):
        if err.status_code >= 500:
            logger.error(f"{err.code}: {err.message}")
        else:
            logger.info(f"{err.code}: {err.message}")
        return jsonify(err.as_dict()), err.status_code

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    if app.config.get("RETRY_WORKER_EMBEDDED"):
        worker = RetryWorker(app, fulfillment.retry_queue, app.config["RETRY_SWEEP_INTERVAL_SECONDS"])
        worker.start()
        app.extensions["retry_worker"] = worker

    return app

#-------------------------
import click
from models.user import User, Role
from services import get_fulfillment
from security.tokens import issue_token
from utils.seed import seed_plans, seed_roles

def register_cli(app):
    @app.cli.command("seed-plans")
    def seed_plans_command():
        """Create default roles, the unlimited plan and the unlock price setting."""
        seed_roles()
        plan = seed_plans()
        click.echo(f"Seeded roles and plan {plan.name} ({plan.price})")

    @app.cli.command("grant-role")
    @click.argument("email")
    @click.argument("role_name")
    def grant_role(email, role_name):
        """Give a user a role by email (bootstrap)."""
        user = User.query.filter_by(email=email.strip().lower()).first()
        if not user:
            click.echo("User not found")
            return

        role = Role.query.filter_by(name=role_name.upper()).first()
        if not role:
            role = Role(name=role_name.upper())
            db.session.add(role)
            db.session.commit()

        if role not in user.roles:
            user.roles.append(role)
            db.session.commit()

        click.echo(f"{user.email} granted {role.name}")

    @app.cli.command("issue-token")
    @click.argument("email")
    def issue_token_command(email):
        """Print an identity token for local testing."""
        user = User.query.filter_by(email=email.strip().lower()).first()
        if not user:
            click.echo("User not found")
            return
        click.echo(issue_token(user.id))

    @app.cli.command("expire-holds")
    def expire_holds():
        """Move PENDING bookings past their hold deadline to EXPIRED."""
        count = get_fulfillment().ledger.expire_holds()
        click.echo(f"Expired {count} booking(s)")

    @app.cli.command("sweep-retries")
    def sweep_retries():
        """Run one pass over due notification retries."""
        stats = get_fulfillment().retry_queue.sweep()
        click.echo(
            f"attempted={stats.attempted} succeeded={stats.succeeded} "
            f"rescheduled={stats.rescheduled} dropped={stats.dropped}"
        )

    @app.cli.command("retry-worker")
    @click.option("--interval", type=float, default=None, help="Seconds between sweeps.")
    def retry_worker(interval):
        """Sweep the retry queue forever (Ctrl+C to stop)."""
        worker = RetryWorker(app, get_fulfillment().retry_queue, interval or app.config["RETRY_SWEEP_INTERVAL_SECONDS"])
        try:
            worker.run_forever()
        except KeyboardInterrupt:
            click.echo("Retry worker stopped")

#-------------------------




if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
