import logging

from flask import Flask, request, g, jsonify
from config import Config
from routes import health_bp, auth_bp, bookings_bp, payouts_bp, notifications_bp, admin_bp, webhook_bp

from models import db
from flask_migrate import Migrate
from services.errors import BookingPaymentError
from services.stripe_gateway import StripeGateway
from utils.seed import seed_roles
from utils.auth_context import load_current_user
from security.csrf import require_csrf

logger = logging.getLogger(__name__)

CSRF_EXEMPT_PATHS = {
    "/auth/login",
    "/health",
    "/webhooks/stripe",
}


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(bookings_bp)
    app.register_blueprint(payouts_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(webhook_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    app.extensions["payment_gateway"] = StripeGateway.from_config(app.config)

    # Seed default roles at startup (idempotent)
    with app.app_context():
        if app.config.get("AUTO_CREATE_TABLES"):
            db.create_all()
        seed_roles()

    @app.before_request
    def _load_user():
        load_current_user()

    @app.before_request
    def _csrf_protect():
        # Only state-changing requests from cookie-authenticated callers
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            if request.path in CSRF_EXEMPT_PATHS:
                return None
            if getattr(g, "user", None) is not None:
                failure = require_csrf()
                if failure:
                    return failure

    @app.errorhandler(BookingPaymentError)
    def _booking_payment_error(exc):
        if exc.status_code >= 500:
            logger.error("%s: %s (%s)", exc.code, exc.message, exc.details)
        return jsonify(exc.to_dict()), exc.status_code

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    return app

#-------------------------
import click
from models.user import User, Role
from security.password import hash_password

def register_cli(app):
    @app.cli.command("create-user")
    @click.argument("email")
    @click.argument("password")
    @click.option("--role", "roles", multiple=True, default=["CUSTOMER"],
                  type=click.Choice(["CUSTOMER", "PROVIDER", "ADMIN"]))
    def create_user(email, password, roles):
        """Create a user with the given roles (bootstrap)."""
        email = email.strip().lower()
        if User.query.filter_by(email=email).first():
            click.echo("User already exists")
            return

        user = User(email=email, password_hash=hash_password(password))
        user.roles = Role.query.filter(Role.name.in_(roles)).all()
        db.session.add(user)
        db.session.commit()
        click.echo(f"{user.email} created with roles {', '.join(sorted(roles))}")

    @app.cli.command("set-stripe-account")
    @click.argument("email")
    @click.argument("account_id")
    def set_stripe_account(email, account_id):
        """Attach a Stripe Connect account to a provider so payouts can be sent."""
        user = User.query.filter_by(email=email.strip().lower()).first()
        if not user:
            click.echo("User not found")
            return
        if not account_id.startswith("acct_"):
            click.echo("Account id must look like acct_...")
            return

        user.stripe_account_id = account_id
        db.session.commit()
        click.echo(f"{user.email} payouts now go to {account_id}")

#-------------------------


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
