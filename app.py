import logging

import click
from flask import Flask
from flask_migrate import Migrate

from billing.sessions import downgrade_recurring, normalize_date_string, upgrade_recurring
from billing.stripe_gateway import configure_stripe
from config import Config
from models import db
from models.appointment import Appointment
from models.user import User, Role
from routes import health_bp, auth_bp, appointments_bp, refunds_bp, payments_bp, webhook_bp
from security.csrf import csrf_protect
from security.rbac import ADMIN
from security.session import load_current_user
from utils.audit import log_event


def configure_logging(app):
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app.logger.setLevel(level)


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)
    configure_logging(app)

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(appointments_bp)
    app.register_blueprint(refunds_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(webhook_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    configure_stripe(app)

    # Default roles at startup (idempotent); tests create tables first
    if not app.config.get("TESTING"):
        with app.app_context():
            Role.ensure_defaults()

    # order matters: CSRF is only enforced once the user is known
    app.before_request(load_current_user)
    app.before_request(csrf_protect)

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

def register_cli(app):
    @app.cli.command("make-admin")
    @click.argument("email")
    def make_admin(email):
        """Promote a user to ADMIN by email (bootstrap)."""
        user = User.by_email(email)
        if not user:
            click.echo("User not found")
            return

        if user.grant(ADMIN):
            db.session.commit()
            log_event("ROLE_GRANTED", entity="user", entity_id=user.id, metadata={"role": ADMIN})

        click.echo(f"{user.email} promoted to ADMIN")

    @app.cli.command("migrate-sessions")
    @click.option("--rollback", is_flag=True, help="Convert structured sessions back to bare date strings.")
    def migrate_sessions(rollback):
        """Upgrade legacy `recurring` entries to structured session objects."""
        rows = Appointment.query.filter(Appointment.recurring.isnot(None)).all()
        found = updated = converted = skipped = 0

        for appt in rows:
            entries = appt.recurring or []
            if not entries:
                continue
            found += 1

            if rollback:
                appt.recurring = downgrade_recurring(entries)
                updated += 1
                continue

            upgraded = []
            for entry, row in zip(entries, upgrade_recurring(entries)):
                date = normalize_date_string(row["date"])
                if date is None:
                    # stays in place so later session ids keep their index
                    if row["date"] is not None:
                        click.echo(f"appointment {appt.id}: leaving invalid date {row['date']!r} as is")
                        skipped += 1
                    upgraded.append(row)
                    continue
                if not isinstance(entry, dict) or "date" not in entry:
                    converted += 1
                row["date"] = date
                upgraded.append(row)

            if upgraded != entries:
                appt.recurring = upgraded
                updated += 1

        db.session.commit()
        click.echo(
            f"Updated {updated}/{found} appointments "
            f"(converted {converted} entries to objects, skipped {skipped} invalid entries)"
        )

#-------------------------


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
