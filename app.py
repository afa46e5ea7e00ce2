import logging

import click
from flask import Flask, jsonify
from flask_migrate import Migrate
from werkzeug.exceptions import HTTPException

from config import Config
from routes import health_bp, booking_bp, slots_bp, availability_bp

from models import db
from security.idempotency import purge_expired_keys
from services import init_arbiter, get_arbiter
from services.booking_types import SlotState


def create_app(config_object=Config, **overrides):
    app = Flask(__name__)
    app.config.from_object(config_object)
    app.config.update(overrides)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(booking_bp)
    app.register_blueprint(slots_bp)
    app.register_blueprint(availability_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    init_arbiter(app)

    @app.errorhandler(HTTPException)
    def _http_error(exc):
        return jsonify(error=exc.name), exc.code

    @app.errorhandler(Exception)
    def _unhandled(exc):
        app.logger.exception("unhandled error")
        db.session.rollback()
        return jsonify(error="Internal server error"), 500

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        # API only, nothing to render
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp


    register_cli(app)


    return app

#-------------------------
def register_cli(app):
    @app.cli.command("block-slot")
    @click.argument("slot_id", type=int)
    @click.option("--event-id", default=None, help="External calendar event causing the block.")
    def block_slot(slot_id, event_id):
        """Mark a slot BLOCKED (external calendar conflict)."""
        result = get_arbiter().block_slot(slot_id, event_id)
        if isinstance(result, SlotState):
            click.echo(f"Slot {slot_id} blocked")
        else:
            click.echo(f"Slot {slot_id} not blocked: {result.kind.value}", err=True)
            raise SystemExit(1)

    @app.cli.command("purge-idempotency-keys")
    def purge_idempotency_keys():
        """Delete expired Idempotency-Key records."""
        count = purge_expired_keys()
        click.echo(f"Purged {count} expired idempotency keys")

#-------------------------




if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
