from flask import Flask
from .config import CONFIGS, DevelopmentConfig
from .extensions import db, migrate, jwt, ma, cors
from .utils.exceptions import ServiceError
import logging
import os


def create_app(config_name=None):
    app = Flask(__name__, instance_relative_config=False)
    env = config_name or os.getenv("FLASK_ENV", "development")
    app.config.from_object(CONFIGS.get(env, DevelopmentConfig))

    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app.logger.setLevel(level)
    logging.getLogger("marketplace").setLevel(level)

    # initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    ma.init_app(app)
    origins = [o.strip() for o in app.config["CORS_ORIGINS"].split(",")]
    cors.init_app(
        app,
        resources={r"/api/*": {"origins": origins}},
        supports_credentials=True,
        allow_headers=["Content-Type", "Authorization", "X-Internal-Key"],
        methods=["GET", "POST", "PATCH", "OPTIONS"],
    )

    # models must be imported before migrations or create_all see them
    from marketplace.models import (  # noqa: F401
        user, seller_profile, order, wallet, wallet_transaction, admin_earning,
        withdrawal_request, reconciliation_item, settlement_event_log, notification,
    )

    # external collaborators; tests swap these in app.extensions
    from marketplace.services.payout_gateway import init_payout_gateway
    from marketplace.services.courier_service import init_courier_client
    init_payout_gateway(app)
    init_courier_client(app)

    # register blueprints
    from marketplace.routes.wallet_routes import bp as wallet_bp
    from marketplace.routes.withdrawal_routes import bp as withdrawal_bp
    from marketplace.routes.admin_payments_routes import bp as admin_payment_bp
    from marketplace.routes.payment_routes import bp as payment_bp
    from marketplace.routes.webhook_routes import bp as webhook_bp
    from marketplace.routes.shipment_routes import bp as shipment_bp
    from marketplace.routes.notification_routes import bp as notification_bp

    app.register_blueprint(wallet_bp)
    app.register_blueprint(withdrawal_bp)
    app.register_blueprint(admin_payment_bp)
    app.register_blueprint(payment_bp)
    app.register_blueprint(webhook_bp)
    app.register_blueprint(shipment_bp)
    app.register_blueprint(notification_bp)

    from marketplace.cli import settlement_cli
    app.cli.add_command(settlement_cli)

    # error handlers to match required error format
    from marketplace.utils.response_formatter import error_response, service_error_response

    @app.errorhandler(ServiceError)
    def service_error(e):
        if e.status >= 500:
            app.logger.error("%s: %s", e.code, e.message)
        return service_error_response(e)

    @app.errorhandler(400)
    def bad_request(e):
        return error_response("BAD_REQUEST", str(e), status=400)

    @app.errorhandler(401)
    def unauthorized(e):
        return error_response("UNAUTHORIZED", str(e), status=401)

    @app.errorhandler(404)
    def not_found(e):
        return error_response("NOT_FOUND", "Resource not found", status=404)

    @app.errorhandler(500)
    def server_error(e):
        return error_response("SERVER_ERROR", "Internal server error", status=500)

    return app
