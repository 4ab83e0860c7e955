import logging
import os

from flask import Flask

from .config import DEV_SECRET_KEY, get_config, missing_stripe_settings
from .extensions import cors, db
from .guard import register_route_guard
from .routes import register_routes


def create_app(config_object=None):
    app = Flask(__name__, instance_relative_config=True)

    if config_object:
        app.config.from_object(config_object)
    else:
        app.config.from_object(get_config(os.getenv("APP_ENV")))
        app.config.from_envvar("APP_SETTINGS", silent=True)

    if not app.debug and not app.testing:
        app.logger.setLevel(logging.INFO)

    if app.config.get("REQUIRE_SECRET_KEY") and app.config.get("SECRET_KEY") in (None, "", DEV_SECRET_KEY):
        raise RuntimeError("SECRET_KEY must be set to a private value in production")

    db.init_app(app)

    cors.init_app(
        app,
        origins=app.config.get("CORS_ORIGINS", "*"),
        supports_credentials=True,
        allow_headers=["Content-Type", "Authorization", "Stripe-Signature"],
        methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    )

    register_route_guard(app)
    register_routes(app)

    missing = missing_stripe_settings(app.config)
    if missing and not app.testing:
        app.logger.warning("Stripe settings missing, payments disabled: %s", ", ".join(missing))

    return app
