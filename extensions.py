"""Request-scoped resources shared by the Flask blueprints."""

from flask import current_app, g

from config_manager import AppConfig, TokenCipher
from database import OmniLensDatabase


def get_app_config() -> AppConfig:
    return current_app.config["APP_CONFIG"]


def get_cipher() -> TokenCipher:
    return current_app.extensions["omnilens_cipher"]


def get_db() -> OmniLensDatabase:
    """Opens the request's database connection on first use."""
    if "db" not in g:
        g.db = OmniLensDatabase(get_app_config().database_path)
        g.db.connect()
    return g.db


def close_db(error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_app(app):
    config: AppConfig = app.config["APP_CONFIG"]
    app.extensions["omnilens_cipher"] = TokenCipher(config.secret_key)
    app.teardown_appcontext(close_db)
