# backend/localpos/__init__.py
from __future__ import annotations

from flask import Flask

from .config import Config


def create_app(config_object=None) -> Flask:
    """
    Build the application and bring the store to Ready.

    `config_object` may be a config class/object or a mapping of overrides.
    Raises EngineInitError / CorruptSnapshotError when no usable store can be
    produced; that is the only failure that halts start-up.
    """
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if isinstance(config_object, dict):
        app.config.update(config_object)
    elif config_object is not None:
        app.config.from_object(config_object)

    # Import models so create_all sees every table
    from . import models  # noqa: F401
    from .services import session_service, store_service

    # Initialize extensions
    manager = store_service.init_app(app)
    session_service.init_app(app)

    with app.app_context():
        store_service.initialize()
        session_service.restore_session()

    if app.config.get("AUTOSAVE_ENABLED", True):
        manager.start_autosave(app.config["AUTOSAVE_INTERVAL_SECONDS"])

    return app


def shutdown(app: Flask) -> None:
    """Stop autosave and write a final durability snapshot."""
    from .services import store_service

    manager = app.extensions[store_service.EXTENSION_KEY]
    manager.stop_autosave()
    manager.save(reason="shutdown")
