import logging

from flask import Flask

from schoollib.config import Config
from schoollib.extensions import db, migrate


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)
    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # 1) db first (db.session needs it)
    db.init_app(app)

    # 2) models must be imported before create_all / migrations see them
    from schoollib.models import book, category, fine_payment, setting, student, transaction, user  # noqa: F401

    # 3) other extensions
    migrate.init_app(app, db)

    # 4) CLI
    from schoollib.commands import register_commands
    register_commands(app)

    # daily overdue sweep
    if app.config.get("SCHEDULER_ENABLED"):
        from schoollib.tasks.scheduler import start_scheduler
        start_scheduler(app)

    return app
