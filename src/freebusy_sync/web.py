"""
Operator web form.

Creates the Flask application using the app factory pattern. One page lists
users, sync configurations and recent runs; POSTs to the same page add users,
add configurations and toggle them on or off.
"""

import logging

from flask import Flask
from flask import flash
from flask import g
from flask import redirect
from flask import render_template
from flask import request
from flask import url_for

from freebusy_sync.config import Settings
from freebusy_sync.db import Database
from freebusy_sync.migrations import ensure_schema
from freebusy_sync.models import PROVIDER_TYPES
from freebusy_sync.models import SYNC_DIRECTIONS
from freebusy_sync.models import ValidationError
from freebusy_sync.runlog import RunLog
from freebusy_sync.store import ConfigurationStore

logger = logging.getLogger(__name__)

RECENT_RUNS = 20


def _get_db() -> Database:
    if "db" not in g:
        g.db = Database(g.settings.database_path)
        g.db.connect()
    return g.db


def _form_int(name: str) -> int:
    raw = request.form.get(name, "").strip()
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be a number, got {raw!r}") from None


def _add_user(store: ConfigurationStore) -> str:
    store.add_user(request.form.get("email", ""), request.form.get("display_name", ""))
    return "User added successfully!"


def _add_sync_config(store: ConfigurationStore) -> str:
    store.add_configuration(
        user_id=_form_int("user_id"),
        source_email=request.form.get("source_email", ""),
        target_email=request.form.get("target_email", ""),
        source_type=request.form.get("source_type", ""),
        target_type=request.form.get("target_type", ""),
        sync_direction=request.form.get("sync_direction", ""),
        sync_frequency_minutes=_form_int("sync_frequency_minutes"),
    )
    return "Sync configuration added successfully!"


def _toggle_sync_config(store: ConfigurationStore) -> str:
    config_id = _form_int("config_id")
    active = _form_int("is_active") == 1
    store.set_active(config_id, active)
    return f"Sync configuration {'enabled' if active else 'disabled'}."


_ACTIONS = {
    "add_user": _add_user,
    "add_sync_config": _add_sync_config,
    "toggle_sync_config": _toggle_sync_config,
}


def create_app(settings: Settings) -> Flask:
    """
    Application factory that creates and configures the Flask app.
    The schema is brought up to date before the first request.
    """
    app = Flask(__name__)
    app.config["SECRET_KEY"] = settings.web_secret_key

    with Database(settings.database_path) as db:
        ensure_schema(db)

    @app.before_request
    def _bind_settings():
        g.settings = settings

    @app.teardown_appcontext
    def _close_db(exc):
        db = g.pop("db", None)
        if db is not None:
            db.close()

    @app.route("/", methods=["GET"])
    def index() -> str:
        db = _get_db()
        store = ConfigurationStore(db)
        return render_template(
            "index.html",
            users=store.list_users(),
            configs=store.list_configurations_with_users(),
            logs=RunLog(db).recent(RECENT_RUNS),
            provider_types=PROVIDER_TYPES,
            directions=SYNC_DIRECTIONS,
        )

    @app.route("/", methods=["POST"])
    def submit():
        action = request.form.get("action", "")
        handler = _ACTIONS.get(action)
        if handler is None:
            flash(f"Unknown action: {action}", "error")
            return redirect(url_for("index"))

        try:
            message = handler(ConfigurationStore(_get_db()))
        except ValidationError as e:
            logger.warning(f"{action} rejected: {e}")
            flash(f"Error: {e}", "error")
        else:
            flash(message, "success")
        return redirect(url_for("index"))

    return app
