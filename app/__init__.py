from __future__ import annotations

import atexit
import contextlib
import dataclasses
import logging
import signal
import threading
from typing import Any

from flask import Flask, request
from werkzeug.exceptions import HTTPException

from app.blueprints.api.automation import automation_api
from app.config import AppConfig, load_config, setup_logging
from app.extensions import init_extensions, socketio


def _apply_overrides(config: AppConfig, overrides: dict[str, Any]) -> AppConfig:
    """Return ``config`` with ``overrides`` applied; keys match field names case-insensitively."""
    names = {f.name.lower(): f.name for f in dataclasses.fields(config)}
    changes = {}
    for key, value in overrides.items():
        name = names.get(key.lower())
        if name is None:
            raise KeyError(f"Unknown config key: {key}")
        changes[name] = value
    # replace() re-runs __post_init__ validation
    return dataclasses.replace(config, **changes)


def create_app(config_overrides: dict[str, Any] | None = None, *, start_runtime: bool = False) -> Flask:
    config = load_config()
    if config_overrides:
        config = _apply_overrides(config, config_overrides)

    # Configure logging early so MQTT connect and store loading are visible in growbox.log
    setup_logging(debug=config.DEBUG, log_dir=config.log_dir)

    flask_app = Flask(__name__)
    flask_app.config.update(config.as_flask_config())
    flask_app.config["MAX_CONTENT_LENGTH"] = 1024 * 1024

    # Socket.IO must be initialized before the container builds its broadcaster
    init_extensions(flask_app, config.socketio_cors_origins, config.socketio_transports)

    from app.services.container import ServiceContainer

    container = ServiceContainer.build(config, socketio=socketio, start_runtime=start_runtime)
    flask_app.config["CONTAINER"] = container

    # ── Graceful shutdown handlers ──────────────────────────────────
    _shutdown_lock = threading.Lock()
    _shutdown_done = False

    def _graceful_shutdown(reason: str = "unknown") -> None:
        nonlocal _shutdown_done
        with _shutdown_lock:
            if _shutdown_done:
                return
            _shutdown_done = True
        logging.info("Graceful shutdown initiated (%s)", reason)
        try:
            container.shutdown()
        except Exception as exc:
            logging.warning("Error during graceful shutdown: %s", exc)

    def _signal_handler(signum: int, _frame: object) -> None:
        sig_name = signal.Signals(signum).name
        logging.info("Received %s, shutting down", sig_name)
        _graceful_shutdown(sig_name)
        raise SystemExit(0)

    flask_app.extensions["growbox_shutdown"] = _graceful_shutdown

    if start_runtime:
        atexit.register(_graceful_shutdown, "atexit")

        # SIGINT=Ctrl-C, SIGTERM=systemd stop; only possible from the main thread
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(OSError, ValueError):
                signal.signal(sig, _signal_handler)

    # Unhandled exceptions on /api/ answer with the JSON envelope instead of an HTML page
    @flask_app.errorhandler(Exception)
    def _handle_unhandled(exc):
        from app.domain.exceptions import GrowBoxError
        from app.utils.http import error_response, safe_error

        if isinstance(exc, HTTPException):
            if not request.path.startswith("/api/"):
                return exc
            status = int(exc.code or 500)
            if status >= 500:
                return safe_error(exc, status, context="http-exception")
            return error_response(exc.description or "Request failed", status)

        if isinstance(exc, GrowBoxError):
            status = exc.http_status
            if status >= 500:
                return safe_error(exc, status, context=type(exc).__name__)
            return error_response(str(exc) or "Request failed", status)

        return safe_error(exc, 500, context="unhandled")

    flask_app.register_blueprint(automation_api, url_prefix="/api/automation")

    # Register Socket.IO event handlers (must be after socketio init)
    from app.socketio import register_handlers

    register_handlers()

    for bp_name in flask_app.blueprints:
        logging.info(" Registered blueprint: %s", bp_name)

    logging.getLogger(__name__).info("GrowBox automation initialized (runtime started=%s)", start_runtime)
    return flask_app


__all__ = ["create_app", "socketio"]
