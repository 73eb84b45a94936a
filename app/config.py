"""
Configuration for the GrowBox Automation Engine
===============================================
Main application runtime settings read from ``GROWBOX_*`` environment
variables, with defaults that suit a Raspberry Pi next to the grow tent.
Setups the logging configuration as well.
"""

import os
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any

from app.domain.exceptions import ConfigurationError


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "t", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer.") from None


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be a number.") from None


@dataclass
class AppConfig:
    """Runtime configuration loaded from environment variables."""

    environment: str = field(default_factory=lambda: os.getenv("GROWBOX_ENV", "development"))
    secret_key: str = field(default_factory=lambda: os.getenv("GROWBOX_SECRET_KEY", "GrowBoxDevSecretKey"))
    database_path: str = field(default_factory=lambda: os.getenv("GROWBOX_DATABASE_PATH", "database/growbox.db"))

    enable_mqtt: bool = field(default_factory=lambda: _env_bool("GROWBOX_ENABLE_MQTT", True))
    mqtt_broker_host: str = field(default_factory=lambda: os.getenv("GROWBOX_MQTT_HOST", "localhost"))
    mqtt_broker_port: int = field(default_factory=lambda: _env_int("GROWBOX_MQTT_PORT", 1883))
    mqtt_topic_prefix: str = field(default_factory=lambda: os.getenv("GROWBOX_MQTT_TOPIC_PREFIX", "growmonitor"))
    mqtt_client_id: str = field(default_factory=lambda: os.getenv("GROWBOX_MQTT_CLIENT_ID", ""))
    socketio_cors_origins: str = field(default_factory=lambda: os.getenv("GROWBOX_SOCKETIO_CORS", "*"))
    # Polling only by default; Werkzeug cannot upgrade to websocket reliably
    socketio_transports: str = field(default_factory=lambda: os.getenv("GROWBOX_SOCKETIO_TRANSPORTS", "polling"))

    # Alerts
    alert_webhook_url: str = field(default_factory=lambda: os.getenv("GROWBOX_ALERT_WEBHOOK_URL", ""))
    alert_queue_size: int = field(default_factory=lambda: _env_int("GROWBOX_ALERT_QUEUE_SIZE", 100))
    alert_timeout_seconds: float = field(default_factory=lambda: _env_float("GROWBOX_ALERT_TIMEOUT", 5.0))

    # Automation runtime
    rule_check_interval_seconds: float = field(
        default_factory=lambda: _env_float("GROWBOX_RULE_CHECK_INTERVAL", 5.0)
    )
    sample_queue_size: int = field(default_factory=lambda: _env_int("GROWBOX_SAMPLE_QUEUE_SIZE", 50))
    command_timeout_seconds: float = field(default_factory=lambda: _env_float("GROWBOX_COMMAND_TIMEOUT", 5.0))
    persistence_timeout_seconds: float = field(
        default_factory=lambda: _env_float("GROWBOX_PERSISTENCE_TIMEOUT", 5.0)
    )
    max_delay_seconds: float = field(default_factory=lambda: _env_float("GROWBOX_MAX_DELAY_SECONDS", 300.0))
    timezone: str = field(default_factory=lambda: os.getenv("GROWBOX_TIMEZONE", ""))
    start_engine: bool = field(default_factory=lambda: _env_bool("GROWBOX_START_ENGINE", True))

    DEBUG: bool = field(default_factory=lambda: _env_bool("GROWBOX_DEBUG", False))
    log_dir: str = field(default_factory=lambda: os.getenv("GROWBOX_LOG_DIR", "logs"))

    # Default insecure secret key - used only for detection
    _DEFAULT_SECRET_KEY: str = field(default="GrowBoxDevSecretKey", init=False, repr=False)

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        # SECURITY: Fail fast if using default secret key in production
        if self.environment == "production" and self.secret_key == self._DEFAULT_SECRET_KEY:
            raise ConfigurationError(
                "Cannot use default secret key in production! Set GROWBOX_SECRET_KEY to a secure random value."
            )
        for name in (
            "rule_check_interval_seconds",
            "command_timeout_seconds",
            "persistence_timeout_seconds",
            "alert_timeout_seconds",
        ):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")
        if self.sample_queue_size < 1 or self.alert_queue_size < 1:
            raise ConfigurationError("Queue sizes must be at least 1")
        if self.max_delay_seconds < 0:
            raise ConfigurationError("max_delay_seconds must not be negative")

    def as_flask_config(self) -> dict[str, Any]:
        """Render configuration values for Flask application."""
        return {
            "ENV": self.environment,
            "SECRET_KEY": self.secret_key,
            "DATABASE_PATH": self.database_path,
            "MQTT_BROKER_HOST": self.mqtt_broker_host,
            "MQTT_BROKER_PORT": self.mqtt_broker_port,
            "SOCKETIO_CORS_ALLOWED_ORIGINS": self.socketio_cors_origins,
            "DEBUG": self.DEBUG,
        }


# ==================== CONFIGURATION VALIDATION ====================


def validate_config(config: AppConfig) -> list[str]:
    """
    Check settings that are legal but probably wrong.

    Args:
        config: AppConfig instance

    Returns:
        List of warning messages (empty if all valid)
    """
    warnings = []

    if config.rule_check_interval_seconds < 1:
        warnings.append(
            f"Rule check interval ({config.rule_check_interval_seconds}s) is very short. "
            "Recommended: 5s on a Raspberry Pi"
        )

    if config.command_timeout_seconds > config.rule_check_interval_seconds:
        warnings.append(
            "Command timeout exceeds the rule check interval; a stalled broker can make passes overlap their period"
        )

    if config.enable_mqtt and not config.mqtt_topic_prefix.strip("/"):
        warnings.append("MQTT topic prefix is empty; commands would go to '/command'")

    if not config.alert_webhook_url:
        warnings.append("No alert webhook configured; alerts are only logged")

    if config.timezone:
        from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

        try:
            ZoneInfo(config.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            warnings.append(f"Unknown timezone {config.timezone!r}; the host zone will be used")

    return warnings


def setup_logging(debug: bool = False, log_dir: str = "logs") -> None:
    """Setup logging configuration."""
    import logging
    import sys
    from logging.handlers import RotatingFileHandler

    log_level = logging.DEBUG if debug else logging.INFO

    # Root logger
    root = logging.getLogger()
    root.setLevel(log_level)

    # Keep existing handlers but avoid adding duplicates when create_app is called multiple times
    has_console = any(getattr(h, "name", "") == "growbox_console" for h in root.handlers)
    has_file = any(getattr(h, "name", "") == "growbox_file" for h in root.handlers)
    added_handler = False

    # Console handler (force UTF-8 to avoid UnicodeEncodeError on Windows terminals)
    stream = sys.stdout
    with suppress(AttributeError, ValueError):
        stream.reconfigure(encoding="utf-8", errors="replace")
    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    if not has_console:
        console_handler = logging.StreamHandler(stream=stream)
        console_handler.name = "growbox_console"
        console_handler.setLevel(log_level)
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)
        added_handler = True

    # File handler
    if not has_file:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, "growbox.log"),
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.name = "growbox_file"
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
        added_handler = True

    # Ensure handler levels follow the desired log level
    for handler in root.handlers:
        if getattr(handler, "name", "") in {"growbox_console", "growbox_file"}:
            handler.setLevel(log_level)

    # MQTT traffic gets its own file so it cannot flood the main log
    mqtt_logger = logging.getLogger("growbox.mqtt")
    if not any(getattr(h, "name", "") == "growbox_mqtt_file" for h in mqtt_logger.handlers):
        os.makedirs(log_dir, exist_ok=True)
        mqtt_handler = RotatingFileHandler(
            os.path.join(log_dir, "devices_mqtt.log"),
            maxBytes=10 * 1024 * 1024,  # 10MB max per file
            backupCount=3,
            encoding="utf-8",
        )
        mqtt_handler.name = "growbox_mqtt_file"
        mqtt_handler.setFormatter(logging.Formatter("%(asctime)s - %(levelname)s - %(message)s"))
        mqtt_logger.addHandler(mqtt_handler)
        mqtt_logger.setLevel(logging.DEBUG if debug else logging.INFO)
        mqtt_logger.propagate = False  # Don't duplicate to root logger

    if added_handler:
        root.info(f"Logging initialized at level: {logging.getLevelName(log_level)}")

    if _env_bool("GROWBOX_SILENCE_WERKZEUG", True):
        logging.getLogger("werkzeug").setLevel(logging.WARNING)

    # Silence SocketIO/EngineIO polling logs to reduce I/O on Raspberry Pi
    if _env_bool("GROWBOX_SILENCE_SOCKETIO", True):
        logging.getLogger("socketio").setLevel(logging.WARNING)
        logging.getLogger("engineio").setLevel(logging.WARNING)


def load_config() -> AppConfig:
    """Helper for callers to load and validate configuration."""
    import logging

    config = AppConfig()
    logger = logging.getLogger("config_loader")
    for warning in validate_config(config):
        logger.warning("Config: %s", warning)
    return config
