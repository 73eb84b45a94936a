"""Centralized exception hierarchy for the GrowBox automation engine.

All domain and service exceptions inherit from :class:`GrowBoxError` so that
a tick boundary can catch a single base class as its safety net, yet still
match on specific subclasses where narrower handling is appropriate.

Blueprint-level error handling (see ``app/utils/http.safe_route``) maps these
to the correct HTTP status codes automatically.

Hierarchy
---------
::

    GrowBoxError (base: maps to 500)
    ├── ValidationError              (400: bad input from caller)
    │   └── ValidationFailure        (400: malformed rule / condition / action)
    ├── NotFoundError                (404: entity does not exist)
    ├── ServiceError                 (500: business-logic failure)
    │   ├── PersistenceFailure       (500: rule/config store write or read failed)
    │   └── ExternalServiceError     (502: webhook / network)
    ├── DeviceError                  (503: hardware communication)
    │   └── ActuatorDispatchFailure  (503: command send failed or timed out)
    └── ConfigurationError           (500: missing / invalid config)

A safety trip is deliberately absent: it is a control-flow outcome reported
through ``SafetyResult.tripped``, never raised.
"""

from __future__ import annotations


class GrowBoxError(Exception):
    """Base exception for all GrowBox application errors.

    Parameters
    ----------
    message:
        Human-readable description (logged server-side, **not** leaked to
        the HTTP client unless the exception class opts in).
    detail:
        Optional machine-readable context dict attached to the error for
        structured logging.
    """

    http_status: int = 500

    def __init__(self, message: str = "", *, detail: dict | None = None) -> None:
        super().__init__(message)
        self.detail = detail or {}


# ── Client errors (4xx) ──────────────────────────────────────────────


class ValidationError(GrowBoxError):
    """Caller supplied invalid or incomplete input (HTTP 400)."""

    http_status: int = 400


class ValidationFailure(ValidationError):
    """A persisted rule, condition or action could not be interpreted.

    The rule scheduler skips the offending rule and keeps evaluating the rest.
    """


class NotFoundError(GrowBoxError):
    """Requested entity does not exist (HTTP 404)."""

    http_status: int = 404


# ── Server errors (5xx) ──────────────────────────────────────────────


class ServiceError(GrowBoxError):
    """Business-logic failure in a service method (HTTP 500)."""

    http_status: int = 500


class PersistenceFailure(ServiceError):
    """Rule or configuration store call failed or timed out (HTTP 500).

    In-memory state stays authoritative until the next successful save.
    """


class ExternalServiceError(ServiceError):
    """Third-party or network dependency failure (HTTP 502)."""

    http_status: int = 502


class DeviceError(GrowBoxError):
    """Hardware communication or device-protocol failure (HTTP 503)."""

    http_status: int = 503


class ActuatorDispatchFailure(DeviceError):
    """Actuator channel send failed or exceeded its time budget.

    Never retried within the same tick.
    """


class ConfigurationError(GrowBoxError):
    """Missing or invalid application configuration (HTTP 500)."""

    http_status: int = 500
