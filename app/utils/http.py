from __future__ import annotations

import functools
import logging
from typing import Any, Callable, TypeVar

from flask import Response, jsonify, request
from pydantic import BaseModel
from pydantic import ValidationError as SchemaValidationError

from app.utils.time import iso_now

_log = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# Messages returned for server-side failures; details stay in the log
_GENERIC_MESSAGES: dict[int, str] = {
    400: "Invalid request",
    404: "Resource not found",
    409: "Conflict",
    500: "An internal error occurred",
    502: "Upstream service unavailable",
    503: "Device unavailable",
}


def safe_error(exc: BaseException, status: int = 500, *, context: str = "") -> Response:
    """Log ``exc`` with its traceback and answer with a generic message.

    ``context`` is a short description of what the route was doing, e.g.
    ``"processing rules"``; it only goes to the server log.
    """
    _log.error("API error [%s] %s: %s", status, context, exc, exc_info=exc)
    message = _GENERIC_MESSAGES.get(status, _GENERIC_MESSAGES[500])
    return error_response(message, status)


def success_response(
    data: dict | list | None = None,
    status: int = 200,
    *,
    message: str | None = None,
) -> Response:
    payload: dict[str, Any] = {"ok": True, "data": data, "error": None}
    if message is not None:
        payload["message"] = message
    response = jsonify(payload)
    response.status_code = status
    return response


def error_response(
    message: str,
    status: int = 500,
    *,
    details: Any = None,
) -> Response:
    error: dict[str, Any] = {"message": message, "timestamp": iso_now()}
    if details is not None:
        error["details"] = details
    response = jsonify({"ok": False, "data": None, "error": error, "message": message})
    response.status_code = status
    return response


def parse_body(model: type[ModelT], *, allow_empty: bool = True) -> ModelT:
    """Validate the JSON request body against ``model``.

    A missing or non-JSON body counts as ``{}`` when ``allow_empty``.

    Raises:
        pydantic.ValidationError: the body does not match the schema
    """
    raw = request.get_json(silent=True)
    if raw is None and allow_empty:
        raw = {}
    return model.model_validate(raw)


# ---------------------------------------------------------------------------
# Route decorator
# ---------------------------------------------------------------------------


def safe_route(
    error_message: str = "An internal error occurred",
    *,
    error_status: int = 500,
) -> Callable:
    """Wrap a Flask view with the standard error envelope.

    * schema violations answer 400 with pydantic's error list;
    * :class:`~app.domain.exceptions.GrowBoxError` answers ``exc.http_status``,
      showing the message only for 4xx;
    * anything else is logged and answers ``error_status``.

    Usage::

        @automation_api.post("/rules/process")
        @safe_route("Failed to process rules")
        def process_rules():
            ...
    """
    from app.domain.exceptions import GrowBoxError

    def decorator(fn: Callable) -> Callable:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Response:
            try:
                return fn(*args, **kwargs)
            except SchemaValidationError as exc:
                return error_response(
                    "Invalid request",
                    400,
                    details=exc.errors(include_url=False, include_context=False),
                )
            except GrowBoxError as exc:
                status = exc.http_status
                if status >= 500:
                    return safe_error(exc, status, context=error_message)
                return error_response(str(exc) or error_message, status, details=exc.detail or None)
            except Exception as exc:
                return safe_error(exc, error_status, context=error_message)

        return wrapper

    return decorator
