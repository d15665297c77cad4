from __future__ import annotations

import logging

from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Raised by services and views; rendered as a JSON error body."""

    def __init__(self, status: int, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.message = message
        self.errors = errors or []

    def to_dict(self) -> dict:
        body: dict[str, object] = {"message": self.message}
        if self.errors:
            body["errors"] = self.errors
        return body


def bad_request(message: str, errors: list[str] | None = None) -> ApiError:
    return ApiError(400, message, errors)


def not_found(what: str) -> ApiError:
    return ApiError(404, f"{what} not found")


def validation_failed(errors: list[str]) -> ApiError:
    return ApiError(400, errors[0] if errors else "Invalid request", errors)


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ApiError)
    def _api_error(e: ApiError):  # type: ignore[no-redef]
        if e.status >= 500:
            logger.error("API error %s: %s (request_id=%s)", e.status, e.message, getattr(g, "request_id", None))
        return jsonify(e.to_dict()), e.status

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):  # type: ignore[no-redef]
        if e.code == 403:
            missing = getattr(g, "missing_permission", None)
            if missing:
                logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        if request.path.startswith("/api/") or request.is_json:
            return jsonify({"message": e.description or e.name}), e.code
        return e

    @app.errorhandler(Exception)
    def _unhandled(e: Exception):  # type: ignore[no-redef]
        if isinstance(e, HTTPException):
            return _http_error(e)
        # Ensure stack trace shows in logs.
        logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"message": "Internal server error"}), 500
