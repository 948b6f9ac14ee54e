"""JSON error responses for the API."""
import logging

from flask import current_app, request
from werkzeug.exceptions import HTTPException

from studio.errors import (
    DEFAULT_LOCALE,
    SUPPORTED_LOCALES,
    StudioError,
    ValidationError,
    classify_error,
)

logger = logging.getLogger(__name__)


def request_locale():
    return request.accept_languages.best_match(SUPPORTED_LOCALES, default=DEFAULT_LOCALE)


def error_response(exc):
    app_error = classify_error(exc, request_locale())
    body = {
        "error": {
            "type": app_error.type.value,
            "message": app_error.user_message,
            "retryable": app_error.retryable,
        }
    }
    if isinstance(exc, ValidationError) and exc.errors:
        body["error"]["fields"] = exc.errors
    # Raw provider text only for the development diagnostics panel
    if current_app.debug:
        body["error"]["detail"] = app_error.message
    return body, app_error.status_code


def register_error_handlers(app):
    @app.errorhandler(StudioError)
    def handle_studio_error(e):
        if e.status_code >= 500:
            logger.error("%s: %s", e.__class__.__name__, e.message)
        return error_response(e)

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return {
            "error": {"type": "HTTP", "message": e.description, "retryable": False}
        }, e.code

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        logger.exception("Unhandled error on %s", request.path)
        return error_response(e)
