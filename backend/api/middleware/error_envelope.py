"""
Error envelope middleware - Standardize all error responses.

Every error leaves the API as:
{
    "error": {
        "code": "VALIDATION_ERROR",
        "message": "leaseId: Field required",
        "requestId": "uuid"
    }
}
"""

import logging
from flask import Flask, jsonify, g
from pydantic import ValidationError
from werkzeug.exceptions import HTTPException


logger = logging.getLogger('api.middleware.error')


ERROR_CODES = {
    "BAD_REQUEST": 400,
    "VALIDATION_ERROR": 400,
    "UNAUTHORIZED": 401,
    "NOT_FOUND": 404,
    "METHOD_NOT_ALLOWED": 405,
    "TOO_MANY_REQUESTS": 429,
    "INTERNAL_ERROR": 500,
    "SERVICE_UNAVAILABLE": 503,
}


def make_error_response(code: str, message: str, status_code: int = None, details: list = None):
    """
    Create a standardized error response.

    Returns:
        Tuple of (response, status_code)
    """
    request_id = getattr(g, 'request_id', None)
    if status_code is None:
        status_code = ERROR_CODES.get(code, 500)

    error = {
        "error": {
            "code": code,
            "message": message,
            "requestId": request_id,
        }
    }
    if details:
        error["error"]["details"] = details

    response = jsonify(error)
    if request_id:
        response.headers['X-Request-ID'] = request_id
    return response, status_code


def _describe_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        loc = '.'.join(str(p) for p in item.get('loc', ())) or 'body'
        parts.append(f"{loc}: {item.get('msg')}")
    return '; '.join(parts)


def setup_error_handlers(app: Flask) -> None:
    """
    Set up standardized error handlers on Flask app.

    Handles:
    - pydantic ValidationError from request bodies (400)
    - HTTP exceptions (400, 404, 429, ...)
    - Unhandled Python exceptions (500)
    """

    @app.errorhandler(ValidationError)
    def handle_validation_error(error):
        return make_error_response(
            "VALIDATION_ERROR",
            _describe_validation_error(error),
            details=[
                {"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")}
                for e in error.errors()
            ],
        )

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        # "Too Many Requests" -> "TOO_MANY_REQUESTS"
        code = error.name.upper().replace(' ', '_')
        return make_error_response(code, error.description, status_code=error.code)

    @app.errorhandler(Exception)
    def handle_generic_error(error):
        request_id = getattr(g, 'request_id', None)
        logger.exception(
            f"Unhandled error: {error}",
            extra={
                "event": "unhandled_error",
                "request_id": request_id,
                "error_type": type(error).__name__,
            }
        )
        return make_error_response("INTERNAL_ERROR", "An unexpected error occurred")
