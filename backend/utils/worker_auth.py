"""
Worker API authentication.

When WORKER_API_TOKEN is configured, worker endpoints require
`Authorization: Bearer <token>`. When it is empty the endpoints are open
(local development).
"""
import hmac
import logging
from functools import wraps

from flask import current_app, request

logger = logging.getLogger(__name__)


def _bearer_token():
    header = request.headers.get('Authorization', '')
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer':
        return None
    return token.strip() or None


def require_worker_token(f):
    """
    Decorator to require the shared worker token.

    Returns a 401 error envelope when the token is missing or wrong.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        expected = current_app.config.get('WORKER_API_TOKEN') or ''
        if expected:
            token = _bearer_token()
            if token is None or not hmac.compare_digest(token, expected):
                from api.middleware.error_envelope import make_error_response
                logger.warning(f"Rejected worker call to {request.path} from {request.remote_addr}")
                return make_error_response("UNAUTHORIZED", "Valid worker token required")
        return f(*args, **kwargs)
    return decorated_function
