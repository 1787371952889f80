"""
Rate limiter for the worker-facing API.

Workers poll /lease in a tight loop, so there are no default limits: only
endpoints that opt in with @limiter.limit(...) are throttled.
Storage comes from Config.RATELIMIT_STORAGE_URI (Redis in production,
memory for dev and tests).
"""

import logging
from flask import request
from flask_limiter import Limiter

logger = logging.getLogger(__name__)


def get_rate_limit_key():
    """
    Rate limit key - worker id header when sent, else remote_addr.

    Several workers often sit behind one NAT'd address.
    """
    worker_id = request.headers.get('X-Worker-ID')
    if worker_id:
        return f"worker:{worker_id}"
    return f"ip:{request.remote_addr}"


RATE_LIMITS = {
    # lease/report polling from the phone workers
    "worker": "600 per minute",
}

limiter = Limiter(
    key_func=get_rate_limit_key,
    default_limits=[],
    key_prefix="rate_limit",
    headers_enabled=True,
)


def init_limiter(app):
    """
    Bind the module-level limiter to the app.

    Called from create_app(); routes decorate with
    @limiter.limit(RATE_LIMITS["worker"]).
    """
    limiter.init_app(app)
    logger.info(
        "Rate limiter initialized with storage: %s",
        app.config.get('RATELIMIT_STORAGE_URI', 'memory://'),
    )
    return limiter
