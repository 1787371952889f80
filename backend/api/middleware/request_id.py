"""
Request ID middleware - Inject X-Request-ID for request correlation.

Workers may send their own X-Request-ID so a lease and its report can be
traced across both sides; otherwise one is generated.
"""

import re
import uuid
from flask import Flask, request, g

# Accept caller ids only if they look like ids (no header injection, bounded length)
_VALID_REQUEST_ID = re.compile(r'^[A-Za-z0-9._:-]{1,128}$')


def setup_request_id_middleware(app: Flask) -> None:
    """
    Set up request ID middleware on Flask app.

    Injects X-Request-ID into g.request_id and the response headers.
    """

    @app.before_request
    def inject_request_id():
        incoming = request.headers.get('X-Request-ID', '')
        g.request_id = incoming if _VALID_REQUEST_ID.match(incoming) else str(uuid.uuid4())

    @app.after_request
    def add_request_id_header(response):
        request_id = getattr(g, 'request_id', None)
        if request_id:
            response.headers['X-Request-ID'] = request_id
        return response
