# analytics_app/middleware/request_identity.py

import uuid

from flask import g, request

REQUEST_ID_HEADER = "X-Request-Id"
_MAX_REQUEST_ID_LENGTH = 128


def _incoming_request_id():
    value = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
    if not value or len(value) > _MAX_REQUEST_ID_LENGTH:
        return None
    return value


def init_request_identity_middleware(app):
    """Give every request a uuid that analytics events carry as ``request_uuid``"""

    @app.before_request
    def set_request_uuid():
        g.request_uuid = _incoming_request_id() or str(uuid.uuid4())

    @app.after_request
    def echo_request_uuid(response):
        request_uuid = getattr(g, "request_uuid", None)
        if request_uuid:
            response.headers[REQUEST_ID_HEADER] = request_uuid
        return response
