# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

USER_ID_HEADER = "X-User-Id"


def require_user(f):
    """
    Require an acting user id from the upstream auth layer.

    The auth gateway authenticates the request and forwards the user id in the
    X-User-Id header. The id is opaque here: it is stored on documents and
    audit entries, nothing more. Sets g.current_user_id.

    Returns 401 when the header is missing or not a positive integer.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = (request.headers.get(USER_ID_HEADER) or "").strip()
        if not raw:
            return jsonify({"error": "Authentication required"}), 401
        if not raw.isdigit() or int(raw) <= 0:
            return jsonify({"error": f"Invalid {USER_ID_HEADER} header"}), 401

        g.current_user_id = int(raw)
        return f(*args, **kwargs)

    return decorated_function
