# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service


def require_auth(f):
    """
    Resolve the acting user from the bearer token.

    Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.branch_id: The user's home branch (may be None)
    - g.session_context: The full SessionContext object

    Returns 401 if the header is missing, or the token is invalid, expired,
    revoked, or belongs to a deactivated user.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required", "kind": "authorization_error"}), 401

        token = auth_header.split(" ", 1)[1]
        context = session_service.validate_session(token)

        if not context:
            return jsonify({"error": "Invalid or expired token", "kind": "authorization_error"}), 401

        g.current_user = context.user
        g.branch_id = context.branch_id
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function
