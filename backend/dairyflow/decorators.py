# Overview: Request and permission decorators for API routes.

from functools import wraps

from flask import current_app, g, jsonify, request

from .permissions import role_has_permission, validate_permission_code
from .services import session_service


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require authentication.

    Sets g.current_user (the User) and g.auth_token (the plaintext bearer
    token, for logout). Returns 401 on a missing, invalid, expired or revoked
    token and on deactivated accounts.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if token is None:
            return jsonify({"error": "Authentication required"}), 401

        user = session_service.validate_session(token)
        if user is None:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = user
        g.auth_token = token
        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """
    Require a specific permission from the static role policy.

    Must be stacked below @require_auth.
    """
    if not validate_permission_code(permission_code):
        raise ValueError(f"unknown permission code: {permission_code}")

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = getattr(g, "current_user", None)
            if user is None:
                return jsonify({"error": "Authentication required"}), 401

            if not role_has_permission(user.role, permission_code):
                current_app.logger.warning(
                    "Permission denied: user %s (%s) lacks %s for %s %s",
                    user.id,
                    user.role,
                    permission_code,
                    request.method,
                    request.path,
                )
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": permission_code,
                }), 403

            return f(*args, **kwargs)

        return decorated_function

    return decorator
