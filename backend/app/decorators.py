# Overview: Request and permission decorators for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app

from .extensions import db
from .models import User
from .permissions import role_has_permission


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user') and g.current_user is not None


def get_asserted_identity() -> str | None:
    """User id asserted by the upstream auth provider, if any."""
    header = current_app.config.get("AUTH_USER_HEADER", "X-Auth-User")
    value = request.headers.get(header, "").strip()
    return value or None


def require_auth(f):
    """
    Require an authenticated user with a bootstrapped profile.

    Sets the following Flask g attributes:
    - g.current_user: The User profile for the asserted identity

    Returns 401 if:
    - No identity header
    - Identity has no profile yet (client must call /api/users/bootstrap)
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        uid = get_asserted_identity()
        if not uid:
            return jsonify({"error": "Authentication required"}), 401

        user = db.session.get(User, uid)
        if not user:
            return jsonify({"error": "Unknown user; bootstrap the profile first"}), 401

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """Require the current user's role to grant permission_code."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            if not role_has_permission(g.current_user.role, permission_code):
                current_app.logger.info(
                    "Permission %s denied for user %s (%s) on %s",
                    permission_code, g.current_user.id, g.current_user.role, request.path,
                )
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": permission_code,
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
