# Overview: Flask API routes for user profiles, badges, leaderboard and role management.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import get_asserted_identity, require_auth, require_permission
from ..services import badge_service, content_service, user_service
from ..services.concurrency import RetryExhaustedError
from ..services.user_service import AuthError, UserNotFoundError
from ..validation import ValidationError, get_json_payload


users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.post("/bootstrap")
def bootstrap_route():
    """
    Create the caller's profile on first sign-in. Idempotent.

    The user id comes from the identity header, never from the body.

    Request body (all optional):
    {
        "display_name": "Ada",
        "email": "ada@example.com",
        "photo_url": "https://..."
    }
    """
    uid = get_asserted_identity()
    if not uid:
        return jsonify({"error": "Authentication required"}), 401

    try:
        data = get_json_payload(request)
        user, created = user_service.bootstrap_user_profile(
            uid,
            display_name=data.get("display_name"),
            email=data.get("email"),
            photo_url=data.get("photo_url"),
        )
        if created:
            current_app.logger.info("Bootstrapped profile for user %s", user.id)
        return jsonify({"user": user.to_dict(), "created": created}), 201 if created else 200
    except AuthError as e:
        return jsonify({"error": str(e)}), 401
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except RetryExhaustedError:
        return jsonify({"error": "Profile creation conflicted; please retry"}), 409
    except Exception:
        current_app.logger.exception("Failed to bootstrap user profile")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.current_user.to_dict()}), 200


@users_bp.get("/me/badges")
@require_auth
def my_badges_route():
    return jsonify({"items": badge_service.list_user_badges(g.current_user.id)}), 200


@users_bp.get("/me/enrollments")
@require_auth
def my_enrollments_route():
    enrollments = content_service.list_enrollments(g.current_user.id)
    return jsonify({"items": [e.to_dict() for e in enrollments]}), 200


@users_bp.get("/leaderboard")
@require_auth
def leaderboard_route():
    limit = request.args.get("limit", type=int) or current_app.config.get("LEADERBOARD_LIMIT", 50)
    users = user_service.get_leaderboard(limit=limit)
    return jsonify({
        "items": [
            {"rank": i + 1, "id": u.id, "display_name": u.display_name, "photo_url": u.photo_url, "xp": u.xp}
            for i, u in enumerate(users)
        ]
    }), 200


# =============================================================================
# ADMIN
# =============================================================================

@users_bp.get("")
@require_auth
@require_permission("MANAGE_USERS")
def list_users_route():
    users = user_service.list_users(role=request.args.get("role") or None)
    return jsonify({"items": [u.to_dict() for u in users]}), 200


@users_bp.get("/<uid>")
@require_auth
@require_permission("MANAGE_USERS")
def user_overview_route(uid: str):
    """Profile, enrollments, quiz attempts (newest first) and badges for one user."""
    try:
        return jsonify(user_service.get_user_overview(uid)), 200
    except UserNotFoundError as e:
        return jsonify({"error": str(e)}), 404


@users_bp.patch("/<uid>/role")
@require_auth
@require_permission("MANAGE_USERS")
def set_role_route(uid: str):
    """
    Request body:
    {
        "role": "student" | "admin" | "creator" | "accountant"
    }
    """
    try:
        data = get_json_payload(request)
        user = user_service.set_user_role(uid, data.get("role"))
        current_app.logger.info("User %s set role of %s to %s", g.current_user.id, uid, user.role)
        return jsonify({"user": user.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except UserNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except RetryExhaustedError:
        return jsonify({"error": "User changed concurrently; please retry"}), 409
    except Exception:
        current_app.logger.exception("Failed to set user role")
        return jsonify({"error": "Internal server error"}), 500
