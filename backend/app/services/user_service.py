# Overview: Service-layer operations for user profiles; encapsulates business logic and database work.

"""
User profiles

WHY: Sign-in happens at the external auth provider, which hands us a stable
user id plus display name, email and photo. On first sign-in a profile row
is bootstrapped from those fields; from then on the profile owns the role
and gamification state.
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import User
from ..permissions import VALID_ROLES, ROLE_STUDENT
from ..validation import ValidationError, optional_text, require_choice, require_text
from . import badge_service, content_service
from .concurrency import lock_for_update, run_with_retry


class AuthError(Exception):
    """No usable identity for the request (missing, unknown or malformed)."""
    pass


class UserNotFoundError(Exception):
    def __init__(self, user_id):
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


def bootstrap_user_profile(
    uid: str,
    display_name: str | None = None,
    email: str | None = None,
    photo_url: str | None = None,
) -> tuple[User, bool]:
    """
    Create the profile for a newly signed-in user. Idempotent.

    Existing profiles are returned untouched so a repeated sign-in never
    resets role, XP or streak.

    Returns:
        (user, created)
    """
    try:
        uid = require_text(uid, "uid", 128)
    except ValidationError as exc:
        raise AuthError(str(exc))
    display_name = optional_text(display_name, "display_name", 255) or "Anonymous"
    email = optional_text(email, "email", 255)
    photo_url = optional_text(photo_url, "photo_url", 512)

    def _op():
        existing = db.session.get(User, uid)
        if existing:
            return existing, False
        user = User(
            id=uid,
            display_name=display_name,
            email=email,
            photo_url=photo_url,
            role=ROLE_STUDENT,
            xp=0,
            streak=0,
        )
        db.session.add(user)
        db.session.commit()
        return user, True

    # Concurrent first sign-ins collide on the primary key; the retry sees the winner
    return run_with_retry(_op, retry_on=(IntegrityError,))


def get_user(uid: str) -> User:
    user = db.session.get(User, uid)
    if not user:
        raise UserNotFoundError(uid)
    return user


def list_users(role: str | None = None) -> list[User]:
    query = db.session.query(User)
    if role:
        query = query.filter_by(role=role)
    return query.order_by(User.display_name.asc(), User.id.asc()).all()


def set_user_role(uid: str, role: str) -> User:
    role = require_choice(role, "role", VALID_ROLES)

    def _op():
        user = lock_for_update(db.session.query(User).filter_by(id=uid)).first()
        if not user:
            raise UserNotFoundError(uid)
        user.role = role
        db.session.commit()
        return user

    return run_with_retry(_op)


def get_leaderboard(limit: int = 50) -> list[User]:
    """Users with any XP, highest first."""
    return (
        db.session.query(User)
        .filter(User.xp > 0)
        .order_by(User.xp.desc(), User.display_name.asc())
        .limit(max(1, limit))
        .all()
    )


def get_user_overview(uid: str) -> dict:
    """
    One user's profile with enrollments, quiz attempts (newest first) and
    earned badges, as shown on the admin student page.

    Raises:
        UserNotFoundError: No profile for uid
    """
    user = get_user(uid)
    return {
        "user": user.to_dict(),
        "enrollments": [e.to_dict() for e in content_service.list_enrollments(uid)],
        "quiz_attempts": [a.to_dict() for a in badge_service.list_quiz_attempts(uid)],
        "badges": badge_service.list_user_badges(uid),
    }
