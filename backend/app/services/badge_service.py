# Overview: Service-layer operations for quiz results and badges; encapsulates business logic and database work.

"""
Quiz results & badges

WHY: A finished quiz is the single event that moves a student's
gamification state: the attempt is stored, XP and the daily streak advance,
and any score-threshold badge not yet held is awarded. All of it commits
together or not at all.

The earned-badge set is read once before the atomic body starts. Two
concurrent submissions for the same user can therefore both award the same
badge; that race is accepted, badges are never removed or downgraded.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from ..extensions import db
from ..models import QuizAttempt, User, UserBadge
from ..validation import ValidationError, require_text, round_half_up
from app.time_utils import calendar_days_between, utcnow, utctoday
from .concurrency import lock_for_update, run_with_retry


class QuizResultError(Exception):
    """Raised when a quiz result cannot be recorded."""
    pass


# =============================================================================
# BADGE DEFINITIONS
# =============================================================================

CRITERIA_QUIZ_SCORE = "quiz_score"

XP_PER_CORRECT_ANSWER = 10


@dataclass(frozen=True)
class Badge:
    id: str
    name: str
    description: str
    icon: str
    criteria_type: str
    threshold: int

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "icon": self.icon,
            "criteria": {"type": self.criteria_type, "score": self.threshold},
        }


# Evaluated in this order; awards come back in the same order
BADGE_DEFINITIONS: tuple[Badge, ...] = (
    Badge(
        id="topic_novice",
        name="Topic Novice",
        description="Scored 70% or higher on a quiz for the first time.",
        icon="🎓",
        criteria_type=CRITERIA_QUIZ_SCORE,
        threshold=70,
    ),
    Badge(
        id="topic_pro",
        name="Topic Pro",
        description="Scored 90% or higher on a quiz.",
        icon="🌟",
        criteria_type=CRITERIA_QUIZ_SCORE,
        threshold=90,
    ),
    Badge(
        id="topic_master",
        name="Topic Master",
        description="Scored a perfect 100% on a quiz!",
        icon="🏆",
        criteria_type=CRITERIA_QUIZ_SCORE,
        threshold=100,
    ),
)

BADGES_BY_ID = {b.id: b for b in BADGE_DEFINITIONS}


def evaluate_badges(earned_badge_ids, score: int) -> list[Badge]:
    """
    Badges newly satisfied by score that are not already earned.

    Pure: no reads, no writes.
    """
    earned = set(earned_badge_ids)
    awarded = []
    for badge in BADGE_DEFINITIONS:
        if badge.id in earned:
            continue
        if badge.criteria_type == CRITERIA_QUIZ_SCORE and score >= badge.threshold:
            awarded.append(badge)
    return awarded


def next_streak(current_streak: int, last_activity: date | None, today: date) -> int:
    """
    Daily study streak after activity on today.

    Same calendar day keeps the streak, the following day extends it, any
    longer gap (or no previous activity) restarts it at 1.
    """
    if last_activity is None:
        return 1
    days = calendar_days_between(last_activity, today)
    if days == 0:
        return current_streak
    if days == 1:
        return current_streak + 1
    if days > 1:
        return 1
    # Activity dated in the future relative to today: leave the streak alone
    return current_streak


@dataclass
class QuizResult:
    attempt: QuizAttempt
    xp_gained: int
    streak: int
    streak_continued: bool
    new_badges: list[Badge] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "attempt": self.attempt.to_dict(),
            "xp_gained": self.xp_gained,
            "streak": self.streak,
            "streak_continued": self.streak_continued,
            "new_badges": [b.to_dict() for b in self.new_badges],
        }


# =============================================================================
# QUIZ RESULT RECORDING
# =============================================================================

def record_quiz_attempt(
    user_id: str,
    course_id: int,
    topic_id: int,
    topic_name: str,
    correct_answers: float,
    total_questions: int,
    today: date | None = None,
) -> QuizResult:
    """
    Store a finished quiz and advance the user's gamification state.

    Args:
        correct_answers: May be fractional (partial credit on short answers)
        total_questions: Number of questions in the run, > 0
        today: Calendar day of the activity (defaults to the UTC date)

    Raises:
        ValidationError: Bad counts or blank topic name
        QuizResultError: User profile missing
    """
    topic_name = require_text(topic_name, "topic_name", 255)
    if isinstance(total_questions, bool) or not isinstance(total_questions, int) or total_questions <= 0:
        raise ValidationError("total_questions must be a positive integer")
    if isinstance(correct_answers, bool) or not isinstance(correct_answers, (int, float)):
        raise ValidationError("correct_answers must be a number")
    if correct_answers < 0 or correct_answers > total_questions:
        raise ValidationError("correct_answers must be between 0 and total_questions")

    score = round_half_up(correct_answers / total_questions * 100)
    xp_gained = round_half_up(correct_answers * XP_PER_CORRECT_ANSWER)
    activity_day = today or utctoday()

    # Read before the atomic body (see module docstring)
    earned_badge_ids = [
        row.badge_id for row in db.session.query(UserBadge.badge_id).filter_by(user_id=user_id)
    ]

    def _op():
        user = lock_for_update(db.session.query(User).filter_by(id=user_id)).first()
        if not user:
            raise QuizResultError(f"User {user_id} does not exist")

        attempt = QuizAttempt(
            user_id=user_id,
            course_id=course_id,
            topic_id=topic_id,
            topic_name=topic_name,
            score=score,
            correct_answers=float(correct_answers),
            total_questions=total_questions,
            attempted_at=utcnow(),
        )
        db.session.add(attempt)

        previous_streak = user.streak or 0
        streak = next_streak(previous_streak, user.last_activity_date, activity_day)
        user.xp = (user.xp or 0) + xp_gained
        user.streak = streak
        user.last_activity_date = activity_day

        new_badges = evaluate_badges(earned_badge_ids, score)
        for badge in new_badges:
            db.session.add(UserBadge(user_id=user_id, badge_id=badge.id, earned_date=utcnow()))

        db.session.commit()
        return QuizResult(
            attempt=attempt,
            xp_gained=xp_gained,
            streak=streak,
            streak_continued=streak > previous_streak and streak > 0,
            new_badges=new_badges,
        )

    return run_with_retry(_op)


def list_user_badges(user_id: str) -> list[dict]:
    """Earned badges with their definitions, oldest first."""
    rows = (
        db.session.query(UserBadge)
        .filter_by(user_id=user_id)
        .order_by(UserBadge.earned_date.asc(), UserBadge.id.asc())
        .all()
    )
    result = []
    for row in rows:
        data = row.to_dict()
        badge = BADGES_BY_ID.get(row.badge_id)
        data["badge"] = badge.to_dict() if badge else None
        result.append(data)
    return result


def list_quiz_attempts(user_id: str, course_id: int | None = None) -> list[QuizAttempt]:
    query = db.session.query(QuizAttempt).filter_by(user_id=user_id)
    if course_id is not None:
        query = query.filter_by(course_id=course_id)
    return query.order_by(QuizAttempt.attempted_at.desc(), QuizAttempt.id.desc()).all()
