from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z, to_iso_date


class User(db.Model):
    """
    User profile keyed by the auth provider's stable id.

    Credentials never live here; sign-in is delegated upstream. The profile
    carries role and gamification state (xp, daily streak).
    """
    __tablename__ = "users"

    id = db.Column(db.String(128), primary_key=True)
    display_name = db.Column(db.String(255), nullable=False, default="Anonymous")
    email = db.Column(db.String(255), nullable=True, index=True)
    photo_url = db.Column(db.String(512), nullable=True)

    # student, admin, creator, accountant
    role = db.Column(db.String(16), nullable=False, default="student", index=True)

    xp = db.Column(db.Integer, nullable=False, default=0, index=True)
    streak = db.Column(db.Integer, nullable=False, default=0)
    last_activity_date = db.Column(db.Date, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<User id={self.id!r} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "email": self.email,
            "photo_url": self.photo_url,
            "role": self.role,
            "xp": self.xp,
            "streak": self.streak,
            "last_activity_date": to_iso_date(self.last_activity_date),
            "created_at": to_utc_z(self.created_at),
        }


class UserBadge(db.Model):
    """A badge earned by a user. Never removed or downgraded."""
    __tablename__ = "user_badges"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(128), db.ForeignKey("users.id"), nullable=False, index=True)
    badge_id = db.Column(db.String(64), nullable=False)
    earned_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "badge_id": self.badge_id,
            "earned_date": to_utc_z(self.earned_date),
        }


class QuizAttempt(db.Model):
    """One graded quiz run over a topic's questions."""
    __tablename__ = "quiz_attempts"
    __table_args__ = (
        db.Index("ix_quiz_attempts_user_course", "user_id", "course_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(128), db.ForeignKey("users.id"), nullable=False)
    course_id = db.Column(db.Integer, nullable=False)
    # The quiz of a topic is identified by the topic id
    topic_id = db.Column(db.Integer, nullable=False, index=True)
    topic_name = db.Column(db.String(255), nullable=False, default="")

    score = db.Column(db.Integer, nullable=False)  # percentage 0-100
    correct_answers = db.Column(db.Float, nullable=False)  # partial credit allowed
    total_questions = db.Column(db.Integer, nullable=False)
    attempted_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "course_id": self.course_id,
            "topic_id": self.topic_id,
            "topic_name": self.topic_name,
            "score": self.score,
            "correct_answers": self.correct_answers,
            "total_questions": self.total_questions,
            "attempted_at": to_utc_z(self.attempted_at),
        }


class FlashcardMastery(db.Model):
    """
    Per (user, flashcard) review state.

    learning -> mastered once correct_streak reaches the threshold; an
    incorrect review resets the streak to 0.
    """
    __tablename__ = "flashcard_mastery"
    __table_args__ = (
        db.UniqueConstraint("user_id", "flashcard_id", name="uq_flashcard_mastery_user_card"),
        db.Index("ix_flashcard_mastery_user_course", "user_id", "course_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(128), db.ForeignKey("users.id"), nullable=False)
    flashcard_id = db.Column(db.Integer, nullable=False)
    topic_id = db.Column(db.Integer, nullable=False)
    course_id = db.Column(db.Integer, nullable=False)

    correct_streak = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default="learning")
    last_reviewed = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "flashcard_id": self.flashcard_id,
            "topic_id": self.topic_id,
            "course_id": self.course_id,
            "correct_streak": self.correct_streak,
            "status": self.status,
            "last_reviewed": to_utc_z(self.last_reviewed),
        }
