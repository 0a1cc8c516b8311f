# Overview: Service-layer operations for flashcard mastery; encapsulates business logic and database work.

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Flashcard, FlashcardMastery, User
from app.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry


class MasteryError(Exception):
    """Raised when a review cannot be recorded."""
    pass


MASTERY_THRESHOLD = 3

STATUS_LEARNING = "learning"
STATUS_MASTERED = "mastered"


def apply_review(correct_streak: int, status: str, correct: bool) -> tuple[int, str]:
    """
    Next (streak, status) after one review.

    A correct review extends the streak and masters the card at the
    threshold; an incorrect one resets the streak. Mastered is terminal.
    """
    streak = correct_streak + 1 if correct else 0
    if status == STATUS_MASTERED or streak >= MASTERY_THRESHOLD:
        return streak, STATUS_MASTERED
    return streak, STATUS_LEARNING


def record_flashcard_review(user_id: str, flashcard_id: int, correct: bool) -> FlashcardMastery:
    """
    Record one review of a flashcard by a user.

    One atomic read-modify-write on the (user, flashcard) record, created on
    first review. Two concurrent first reviews collide on the unique
    constraint and the loser retries against the winner's row.

    Raises:
        MasteryError: User or flashcard missing
    """
    correct = bool(correct)

    def _op():
        if not db.session.query(User.id).filter_by(id=user_id).first():
            raise MasteryError(f"User {user_id} not found")
        card = db.session.get(Flashcard, flashcard_id)
        if not card:
            raise MasteryError(f"Flashcard {flashcard_id} not found")

        record = lock_for_update(
            db.session.query(FlashcardMastery).filter_by(user_id=user_id, flashcard_id=flashcard_id)
        ).first()
        if not record:
            record = FlashcardMastery(
                user_id=user_id,
                flashcard_id=flashcard_id,
                topic_id=card.topic_id,
                course_id=card.course_id,
                correct_streak=0,
                status=STATUS_LEARNING,
            )
            db.session.add(record)

        record.correct_streak, record.status = apply_review(
            record.correct_streak or 0, record.status or STATUS_LEARNING, correct
        )
        record.last_reviewed = utcnow()
        db.session.commit()
        return record

    return run_with_retry(_op, retry_on=(IntegrityError,))


def list_mastery(user_id: str, course_id: int | None = None, mastered_only: bool = False) -> list[FlashcardMastery]:
    query = db.session.query(FlashcardMastery).filter_by(user_id=user_id)
    if course_id is not None:
        query = query.filter_by(course_id=course_id)
    if mastered_only:
        query = query.filter_by(status=STATUS_MASTERED)
    return query.order_by(FlashcardMastery.flashcard_id.asc()).all()


def list_mastered_flashcards(user_id: str, course_id: int) -> list[int]:
    return [m.flashcard_id for m in list_mastery(user_id, course_id, mastered_only=True)]
