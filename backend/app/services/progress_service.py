# Overview: Read-side course progress for a student.

from __future__ import annotations

from ..extensions import db
from ..models import Flashcard, Question, QuizAttempt, Topic
from .content_service import CONTENT_APPROVED

PASSING_THRESHOLD = 70


def get_course_progress(user_id: str, course_id: int) -> dict:
    """
    Share of a course's topics the user has passed.

    Only topics holding approved flashcards or questions count. A topic is
    complete once any attempt on it scores at least PASSING_THRESHOLD. A
    course without approved content reports 100%.
    """
    topic_ids = [t.id for t in db.session.query(Topic.id).filter_by(course_id=course_id)]

    content_topic_ids = {
        row.topic_id
        for row in db.session.query(Flashcard.topic_id).filter_by(course_id=course_id, status=CONTENT_APPROVED)
    }
    content_topic_ids.update(
        row.topic_id
        for row in db.session.query(Question.topic_id).filter_by(course_id=course_id, status=CONTENT_APPROVED)
    )
    relevant = [tid for tid in topic_ids if tid in content_topic_ids]

    if not relevant:
        return {"course_id": course_id, "progress": 100.0, "completed_topics": [], "total_topics": 0}

    passed = {
        row.topic_id
        for row in db.session.query(QuizAttempt.topic_id).filter(
            QuizAttempt.user_id == user_id,
            QuizAttempt.course_id == course_id,
            QuizAttempt.score >= PASSING_THRESHOLD,
        )
    }
    completed = [tid for tid in relevant if tid in passed]

    return {
        "course_id": course_id,
        "progress": round(len(completed) / len(relevant) * 100, 2),
        "completed_topics": completed,
        "total_topics": len(relevant),
    }
