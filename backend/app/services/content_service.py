# Overview: Service-layer operations for course content; encapsulates business logic and database work.

"""
Course Content Service

WHY: Courses are authored by creators/admins as topics holding flashcards
and quiz questions. New or edited items wait in needs-review until an admin
approves them; students can flag approved items back for review.

LIFECYCLE (flashcards & questions):
1. needs-review: added (in bulk or singly) or edited
2. approved: visible to students, counts toward progress
3. flagged: reported by a student with a comment
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Course, Enrollment, Flashcard, Question, Topic
from ..validation import ValidationError, optional_text, require_choice, require_text
from app.time_utils import utcnow
from .concurrency import run_with_retry


class ContentError(Exception):
    """Raised for content operation errors."""
    pass


class ContentNotFoundError(ContentError):
    pass


# =============================================================================
# CONSTANTS
# =============================================================================

COURSE_STATUS_DRAFT = "draft"
COURSE_STATUS_PUBLISHED = "published"
VALID_COURSE_STATUSES = [COURSE_STATUS_DRAFT, COURSE_STATUS_PUBLISHED]

CONTENT_NEEDS_REVIEW = "needs-review"
CONTENT_APPROVED = "approved"
CONTENT_FLAGGED = "flagged"

CONTENT_FLASHCARD = "flashcard"
CONTENT_QUESTION = "question"
CONTENT_MODELS = {CONTENT_FLASHCARD: Flashcard, CONTENT_QUESTION: Question}

QUESTION_MCQ = "MCQ"
QUESTION_TRUE_FALSE = "True/False"
QUESTION_SHORT_ANSWER = "Short Answer"
VALID_QUESTION_TYPES = [QUESTION_MCQ, QUESTION_TRUE_FALSE, QUESTION_SHORT_ANSWER]


def _get_or_404(model, item_id, label: str):
    item = db.session.get(model, item_id)
    if not item:
        raise ContentNotFoundError(f"{label} {item_id} not found")
    return item


# =============================================================================
# COURSES
# =============================================================================

def create_course(name: str, description: str = "", image_url=None, image_hint=None, created_by=None) -> Course:
    course = Course(
        name=require_text(name, "name", 255),
        description=optional_text(description, "description") or "",
        image_url=optional_text(image_url, "image_url", 512),
        image_hint=optional_text(image_hint, "image_hint", 120),
        status=COURSE_STATUS_DRAFT,
        created_by=created_by,
    )
    db.session.add(course)
    db.session.commit()
    return course


def update_course(course_id: int, **fields) -> Course:
    course = _get_or_404(Course, course_id, "Course")
    if "name" in fields:
        course.name = require_text(fields["name"], "name", 255)
    if "description" in fields:
        course.description = optional_text(fields["description"], "description") or ""
    if "image_url" in fields:
        course.image_url = optional_text(fields["image_url"], "image_url", 512)
    if "image_hint" in fields:
        course.image_hint = optional_text(fields["image_hint"], "image_hint", 120)
    db.session.commit()
    return course


def set_course_status(course_id: int, status: str) -> Course:
    status = require_choice(status, "status", VALID_COURSE_STATUSES)
    course = _get_or_404(Course, course_id, "Course")
    course.status = status
    db.session.commit()
    return course


def get_course(course_id: int) -> Course:
    return _get_or_404(Course, course_id, "Course")


def list_courses(published_only: bool = False) -> list[Course]:
    query = db.session.query(Course)
    if published_only:
        query = query.filter_by(status=COURSE_STATUS_PUBLISHED)
    return query.order_by(Course.name.asc()).all()


# =============================================================================
# TOPICS
# =============================================================================

def add_topic(course_id: int, name: str) -> Topic:
    _get_or_404(Course, course_id, "Course")
    topic = Topic(course_id=course_id, name=require_text(name, "name", 255))
    db.session.add(topic)
    db.session.commit()
    return topic


def list_topics(course_id: int) -> list[Topic]:
    return db.session.query(Topic).filter_by(course_id=course_id).order_by(Topic.id.asc()).all()


def delete_topic(topic_id: int) -> dict:
    """Delete a topic with its flashcards and questions in one commit."""
    def _op():
        topic = _get_or_404(Topic, topic_id, "Topic")
        cards = db.session.query(Flashcard).filter_by(topic_id=topic_id).delete(synchronize_session=False)
        questions = db.session.query(Question).filter_by(topic_id=topic_id).delete(synchronize_session=False)
        db.session.delete(topic)
        db.session.commit()
        return {"flashcards": cards, "questions": questions}

    return run_with_retry(_op)


# =============================================================================
# FLASHCARDS & QUESTIONS
# =============================================================================

def _clean_flashcard(data: dict) -> dict:
    return {
        "front": require_text(data.get("front"), "front"),
        "back": require_text(data.get("back"), "back"),
    }


def _clean_question(data: dict) -> dict:
    qtype = require_choice(data.get("type"), "question type", VALID_QUESTION_TYPES)
    options = data.get("options")
    if qtype == QUESTION_MCQ:
        if not isinstance(options, list) or len(options) < 2:
            raise ValidationError("MCQ questions need at least two options")
        options = [require_text(o, "option") for o in options]
    elif qtype == QUESTION_TRUE_FALSE:
        options = ["True", "False"]
    else:
        options = None
    answer = require_text(data.get("answer"), "answer")
    if options and answer not in options:
        raise ValidationError("answer must be one of the options")
    return {
        "text": require_text(data.get("text"), "text"),
        "type": qtype,
        "options": options,
        "answer": answer,
    }


def add_flashcards(topic_id: int, cards: list[dict]) -> list[Flashcard]:
    """Add a batch of flashcards to a topic; all or none are stored."""
    topic = _get_or_404(Topic, topic_id, "Topic")
    if not cards:
        raise ValidationError("At least one flashcard is required")
    cleaned = [_clean_flashcard(c or {}) for c in cards]
    created = [
        Flashcard(topic_id=topic.id, course_id=topic.course_id, status=CONTENT_NEEDS_REVIEW, **c)
        for c in cleaned
    ]
    db.session.add_all(created)
    db.session.commit()
    return created


def add_questions(topic_id: int, questions: list[dict]) -> list[Question]:
    """Add a batch of questions to a topic; all or none are stored."""
    topic = _get_or_404(Topic, topic_id, "Topic")
    if not questions:
        raise ValidationError("At least one question is required")
    cleaned = [_clean_question(q or {}) for q in questions]
    created = [
        Question(topic_id=topic.id, course_id=topic.course_id, status=CONTENT_NEEDS_REVIEW, **q)
        for q in cleaned
    ]
    db.session.add_all(created)
    db.session.commit()
    return created


def list_content(content_type: str, topic_id: int, approved_only: bool = False) -> list:
    model = CONTENT_MODELS[require_choice(content_type, "content type", CONTENT_MODELS)]
    query = db.session.query(model).filter_by(topic_id=topic_id)
    if approved_only:
        query = query.filter_by(status=CONTENT_APPROVED)
    return query.order_by(model.id.asc()).all()


def update_content(content_type: str, item_id: int, data: dict):
    """Edit an item; edits send it back to needs-review and clear any flag."""
    model = CONTENT_MODELS[require_choice(content_type, "content type", CONTENT_MODELS)]
    item = _get_or_404(model, item_id, content_type.capitalize())
    cleaned = _clean_flashcard(data) if model is Flashcard else _clean_question(data)
    for key, value in cleaned.items():
        setattr(item, key, value)
    item.status = CONTENT_NEEDS_REVIEW
    item.flagged_comment = None
    item.flagged_by = None
    item.flagged_at = None
    db.session.commit()
    return item


def approve_content(content_type: str, item_id: int):
    model = CONTENT_MODELS[require_choice(content_type, "content type", CONTENT_MODELS)]
    item = _get_or_404(model, item_id, content_type.capitalize())
    item.status = CONTENT_APPROVED
    db.session.commit()
    return item


def delete_content(content_type: str, item_id: int) -> None:
    model = CONTENT_MODELS[require_choice(content_type, "content type", CONTENT_MODELS)]
    item = _get_or_404(model, item_id, content_type.capitalize())
    db.session.delete(item)
    db.session.commit()


def flag_content(content_type: str, item_id: int, comment: str, flagged_by: str):
    """Student report on an item; a reason is mandatory."""
    model = CONTENT_MODELS[require_choice(content_type, "content type", CONTENT_MODELS)]
    comment = require_text(comment, "comment")
    item = _get_or_404(model, item_id, content_type.capitalize())
    item.status = CONTENT_FLAGGED
    item.flagged_comment = comment
    item.flagged_by = flagged_by
    item.flagged_at = utcnow()
    db.session.commit()
    return item


def list_flagged(course_id: int) -> dict:
    return {
        "flashcards": db.session.query(Flashcard).filter_by(course_id=course_id, status=CONTENT_FLAGGED).all(),
        "questions": db.session.query(Question).filter_by(course_id=course_id, status=CONTENT_FLAGGED).all(),
    }


def check_answer(question_id: int, answer: str) -> dict:
    """
    Grade one answer by trimmed, case-insensitive exact match.

    Short answers get the same treatment; semantic grading is not done here.
    """
    question = _get_or_404(Question, question_id, "Question")
    given = (answer or "").strip().lower()
    correct = given != "" and given == question.answer.strip().lower()
    return {
        "question_id": question.id,
        "correct": correct,
        "score": 1 if correct else 0,
        "correct_answer": question.answer,
    }


# =============================================================================
# ENROLLMENT
# =============================================================================

def enroll(user_id: str, course_id: int) -> tuple[Enrollment, bool]:
    """Enroll a user in a published course. Idempotent."""
    course = _get_or_404(Course, course_id, "Course")
    if course.status != COURSE_STATUS_PUBLISHED:
        raise ContentError(f"Course {course_id} is not published")

    def _op():
        existing = db.session.query(Enrollment).filter_by(user_id=user_id, course_id=course_id).first()
        if existing:
            return existing, False
        enrollment = Enrollment(user_id=user_id, course_id=course_id, enrolled_at=utcnow())
        db.session.add(enrollment)
        db.session.commit()
        return enrollment, True

    return run_with_retry(_op, retry_on=(IntegrityError,))


def list_enrollments(user_id: str) -> list[Enrollment]:
    return db.session.query(Enrollment).filter_by(user_id=user_id).order_by(Enrollment.enrolled_at.asc()).all()
