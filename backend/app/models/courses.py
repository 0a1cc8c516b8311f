from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z


class Course(db.Model):
    __tablename__ = "courses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False, default="")
    image_url = db.Column(db.String(512), nullable=True)
    image_hint = db.Column(db.String(120), nullable=True)

    # draft, published
    status = db.Column(db.String(16), nullable=False, default="draft", index=True)

    created_by = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "image_url": self.image_url,
            "image_hint": self.image_hint,
            "status": self.status,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }


class Topic(db.Model):
    __tablename__ = "topics"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    course_id = db.Column(db.Integer, db.ForeignKey("courses.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    course = db.relationship("Course", backref=db.backref("topics", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "course_id": self.course_id,
            "name": self.name,
            "created_at": to_utc_z(self.created_at),
        }


class _ReviewedContent:
    """
    Review workflow shared by flashcards and questions.

    STATUSES:
    - needs-review: freshly added or edited, hidden from students
    - approved: visible to students, counts toward course progress
    - flagged: reported by a student, waiting for an admin
    """
    status = db.Column(db.String(16), nullable=False, default="needs-review", index=True)
    flagged_comment = db.Column(db.Text, nullable=True)
    flagged_by = db.Column(db.String(128), nullable=True)
    flagged_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def _review_dict(self) -> dict:
        return {
            "status": self.status,
            "flagged_comment": self.flagged_comment,
            "flagged_by": self.flagged_by,
            "flagged_at": to_utc_z(self.flagged_at),
        }


class Flashcard(_ReviewedContent, db.Model):
    __tablename__ = "flashcards"
    __table_args__ = (
        db.Index("ix_flashcards_course_status", "course_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    topic_id = db.Column(db.Integer, db.ForeignKey("topics.id"), nullable=False, index=True)
    course_id = db.Column(db.Integer, db.ForeignKey("courses.id"), nullable=False)
    front = db.Column(db.Text, nullable=False)
    back = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "topic_id": self.topic_id,
            "course_id": self.course_id,
            "front": self.front,
            "back": self.back,
            "created_at": to_utc_z(self.created_at),
        }
        data.update(self._review_dict())
        return data


class Question(_ReviewedContent, db.Model):
    __tablename__ = "questions"
    __table_args__ = (
        db.Index("ix_questions_course_status", "course_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    topic_id = db.Column(db.Integer, db.ForeignKey("topics.id"), nullable=False, index=True)
    course_id = db.Column(db.Integer, db.ForeignKey("courses.id"), nullable=False)
    text = db.Column(db.Text, nullable=False)

    # MCQ, True/False, Short Answer
    type = db.Column(db.String(16), nullable=False)
    options = db.Column(db.JSON, nullable=True)
    answer = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self, include_answer: bool = True) -> dict:
        data = {
            "id": self.id,
            "topic_id": self.topic_id,
            "course_id": self.course_id,
            "text": self.text,
            "type": self.type,
            "options": self.options,
            "created_at": to_utc_z(self.created_at),
        }
        if include_answer:
            data["answer"] = self.answer
        data.update(self._review_dict())
        return data


class Enrollment(db.Model):
    __tablename__ = "enrollments"
    __table_args__ = (
        db.UniqueConstraint("user_id", "course_id", name="uq_enrollments_user_course"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(128), db.ForeignKey("users.id"), nullable=False, index=True)
    course_id = db.Column(db.Integer, db.ForeignKey("courses.id"), nullable=False, index=True)
    enrolled_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    course = db.relationship("Course")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "course_id": self.course_id,
            "enrolled_at": to_utc_z(self.enrolled_at),
            "course": self.course.to_dict() if self.course else None,
        }
