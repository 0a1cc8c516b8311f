# Overview: Flask API routes for courses, topics, flashcards, questions and enrollment.

"""
Course Content API Routes

SECURITY:
- Reads require STUDY; students only see published courses and approved items
- Writes and the review queue require MANAGE_CONTENT
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..permissions import role_has_permission
from ..services import content_service
from ..services.concurrency import RetryExhaustedError
from ..services.content_service import ContentError, ContentNotFoundError
from ..validation import ValidationError, get_json_payload


courses_bp = Blueprint("courses", __name__, url_prefix="/api/courses")


def _can_manage() -> bool:
    return role_has_permission(g.current_user.role, "MANAGE_CONTENT")


def _content_error_response(exc: Exception, action: str):
    if isinstance(exc, ValidationError):
        return jsonify({"error": str(exc)}), 400
    if isinstance(exc, ContentNotFoundError):
        return jsonify({"error": str(exc)}), 404
    if isinstance(exc, ContentError):
        return jsonify({"error": str(exc)}), 400
    if isinstance(exc, RetryExhaustedError):
        return jsonify({"error": "Content changed concurrently; please retry"}), 409
    current_app.logger.exception("Failed to %s", action)
    return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# COURSES
# =============================================================================

@courses_bp.get("")
@require_auth
@require_permission("STUDY")
def list_courses_route():
    courses = content_service.list_courses(published_only=not _can_manage())
    return jsonify({"items": [c.to_dict() for c in courses]}), 200


@courses_bp.post("")
@require_auth
@require_permission("MANAGE_CONTENT")
def create_course_route():
    """
    Request body:
    {
        "name": "Bookkeeping 101",
        "description": "...",
        "image_url": "https://...",  (optional)
        "image_hint": "ledger book"  (optional)
    }
    """
    try:
        data = get_json_payload(request)
        course = content_service.create_course(
            name=data.get("name"),
            description=data.get("description", ""),
            image_url=data.get("image_url"),
            image_hint=data.get("image_hint"),
            created_by=g.current_user.id,
        )
        return jsonify({"course": course.to_dict()}), 201
    except Exception as e:
        return _content_error_response(e, "create course")


@courses_bp.get("/<int:course_id>")
@require_auth
@require_permission("STUDY")
def get_course_route(course_id: int):
    try:
        course = content_service.get_course(course_id)
        if course.status != content_service.COURSE_STATUS_PUBLISHED and not _can_manage():
            raise ContentNotFoundError(f"Course {course_id} not found")
        topics = content_service.list_topics(course_id)
        return jsonify({"course": course.to_dict(), "topics": [t.to_dict() for t in topics]}), 200
    except Exception as e:
        return _content_error_response(e, "load course")


@courses_bp.patch("/<int:course_id>")
@require_auth
@require_permission("MANAGE_CONTENT")
def update_course_route(course_id: int):
    try:
        data = get_json_payload(request)
        fields = {k: data[k] for k in ("name", "description", "image_url", "image_hint") if k in data}
        course = content_service.update_course(course_id, **fields)
        if "status" in data:
            course = content_service.set_course_status(course_id, data["status"])
        return jsonify({"course": course.to_dict()}), 200
    except Exception as e:
        return _content_error_response(e, "update course")


@courses_bp.post("/<int:course_id>/enroll")
@require_auth
@require_permission("STUDY")
def enroll_route(course_id: int):
    try:
        enrollment, created = content_service.enroll(g.current_user.id, course_id)
        return jsonify({"enrollment": enrollment.to_dict(), "created": created}), 201 if created else 200
    except Exception as e:
        return _content_error_response(e, "enroll")


@courses_bp.get("/<int:course_id>/flags")
@require_auth
@require_permission("MANAGE_CONTENT")
def list_flags_route(course_id: int):
    flagged = content_service.list_flagged(course_id)
    return jsonify({
        "flashcards": [f.to_dict() for f in flagged["flashcards"]],
        "questions": [q.to_dict() for q in flagged["questions"]],
    }), 200


# =============================================================================
# TOPICS
# =============================================================================

@courses_bp.post("/<int:course_id>/topics")
@require_auth
@require_permission("MANAGE_CONTENT")
def add_topic_route(course_id: int):
    try:
        data = get_json_payload(request)
        topic = content_service.add_topic(course_id, data.get("name"))
        return jsonify({"topic": topic.to_dict()}), 201
    except Exception as e:
        return _content_error_response(e, "add topic")


@courses_bp.delete("/topics/<int:topic_id>")
@require_auth
@require_permission("MANAGE_CONTENT")
def delete_topic_route(topic_id: int):
    try:
        removed = content_service.delete_topic(topic_id)
        return jsonify({"deleted": True, "removed": removed}), 200
    except Exception as e:
        return _content_error_response(e, "delete topic")


# =============================================================================
# FLASHCARDS & QUESTIONS
# =============================================================================

@courses_bp.get("/topics/<int:topic_id>/<any(flashcards, questions):kind>")
@require_auth
@require_permission("STUDY")
def list_content_route(topic_id: int, kind: str):
    """Items of a topic; students get approved items and no answers."""
    manage = _can_manage()
    try:
        items = content_service.list_content(kind[:-1], topic_id, approved_only=not manage)
        if kind == "questions":
            payload = [q.to_dict(include_answer=manage) for q in items]
        else:
            payload = [f.to_dict() for f in items]
        return jsonify({"items": payload}), 200
    except Exception as e:
        return _content_error_response(e, "list content")


@courses_bp.post("/topics/<int:topic_id>/<any(flashcards, questions):kind>")
@require_auth
@require_permission("MANAGE_CONTENT")
def add_content_route(topic_id: int, kind: str):
    """
    Bulk add; every item starts in needs-review.

    Request body:
    {
        "items": [
            {"front": "Debit", "back": "Left side"},
            ...
        ]
    }
    Questions take {"text", "type", "options", "answer"} per item.
    """
    try:
        data = get_json_payload(request)
        items = data.get("items")
        if not isinstance(items, list):
            raise ValidationError("items must be a list")
        if kind == "flashcards":
            created = content_service.add_flashcards(topic_id, items)
        else:
            created = content_service.add_questions(topic_id, items)
        return jsonify({"items": [c.to_dict() for c in created]}), 201
    except Exception as e:
        return _content_error_response(e, "add content")


@courses_bp.put("/<any(flashcards, questions):kind>/<int:item_id>")
@require_auth
@require_permission("MANAGE_CONTENT")
def update_content_route(kind: str, item_id: int):
    try:
        data = get_json_payload(request)
        item = content_service.update_content(kind[:-1], item_id, data)
        return jsonify({"item": item.to_dict()}), 200
    except Exception as e:
        return _content_error_response(e, "update content")


@courses_bp.post("/<any(flashcards, questions):kind>/<int:item_id>/approve")
@require_auth
@require_permission("MANAGE_CONTENT")
def approve_content_route(kind: str, item_id: int):
    try:
        item = content_service.approve_content(kind[:-1], item_id)
        return jsonify({"item": item.to_dict()}), 200
    except Exception as e:
        return _content_error_response(e, "approve content")


@courses_bp.delete("/<any(flashcards, questions):kind>/<int:item_id>")
@require_auth
@require_permission("MANAGE_CONTENT")
def delete_content_route(kind: str, item_id: int):
    try:
        content_service.delete_content(kind[:-1], item_id)
        return jsonify({"deleted": True}), 200
    except Exception as e:
        return _content_error_response(e, "delete content")

