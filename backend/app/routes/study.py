# Overview: Flask API routes for student study activity: quizzes, flashcard reviews, grading and progress.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..services import badge_service, content_service, mastery_service, progress_service
from ..services.badge_service import QuizResultError
from ..services.concurrency import RetryExhaustedError
from ..services.content_service import ContentError, ContentNotFoundError
from ..services.mastery_service import MasteryError
from ..validation import ValidationError, coerce_id, get_json_payload


study_bp = Blueprint("study", __name__, url_prefix="/api/study")


@study_bp.post("/quiz-attempts")
@require_auth
@require_permission("STUDY")
def record_quiz_attempt_route():
    """
    Store a finished quiz for the current user.

    Request body:
    {
        "course_id": 1,
        "topic_id": 4,
        "topic_name": "Double entry",
        "correct_answers": 8.5,
        "total_questions": 10
    }

    Returns the stored attempt, XP gained, the new streak and any badges
    earned by this attempt.
    """
    try:
        data = get_json_payload(request)
        course_id = coerce_id(data.get("course_id"), "course_id")
        topic_id = coerce_id(data.get("topic_id"), "topic_id")
        result = badge_service.record_quiz_attempt(
            user_id=g.current_user.id,
            course_id=course_id,
            topic_id=topic_id,
            topic_name=data.get("topic_name"),
            correct_answers=data.get("correct_answers"),
            total_questions=data.get("total_questions"),
        )
        return jsonify(result.to_dict()), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except QuizResultError as e:
        return jsonify({"error": str(e)}), 404
    except RetryExhaustedError:
        return jsonify({"error": "Profile changed concurrently; please retry"}), 409
    except Exception:
        current_app.logger.exception("Failed to record quiz attempt")
        return jsonify({"error": "Internal server error"}), 500


@study_bp.get("/quiz-attempts")
@require_auth
@require_permission("STUDY")
def list_quiz_attempts_route():
    course_id = request.args.get("course_id", type=int)
    attempts = badge_service.list_quiz_attempts(g.current_user.id, course_id=course_id)
    return jsonify({"items": [a.to_dict() for a in attempts]}), 200


@study_bp.post("/flashcards/<int:flashcard_id>/reviews")
@require_auth
@require_permission("STUDY")
def review_flashcard_route(flashcard_id: int):
    """
    Request body:
    {
        "correct": true
    }
    """
    try:
        data = get_json_payload(request)
        correct = data.get("correct")
        if not isinstance(correct, bool):
            raise ValidationError("correct must be true or false")
        record = mastery_service.record_flashcard_review(g.current_user.id, flashcard_id, correct)
        return jsonify({"mastery": record.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except MasteryError as e:
        return jsonify({"error": str(e)}), 404
    except RetryExhaustedError:
        return jsonify({"error": "Review conflicted; please retry"}), 409
    except Exception:
        current_app.logger.exception("Failed to record flashcard review")
        return jsonify({"error": "Internal server error"}), 500


@study_bp.get("/courses/<int:course_id>/mastery")
@require_auth
@require_permission("STUDY")
def list_mastery_route(course_id: int):
    records = mastery_service.list_mastery(g.current_user.id, course_id=course_id)
    return jsonify({"items": [r.to_dict() for r in records]}), 200


@study_bp.post("/questions/<int:question_id>/check")
@require_auth
@require_permission("STUDY")
def check_answer_route(question_id: int):
    """
    Request body:
    {
        "answer": "Assets"
    }
    """
    try:
        data = get_json_payload(request)
        answer = data.get("answer")
        if answer is not None and not isinstance(answer, str):
            raise ValidationError("answer must be a string")
        return jsonify(content_service.check_answer(question_id, answer)), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ContentNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to check answer")
        return jsonify({"error": "Internal server error"}), 500


@study_bp.get("/courses/<int:course_id>/progress")
@require_auth
@require_permission("STUDY")
def course_progress_route(course_id: int):
    try:
        content_service.get_course(course_id)
        return jsonify(progress_service.get_course_progress(g.current_user.id, course_id)), 200
    except ContentNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to compute course progress")
        return jsonify({"error": "Internal server error"}), 500


@study_bp.post("/flags")
@require_auth
@require_permission("STUDY")
def flag_content_route():
    """
    Report a flashcard or question for review.

    Request body:
    {
        "content_type": "flashcard" | "question",
        "item_id": 12,
        "comment": "The answer is wrong"
    }
    """
    try:
        data = get_json_payload(request)
        item = content_service.flag_content(
            data.get("content_type"),
            coerce_id(data.get("item_id"), "item_id"),
            data.get("comment"),
            flagged_by=g.current_user.id,
        )
        current_app.logger.info("User %s flagged %s %s", g.current_user.id, data.get("content_type"), item.id)
        return jsonify({"item": item.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ContentNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ContentError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to flag content")
        return jsonify({"error": "Internal server error"}), 500
