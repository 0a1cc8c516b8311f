"""
Course content, enrollment, progress and user profile tests.
"""

import pytest

from app.models import Flashcard, Question, User
from app.services import badge_service, content_service, progress_service, user_service
from app.services.content_service import ContentError, ContentNotFoundError
from app.services.user_service import AuthError, UserNotFoundError
from app.validation import ValidationError


@pytest.fixture
def course(db_session, creator):
    return content_service.create_course("Bookkeeping", "Basics", created_by=creator.id)


@pytest.fixture
def topic(course):
    return content_service.add_topic(course.id, "Journals")


def _approve_all(items, content_type):
    for item in items:
        content_service.approve_content(content_type, item.id)


class TestCourses:
    def test_new_course_is_draft(self, course):
        assert course.status == "draft"
        assert content_service.list_courses(published_only=True) == []

    def test_publish_and_update(self, course):
        content_service.set_course_status(course.id, "published")
        updated = content_service.update_course(course.id, name="  Bookkeeping 101 ", image_hint="ledger")

        assert updated.name == "Bookkeeping 101"
        assert updated.image_hint == "ledger"
        assert [c.id for c in content_service.list_courses(published_only=True)] == [course.id]

    def test_bad_status_rejected(self, course):
        with pytest.raises(ValidationError):
            content_service.set_course_status(course.id, "archived")

    def test_missing_course(self, db_session):
        with pytest.raises(ContentNotFoundError):
            content_service.get_course(77)

    def test_delete_topic_removes_its_content(self, db_session, topic):
        course_id = topic.course_id
        content_service.add_flashcards(topic.id, [{"front": "a", "back": "b"}])
        content_service.add_questions(topic.id, [{"text": "q", "type": "Short Answer", "answer": "a"}])

        removed = content_service.delete_topic(topic.id)

        assert removed == {"flashcards": 1, "questions": 1}
        assert db_session.query(Flashcard).count() == 0
        assert db_session.query(Question).count() == 0
        assert content_service.list_topics(course_id) == []


class TestContentReview:
    def test_bulk_add_starts_in_review(self, topic):
        cards = content_service.add_flashcards(topic.id, [
            {"front": "Debit", "back": "Left"},
            {"front": "Credit", "back": "Right"},
        ])
        assert [c.status for c in cards] == ["needs-review", "needs-review"]
        assert content_service.list_content("flashcard", topic.id, approved_only=True) == []

    def test_one_bad_item_stores_none(self, db_session, topic):
        with pytest.raises(ValidationError):
            content_service.add_flashcards(topic.id, [{"front": "ok", "back": "ok"}, {"front": "", "back": "x"}])
        assert db_session.query(Flashcard).count() == 0

    def test_question_shapes(self, topic):
        mcq, tf, short = content_service.add_questions(topic.id, [
            {"text": "Pick", "type": "MCQ", "options": ["A", "B", "C"], "answer": "B"},
            {"text": "Yes?", "type": "True/False", "options": ["x"], "answer": "False"},
            {"text": "Name it", "type": "Short Answer", "options": ["ignored"], "answer": "Equity"},
        ])
        assert mcq.options == ["A", "B", "C"]
        assert tf.options == ["True", "False"]
        assert short.options is None

    @pytest.mark.parametrize(
        "question",
        [
            {"text": "Pick", "type": "MCQ", "options": ["A"], "answer": "A"},
            {"text": "Pick", "type": "MCQ", "options": ["A", "B"], "answer": "C"},
            {"text": "Yes?", "type": "True/False", "answer": "Maybe"},
            {"text": "Essay", "type": "Essay", "answer": "x"},
        ],
    )
    def test_invalid_questions(self, topic, question):
        with pytest.raises(ValidationError):
            content_service.add_questions(topic.id, [question])

    def test_flag_then_edit_returns_to_review(self, topic, student):
        card = content_service.add_flashcards(topic.id, [{"front": "Debit", "back": "Right"}])[0]
        content_service.approve_content("flashcard", card.id)

        flagged = content_service.flag_content("flashcard", card.id, "Back is wrong", student.id)
        assert flagged.status == "flagged"
        assert flagged.flagged_by == student.id
        assert [f.id for f in content_service.list_flagged(topic.course_id)["flashcards"]] == [card.id]

        edited = content_service.update_content("flashcard", card.id, {"front": "Debit", "back": "Left"})
        assert edited.status == "needs-review"
        assert edited.flagged_comment is None
        assert content_service.list_flagged(topic.course_id)["flashcards"] == []

    def test_flag_requires_comment(self, topic, student):
        card = content_service.add_flashcards(topic.id, [{"front": "a", "back": "b"}])[0]
        with pytest.raises(ValidationError):
            content_service.flag_content("flashcard", card.id, " ", student.id)

    def test_check_answer_case_insensitive(self, topic):
        q = content_service.add_questions(topic.id, [{"text": "A = L + ?", "type": "Short Answer", "answer": "Equity"}])[0]

        assert content_service.check_answer(q.id, "  equity ")["correct"] is True
        wrong = content_service.check_answer(q.id, "Capital")
        assert wrong["correct"] is False
        assert wrong["correct_answer"] == "Equity"
        assert content_service.check_answer(q.id, None)["score"] == 0


class TestEnrollmentAndProgress:
    def test_enroll_requires_published_course(self, course, student):
        with pytest.raises(ContentError):
            content_service.enroll(student.id, course.id)

    def test_enroll_is_idempotent(self, course, student):
        content_service.set_course_status(course.id, "published")
        first, created = content_service.enroll(student.id, course.id)
        second, created_again = content_service.enroll(student.id, course.id)

        assert created is True
        assert created_again is False
        assert first.id == second.id
        assert len(content_service.list_enrollments(student.id)) == 1

    def test_course_without_approved_content_is_complete(self, topic, student):
        content_service.add_flashcards(topic.id, [{"front": "a", "back": "b"}])
        progress = progress_service.get_course_progress(student.id, topic.course_id)
        assert progress["progress"] == 100.0
        assert progress["total_topics"] == 0

    def test_progress_counts_passed_topics(self, course, student):
        first = content_service.add_topic(course.id, "Journals")
        second = content_service.add_topic(course.id, "Ledgers")
        content_service.add_topic(course.id, "Empty")
        _approve_all(content_service.add_flashcards(first.id, [{"front": "a", "back": "b"}]), "flashcard")
        _approve_all(
            content_service.add_questions(second.id, [{"text": "q", "type": "Short Answer", "answer": "a"}]),
            "question",
        )

        badge_service.record_quiz_attempt(student.id, course.id, first.id, "Journals", 6, 10)
        assert progress_service.get_course_progress(student.id, course.id)["progress"] == 0.0

        badge_service.record_quiz_attempt(student.id, course.id, first.id, "Journals", 7, 10)
        progress = progress_service.get_course_progress(student.id, course.id)
        assert progress["progress"] == 50.0
        assert progress["completed_topics"] == [first.id]
        assert progress["total_topics"] == 2


class TestUserProfiles:
    def test_bootstrap_creates_student(self, db_session):
        user, created = user_service.bootstrap_user_profile("uid-1", "Ada", "ada@example.com")
        assert created is True
        assert user.role == "student"
        assert user.xp == 0
        assert user.streak == 0

    def test_bootstrap_is_idempotent(self, db_session):
        user_service.bootstrap_user_profile("uid-1", "Ada")
        user_service.set_user_role("uid-1", "creator")

        user, created = user_service.bootstrap_user_profile("uid-1", "Someone Else")

        assert created is False
        assert user.role == "creator"
        assert user.display_name == "Ada"
        assert db_session.query(User).count() == 1

    def test_bootstrap_defaults_display_name(self, db_session):
        user, _ = user_service.bootstrap_user_profile("uid-2")
        assert user.display_name == "Anonymous"

    def test_bootstrap_requires_uid(self, db_session):
        with pytest.raises(AuthError):
            user_service.bootstrap_user_profile("   ")

    def test_set_role_validation(self, db_session, student):
        with pytest.raises(ValidationError):
            user_service.set_user_role(student.id, "superuser")
        with pytest.raises(UserNotFoundError):
            user_service.set_user_role("ghost", "admin")

    def test_leaderboard_orders_by_xp(self, db_session):
        for uid, xp in [("a", 30), ("b", 0), ("c", 120), ("d", 75)]:
            user_service.bootstrap_user_profile(uid, uid.upper())
            row = db_session.get(User, uid)
            row.xp = xp
        db_session.commit()

        board = user_service.get_leaderboard(limit=2)
        assert [u.id for u in board] == ["c", "d"]
        assert [u.id for u in user_service.get_leaderboard()] == ["c", "d", "a"]

    def test_overview_collects_enrollments_attempts_and_badges(self, course, student):
        content_service.set_course_status(course.id, "published")
        content_service.enroll(student.id, course.id)
        badge_service.record_quiz_attempt(student.id, course.id, 1, "Journals", 7, 10)

        overview = user_service.get_user_overview(student.id)

        assert overview["user"]["id"] == student.id
        assert overview["enrollments"][0]["course"]["name"] == "Bookkeeping"
        assert [a["score"] for a in overview["quiz_attempts"]] == [70]
        assert [b["badge_id"] for b in overview["badges"]] == ["topic_novice"]

    def test_overview_of_missing_user(self, db_session):
        with pytest.raises(UserNotFoundError):
            user_service.get_user_overview("ghost")
