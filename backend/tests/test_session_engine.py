"""
Tests for the timed test-session engine.
"""
import pytest

from certplatform.core.errors import ErrorKind
from certplatform.core.session_store import InMemorySessionStore
from certplatform.models import test as test_models
from certplatform.models.enums import SessionStatus
from certplatform.services import test_session_service as engine
from certplatform.services.test_session_service import (
    answer_is_correct,
    grade_answers,
    score_percentage,
)
from certplatform.schemas.test import QuestionSnapshot

from conftest import CORRECT_ANSWERS, answer_all


def _attempt(db_session, session_id):
    return (
        db_session.query(test_models.TestAttempt)
        .filter(test_models.TestAttempt.session_id == session_id)
        .one()
    )


class TestScoring:

    def test_score_rounds_half_up(self):
        assert score_percentage(2, 3) == 67
        assert score_percentage(1, 3) == 33
        assert score_percentage(1, 2) == 50
        assert score_percentage(0, 0) == 0

    def test_grade_weights_by_points(self):
        questions = [
            QuestionSnapshot(id="a", type="MULTIPLE_CHOICE", question="?", correct_answer="x", points=3),
            QuestionSnapshot(id="b", type="MULTIPLE_CHOICE", question="?", correct_answer="y", points=1),
        ]
        earned, total, correct = grade_answers(questions, {"a": "x", "b": "nope"})
        assert (earned, total, correct) == (3, 4, 1)
        assert score_percentage(earned, total) == 75

    def test_exact_match_is_case_sensitive(self):
        question = QuestionSnapshot(id="a", type="SHORT_ANSWER", question="?", correct_answer="Paris")
        assert answer_is_correct(question, "Paris")
        assert not answer_is_correct(question, "paris")
        assert not answer_is_correct(question, None)

    def test_free_text_grader_only_used_for_free_text(self):
        essay = QuestionSnapshot(id="a", type="ESSAY", question="?", correct_answer="-")
        choice = QuestionSnapshot(id="b", type="MULTIPLE_CHOICE", question="?", correct_answer="x")

        def lenient(question, answer):
            return bool(answer.strip())

        assert answer_is_correct(essay, "anything", lenient)
        assert not answer_is_correct(choice, "anything", lenient)


class TestStartSession:

    def test_start_snapshots_questions(self, session_service, test_user, language_test, clock):
        result = session_service.start(test_user.id, language_test.id)

        assert result.success
        session = result.session
        assert session.status == SessionStatus.ACTIVE
        assert session.current_question_index == 0
        assert session.start_time == clock()
        assert session.time_limit == 30
        assert [q.correct_answer for q in session.questions] == CORRECT_ANSWERS

    def test_start_writes_durable_attempt(self, session_service, db_session, test_user, language_test):
        result = session_service.start(test_user.id, language_test.id)

        attempt = _attempt(db_session, result.session_id)
        assert attempt.id == result.session.attempt_id
        assert attempt.completed_at is None
        assert attempt.total_points == 3

    def test_start_unknown_test(self, session_service, test_user, db_session):
        result = session_service.start(test_user.id, "missing")
        assert not result.success
        assert result.error_kind == ErrorKind.NOT_FOUND

    def test_start_unpublished_test(self, session_service, test_user, language_test, db_session):
        language_test.is_published = False
        db_session.commit()

        result = session_service.start(test_user.id, language_test.id)
        assert not result.success
        assert result.error == "Test is not available"


class TestNavigation:

    @pytest.fixture
    def session_id(self, session_service, test_user, language_test):
        return session_service.start(test_user.id, language_test.id).session_id

    def test_next_and_previous_stop_at_the_ends(self, session_service, session_id):
        assert session_service.previous_question(session_id).current_question_index == 0

        session_service.next_question(session_id)
        session_service.next_question(session_id)
        assert session_service.next_question(session_id).current_question_index == 2

    def test_goto_out_of_range_keeps_cursor(self, session_service, session_id):
        session_service.go_to_question(session_id, 1)

        assert session_service.go_to_question(session_id, 3) is None
        assert session_service.go_to_question(session_id, -1) is None
        assert session_service.get_current(session_id).current_question_index == 1

    def test_toggle_flag(self, session_service, session_id):
        assert session_service.toggle_flag(session_id, 2).flagged_questions == {2}
        assert session_service.toggle_flag(session_id, 2).flagged_questions == set()

    def test_answer_rejects_foreign_question(self, session_service, session_id):
        assert session_service.answer(session_id, "not-in-this-test", "4") is None

    def test_answer_overwrites(self, session_service, session_id):
        question_id = session_service.get_current(session_id).questions[0].id
        session_service.answer(session_id, question_id, "3")
        session = session_service.answer(session_id, question_id, "4")
        assert session.answers == {question_id: "4"}

    def test_current_question_hides_answer(self, session_service, session_id):
        view = session_service.get_current_question(session_id)
        assert not hasattr(view, "correct_answer")
        assert view.question == "2 + 2 = ?"

    def test_progress(self, session_service, session_id, clock):
        answer_all(session_service, session_id, ["4", None, None])
        clock.advance(minutes=10)

        progress = session_service.get_progress(session_id)
        assert progress.current_question == 1
        assert progress.total_questions == 3
        assert progress.answered_questions == 1
        assert progress.percentage == 33
        assert progress.remaining_time == 20


class TestExpiry:

    @pytest.fixture
    def session_id(self, session_service, test_user, language_test):
        return session_service.start(test_user.id, language_test.id).session_id

    def test_valid_until_time_limit(self, session_service, session_id, clock):
        clock.advance(minutes=29, seconds=59)
        assert session_service.is_valid(session_id)

        clock.advance(seconds=1)
        assert not session_service.is_valid(session_id)

    def test_pause_does_not_stop_the_clock(self, session_service, session_id, clock):
        clock.advance(minutes=10)
        assert session_service.pause(session_id)

        clock.advance(minutes=20)
        assert not session_service.is_valid(session_id)

    def test_answers_rejected_after_expiry(self, session_service, session_id, clock):
        question_id = session_service.get_current(session_id).questions[0].id
        clock.advance(minutes=31)
        assert session_service.answer(session_id, question_id, "4") is None

    def test_auto_submit_only_when_expired(self, session_service, session_id, test_user, clock):
        assert session_service.auto_submit_expired(session_id, test_user.id) is None

        clock.advance(minutes=45)
        result = session_service.auto_submit_expired(session_id, test_user.id)
        assert result.expired
        assert result.time_spent == 45

    def test_cleanup_auto_submits_expired(self, session_service, db_session, session_id, store, clock):
        answer_all(session_service, session_id, CORRECT_ANSWERS)
        clock.advance(hours=1)

        assert session_service.cleanup_expired_sessions() == {"auto_submitted": 1, "evicted": 0}
        assert store.get(session_id) is None

        attempt = _attempt(db_session, session_id)
        assert attempt.status == SessionStatus.EXPIRED.value
        assert attempt.score == 100
        assert attempt.passed


class TestSubmit:

    def test_pass_at_threshold_and_fail_below(self, session_service, test_user, language_test):
        first = session_service.start(test_user.id, language_test.id).session_id
        answer_all(session_service, first, ["4", "cold", "wrong"])
        result = session_service.submit(first, test_user.id)
        assert result.score == 67
        assert result.passed

        second = session_service.start(test_user.id, language_test.id).session_id
        answer_all(session_service, second, ["4", None, None])
        result = session_service.submit(second, test_user.id)
        assert result.score == 33
        assert not result.passed

    def test_submit_is_write_once(self, session_service, db_session, test_user, language_test, clock):
        session_id = session_service.start(test_user.id, language_test.id).session_id
        answer_all(session_service, session_id, CORRECT_ANSWERS)

        first = session_service.submit(session_id, test_user.id)
        assert first.passed
        assert session_service.submit(session_id, test_user.id) is None

        clock.advance(hours=1)
        assert session_service.auto_submit_expired(session_id, test_user.id) is None
        assert db_session.query(test_models.TestAttempt).count() == 1
        assert _attempt(db_session, session_id).status == SessionStatus.SUBMITTED.value

    def test_submit_by_another_user_is_refused(self, session_service, test_user, other_user, language_test):
        session_id = session_service.start(test_user.id, language_test.id).session_id
        assert session_service.submit(session_id, other_user.id) is None
        assert session_service.get_current(session_id) is not None

    def test_store_entry_removed_after_submit(self, session_service, store, test_user, language_test):
        session_id = session_service.start(test_user.id, language_test.id).session_id
        session_service.submit(session_id, test_user.id)
        assert store.get(session_id) is None
        assert session_service.resume(session_id) is None


class TestResume:

    def test_resume_restores_lost_session(self, session_service, store, test_user, language_test):
        session_id = session_service.start(test_user.id, language_test.id).session_id
        question_id = session_service.get_current(session_id).questions[1].id
        session_service.answer(session_id, question_id, "cold")
        session_service.go_to_question(session_id, 1)
        session_service.pause(session_id)

        store.delete(session_id)
        session = session_service.resume(session_id)

        assert session.status == SessionStatus.ACTIVE
        assert session.answers == {question_id: "cold"}
        assert session.current_question_index == 1
        assert store.get(session_id) is not None

    def test_answers_survive_eviction(self, db_session, test_user, language_test, clock):
        store = InMemorySessionStore(max_size=1)
        service = engine.TestSessionService(db_session, store, clock=clock)
        first = service.start(test_user.id, language_test.id).session_id
        answer_all(service, first, CORRECT_ANSWERS)
        service.go_to_question(first, 2)

        service.start(test_user.id, language_test.id)
        assert store.get(first) is None

        session = service.resume(first)
        assert len(session.answers) == 3
        assert session.current_question_index == 2

        result = service.submit(first, test_user.id)
        assert result.score == 100
        assert result.passed

    def test_restore_keeps_paused_status(self, db_session, session_service, store, test_user, language_test):
        session_id = session_service.start(test_user.id, language_test.id).session_id
        session_service.pause(session_id)
        store.delete(session_id)

        session = session_service.restore(session_id)

        assert session.status == SessionStatus.PAUSED
        assert _attempt(db_session, session_id).status == SessionStatus.PAUSED.value
        assert session_service.resume(session_id).status == SessionStatus.ACTIVE

    def test_resume_keeps_expired_session_for_auto_submit(self, session_service, test_user, language_test, clock):
        session_id = session_service.start(test_user.id, language_test.id).session_id
        session_service.pause(session_id)
        clock.advance(minutes=30)

        session = session_service.resume(session_id)
        assert session.status == SessionStatus.PAUSED
        assert not session_service.is_valid(session_id)
        assert session_service.auto_submit_expired(session_id, test_user.id).expired

    def test_statistics(self, session_service, test_user, language_test, clock):
        session_service.start(test_user.id, language_test.id)
        clock.advance(minutes=10)
        session_service.start(test_user.id, language_test.id)
        clock.advance(minutes=25)

        stats = session_service.session_statistics()
        assert stats.total_sessions == 2
        assert stats.active_sessions == 1
        assert stats.average_session_time == 25
