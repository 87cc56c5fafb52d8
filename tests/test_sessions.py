"""Tests for the practice session coordinator."""
import sqlite3
from datetime import timedelta
from unittest.mock import patch

import pytest

from book_tutor.assembly import save_test
from book_tutor.config import EngineConfig
from book_tutor.coverage import find_coverage
from book_tutor.db import get_connection, init_db
from book_tutor.generation import GenerationError
from book_tutor.library import save_idea
from book_tutor.models import (
    BloomCategory, Difficulty, PracticeSession, QuestionType, Response, ReviewQueueItem,
    SessionStatus, SessionType, to_iso,
)
from book_tutor.review_queue import list_pending_items, save_item
from book_tutor.sessions import (
    InvalidTransitionError, PracticeSessionCoordinator, SessionGenerationError, _insert_session,
    find_latest_session, get_session, list_sessions,
)

from conftest import NOW, CountingGenerator

CONFIG = EngineConfig(poll_attempts=3, poll_interval_seconds=0)


class Clock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now


def make_coordinator(tmp_db, generator, clock=None, sleep=None):
    return PracticeSessionCoordinator(
        tmp_db, generator, config=CONFIG, sleep=sleep or (lambda s: None), clock=clock or Clock(),
    )


def queue_mistake(tmp_db, n=0, qtype=QuestionType.MCQ, idea_id="idea-1"):
    return save_item(tmp_db, ReviewQueueItem(
        idea_id=idea_id, idea_title="Compounding habits", book_id="book-1", book_title="Atomic Habits",
        question_type=qtype, difficulty=Difficulty.MEDIUM, bloom_category=list(BloomCategory)[n],
        original_question_text="Which stage of the habit loop is this?",
        added_date=NOW - timedelta(days=1, minutes=-n),
    ))


def insert_generating(tmp_db, idea, updated_at):
    session = PracticeSession(idea_id=idea.id, book_id=idea.book_id,
                              session_type=SessionType.LESSON_PRACTICE,
                              created_at=updated_at, updated_at=updated_at)
    _insert_session(tmp_db, session)
    return session


def test_lesson_session_generated_and_ready(tmp_db, idea, generator):
    init_db(tmp_db)
    save_idea(tmp_db, idea)
    session = make_coordinator(tmp_db, generator).get_lesson_session(idea)
    assert session.status is SessionStatus.READY
    assert session.question_count == 8
    assert session.test.test_type == "initial"
    assert generator.fresh_calls == 1
    stored = get_session(tmp_db, session.id)
    assert stored.status is SessionStatus.READY
    assert stored.test_id == session.test.id


def test_ready_session_reused_without_generation(tmp_db, idea, generator):
    init_db(tmp_db)
    coordinator = make_coordinator(tmp_db, generator)
    first = coordinator.get_lesson_session(idea)
    second = coordinator.get_lesson_session(idea)
    assert second.id == first.id
    assert generator.fresh_calls == 1


def test_paused_session_with_nine_questions_returned_unchanged(tmp_db, idea, generator):
    init_db(tmp_db)
    queue_mistake(tmp_db)
    coordinator = make_coordinator(tmp_db, generator)
    session = coordinator.get_lesson_session(idea)
    assert session.question_count == 9
    coordinator.start_session(session)
    coordinator.pause_session(session)

    other = CountingGenerator()
    resumed = make_coordinator(tmp_db, other).get_lesson_session(idea)
    assert resumed.id == session.id
    assert resumed.status is SessionStatus.PAUSED
    assert resumed.question_count == 9
    assert other.fresh_calls == 0
    assert other.review_calls == 0


def test_lesson_includes_capped_review_items(tmp_db, idea, generator):
    init_db(tmp_db)
    for n in range(5):
        queue_mistake(tmp_db, n)
    queue_mistake(tmp_db, 5, QuestionType.OPEN_ENDED)
    queue_mistake(tmp_db, 6, QuestionType.OPEN_ENDED)
    session = make_coordinator(tmp_db, generator).get_lesson_session(idea)
    test = session.test
    assert test.test_type == "mixed"
    assert test.fresh_question_count == 8
    review = test.questions[8:]
    assert len(review) == 4
    assert sum(1 for x in review if x.type is QuestionType.OPEN_ENDED) == 1
    assert all(x.source_queue_item_id for x in review)


def test_generation_failure_marks_error(tmp_db, idea):
    init_db(tmp_db)
    failing = CountingGenerator(fail_with=GenerationError("model unavailable"))
    with pytest.raises(SessionGenerationError, match="model unavailable"):
        make_coordinator(tmp_db, failing).get_lesson_session(idea)
    stored = find_latest_session(tmp_db, idea.id, idea.book_id, SessionType.LESSON_PRACTICE)
    assert stored.status is SessionStatus.ERROR
    assert stored.error_message == "model unavailable"


def test_error_session_replaced_on_next_request(tmp_db, idea, generator):
    init_db(tmp_db)
    with pytest.raises(SessionGenerationError):
        make_coordinator(tmp_db, CountingGenerator(fail_with=RuntimeError("boom"))).get_lesson_session(idea)
    session = make_coordinator(tmp_db, generator).get_lesson_session(idea)
    assert session.status is SessionStatus.READY
    assert len(list_sessions(tmp_db, idea.book_id)) == 1


def test_too_few_questions_is_an_error(tmp_db, idea):
    init_db(tmp_db)

    class ShortGenerator(CountingGenerator):
        def generate_fresh_questions(self, idea):
            test = super().generate_fresh_questions(idea)
            test.questions = test.questions[:5]
            return test

    with pytest.raises(SessionGenerationError):
        make_coordinator(tmp_db, ShortGenerator()).get_lesson_session(idea)


def test_stale_generating_row_is_replaced(tmp_db, idea, generator):
    init_db(tmp_db)
    stale = insert_generating(tmp_db, idea, NOW - timedelta(seconds=301))
    sleeps = []
    session = make_coordinator(tmp_db, generator, sleep=sleeps.append).get_lesson_session(idea)
    assert session.id != stale.id
    assert sleeps == []
    assert get_session(tmp_db, stale.id) is None


def test_waits_for_session_generated_elsewhere(tmp_db, idea, generator):
    init_db(tmp_db)
    pending = insert_generating(tmp_db, idea, NOW - timedelta(seconds=10))
    test = save_test(tmp_db, CountingGenerator().generate_fresh_questions(idea))

    def finish_elsewhere(seconds):
        conn = get_connection(tmp_db)
        conn.execute("UPDATE practice_sessions SET status = 'ready', test_id = ?, updated_at = ? WHERE id = ?",
                     (test.id, to_iso(NOW), pending.id))
        conn.commit()
        conn.close()

    session = make_coordinator(tmp_db, generator, sleep=finish_elsewhere).get_lesson_session(idea)
    assert session.id == pending.id
    assert session.status is SessionStatus.READY
    assert session.question_count == 8
    assert generator.fresh_calls == 0


def test_poll_surfaces_error_from_other_writer(tmp_db, idea, generator):
    init_db(tmp_db)
    pending = insert_generating(tmp_db, idea, NOW)

    def fail_elsewhere(seconds):
        conn = get_connection(tmp_db)
        conn.execute("UPDATE practice_sessions SET status = 'error', error_message = 'quota' WHERE id = ?",
                     (pending.id,))
        conn.commit()
        conn.close()

    with pytest.raises(SessionGenerationError, match="quota"):
        make_coordinator(tmp_db, generator, sleep=fail_elsewhere).get_lesson_session(idea)
    assert generator.fresh_calls == 0


def test_poll_exhausted_generates_inline(tmp_db, idea, generator):
    init_db(tmp_db)
    pending = insert_generating(tmp_db, idea, NOW)
    sleeps = []
    session = make_coordinator(tmp_db, generator, sleep=sleeps.append).get_lesson_session(idea)
    assert len(sleeps) == 3
    assert session.id != pending.id
    assert get_session(tmp_db, pending.id) is None
    assert generator.fresh_calls == 1


def test_row_replaced_while_generating(tmp_db, idea):
    init_db(tmp_db)

    class DeletingGenerator(CountingGenerator):
        def generate_fresh_questions(self, idea):
            conn = get_connection(tmp_db)
            conn.execute("DELETE FROM practice_sessions")
            conn.commit()
            conn.close()
            return super().generate_fresh_questions(idea)

    with pytest.raises(SessionGenerationError):
        make_coordinator(tmp_db, DeletingGenerator()).get_lesson_session(idea)
    conn = get_connection(tmp_db)
    assert conn.execute("SELECT COUNT(*) FROM tests").fetchone()[0] == 0
    conn.close()


def test_review_session_none_when_nothing_due(tmp_db, generator):
    init_db(tmp_db)
    coordinator = make_coordinator(tmp_db, generator)
    assert coordinator.get_review_session("review:1", "book-1", "Atomic Habits") is None
    assert list_sessions(tmp_db, "book-1") == []


def test_review_session_uses_review_caps(tmp_db, generator):
    init_db(tmp_db)
    for n in range(8):
        queue_mistake(tmp_db, n, idea_id=f"idea-{n}")
    for n in range(3):
        queue_mistake(tmp_db, n, QuestionType.OPEN_ENDED, idea_id=f"open-{n}")
    session = make_coordinator(tmp_db, generator).get_review_session("review:1", "book-1", "Atomic Habits")
    assert session.session_type is SessionType.REVIEW_PRACTICE
    assert session.test.test_type == "review"
    assert session.question_count == 8
    assert generator.fresh_calls == 0


def test_refresh_regenerates(tmp_db, idea, generator):
    init_db(tmp_db)
    coordinator = make_coordinator(tmp_db, generator)
    first = coordinator.get_lesson_session(idea)
    refreshed = coordinator.refresh_lesson_session(idea)
    assert refreshed.id != first.id
    assert generator.fresh_calls == 2
    assert get_session(tmp_db, first.id) is None


def test_invalid_transition_raises(tmp_db, idea, generator):
    init_db(tmp_db)
    coordinator = make_coordinator(tmp_db, generator)
    session = coordinator.get_lesson_session(idea)
    with pytest.raises(InvalidTransitionError):
        coordinator.pause_session(session)
    with pytest.raises(InvalidTransitionError):
        coordinator.complete_session(session, [])


def test_complete_session_records_results(tmp_db, idea, generator):
    init_db(tmp_db)
    coordinator = make_coordinator(tmp_db, generator)
    session = coordinator.start_session(coordinator.get_lesson_session(idea))
    responses = [
        Response(q.id, q.bloom_category is not BloomCategory.APPLY, q.bloom_category)
        for q in session.test.questions
    ]
    solid = coordinator.complete_session(session, responses, idea)
    assert solid == []
    assert get_session(tmp_db, session.id).status is SessionStatus.COMPLETED
    pending = list_pending_items(tmp_db, "book-1")
    assert [i.bloom_category for i in pending] == [BloomCategory.APPLY]


def test_completed_session_not_reused(tmp_db, idea, generator):
    init_db(tmp_db)
    coordinator = make_coordinator(tmp_db, generator)
    session = coordinator.start_session(coordinator.get_lesson_session(idea))
    coordinator.complete_session(session, [])
    again = coordinator.get_lesson_session(idea)
    assert again.id != session.id
    assert generator.fresh_calls == 2


def test_purge_stale_sessions(tmp_db, idea, generator):
    init_db(tmp_db)
    insert_generating(tmp_db, idea, NOW - timedelta(minutes=10))
    fresh = insert_generating(tmp_db, idea, NOW)
    coordinator = make_coordinator(tmp_db, generator)
    assert coordinator.purge_stale_sessions("book-1") == 1
    assert [s.id for s in list_sessions(tmp_db, "book-1")] == [fresh.id]


def test_start_in_progress_session_is_noop(tmp_db, idea, generator):
    init_db(tmp_db)
    coordinator = make_coordinator(tmp_db, generator)
    session = coordinator.start_session(coordinator.get_lesson_session(idea))
    assert coordinator.start_session(session).status is SessionStatus.IN_PROGRESS
    assert get_session(tmp_db, session.id).status is SessionStatus.IN_PROGRESS


def test_failed_result_recording_keeps_session_in_progress(tmp_db, idea, generator):
    init_db(tmp_db)
    coordinator = make_coordinator(tmp_db, generator)
    session = coordinator.start_session(coordinator.get_lesson_session(idea))
    responses = [Response(q.id, True, q.bloom_category) for q in session.test.questions]
    with patch("book_tutor.sessions.process_test_results",
               side_effect=sqlite3.OperationalError("database is locked")):
        with pytest.raises(sqlite3.OperationalError):
            coordinator.complete_session(session, responses, idea)
    assert session.status is SessionStatus.IN_PROGRESS
    assert get_session(tmp_db, session.id).status is SessionStatus.IN_PROGRESS
    assert find_coverage(tmp_db, idea.id, idea.book_id) is None

    coordinator.complete_session(session, responses, idea)
    assert get_session(tmp_db, session.id).status is SessionStatus.COMPLETED
    assert find_coverage(tmp_db, idea.id, idea.book_id).categories_covered == 8


def test_complete_without_test_raises(tmp_db, idea, generator):
    init_db(tmp_db)
    coordinator = make_coordinator(tmp_db, generator)
    session = coordinator.start_session(coordinator.get_lesson_session(idea))
    session.test = None
    session.test_id = None
    with pytest.raises(InvalidTransitionError):
        coordinator.complete_session(session, [])
    assert get_session(tmp_db, session.id).status is SessionStatus.IN_PROGRESS
