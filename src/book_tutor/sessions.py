"""Practice sessions: one assembled test per (idea, book, session type) slot.

A session row is created in ``generating`` before questions are requested, so
a second caller asking for the same slot waits for the first instead of
generating twice. Rows left in ``generating`` by a crashed run are treated
as abandoned once they are older than ``stale_generation_seconds``.
"""
import logging
import time
from datetime import datetime, timedelta

from book_tutor.assembly import assemble, delete_test, get_test, save_test
from book_tutor.config import EngineConfig, load_config
from book_tutor.curveball import ensure_curveballs_queued_if_due
from book_tutor.db import get_connection
from book_tutor.follow_up import ensure_queued_if_due
from book_tutor.generation import GenerationError, QuestionGenerator
from book_tutor.models import (
    Idea, PracticeSession, Response, SessionStatus, SessionType, Test, to_iso,
)
from book_tutor.results import process_test_results
from book_tutor.review_queue import get_daily_review_items

logger = logging.getLogger(__name__)

# Bump when the way tests are assembled changes; older sessions get rebuilt.
SESSION_CONFIG_VERSION = 1


class SessionGenerationError(Exception):
    """Raised when a session's questions could not be generated."""
    pass


class InvalidTransitionError(Exception):
    """Raised on a session status change the state machine does not allow."""
    pass


def _insert_session(db_path: str, session: PracticeSession) -> None:
    conn = get_connection(db_path)
    conn.execute(
        """INSERT INTO practice_sessions
        (id, idea_id, book_id, session_type, status, config_version, error_message, test_id,
         created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            session.id, session.idea_id, session.book_id, session.session_type.value,
            session.status.value, session.config_version, session.error_message,
            session.test_id, to_iso(session.created_at), to_iso(session.updated_at),
        ),
    )
    conn.commit()
    conn.close()


def get_session(db_path: str, session_id: str) -> PracticeSession | None:
    conn = get_connection(db_path)
    row = conn.execute("SELECT * FROM practice_sessions WHERE id = ?", (session_id,)).fetchone()
    conn.close()
    return PracticeSession.from_row(row) if row else None


def find_latest_session(
    db_path: str, idea_id: str, book_id: str, session_type: SessionType
) -> PracticeSession | None:
    conn = get_connection(db_path)
    row = conn.execute(
        """SELECT * FROM practice_sessions
        WHERE idea_id = ? AND book_id = ? AND session_type = ?
        ORDER BY updated_at DESC, rowid DESC LIMIT 1""",
        (idea_id, book_id, session_type.value),
    ).fetchone()
    conn.close()
    return PracticeSession.from_row(row) if row else None


def list_sessions(db_path: str, book_id: str | None = None) -> list[PracticeSession]:
    conn = get_connection(db_path)
    if book_id is None:
        rows = conn.execute("SELECT * FROM practice_sessions ORDER BY updated_at DESC").fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM practice_sessions WHERE book_id = ? ORDER BY updated_at DESC", (book_id,)
        ).fetchall()
    conn.close()
    return [PracticeSession.from_row(r) for r in rows]


def delete_session(db_path: str, session: PracticeSession) -> None:
    """Delete a session row and the test attached to it."""
    conn = get_connection(db_path)
    row = conn.execute("SELECT test_id FROM practice_sessions WHERE id = ?", (session.id,)).fetchone()
    test_ids = {tid for tid in (session.test_id, row["test_id"] if row else None) if tid}
    conn.execute("DELETE FROM practice_sessions WHERE id = ?", (session.id,))
    for test_id in test_ids:
        conn.execute("DELETE FROM tests WHERE id = ?", (test_id,))
    conn.commit()
    conn.close()


class PracticeSessionCoordinator:
    """Get-or-generate practice sessions and drive their status transitions."""

    def __init__(
        self,
        db_path: str,
        generator: QuestionGenerator,
        config: EngineConfig | None = None,
        sleep=time.sleep,
        clock=datetime.now,
    ):
        self.db_path = db_path
        self.generator = generator
        self.config = config or load_config(db_path)
        self._sleep = sleep
        self._clock = clock

    # -- public surface -------------------------------------------------

    def get_lesson_session(self, idea: Idea, book_id: str | None = None,
                           book_title: str | None = None) -> PracticeSession:
        book_id = book_id or idea.book_id
        book_title = book_title or idea.book_title
        return self._get_or_create(
            idea.id, book_id, SessionType.LESSON_PRACTICE,
            lambda: self._build_lesson_test(idea, book_id, book_title),
        )

    def get_review_session(self, session_key: str, book_id: str,
                           book_title: str) -> PracticeSession | None:
        """Daily review session, or None when nothing is due."""
        return self._get_or_create(
            session_key, book_id, SessionType.REVIEW_PRACTICE,
            lambda: self._build_review_test(session_key, book_id, book_title),
        )

    def refresh_lesson_session(self, idea: Idea, book_id: str | None = None,
                               book_title: str | None = None) -> PracticeSession:
        self._clear_slot(idea.id, book_id or idea.book_id, SessionType.LESSON_PRACTICE)
        return self.get_lesson_session(idea, book_id, book_title)

    def refresh_review_session(self, session_key: str, book_id: str,
                               book_title: str) -> PracticeSession | None:
        self._clear_slot(session_key, book_id, SessionType.REVIEW_PRACTICE)
        return self.get_review_session(session_key, book_id, book_title)

    def start_session(self, session: PracticeSession) -> PracticeSession:
        """Begin or resume ``session``. A session already in progress is returned as is."""
        if session.status is not SessionStatus.IN_PROGRESS:
            self._require_transition(session, SessionStatus.IN_PROGRESS)
        return session

    def pause_session(self, session: PracticeSession) -> PracticeSession:
        self._require_transition(session, SessionStatus.PAUSED)
        return session

    def complete_session(
        self,
        session: PracticeSession,
        responses: list[Response],
        idea: Idea | None = None,
        book_title: str = "",
    ) -> list[str]:
        """Apply the answers, then mark the session completed.

        Returns newly solid-mastered idea ids. If recording the answers fails
        the session stays in progress so they can be submitted again.
        """
        self._check_transition(session, SessionStatus.COMPLETED)
        test = session.test or (get_test(self.db_path, session.test_id) if session.test_id else None)
        if test is None:
            raise InvalidTransitionError(f"Session {session.id} has no test to complete")
        if idea is None:
            idea = Idea(
                id=session.idea_id, title=test.idea_title, book_id=session.book_id,
                book_title=book_title or test.book_title,
            )
        solid = process_test_results(
            self.db_path, test, responses, idea, now=self._clock(), config=self.config,
        )
        self._require_transition(session, SessionStatus.COMPLETED)
        return solid

    def purge_stale_sessions(self, book_id: str, idea_id: str | None = None) -> int:
        """Delete abandoned ``generating`` rows and ``error`` rows. Returns how many."""
        purged = 0
        for session in list_sessions(self.db_path, book_id):
            if idea_id is not None and session.idea_id != idea_id:
                continue
            if session.status is SessionStatus.ERROR or (
                session.status is SessionStatus.GENERATING and self._is_stale(session)
            ):
                delete_session(self.db_path, session)
                purged += 1
        if purged:
            logger.info("Purged %d stale sessions for book %s", purged, book_id)
        return purged

    # -- lookup ---------------------------------------------------------

    def _get_or_create(self, slot: str, book_id: str, session_type: SessionType, build):
        existing = find_latest_session(self.db_path, slot, book_id, session_type)
        if existing is not None:
            resolved = self._resolve_existing(existing)
            if resolved is not None:
                return resolved
        return self._generate(slot, book_id, session_type, build)

    def _min_questions(self, session_type: SessionType) -> int:
        if session_type is SessionType.LESSON_PRACTICE:
            return self.config.min_lesson_questions
        return 1

    def _is_stale(self, session: PracticeSession) -> bool:
        age = self._clock() - session.updated_at
        return age >= timedelta(seconds=self.config.stale_generation_seconds)

    def _resolve_existing(self, session: PracticeSession) -> PracticeSession | None:
        """Reusable session for this row, or None after deleting it."""
        if session.status is SessionStatus.GENERATING and session.config_version == SESSION_CONFIG_VERSION:
            if not self._is_stale(session):
                return self._wait_for(session)
            logger.warning("Session %s stuck generating since %s; regenerating",
                           session.id, session.updated_at.isoformat())
        elif session.status.is_resumable and session.config_version == SESSION_CONFIG_VERSION:
            test = get_test(self.db_path, session.test_id) if session.test_id else None
            if test is not None and len(test.questions) >= self._min_questions(session.session_type):
                session.test = test
                logger.debug("Reusing %s session %s (%d questions)",
                             session.status.value, session.id, len(test.questions))
                return session
            logger.warning("Session %s has an incomplete test; regenerating", session.id)
        else:
            logger.info("Discarding %s session %s", session.status.value, session.id)
        delete_session(self.db_path, session)
        return None

    def _wait_for(self, session: PracticeSession) -> PracticeSession | None:
        """Poll a session another caller is generating."""
        logger.info("Waiting for session %s generated elsewhere", session.id)
        for _ in range(self.config.poll_attempts):
            self._sleep(self.config.poll_interval_seconds)
            current = get_session(self.db_path, session.id)
            if current is None:
                logger.warning("Session %s vanished while polling", session.id)
                return None
            if current.status is SessionStatus.ERROR:
                raise SessionGenerationError(current.error_message or "Question generation failed")
            if current.status is not SessionStatus.GENERATING:
                return self._resolve_existing(current)
        logger.warning("Gave up waiting for session %s after %d polls",
                       session.id, self.config.poll_attempts)
        delete_session(self.db_path, session)
        return None

    # -- generation -----------------------------------------------------

    def _generate(self, slot: str, book_id: str, session_type: SessionType, build):
        now = self._clock()
        session = PracticeSession(
            idea_id=slot, book_id=book_id, session_type=session_type,
            config_version=SESSION_CONFIG_VERSION, created_at=now, updated_at=now,
        )
        _insert_session(self.db_path, session)
        logger.info("Generating %s session %s for %s", session_type.value, session.id, slot)

        try:
            test = build()
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            self._transition(session, SessionStatus.ERROR, error_message=message)
            logger.error("Generation failed for session %s: %s", session.id, message)
            raise SessionGenerationError(message) from exc

        if test is None:
            delete_session(self.db_path, session)
            logger.info("Nothing due for %s session %s", session_type.value, slot)
            return None

        save_test(self.db_path, test)
        if not self._transition(session, SessionStatus.READY, test_id=test.id):
            # Another caller deleted this row as stale; its replacement wins.
            logger.warning("Session %s was replaced while generating; discarding result", session.id)
            delete_test(self.db_path, test.id)
            latest = find_latest_session(self.db_path, slot, book_id, session_type)
            resolved = self._resolve_existing(latest) if latest else None
            if resolved is None:
                raise SessionGenerationError("Session was replaced while generating")
            return resolved
        session.test = test
        logger.info("Session %s ready with %d questions", session.id, len(test.questions))
        return session

    def _review_pairs(self, book_id: str, book_title: str, mcq_cap: int, open_cap: int):
        now = self._clock()
        ensure_curveballs_queued_if_due(self.db_path, book_id, book_title, now=now, config=self.config)
        ensure_queued_if_due(self.db_path, book_id, book_title, now=now, config=self.config)
        mcqs, opens = get_daily_review_items(self.db_path, book_id, book_title, mcq_cap, open_cap)
        items = mcqs + opens
        if not items:
            return []
        questions = self.generator.generate_from_queue_items(items)
        if len(questions) != len(items):
            raise GenerationError(
                f"Expected {len(items)} review questions, got {len(questions)}"
            )
        return list(zip(items, questions))

    def _build_lesson_test(self, idea: Idea, book_id: str, book_title: str) -> Test:
        fresh = self.generator.generate_fresh_questions(idea).questions
        if len(fresh) < self.config.min_lesson_questions:
            raise GenerationError(
                f"Expected at least {self.config.min_lesson_questions} questions, got {len(fresh)}"
            )
        pairs = self._review_pairs(
            book_id, book_title, self.config.lesson_mcq_cap, self.config.lesson_open_cap
        )
        return assemble(fresh, pairs, idea.id, idea.title, book_title,
                        test_type="mixed" if pairs else "initial")

    def _build_review_test(self, session_key: str, book_id: str, book_title: str) -> Test | None:
        pairs = self._review_pairs(
            book_id, book_title, self.config.review_mcq_cap, self.config.review_open_cap
        )
        if not pairs:
            return None
        return assemble([], pairs, session_key, "Daily review", book_title, test_type="review")

    # -- state machine --------------------------------------------------

    def _clear_slot(self, slot: str, book_id: str, session_type: SessionType) -> None:
        while True:
            session = find_latest_session(self.db_path, slot, book_id, session_type)
            if session is None:
                return
            delete_session(self.db_path, session)

    def _transition(self, session: PracticeSession, target: SessionStatus,
                    error_message: str | None = None, test_id: str | None = None) -> bool:
        """Move ``session`` to ``target``. False if the row no longer exists."""
        self._check_transition(session, target)
        now = self._clock()
        conn = get_connection(self.db_path)
        cursor = conn.execute(
            """UPDATE practice_sessions
            SET status = ?, error_message = COALESCE(?, error_message),
                test_id = COALESCE(?, test_id), updated_at = ?
            WHERE id = ? AND status = ?""",
            (target.value, error_message, test_id, to_iso(now), session.id, session.status.value),
        )
        updated = cursor.rowcount
        conn.commit()
        conn.close()
        if updated == 0:
            return False
        logger.debug("Session %s: %s -> %s", session.id, session.status.value, target.value)
        session.status = target
        session.updated_at = now
        if error_message is not None:
            session.error_message = error_message
        if test_id is not None:
            session.test_id = test_id
        return True

    @staticmethod
    def _check_transition(session: PracticeSession, target: SessionStatus) -> None:
        if not session.status.can_transition_to(target):
            raise InvalidTransitionError(
                f"Cannot move session {session.id} from {session.status.value} to {target.value}"
            )

    def _require_transition(self, session: PracticeSession, target: SessionStatus) -> None:
        if not self._transition(session, target):
            raise InvalidTransitionError(
                f"Session {session.id} is no longer {session.status.value}"
            )
