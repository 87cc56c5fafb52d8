"""Curveballs: the last, harder check before an idea counts as solidly mastered.

A curveball becomes due a few days after the spaced follow-up is passed. It
targets the Bloom category the learner has stumbled on most. A failed
curveball only retires the queue item; the idea stays due, so the next
``ensure_curveballs_queued_if_due`` call queues a fresh one.
"""
import logging
from collections import Counter
from datetime import datetime, timedelta

from book_tutor.config import DEFAULT_CONFIG, EngineConfig
from book_tutor.coverage import coverages_for_book, fetch_coverage, save_coverage
from book_tutor.db import get_connection
from book_tutor.library import idea_title
from book_tutor.locking import book_lock
from book_tutor.models import (
    BloomCategory, Difficulty, QuestionType, ReviewQueueItem,
)
from book_tutor.review_queue import (
    complete_item_ids, dedupe_flagged, has_pending_flagged, insert_item,
)

logger = logging.getLogger(__name__)

FLAG = "is_curveball"

MIN_SEED_LENGTH = 20
PLACEHOLDER_PHRASES = (
    "all of the above",
    "none of the above",
    "both a and b",
    "option 1",
    "option one",
    "placeholder",
)


def is_poor_seed(text: str | None) -> bool:
    """True if ``text`` is too short or reads like a template option."""
    cleaned = (text or "").strip()
    if len(cleaned) < MIN_SEED_LENGTH:
        return True
    lowered = cleaned.lower()
    return any(phrase in lowered for phrase in PLACEHOLDER_PHRASES)


def _mistake_items(conn, book_id: str, idea_id: str) -> list[ReviewQueueItem]:
    rows = conn.execute(
        """SELECT * FROM review_queue_items
        WHERE idea_id = ? AND (book_id = ? OR book_id IS NULL)
            AND is_curveball = 0 AND is_spaced_follow_up = 0
        ORDER BY added_date ASC, rowid ASC""",
        (idea_id, book_id),
    ).fetchall()
    return [ReviewQueueItem.from_row(r) for r in rows]


def choose_curveball_target(mistakes: list[ReviewQueueItem]) -> tuple[BloomCategory, QuestionType]:
    """Choose the (bloom, type) of the curveball for an idea.

    No recorded mistakes means a HowWield open-ended question. Otherwise the
    most-missed category is targeted; ties go to the category missed first.
    HowWield and Reframe are asked open-ended, everything else as MCQ.
    """
    if not mistakes:
        return BloomCategory.HOW_WIELD, QuestionType.OPEN_ENDED
    counts = Counter(item.bloom_category for item in mistakes)
    bloom = max(counts, key=lambda b: counts[b])
    if bloom in (BloomCategory.HOW_WIELD, BloomCategory.REFRAME):
        return bloom, QuestionType.OPEN_ENDED
    return bloom, QuestionType.MCQ


def seed_text(mistakes: list[ReviewQueueItem], bloom: BloomCategory, title: str) -> str:
    """Latest mistake wording in ``bloom``, or a generic prompt if it is unusable."""
    in_bloom = [m for m in mistakes if m.bloom_category is bloom]
    latest = in_bloom[-1].original_question_text if in_bloom else None
    if is_poor_seed(latest):
        return f"Curveball validation for {title}"
    return latest


def _dedupe(conn, book_id: str) -> int:
    passed = {c.idea_id for c in coverages_for_book(conn, book_id) if c.curveball_passed}
    return dedupe_flagged(conn, book_id, FLAG, passed)


def dedupe_curveballs(db_path: str, book_id: str) -> int:
    """Complete duplicate or already-passed pending curveballs for a book."""
    with book_lock(book_id):
        conn = get_connection(db_path)
        count = _dedupe(conn, book_id)
        conn.commit()
        conn.close()
    return count


def ensure_curveballs_queued_if_due(
    db_path: str,
    book_id: str,
    book_title: str,
    now: datetime | None = None,
    config: EngineConfig = DEFAULT_CONFIG,
) -> list[ReviewQueueItem]:
    """Queue one curveball per idea whose follow-up passed and whose curveball is due."""
    now = now or datetime.now()
    created = []
    with book_lock(book_id):
        conn = get_connection(db_path)
        _dedupe(conn, book_id)
        for coverage in coverages_for_book(conn, book_id):
            if coverage.spaced_follow_up_passed_at is None or coverage.curveball_passed:
                continue
            due = coverage.curveball_due_date
            if due is None or due > now:
                continue
            if has_pending_flagged(conn, book_id, coverage.idea_id, FLAG):
                continue

            title = idea_title(conn, coverage.idea_id)
            mistakes = _mistake_items(conn, book_id, coverage.idea_id)
            bloom, question_type = choose_curveball_target(mistakes)
            item = ReviewQueueItem(
                idea_id=coverage.idea_id,
                idea_title=title,
                book_id=book_id,
                book_title=book_title,
                question_type=question_type,
                difficulty=Difficulty.HARD,
                bloom_category=bloom,
                original_question_text=seed_text(mistakes, bloom, title),
                is_curveball=True,
                added_date=now,
            )
            insert_item(conn, item)
            created.append(item)
            logger.debug("Curveball for idea %s targets %s (%s)",
                         coverage.idea_id, bloom.value, question_type.value)
        conn.commit()
        conn.close()
    if created:
        logger.info("Queued %d curveballs for book %s", len(created), book_id)
    return created


def record_curveball_result(
    db_path: str,
    item: ReviewQueueItem,
    passed: bool,
    book_id: str | None = None,
    now: datetime | None = None,
) -> None:
    """Pass promotes the idea to solid mastery.

    Fail retires the item and unschedules the curveball. No new due date is
    set, so the idea waits until something reschedules it (``force_all_due``).
    """
    now = now or datetime.now()
    book_id = book_id or item.book_id
    with book_lock(book_id):
        conn = get_connection(db_path)
        coverage = fetch_coverage(conn, item.idea_id, book_id)
        if not passed:
            complete_item_ids(conn, [item.id])
            item.is_completed = True
            if coverage is not None and not coverage.curveball_passed:
                coverage.curveball_due_date = None
                save_coverage(conn, coverage)
            logger.info("Curveball failed for idea %s; not rescheduled", item.idea_id)
        else:
            if coverage is None:
                logger.warning("No coverage for curveball idea=%s book=%s", item.idea_id, book_id)
            else:
                coverage.curveball_passed = True
                coverage.curveball_passed_at = now
                save_coverage(conn, coverage)
                logger.info("Curveball passed for idea %s", item.idea_id)
        conn.commit()
        conn.close()


def force_all_due(
    db_path: str,
    book_id: str,
    book_title: str,
    now: datetime | None = None,
    config: EngineConfig = DEFAULT_CONFIG,
) -> list[ReviewQueueItem]:
    """Dev hook: make every pending curveball due now, then queue them.

    Ideas left unscheduled by a failed curveball are rescheduled too.
    """
    now = now or datetime.now()
    past = now - timedelta(minutes=1)
    with book_lock(book_id):
        conn = get_connection(db_path)
        for coverage in coverages_for_book(conn, book_id):
            if coverage.curveball_passed or coverage.spaced_follow_up_passed_at is None:
                continue
            coverage.curveball_due_date = past
            save_coverage(conn, coverage)
        conn.commit()
        conn.close()
        return ensure_curveballs_queued_if_due(db_path, book_id, book_title, now=now, config=config)
