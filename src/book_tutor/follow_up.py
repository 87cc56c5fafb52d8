"""Spaced follow-ups: a delayed retrieval check once an idea's coverage gate is met."""
import logging
from datetime import datetime, timedelta

from book_tutor.config import DEFAULT_CONFIG, EngineConfig
from book_tutor.coverage import coverages_for_book, fetch_coverage, is_follow_up_eligible, save_coverage
from book_tutor.db import get_connection
from book_tutor.library import idea_title
from book_tutor.locking import book_lock
from book_tutor.models import BloomCategory, Difficulty, QuestionType, ReviewQueueItem
from book_tutor.review_queue import (
    complete_item_ids, dedupe_flagged, has_pending_flagged, insert_item,
)

logger = logging.getLogger(__name__)

FLAG = "is_spaced_follow_up"


def _dedupe(conn, book_id: str) -> int:
    passed = {
        c.idea_id for c in coverages_for_book(conn, book_id)
        if c.spaced_follow_up_passed_at is not None
    }
    return dedupe_flagged(conn, book_id, FLAG, passed)


def dedupe_follow_ups(db_path: str, book_id: str) -> int:
    """Complete duplicate or already-passed pending follow-ups for a book."""
    with book_lock(book_id):
        conn = get_connection(db_path)
        count = _dedupe(conn, book_id)
        conn.commit()
        conn.close()
    return count


def ensure_queued_if_due(
    db_path: str,
    book_id: str,
    book_title: str,
    now: datetime | None = None,
    config: EngineConfig = DEFAULT_CONFIG,
) -> list[ReviewQueueItem]:
    """Queue due follow-ups, at most one pending per idea. Safe to call repeatedly."""
    now = now or datetime.now()
    created = []
    with book_lock(book_id):
        conn = get_connection(db_path)
        _dedupe(conn, book_id)
        for coverage in coverages_for_book(conn, book_id):
            if not is_follow_up_eligible(coverage, config):
                continue
            due = coverage.spaced_follow_up_due_date
            if due is None or due > now:
                continue
            if has_pending_flagged(conn, book_id, coverage.idea_id, FLAG):
                continue

            title = idea_title(conn, coverage.idea_id)
            item = ReviewQueueItem(
                idea_id=coverage.idea_id,
                idea_title=title,
                book_id=book_id,
                book_title=book_title,
                question_type=QuestionType.OPEN_ENDED,
                difficulty=coverage.spaced_follow_up_difficulty or Difficulty.HARD,
                bloom_category=coverage.spaced_follow_up_bloom or BloomCategory.REFRAME,
                original_question_text=f"Spaced follow-up for {title}",
                is_spaced_follow_up=True,
                added_date=now,
            )
            insert_item(conn, item)
            created.append(item)
        conn.commit()
        conn.close()
    if created:
        logger.info("Queued %d spaced follow-ups for book %s", len(created), book_id)
    return created


def record_follow_up_result(
    db_path: str,
    item: ReviewQueueItem,
    passed: bool,
    book_id: str | None = None,
    now: datetime | None = None,
    config: EngineConfig = DEFAULT_CONFIG,
) -> None:
    """Apply a follow-up answer: pass schedules the curveball, fail retries later."""
    now = now or datetime.now()
    book_id = book_id or item.book_id
    with book_lock(book_id):
        conn = get_connection(db_path)
        if not passed:
            complete_item_ids(conn, [item.id])
            item.is_completed = True
        coverage = fetch_coverage(conn, item.idea_id, book_id)
        if coverage is None:
            logger.warning("No coverage for follow-up idea=%s book=%s", item.idea_id, book_id)
        elif passed:
            coverage.spaced_follow_up_passed_at = now
            coverage.curveball_due_date = now + timedelta(days=config.curveball_after_pass_days)
            save_coverage(conn, coverage)
            logger.info("Spaced follow-up passed for idea %s; curveball due %s",
                        item.idea_id, coverage.curveball_due_date.isoformat())
        else:
            coverage.spaced_follow_up_due_date = now + timedelta(days=config.retry_delay_days)
            save_coverage(conn, coverage)
            logger.info("Spaced follow-up failed for idea %s; retry due %s",
                        item.idea_id, coverage.spaced_follow_up_due_date.isoformat())
        conn.commit()
        conn.close()


def force_all_due(
    db_path: str,
    book_id: str,
    book_title: str,
    now: datetime | None = None,
    config: EngineConfig = DEFAULT_CONFIG,
) -> list[ReviewQueueItem]:
    """Dev hook: make every scheduled follow-up due now, then queue them."""
    now = now or datetime.now()
    past = now - timedelta(minutes=1)
    with book_lock(book_id):
        conn = get_connection(db_path)
        for coverage in coverages_for_book(conn, book_id):
            if is_follow_up_eligible(coverage, config) and coverage.spaced_follow_up_due_date is not None:
                coverage.spaced_follow_up_due_date = past
                save_coverage(conn, coverage)
        conn.commit()
        conn.close()
        return ensure_queued_if_due(db_path, book_id, book_title, now=now, config=config)
