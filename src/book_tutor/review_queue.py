"""Durable queue of mistakes, curveballs and spaced follow-ups awaiting re-asking."""
import logging

from book_tutor.db import get_connection
from book_tutor.locking import book_lock
from book_tutor.models import (
    Difficulty, Idea, QuestionType, Response, ReviewQueueItem, Test, concept_key, to_iso,
)

logger = logging.getLogger(__name__)


def normalize_title(title: str | None) -> str:
    """Case- and whitespace-insensitive book title used to match legacy rows."""
    return " ".join((title or "").lower().split())


def insert_item(conn, item: ReviewQueueItem) -> None:
    conn.execute(
        """INSERT INTO review_queue_items (
            id, idea_id, idea_title, book_id, book_title, book_title_key, question_type,
            concept_tested, difficulty, bloom_category, original_question_text,
            is_curveball, is_spaced_follow_up, is_completed, added_date
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            item.id, item.idea_id, item.idea_title, item.book_id, item.book_title,
            normalize_title(item.book_title), item.question_type.value, item.concept_tested,
            item.difficulty.value, item.bloom_category.value, item.original_question_text,
            int(item.is_curveball), int(item.is_spaced_follow_up), int(item.is_completed),
            to_iso(item.added_date),
        ),
    )


def save_item(db_path: str, item: ReviewQueueItem) -> ReviewQueueItem:
    conn = get_connection(db_path)
    insert_item(conn, item)
    conn.commit()
    conn.close()
    return item


def get_item(db_path: str, item_id: str) -> ReviewQueueItem | None:
    conn = get_connection(db_path)
    row = conn.execute("SELECT * FROM review_queue_items WHERE id = ?", (item_id,)).fetchone()
    conn.close()
    return ReviewQueueItem.from_row(row) if row else None


def pending_items(conn, book_id: str, book_title: str | None = None) -> list[ReviewQueueItem]:
    """Pending items for a book, oldest first, including legacy rows matched by title."""
    if book_title is not None:
        rows = conn.execute(
            """SELECT * FROM review_queue_items
            WHERE is_completed = 0 AND (book_id = ? OR (book_id IS NULL AND book_title_key = ?))
            ORDER BY added_date ASC, rowid ASC""",
            (book_id, normalize_title(book_title)),
        ).fetchall()
    else:
        rows = conn.execute(
            """SELECT * FROM review_queue_items
            WHERE is_completed = 0 AND book_id = ?
            ORDER BY added_date ASC, rowid ASC""",
            (book_id,),
        ).fetchall()
    return [ReviewQueueItem.from_row(r) for r in rows]


def list_pending_items(db_path: str, book_id: str, book_title: str | None = None) -> list[ReviewQueueItem]:
    conn = get_connection(db_path)
    items = pending_items(conn, book_id, book_title)
    conn.close()
    return items


def _open_priority(item: ReviewQueueItem) -> int:
    if item.is_curveball:
        return 0
    if item.is_spaced_follow_up:
        return 1
    return 2


def select_daily_items(
    pending: list[ReviewQueueItem], mcq_cap: int = 3, open_cap: int = 1
) -> tuple[list[ReviewQueueItem], list[ReviewQueueItem]]:
    """Pick today's review items from a FIFO-ordered pending list."""
    priority = next((i for i in pending if i.is_curveball), None) or next(
        (i for i in pending if i.is_spaced_follow_up), None
    )
    mcqs: list[ReviewQueueItem] = []
    opens: list[ReviewQueueItem] = []
    used: set[tuple[str, str]] = set()

    if priority is not None:
        bucket, cap = (mcqs, mcq_cap) if priority.question_type.is_choice else (opens, open_cap)
        if cap > 0:
            bucket.append(priority)
            used.add((priority.idea_id, priority.concept_tested))

    remaining = [i for i in pending if priority is None or i.id != priority.id]
    for item in remaining:
        if len(mcqs) >= mcq_cap:
            break
        key = (item.idea_id, item.concept_tested)
        if not item.question_type.is_choice or key in used:
            continue
        mcqs.append(item)
        used.add(key)

    open_pool = sorted(
        (i for i in remaining if not i.question_type.is_choice), key=_open_priority
    )
    for item in open_pool:
        if len(opens) >= open_cap:
            break
        key = (item.idea_id, item.concept_tested)
        if key in used:
            continue
        opens.append(item)
        used.add(key)
    return mcqs, opens


def get_daily_review_items(
    db_path: str,
    book_id: str,
    book_title: str | None = None,
    mcq_cap: int = 3,
    open_cap: int = 1,
) -> tuple[list[ReviewQueueItem], list[ReviewQueueItem]]:
    """Return (mcq_items, open_ended_items) due for review in this book."""
    conn = get_connection(db_path)
    pending = pending_items(conn, book_id, book_title)
    conn.close()
    mcqs, opens = select_daily_items(pending, mcq_cap, open_cap)
    logger.debug(
        "Review queue for book %s: %d pending, selected MCQ=%d OEQ=%d",
        book_id, len(pending), len(mcqs), len(opens),
    )
    return mcqs, opens


def add_mistakes_to_queue(
    db_path: str, responses: list[Response], test: Test, idea: Idea
) -> list[ReviewQueueItem]:
    """Queue one review item per wrong answer to a fresh question of ``test``."""
    added = []
    with book_lock(idea.book_id):
        conn = get_connection(db_path)
        for response in responses:
            if response.is_correct:
                continue
            question = test.question(response.question_id)
            if question is None:
                logger.warning("No question %s in test %s", response.question_id, test.id)
                continue
            if test.is_review_question(question):
                continue
            concept = concept_key(question.bloom_category, question.difficulty)
            existing = conn.execute(
                """SELECT 1 FROM review_queue_items
                WHERE is_completed = 0 AND is_curveball = 0 AND idea_id = ?
                    AND concept_tested = ? AND question_type = ?""",
                (idea.id, concept, question.type.value),
            ).fetchone()
            if existing:
                continue
            item = ReviewQueueItem(
                idea_id=idea.id,
                idea_title=idea.title,
                book_id=idea.book_id,
                book_title=idea.book_title,
                question_type=question.type,
                difficulty=question.difficulty,
                bloom_category=question.bloom_category,
                original_question_text=question.question_text,
            )
            insert_item(conn, item)
            added.append(item)
        conn.commit()
        conn.close()
    if added:
        logger.info("Added %d mistakes to review queue for idea '%s'", len(added), idea.title)
    return added


def complete_item_ids(conn, item_ids) -> int:
    ids = list(item_ids)
    if not ids:
        return 0
    placeholders = ", ".join("?" for _ in ids)
    cursor = conn.execute(
        f"UPDATE review_queue_items SET is_completed = 1 WHERE id IN ({placeholders})", ids
    )
    return cursor.rowcount


def mark_items_as_completed(db_path: str, items: list[ReviewQueueItem]) -> int:
    conn = get_connection(db_path)
    count = complete_item_ids(conn, [item.id for item in items])
    conn.commit()
    conn.close()
    for item in items:
        item.is_completed = True
    logger.info("Marked %d review items as completed", count)
    return count


def find_pending_item(
    db_path: str, book_id: str, idea_id: str, difficulty: Difficulty
) -> ReviewQueueItem | None:
    """Oldest pending item for (idea, difficulty); fallback for questions without a source id."""
    conn = get_connection(db_path)
    row = conn.execute(
        """SELECT * FROM review_queue_items
        WHERE is_completed = 0 AND idea_id = ? AND difficulty = ? AND (book_id = ? OR book_id IS NULL)
        ORDER BY added_date ASC, rowid ASC LIMIT 1""",
        (idea_id, difficulty.value, book_id),
    ).fetchone()
    conn.close()
    return ReviewQueueItem.from_row(row) if row else None


def has_pending_flagged(conn, book_id: str, idea_id: str, flag_column: str) -> bool:
    row = conn.execute(
        f"""SELECT 1 FROM review_queue_items
        WHERE is_completed = 0 AND book_id = ? AND idea_id = ? AND {flag_column} = 1 LIMIT 1""",
        (book_id, idea_id),
    ).fetchone()
    return row is not None


def dedupe_flagged(conn, book_id: str, flag_column: str, settled_idea_ids: set[str]) -> int:
    """Keep at most one pending item per idea for a curveball/follow-up flag.

    Ideas in ``settled_idea_ids`` already passed this stage, so every pending
    item for them is completed. Otherwise the earliest pending item survives.
    Returns the number of items completed.
    """
    rows = conn.execute(
        f"""SELECT * FROM review_queue_items
        WHERE book_id = ? AND {flag_column} = 1
        ORDER BY added_date ASC, rowid ASC""",
        (book_id,),
    ).fetchall()
    by_idea: dict[str, list[ReviewQueueItem]] = {}
    for row in rows:
        item = ReviewQueueItem.from_row(row)
        by_idea.setdefault(item.idea_id, []).append(item)

    to_complete = []
    for idea_id, items in by_idea.items():
        pending = [i for i in items if not i.is_completed]
        if idea_id in settled_idea_ids:
            to_complete.extend(pending)
        elif len(pending) > 1:
            to_complete.extend(pending[1:])
    count = complete_item_ids(conn, [i.id for i in to_complete])
    if count:
        logger.info("Cleaned up %d duplicate %s items for book %s", count, flag_column, book_id)
    return count


def get_queue_statistics(db_path: str, book_id: str, book_title: str | None = None) -> dict:
    conn = get_connection(db_path)
    pending = pending_items(conn, book_id, book_title)
    conn.close()
    return {
        "total_mcqs": sum(1 for i in pending if i.question_type.is_choice),
        "total_open_ended": sum(1 for i in pending if i.question_type is QuestionType.OPEN_ENDED),
        "curveballs": sum(1 for i in pending if i.is_curveball),
        "spaced_follow_ups": sum(1 for i in pending if i.is_spaced_follow_up),
        "total": len(pending),
    }
