"""Assembling a practice test from fresh questions and review items, and storing it."""
import json
import logging
from dataclasses import replace

from book_tutor.db import get_connection
from book_tutor.models import (
    Difficulty, Question, QuestionType, ReviewQueueItem, Test, new_id, parse_dt, to_iso,
)

logger = logging.getLogger(__name__)

_DIFFICULTY_ORDER = (Difficulty.EASY, Difficulty.MEDIUM, Difficulty.HARD)


def order_fresh_questions(questions: list[Question]) -> list[Question]:
    """Easy, Medium, then Hard, keeping the generator's order within each bucket.

    Open-ended questions in the Hard bucket go last, so the fresh block always
    ends on its highest-effort question.
    """
    buckets = {d: [q for q in questions if q.difficulty is d] for d in _DIFFICULTY_ORDER}
    hard = buckets[Difficulty.HARD]
    buckets[Difficulty.HARD] = (
        [q for q in hard if q.type is not QuestionType.OPEN_ENDED]
        + [q for q in hard if q.type is QuestionType.OPEN_ENDED]
    )
    return [q for d in _DIFFICULTY_ORDER for q in buckets[d]]


def order_review_pairs(
    review_pairs: list[tuple[ReviewQueueItem, Question]]
) -> list[tuple[ReviewQueueItem, Question]]:
    return sorted(review_pairs, key=lambda pair: pair[1].difficulty.point_value)


def assemble(
    fresh_questions: list[Question],
    review_pairs: list[tuple[ReviewQueueItem, Question]],
    idea_id: str,
    idea_title: str,
    book_title: str,
    test_type: str = "mixed",
) -> Test:
    """Build one ordered test: the fresh block, then review questions easiest first.

    Every question is cloned with a new id and a sequential ``order_index``.
    Review clones carry the id of the queue item they came from so a correct
    answer can retire it later.
    """
    questions = []
    for question in order_fresh_questions(fresh_questions):
        questions.append(replace(question, id=new_id(), order_index=len(questions)))
    fresh_count = len(questions)

    for item, question in order_review_pairs(review_pairs):
        questions.append(replace(
            question,
            id=new_id(),
            order_index=len(questions),
            source_queue_item_id=question.source_queue_item_id or item.id,
            is_curveball=question.is_curveball or item.is_curveball,
            is_spaced_follow_up=question.is_spaced_follow_up or item.is_spaced_follow_up,
        ))

    test = Test(
        idea_id=idea_id,
        idea_title=idea_title,
        book_title=book_title,
        test_type=test_type,
        questions=questions,
        fresh_question_count=fresh_count,
    )
    logger.debug("Assembled test %s: %d fresh + %d review questions",
                 test.id, fresh_count, len(questions) - fresh_count)
    return test


def save_test(db_path: str, test: Test) -> Test:
    conn = get_connection(db_path)
    conn.execute(
        """INSERT INTO tests
        (id, idea_id, idea_title, book_title, test_type, fresh_question_count, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET test_type=excluded.test_type,
            fresh_question_count=excluded.fresh_question_count""",
        (test.id, test.idea_id, test.idea_title, test.book_title, test.test_type,
         test.fresh_question_count, to_iso(test.created_at)),
    )
    conn.execute("DELETE FROM questions WHERE test_id = ?", (test.id,))
    conn.executemany(
        """INSERT INTO questions (
            id, test_id, idea_id, type, difficulty, bloom_category, question_text, options,
            correct_answers, order_index, is_curveball, is_spaced_follow_up, source_queue_item_id
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        [
            (
                q.id, test.id, q.idea_id, q.type.value, q.difficulty.value, q.bloom_category.value,
                q.question_text,
                json.dumps(q.options) if q.options is not None else None,
                json.dumps(q.correct_answers) if q.correct_answers is not None else None,
                q.order_index, int(q.is_curveball), int(q.is_spaced_follow_up),
                q.source_queue_item_id,
            )
            for q in test.questions
        ],
    )
    conn.commit()
    conn.close()
    return test


def get_test(db_path: str, test_id: str) -> Test | None:
    conn = get_connection(db_path)
    row = conn.execute("SELECT * FROM tests WHERE id = ?", (test_id,)).fetchone()
    if row is None:
        conn.close()
        return None
    question_rows = conn.execute(
        "SELECT * FROM questions WHERE test_id = ? ORDER BY order_index", (test_id,)
    ).fetchall()
    conn.close()
    return Test(
        id=row["id"],
        idea_id=row["idea_id"],
        idea_title=row["idea_title"],
        book_title=row["book_title"],
        test_type=row["test_type"],
        fresh_question_count=row["fresh_question_count"],
        created_at=parse_dt(row["created_at"]),
        questions=[Question.from_row(r) for r in question_rows],
    )


def delete_test(db_path: str, test_id: str) -> None:
    conn = get_connection(db_path)
    conn.execute("DELETE FROM tests WHERE id = ?", (test_id,))
    conn.commit()
    conn.close()
