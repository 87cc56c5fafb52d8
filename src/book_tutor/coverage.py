"""Per-idea coverage ledger and the trigger that starts the follow-up pipeline.

Coverage is not mastery: an idea is "covered" once every Bloom category has
been answered correctly at least once. Meeting that gate schedules a spaced
follow-up, which in turn schedules a curveball (see follow_up.py and
curveball.py).
"""
import json
import logging
from datetime import datetime, timedelta

from book_tutor.config import DEFAULT_CONFIG, EngineConfig, FollowUpGate
from book_tutor.db import get_connection
from book_tutor.locking import book_lock
from book_tutor.models import (
    BloomCategory, Difficulty, IdeaCoverage, QuestionType, Response, to_iso,
)

logger = logging.getLogger(__name__)

_BLOOM_ORDER = list(BloomCategory)


def save_coverage(conn, coverage: IdeaCoverage) -> None:
    """Upsert a coverage row on an open connection (caller commits)."""
    categories = [c.value for c in _BLOOM_ORDER if c in coverage.covered_categories]
    conn.execute(
        """INSERT INTO idea_coverage (
            idea_id, book_id, covered_categories, total_questions_seen, total_questions_correct,
            mistakes_count, spaced_follow_up_due_date, spaced_follow_up_passed_at,
            spaced_follow_up_bloom, spaced_follow_up_difficulty, curveball_due_date,
            curveball_passed, curveball_passed_at, first_attempt_at, last_attempt_at, covered_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(idea_id, book_id) DO UPDATE SET
            covered_categories=excluded.covered_categories,
            total_questions_seen=excluded.total_questions_seen,
            total_questions_correct=excluded.total_questions_correct,
            mistakes_count=excluded.mistakes_count,
            spaced_follow_up_due_date=excluded.spaced_follow_up_due_date,
            spaced_follow_up_passed_at=excluded.spaced_follow_up_passed_at,
            spaced_follow_up_bloom=excluded.spaced_follow_up_bloom,
            spaced_follow_up_difficulty=excluded.spaced_follow_up_difficulty,
            curveball_due_date=excluded.curveball_due_date,
            curveball_passed=excluded.curveball_passed,
            curveball_passed_at=excluded.curveball_passed_at,
            first_attempt_at=excluded.first_attempt_at,
            last_attempt_at=excluded.last_attempt_at,
            covered_at=excluded.covered_at""",
        (
            coverage.idea_id,
            coverage.book_id,
            json.dumps(categories),
            coverage.total_questions_seen,
            coverage.total_questions_correct,
            coverage.mistakes_count,
            to_iso(coverage.spaced_follow_up_due_date),
            to_iso(coverage.spaced_follow_up_passed_at),
            coverage.spaced_follow_up_bloom.value if coverage.spaced_follow_up_bloom else None,
            coverage.spaced_follow_up_difficulty.value if coverage.spaced_follow_up_difficulty else None,
            to_iso(coverage.curveball_due_date),
            int(coverage.curveball_passed),
            to_iso(coverage.curveball_passed_at),
            to_iso(coverage.first_attempt_at),
            to_iso(coverage.last_attempt_at),
            to_iso(coverage.covered_at),
        ),
    )


def fetch_coverage(conn, idea_id: str, book_id: str) -> IdeaCoverage | None:
    row = conn.execute(
        "SELECT * FROM idea_coverage WHERE idea_id = ? AND book_id = ?", (idea_id, book_id)
    ).fetchone()
    return IdeaCoverage.from_row(row) if row else None


def find_coverage(db_path: str, idea_id: str, book_id: str) -> IdeaCoverage | None:
    conn = get_connection(db_path)
    coverage = fetch_coverage(conn, idea_id, book_id)
    conn.close()
    return coverage


def get_coverage(db_path: str, idea_id: str, book_id: str) -> IdeaCoverage:
    """Get or create the coverage record for an idea."""
    conn = get_connection(db_path)
    coverage = fetch_coverage(conn, idea_id, book_id)
    if coverage is None:
        logger.debug("Creating coverage for idea=%s book=%s", idea_id, book_id)
        coverage = IdeaCoverage(idea_id=idea_id, book_id=book_id)
        save_coverage(conn, coverage)
        conn.commit()
    conn.close()
    return coverage


def coverages_for_book(conn, book_id: str) -> list[IdeaCoverage]:
    rows = conn.execute(
        "SELECT * FROM idea_coverage WHERE book_id = ? ORDER BY idea_id", (book_id,)
    ).fetchall()
    return [IdeaCoverage.from_row(r) for r in rows]


def list_coverages(db_path: str, book_id: str) -> list[IdeaCoverage]:
    conn = get_connection(db_path)
    coverages = coverages_for_book(conn, book_id)
    conn.close()
    return coverages


def meets_mastery_gate(coverage: IdeaCoverage, config: EngineConfig = DEFAULT_CONFIG) -> bool:
    if config.follow_up_gate is FollowUpGate.CORRECT_ANSWERS:
        return coverage.total_questions_correct >= config.mastery_gate
    return coverage.categories_covered >= config.mastery_gate


def is_follow_up_eligible(coverage: IdeaCoverage, config: EngineConfig = DEFAULT_CONFIG) -> bool:
    """Gate met, a source bloom chosen and the follow-up not yet passed."""
    return (
        coverage.spaced_follow_up_passed_at is None
        and coverage.spaced_follow_up_bloom is not None
        and meets_mastery_gate(coverage, config)
    )


def is_solid_mastery(coverage: IdeaCoverage, config: EngineConfig = DEFAULT_CONFIG) -> bool:
    return (
        meets_mastery_gate(coverage, config)
        and coverage.spaced_follow_up_passed_at is not None
        and coverage.curveball_passed
    )


def pick_follow_up_source(responses: list[Response]) -> Response | None:
    """Best correct answer to seed the follow-up: Hard MCQ, then Medium MCQ, then open-ended."""
    correct = [r for r in responses if r.is_correct]

    def first(predicate):
        return next((r for r in correct if predicate(r)), None)

    return (
        first(lambda r: r.question_type is QuestionType.MCQ and r.difficulty is Difficulty.HARD)
        or first(lambda r: r.question_type is QuestionType.MCQ and r.difficulty is Difficulty.MEDIUM)
        or first(lambda r: r.question_type is QuestionType.OPEN_ENDED)
    )


def apply_responses(
    coverage: IdeaCoverage,
    responses: list[Response],
    now: datetime,
    config: EngineConfig = DEFAULT_CONFIG,
) -> IdeaCoverage:
    """Fold a batch of answers into ``coverage`` in place."""
    for response in responses:
        coverage.total_questions_seen += 1
        if response.is_correct:
            coverage.total_questions_correct += 1
            coverage.covered_categories.add(BloomCategory(response.bloom_category))
        else:
            coverage.mistakes_count += 1
    if responses:
        coverage.first_attempt_at = coverage.first_attempt_at or now
        coverage.last_attempt_at = now

    source = pick_follow_up_source(responses)
    if source is not None:
        if coverage.spaced_follow_up_bloom is None:
            coverage.spaced_follow_up_bloom = BloomCategory(source.bloom_category)
        if coverage.spaced_follow_up_difficulty is None:
            coverage.spaced_follow_up_difficulty = (
                Difficulty.HARD if source.question_type is QuestionType.OPEN_ENDED else source.difficulty
            )

    if meets_mastery_gate(coverage, config):
        if coverage.covered_at is None:
            coverage.covered_at = now
        if (
            coverage.spaced_follow_up_passed_at is None
            and coverage.spaced_follow_up_due_date is None
            and coverage.spaced_follow_up_bloom is not None
        ):
            coverage.spaced_follow_up_due_date = now + timedelta(days=config.base_delay_days)
            logger.info(
                "Idea %s covered all categories; spaced follow-up due %s",
                coverage.idea_id, coverage.spaced_follow_up_due_date.isoformat(),
            )
    return coverage


def record_responses(
    db_path: str,
    idea_id: str,
    book_id: str,
    responses: list[Response],
    now: datetime | None = None,
    config: EngineConfig = DEFAULT_CONFIG,
) -> IdeaCoverage:
    """Record answered questions for one idea and persist the updated coverage."""
    now = now or datetime.now()
    with book_lock(book_id):
        conn = get_connection(db_path)
        coverage = fetch_coverage(conn, idea_id, book_id) or IdeaCoverage(idea_id=idea_id, book_id=book_id)
        before = coverage.categories_covered
        apply_responses(coverage, responses, now, config)
        save_coverage(conn, coverage)
        conn.commit()
        conn.close()
    logger.debug(
        "Coverage for idea %s: %d -> %d categories (%d/%d correct)",
        idea_id, before, coverage.categories_covered,
        coverage.total_questions_correct, coverage.total_questions_seen,
    )
    return coverage


def update_coverage(db_path: str, coverage: IdeaCoverage) -> None:
    conn = get_connection(db_path)
    save_coverage(conn, coverage)
    conn.commit()
    conn.close()
