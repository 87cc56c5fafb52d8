"""Feeding an answered test back into coverage and the review queue."""
import logging
from datetime import datetime

from book_tutor.config import DEFAULT_CONFIG, EngineConfig
from book_tutor.coverage import find_coverage, is_solid_mastery, record_responses
from book_tutor.curveball import record_curveball_result
from book_tutor.follow_up import record_follow_up_result
from book_tutor.locking import book_lock
from book_tutor.models import Idea, Question, Response, ReviewQueueItem, Test
from book_tutor.review_queue import (
    add_mistakes_to_queue, find_pending_item, get_item, mark_items_as_completed,
)

logger = logging.getLogger(__name__)


def _enrich(response: Response, question: Question) -> Response:
    if response.question_type is None:
        response.question_type = question.type
    if response.difficulty is None:
        response.difficulty = question.difficulty
    return response


def resolve_queue_item(
    db_path: str, question: Question, book_id: str
) -> ReviewQueueItem | None:
    """Queue item a review question came from, by source id or (idea, difficulty)."""
    if question.source_queue_item_id:
        item = get_item(db_path, question.source_queue_item_id)
        if item is not None:
            return item
    return find_pending_item(db_path, book_id, question.idea_id, question.difficulty)


def process_test_results(
    db_path: str,
    test: Test,
    responses: list[Response],
    idea: Idea,
    now: datetime | None = None,
    config: EngineConfig = DEFAULT_CONFIG,
) -> list[str]:
    """Apply a finished test. Returns ids of ideas that just reached solid mastery."""
    now = now or datetime.now()
    book_id = idea.book_id

    answered = []
    for response in responses:
        question = test.question(response.question_id)
        if question is None:
            logger.warning("Response for unknown question %s in test %s", response.question_id, test.id)
            continue
        answered.append((_enrich(response, question), question))

    by_idea: dict[str, list[Response]] = {}
    for response, question in answered:
        by_idea.setdefault(question.idea_id, []).append(response)

    with book_lock(book_id):
        solid_before = {}
        for idea_id in by_idea:
            coverage = find_coverage(db_path, idea_id, book_id)
            solid_before[idea_id] = coverage is not None and is_solid_mastery(coverage, config)

        add_mistakes_to_queue(db_path, [r for r, _ in answered], test, idea)

        for idea_id, idea_responses in by_idea.items():
            record_responses(db_path, idea_id, book_id, idea_responses, now=now, config=config)

        retired = []
        for response, question in answered:
            if not test.is_review_question(question):
                continue
            item = resolve_queue_item(db_path, question, book_id)
            if item is None or item.is_completed:
                continue
            if item.is_spaced_follow_up:
                record_follow_up_result(db_path, item, response.is_correct,
                                        book_id=book_id, now=now, config=config)
            elif item.is_curveball:
                record_curveball_result(db_path, item, response.is_correct, book_id=book_id, now=now)
            if response.is_correct:
                retired.append(item)
        if retired:
            mark_items_as_completed(db_path, retired)

        newly_solid = []
        for idea_id in by_idea:
            coverage = find_coverage(db_path, idea_id, book_id)
            if coverage is not None and is_solid_mastery(coverage, config) and not solid_before[idea_id]:
                newly_solid.append(idea_id)

    for idea_id in newly_solid:
        logger.info("Idea %s reached solid mastery", idea_id)
    return newly_solid
