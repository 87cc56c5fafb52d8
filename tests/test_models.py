"""Tests for data model classes."""
from book_tutor.models import (
    BloomCategory, Difficulty, IdeaCoverage, Question, QuestionType, ReviewQueueItem,
    SessionStatus, Test, concept_key,
)


def test_bloom_category_values():
    assert [c.value for c in BloomCategory] == [
        "Recall", "Reframe", "Apply", "Contrast", "Critique", "WhyImportant", "WhenUse", "HowWield",
    ]


def test_difficulty_point_values():
    assert Difficulty.EASY.point_value == 10
    assert Difficulty.MEDIUM.point_value == 15
    assert Difficulty.HARD.point_value == 25


def test_question_type_is_choice():
    assert QuestionType.MCQ.is_choice
    assert QuestionType.MSQ.is_choice
    assert not QuestionType.OPEN_ENDED.is_choice


def test_concept_key():
    assert concept_key(BloomCategory.APPLY, Difficulty.MEDIUM) == "Apply-Medium"


def test_queue_item_concept_tested():
    item = ReviewQueueItem(
        idea_id="i", idea_title="I", book_title="B", question_type=QuestionType.MCQ,
        difficulty=Difficulty.HARD, bloom_category=BloomCategory.WHEN_USE,
    )
    assert item.concept_tested == "WhenUse-Hard"
    assert item.is_completed is False
    assert item.book_id is None


def test_coverage_percentage_and_accuracy():
    c = IdeaCoverage(idea_id="i", book_id="b")
    assert c.coverage_percentage == 0.0
    assert c.accuracy == 0.0
    c.covered_categories = {BloomCategory.RECALL, BloomCategory.APPLY}
    c.total_questions_seen = 4
    c.total_questions_correct = 3
    assert c.coverage_percentage == 25.0
    assert c.accuracy == 75.0
    assert not c.is_fully_covered


def test_coverage_fully_covered():
    c = IdeaCoverage(idea_id="i", book_id="b", covered_categories=set(BloomCategory))
    assert c.is_fully_covered
    assert c.coverage_percentage == 100.0


def test_session_status_transitions():
    assert SessionStatus.GENERATING.can_transition_to(SessionStatus.READY)
    assert SessionStatus.GENERATING.can_transition_to(SessionStatus.ERROR)
    assert SessionStatus.READY.can_transition_to(SessionStatus.IN_PROGRESS)
    assert SessionStatus.IN_PROGRESS.can_transition_to(SessionStatus.PAUSED)
    assert SessionStatus.IN_PROGRESS.can_transition_to(SessionStatus.COMPLETED)
    assert SessionStatus.PAUSED.can_transition_to(SessionStatus.IN_PROGRESS)
    assert not SessionStatus.READY.can_transition_to(SessionStatus.COMPLETED)
    assert not SessionStatus.COMPLETED.can_transition_to(SessionStatus.IN_PROGRESS)
    assert not SessionStatus.ERROR.can_transition_to(SessionStatus.READY)


def test_session_status_resumable():
    assert SessionStatus.PAUSED.is_resumable
    assert SessionStatus.READY.is_resumable
    assert not SessionStatus.GENERATING.is_resumable
    assert not SessionStatus.ERROR.is_resumable


def test_review_question_detection():
    fresh = Question(idea_id="i", type=QuestionType.MCQ, difficulty=Difficulty.EASY,
                     bloom_category=BloomCategory.RECALL, order_index=0)
    sourced = Question(idea_id="i", type=QuestionType.MCQ, difficulty=Difficulty.EASY,
                       bloom_category=BloomCategory.RECALL, order_index=1, source_queue_item_id="q1")
    legacy = Question(idea_id="i", type=QuestionType.MCQ, difficulty=Difficulty.EASY,
                      bloom_category=BloomCategory.RECALL, order_index=2)
    test = Test(idea_id="i", idea_title="I", book_title="B", test_type="mixed",
                questions=[fresh, sourced, legacy], fresh_question_count=1)
    assert not test.is_review_question(fresh)
    assert test.is_review_question(sourced)
    assert test.is_review_question(legacy)


def test_initial_test_has_no_review_questions_without_source():
    q = Question(idea_id="i", type=QuestionType.MCQ, difficulty=Difficulty.EASY,
                 bloom_category=BloomCategory.RECALL, order_index=5)
    test = Test(idea_id="i", idea_title="I", book_title="B", questions=[q])
    assert not test.is_review_question(q)
