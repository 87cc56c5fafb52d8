"""Question generation collaborator.

The real generator is an external service. Sessions only depend on the
``QuestionGenerator`` protocol; ``TemplateQuestionGenerator`` is an offline
stand-in used by the dev-tools CLI.
"""
from typing import Protocol

from book_tutor.models import (
    BloomCategory, Difficulty, Idea, Question, QuestionType, ReviewQueueItem, Test,
)


class GenerationError(Exception):
    """Raised when questions could not be generated."""
    pass


class QuestionGenerator(Protocol):
    def generate_fresh_questions(self, idea: Idea) -> Test:
        ...

    def generate_from_queue_items(self, items: list[ReviewQueueItem]) -> list[Question]:
        """One question per item, in the same order as ``items``."""
        ...


# (difficulty, bloom, type) of a standard eight-question lesson
LESSON_BLUEPRINT = [
    (Difficulty.EASY, BloomCategory.RECALL, QuestionType.MCQ),
    (Difficulty.EASY, BloomCategory.REFRAME, QuestionType.MCQ),
    (Difficulty.MEDIUM, BloomCategory.APPLY, QuestionType.MCQ),
    (Difficulty.MEDIUM, BloomCategory.CONTRAST, QuestionType.MCQ),
    (Difficulty.MEDIUM, BloomCategory.CRITIQUE, QuestionType.MSQ),
    (Difficulty.MEDIUM, BloomCategory.WHY_IMPORTANT, QuestionType.MCQ),
    (Difficulty.HARD, BloomCategory.HOW_WIELD, QuestionType.OPEN_ENDED),
    (Difficulty.HARD, BloomCategory.WHEN_USE, QuestionType.MCQ),
]


def _options(question_type: QuestionType) -> tuple[list | None, list | None]:
    if question_type is QuestionType.OPEN_ENDED:
        return None, None
    options = ["A", "B", "C", "D"]
    if question_type is QuestionType.MSQ:
        return options, [0, 2]
    return options, [0]


class TemplateQuestionGenerator:
    """Deterministic placeholder questions built from the idea title."""

    def generate_fresh_questions(self, idea: Idea) -> Test:
        questions = []
        for index, (difficulty, bloom, question_type) in enumerate(LESSON_BLUEPRINT):
            options, correct = _options(question_type)
            questions.append(Question(
                idea_id=idea.id,
                type=question_type,
                difficulty=difficulty,
                bloom_category=bloom,
                question_text=f"[{bloom.value}] {idea.title}",
                options=options,
                correct_answers=correct,
                order_index=index,
            ))
        return Test(
            idea_id=idea.id,
            idea_title=idea.title,
            book_title=idea.book_title,
            questions=questions,
            fresh_question_count=len(questions),
        )

    def generate_from_queue_items(self, items: list[ReviewQueueItem]) -> list[Question]:
        questions = []
        for item in items:
            options, correct = _options(item.question_type)
            questions.append(Question(
                idea_id=item.idea_id,
                type=item.question_type,
                difficulty=item.difficulty,
                bloom_category=item.bloom_category,
                question_text=f"Review: {item.original_question_text or item.idea_title}",
                options=options,
                correct_answers=correct,
                is_curveball=item.is_curveball,
                is_spaced_follow_up=item.is_spaced_follow_up,
                source_queue_item_id=item.id,
            ))
        return questions
