from datetime import datetime

import pytest

from book_tutor.generation import TemplateQuestionGenerator
from book_tutor.models import Idea

NOW = datetime(2026, 3, 2, 9, 0, 0)


@pytest.fixture
def tmp_db(tmp_path):
    """Provide a temporary SQLite database path for tests."""
    db_path = str(tmp_path / "test_tutor.db")
    return db_path


@pytest.fixture
def idea():
    return Idea(id="idea-1", title="Compounding habits", book_id="book-1", book_title="Atomic Habits")


class CountingGenerator(TemplateQuestionGenerator):
    """Template generator that records calls and can be told to fail."""

    def __init__(self, fail_with: Exception | None = None):
        self.fresh_calls = 0
        self.review_calls = 0
        self.fail_with = fail_with

    def generate_fresh_questions(self, idea):
        self.fresh_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        return super().generate_fresh_questions(idea)

    def generate_from_queue_items(self, items):
        self.review_calls += 1
        return super().generate_from_queue_items(items)


@pytest.fixture
def generator():
    return CountingGenerator()
