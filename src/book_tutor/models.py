"""Data classes for the tutor domain model."""
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class BloomCategory(str, Enum):
    RECALL = "Recall"
    REFRAME = "Reframe"
    APPLY = "Apply"
    CONTRAST = "Contrast"
    CRITIQUE = "Critique"
    WHY_IMPORTANT = "WhyImportant"
    WHEN_USE = "WhenUse"
    HOW_WIELD = "HowWield"


class QuestionType(str, Enum):
    MCQ = "MCQ"
    MSQ = "MSQ"
    OPEN_ENDED = "OpenEnded"

    @property
    def is_choice(self) -> bool:
        return self is not QuestionType.OPEN_ENDED


class Difficulty(str, Enum):
    EASY = "Easy"
    MEDIUM = "Medium"
    HARD = "Hard"

    @property
    def point_value(self) -> int:
        return {"Easy": 10, "Medium": 15, "Hard": 25}[self.value]


class SessionType(str, Enum):
    LESSON_PRACTICE = "lesson_practice"
    REVIEW_PRACTICE = "review_practice"


class SessionStatus(str, Enum):
    GENERATING = "generating"
    READY = "ready"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"

    def can_transition_to(self, target: "SessionStatus") -> bool:
        return target in _TRANSITIONS[self]

    @property
    def is_resumable(self) -> bool:
        return self in (SessionStatus.READY, SessionStatus.IN_PROGRESS, SessionStatus.PAUSED)


_TRANSITIONS = {
    SessionStatus.GENERATING: frozenset({SessionStatus.READY, SessionStatus.ERROR}),
    SessionStatus.READY: frozenset({SessionStatus.IN_PROGRESS}),
    SessionStatus.IN_PROGRESS: frozenset({SessionStatus.PAUSED, SessionStatus.COMPLETED}),
    SessionStatus.PAUSED: frozenset({SessionStatus.IN_PROGRESS}),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.ERROR: frozenset(),
}


def new_id() -> str:
    return str(uuid.uuid4())


def to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def concept_key(bloom: BloomCategory, difficulty: Difficulty) -> str:
    """Concept label shared by queue items, e.g. ``Apply-Medium``."""
    return f"{bloom.value}-{difficulty.value}"


@dataclass
class Idea:
    id: str
    title: str
    book_id: str
    book_title: str
    description: str = ""


@dataclass
class Question:
    idea_id: str
    type: QuestionType
    difficulty: Difficulty
    bloom_category: BloomCategory
    question_text: str = ""
    options: Optional[list] = None
    correct_answers: Optional[list] = None
    order_index: int = 0
    is_curveball: bool = False
    is_spaced_follow_up: bool = False
    source_queue_item_id: Optional[str] = None
    id: str = field(default_factory=new_id)

    @classmethod
    def from_row(cls, row) -> "Question":
        return cls(
            id=row["id"],
            idea_id=row["idea_id"],
            type=QuestionType(row["type"]),
            difficulty=Difficulty(row["difficulty"]),
            bloom_category=BloomCategory(row["bloom_category"]),
            question_text=row["question_text"],
            options=json.loads(row["options"]) if row["options"] else None,
            correct_answers=json.loads(row["correct_answers"]) if row["correct_answers"] else None,
            order_index=row["order_index"],
            is_curveball=bool(row["is_curveball"]),
            is_spaced_follow_up=bool(row["is_spaced_follow_up"]),
            source_queue_item_id=row["source_queue_item_id"],
        )


@dataclass
class Test:
    idea_id: str
    idea_title: str
    book_title: str
    test_type: str = "initial"  # initial, mixed or review
    questions: list = field(default_factory=list)
    fresh_question_count: int = 0
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def ordered_questions(self) -> list:
        return sorted(self.questions, key=lambda q: q.order_index)

    def question(self, question_id: str) -> Optional[Question]:
        return next((q for q in self.questions if q.id == question_id), None)

    def is_review_question(self, question: Question) -> bool:
        if question.source_queue_item_id is not None:
            return True
        return self.test_type != "initial" and question.order_index >= self.fresh_question_count


@dataclass
class Response:
    question_id: str
    is_correct: bool
    bloom_category: BloomCategory
    question_type: Optional[QuestionType] = None
    difficulty: Optional[Difficulty] = None


@dataclass
class IdeaCoverage:
    idea_id: str
    book_id: str
    covered_categories: set = field(default_factory=set)
    total_questions_seen: int = 0
    total_questions_correct: int = 0
    mistakes_count: int = 0
    spaced_follow_up_due_date: Optional[datetime] = None
    spaced_follow_up_passed_at: Optional[datetime] = None
    spaced_follow_up_bloom: Optional[BloomCategory] = None
    spaced_follow_up_difficulty: Optional[Difficulty] = None
    curveball_due_date: Optional[datetime] = None
    curveball_passed: bool = False
    curveball_passed_at: Optional[datetime] = None
    first_attempt_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None
    covered_at: Optional[datetime] = None

    @property
    def categories_covered(self) -> int:
        return len(self.covered_categories)

    @property
    def coverage_percentage(self) -> float:
        return min(self.categories_covered, len(BloomCategory)) / len(BloomCategory) * 100.0

    @property
    def is_fully_covered(self) -> bool:
        return self.categories_covered >= len(BloomCategory)

    @property
    def accuracy(self) -> float:
        if not self.total_questions_seen:
            return 0.0
        return self.total_questions_correct / self.total_questions_seen * 100.0

    @classmethod
    def from_row(cls, row) -> "IdeaCoverage":
        bloom = row["spaced_follow_up_bloom"]
        difficulty = row["spaced_follow_up_difficulty"]
        return cls(
            idea_id=row["idea_id"],
            book_id=row["book_id"],
            covered_categories={BloomCategory(c) for c in json.loads(row["covered_categories"])},
            total_questions_seen=row["total_questions_seen"],
            total_questions_correct=row["total_questions_correct"],
            mistakes_count=row["mistakes_count"],
            spaced_follow_up_due_date=parse_dt(row["spaced_follow_up_due_date"]),
            spaced_follow_up_passed_at=parse_dt(row["spaced_follow_up_passed_at"]),
            spaced_follow_up_bloom=BloomCategory(bloom) if bloom else None,
            spaced_follow_up_difficulty=Difficulty(difficulty) if difficulty else None,
            curveball_due_date=parse_dt(row["curveball_due_date"]),
            curveball_passed=bool(row["curveball_passed"]),
            curveball_passed_at=parse_dt(row["curveball_passed_at"]),
            first_attempt_at=parse_dt(row["first_attempt_at"]),
            last_attempt_at=parse_dt(row["last_attempt_at"]),
            covered_at=parse_dt(row["covered_at"]),
        )


@dataclass
class ReviewQueueItem:
    idea_id: str
    idea_title: str
    book_title: str
    question_type: QuestionType
    difficulty: Difficulty
    bloom_category: BloomCategory
    book_id: Optional[str] = None
    original_question_text: str = ""
    is_curveball: bool = False
    is_spaced_follow_up: bool = False
    is_completed: bool = False
    id: str = field(default_factory=new_id)
    added_date: datetime = field(default_factory=datetime.now)

    @property
    def concept_tested(self) -> str:
        return concept_key(self.bloom_category, self.difficulty)

    @classmethod
    def from_row(cls, row) -> "ReviewQueueItem":
        return cls(
            id=row["id"],
            idea_id=row["idea_id"],
            idea_title=row["idea_title"],
            book_id=row["book_id"],
            book_title=row["book_title"],
            question_type=QuestionType(row["question_type"]),
            difficulty=Difficulty(row["difficulty"]),
            bloom_category=BloomCategory(row["bloom_category"]),
            original_question_text=row["original_question_text"] or "",
            is_curveball=bool(row["is_curveball"]),
            is_spaced_follow_up=bool(row["is_spaced_follow_up"]),
            is_completed=bool(row["is_completed"]),
            added_date=parse_dt(row["added_date"]),
        )


@dataclass
class PracticeSession:
    idea_id: str  # slot key; review sessions use a synthetic key
    book_id: str
    session_type: SessionType
    status: SessionStatus = SessionStatus.GENERATING
    config_version: int = 1
    error_message: Optional[str] = None
    test_id: Optional[str] = None
    test: Optional[Test] = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def question_count(self) -> int:
        return len(self.test.questions) if self.test else 0

    @classmethod
    def from_row(cls, row) -> "PracticeSession":
        return cls(
            id=row["id"],
            idea_id=row["idea_id"],
            book_id=row["book_id"],
            session_type=SessionType(row["session_type"]),
            status=SessionStatus(row["status"]),
            config_version=row["config_version"],
            error_message=row["error_message"],
            test_id=row["test_id"],
            created_at=parse_dt(row["created_at"]),
            updated_at=parse_dt(row["updated_at"]),
        )
