"""Database initialization and connection management."""
import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = str(Path.home() / ".book_tutor" / "tutor.db")

SCHEMA = """
CREATE TABLE IF NOT EXISTS ideas (
    id TEXT PRIMARY KEY,
    book_id TEXT NOT NULL,
    book_title TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT DEFAULT ''
);

CREATE TABLE IF NOT EXISTS idea_coverage (
    idea_id TEXT NOT NULL,
    book_id TEXT NOT NULL,
    covered_categories TEXT NOT NULL DEFAULT '[]',
    total_questions_seen INTEGER DEFAULT 0,
    total_questions_correct INTEGER DEFAULT 0,
    mistakes_count INTEGER DEFAULT 0,
    spaced_follow_up_due_date TEXT,
    spaced_follow_up_passed_at TEXT,
    spaced_follow_up_bloom TEXT,
    spaced_follow_up_difficulty TEXT,
    curveball_due_date TEXT,
    curveball_passed INTEGER DEFAULT 0,
    curveball_passed_at TEXT,
    first_attempt_at TEXT,
    last_attempt_at TEXT,
    covered_at TEXT,
    PRIMARY KEY (idea_id, book_id)
);

CREATE TABLE IF NOT EXISTS review_queue_items (
    id TEXT PRIMARY KEY,
    idea_id TEXT NOT NULL,
    idea_title TEXT NOT NULL,
    book_id TEXT,
    book_title TEXT NOT NULL,
    book_title_key TEXT NOT NULL,
    question_type TEXT NOT NULL,
    concept_tested TEXT NOT NULL,
    difficulty TEXT NOT NULL,
    bloom_category TEXT NOT NULL,
    original_question_text TEXT DEFAULT '',
    is_curveball INTEGER DEFAULT 0,
    is_spaced_follow_up INTEGER DEFAULT 0,
    is_completed INTEGER DEFAULT 0,
    added_date TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_review_queue_pending
    ON review_queue_items (book_id, is_completed, added_date);

CREATE TABLE IF NOT EXISTS tests (
    id TEXT PRIMARY KEY,
    idea_id TEXT NOT NULL,
    idea_title TEXT NOT NULL,
    book_title TEXT NOT NULL,
    test_type TEXT NOT NULL DEFAULT 'initial',
    fresh_question_count INTEGER DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS questions (
    id TEXT PRIMARY KEY,
    test_id TEXT NOT NULL REFERENCES tests(id) ON DELETE CASCADE,
    idea_id TEXT NOT NULL,
    type TEXT NOT NULL,
    difficulty TEXT NOT NULL,
    bloom_category TEXT NOT NULL,
    question_text TEXT NOT NULL,
    options TEXT,
    correct_answers TEXT,
    order_index INTEGER NOT NULL,
    is_curveball INTEGER DEFAULT 0,
    is_spaced_follow_up INTEGER DEFAULT 0,
    source_queue_item_id TEXT
);

CREATE TABLE IF NOT EXISTS practice_sessions (
    id TEXT PRIMARY KEY,
    idea_id TEXT NOT NULL,
    book_id TEXT NOT NULL,
    session_type TEXT NOT NULL,
    status TEXT NOT NULL,
    config_version INTEGER DEFAULT 1,
    error_message TEXT,
    test_id TEXT REFERENCES tests(id) ON DELETE SET NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_practice_sessions_slot
    ON practice_sessions (idea_id, book_id, session_type, updated_at);

CREATE TABLE IF NOT EXISTS user_settings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    key TEXT NOT NULL UNIQUE,
    value TEXT
);
"""


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Return a SQLite connection with row factory and foreign keys enabled."""
    conn = sqlite3.connect(db_path, timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db(db_path: str = DEFAULT_DB_PATH) -> None:
    """Initialize the database, creating all tables if they don't exist."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = get_connection(db_path)
    conn.executescript(SCHEMA)
    conn.commit()
    conn.close()
