"""Mastery dashboard scoring and statistics."""
from book_tutor.config import DEFAULT_CONFIG, EngineConfig
from book_tutor.coverage import is_solid_mastery, list_coverages, meets_mastery_gate
from book_tutor.db import get_connection
from book_tutor.library import list_ideas
from book_tutor.models import IdeaCoverage


def get_mastery_level(coverage: IdeaCoverage | None, config: EngineConfig = DEFAULT_CONFIG) -> int:
    """0 untouched, 1 partially covered, 2 gate met, 3 solid mastery."""
    if coverage is None or coverage.categories_covered == 0:
        return 0
    if is_solid_mastery(coverage, config):
        return 3
    if meets_mastery_gate(coverage, config):
        return 2
    return 1


def get_mastery_label(level: int) -> str:
    if level >= 3:
        return "SOLID"
    elif level == 2:
        return "COVERED"
    elif level == 1:
        return "LEARNING"
    return "NEW"


def get_mastery_color(level: int) -> str:
    if level >= 3:
        return "green"
    elif level == 2:
        return "yellow"
    elif level == 1:
        return "dark_orange"
    return "red"


def calc_book_coverage(db_path: str, book_id: str, total_ideas: int) -> float:
    """Percentage of a book's ideas with every Bloom category covered."""
    if total_ideas <= 0:
        return 0.0
    covered = sum(1 for c in list_coverages(db_path, book_id) if c.is_fully_covered)
    return round(covered / total_ideas * 100, 1)


def _due_str(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else ""


def get_idea_breakdown(db_path: str, book_id: str,
                       config: EngineConfig = DEFAULT_CONFIG) -> list[dict]:
    coverages = {c.idea_id: c for c in list_coverages(db_path, book_id)}
    results = []
    for idea in list_ideas(db_path, book_id):
        coverage = coverages.get(idea.id)
        level = get_mastery_level(coverage, config)
        results.append({
            "idea_id": idea.id,
            "title": idea.title,
            "level": level,
            "label": get_mastery_label(level),
            "categories": coverage.categories_covered if coverage else 0,
            "coverage": round(coverage.coverage_percentage, 1) if coverage else 0.0,
            "accuracy": round(coverage.accuracy, 1) if coverage else 0.0,
            "follow_up_due": _due_str(coverage.spaced_follow_up_due_date) if coverage else "",
            "follow_up_passed": bool(coverage and coverage.spaced_follow_up_passed_at),
            "curveball_due": _due_str(coverage.curveball_due_date) if coverage else "",
            "curveball_passed": bool(coverage and coverage.curveball_passed),
        })
    return results


def get_book_stats(db_path: str, book_id: str, config: EngineConfig = DEFAULT_CONFIG) -> dict:
    ideas = list_ideas(db_path, book_id)
    coverages = list_coverages(db_path, book_id)
    conn = get_connection(db_path)
    pending = conn.execute(
        "SELECT COUNT(*) FROM review_queue_items WHERE book_id = ? AND is_completed = 0", (book_id,)
    ).fetchone()[0]
    sessions = conn.execute(
        "SELECT COUNT(*) FROM practice_sessions WHERE book_id = ? AND status = 'completed'", (book_id,)
    ).fetchone()[0]
    conn.close()
    seen = sum(c.total_questions_seen for c in coverages)
    correct = sum(c.total_questions_correct for c in coverages)
    return {
        "ideas": len(ideas),
        "ideas_started": sum(1 for c in coverages if c.total_questions_seen),
        "ideas_solid": sum(1 for c in coverages if is_solid_mastery(c, config)),
        "book_coverage": calc_book_coverage(db_path, book_id, len(ideas)),
        "questions_answered": seen,
        "accuracy": round(correct / seen * 100, 1) if seen else 0.0,
        "pending_reviews": pending,
        "sessions_completed": sessions,
    }
