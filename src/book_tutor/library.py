"""Books and the ideas extracted from them."""
from book_tutor.db import get_connection
from book_tutor.models import Idea


def _to_idea(row) -> Idea:
    return Idea(
        id=row["id"], title=row["title"], book_id=row["book_id"],
        book_title=row["book_title"], description=row["description"] or "",
    )


def save_idea(db_path: str, idea: Idea) -> None:
    conn = get_connection(db_path)
    conn.execute(
        """INSERT INTO ideas (id, book_id, book_title, title, description) VALUES (?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET book_id=excluded.book_id, book_title=excluded.book_title,
            title=excluded.title, description=excluded.description""",
        (idea.id, idea.book_id, idea.book_title, idea.title, idea.description),
    )
    conn.commit()
    conn.close()


def fetch_idea(conn, idea_id: str) -> Idea | None:
    row = conn.execute("SELECT * FROM ideas WHERE id = ?", (idea_id,)).fetchone()
    return _to_idea(row) if row else None


def get_idea(db_path: str, idea_id: str) -> Idea | None:
    conn = get_connection(db_path)
    idea = fetch_idea(conn, idea_id)
    conn.close()
    return idea


def idea_title(conn, idea_id: str, default: str = "Idea") -> str:
    idea = fetch_idea(conn, idea_id)
    return idea.title if idea else default


def list_ideas(db_path: str, book_id: str) -> list[Idea]:
    conn = get_connection(db_path)
    rows = conn.execute("SELECT * FROM ideas WHERE book_id = ? ORDER BY id", (book_id,)).fetchall()
    conn.close()
    return [_to_idea(r) for r in rows]


def list_books(db_path: str) -> list[dict]:
    conn = get_connection(db_path)
    rows = conn.execute(
        """SELECT book_id, book_title, COUNT(*) as idea_count
        FROM ideas GROUP BY book_id, book_title ORDER BY book_title"""
    ).fetchall()
    conn.close()
    return [dict(r) for r in rows]
