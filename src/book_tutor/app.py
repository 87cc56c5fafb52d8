"""Interactive dev-tools CLI."""
import logging
from dataclasses import asdict, fields
from datetime import datetime

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from book_tutor import curveball, follow_up
from book_tutor.config import EngineConfig, coerce_value, load_config
from book_tutor.dashboard import (
    get_book_stats, get_idea_breakdown, get_mastery_color, get_mastery_label,
)
from book_tutor.db import DEFAULT_DB_PATH, init_db
from book_tutor.generation import TemplateQuestionGenerator
from book_tutor.library import list_books, list_ideas, save_idea
from book_tutor.models import Idea, Response, new_id
from book_tutor.review_queue import get_queue_statistics, list_pending_items, normalize_title
from book_tutor.sessions import PracticeSessionCoordinator, SessionGenerationError, list_sessions
from book_tutor.settings import set_setting

console = Console()
logger = logging.getLogger(__name__)


def setup_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def show_welcome():
    console.print(Panel(
        "[bold]Book Tutor[/bold]\n[dim]Mastery & spaced review dev tools[/dim]",
        title="Welcome", border_style="blue",
    ))


def show_menu():
    console.print("\n[bold]Commands:[/bold]")
    commands = [
        ("add", "Add an idea to a book"),
        ("dashboard", "Mastery per idea + book stats"),
        ("practice", "Run a lesson or daily review session"),
        ("queue", "Pending review items"),
        ("followups", "Queue spaced follow-ups that are due"),
        ("curveballs", "Queue curveballs that are due"),
        ("force", "Make all follow-ups and curveballs due now"),
        ("sessions", "List sessions, purge stale ones"),
        ("settings", "Show or change scheduling settings"),
        ("quit", "Exit"),
    ]
    for cmd, desc in commands:
        console.print(f"  [cyan]{cmd:<14}[/cyan] {desc}")


def choose_book(db_path: str) -> dict | None:
    books = list_books(db_path)
    if not books:
        console.print("[yellow]No books yet. Use 'add' to create one.[/yellow]")
        return None
    if len(books) == 1:
        return books[0]
    for i, book in enumerate(books, 1):
        console.print(f"  [cyan]{i}[/cyan]) {book['book_title']} [dim]({book['idea_count']} ideas)[/dim]")
    choice = Prompt.ask("Select book", choices=[str(i) for i in range(1, len(books) + 1)])
    return books[int(choice) - 1]


def choose_idea(db_path: str, book: dict) -> Idea | None:
    ideas = list_ideas(db_path, book["book_id"])
    if not ideas:
        console.print("[yellow]This book has no ideas.[/yellow]")
        return None
    for i, idea in enumerate(ideas, 1):
        console.print(f"  [cyan]{i}[/cyan]) {idea.title}")
    choice = Prompt.ask("Select idea", choices=[str(i) for i in range(1, len(ideas) + 1)])
    return ideas[int(choice) - 1]


def cmd_add(db_path: str):
    book_title = Prompt.ask("Book title").strip()
    if not book_title:
        console.print("[red]Book title is required.[/red]")
        return
    existing = {normalize_title(b["book_title"]): b for b in list_books(db_path)}
    match = existing.get(normalize_title(book_title))
    if match:
        book_id, book_title = match["book_id"], match["book_title"]
    else:
        book_id = new_id()
    title = Prompt.ask("Idea title").strip()
    if not title:
        console.print("[red]Idea title is required.[/red]")
        return
    description = Prompt.ask("Description", default="")
    save_idea(db_path, Idea(id=new_id(), title=title, book_id=book_id,
                            book_title=book_title, description=description))
    console.print(f"[green]Added '{title}' to {book_title}[/green]")


def cmd_dashboard(db_path: str):
    book = choose_book(db_path)
    if book is None:
        return
    config = load_config(db_path)
    stats = get_book_stats(db_path, book["book_id"], config)
    console.print(Panel(f"[bold]{book['book_title']}[/bold]", title="Mastery Dashboard", border_style="blue"))

    score = stats["book_coverage"]
    bar_filled = int(score / 5)
    bar = f"[green]{'█' * bar_filled}{'░' * (20 - bar_filled)}[/green]"
    console.print(f"\n  Book coverage: [bold]{score}%[/bold] {bar}\n")

    table = Table(title="Idea Breakdown")
    table.add_column("Idea", style="cyan")
    table.add_column("Level")
    table.add_column("Categories", justify="right")
    table.add_column("Accuracy", justify="right")
    table.add_column("Follow-up")
    table.add_column("Curveball")
    for row in get_idea_breakdown(db_path, book["book_id"], config):
        color = get_mastery_color(row["level"])
        table.add_row(
            row["title"],
            f"[{color}]{row['level']} {get_mastery_label(row['level'])}[/{color}]",
            f"{row['categories']}/8",
            f"{row['accuracy']}%",
            "passed" if row["follow_up_passed"] else row["follow_up_due"],
            "passed" if row["curveball_passed"] else row["curveball_due"],
        )
    console.print(table)

    console.print(f"\n  Ideas: [bold]{stats['ideas']}[/bold]  |  "
                  f"Solid: [bold]{stats['ideas_solid']}[/bold]  |  "
                  f"Answered: [bold]{stats['questions_answered']}[/bold]  |  "
                  f"Accuracy: [bold]{stats['accuracy']}%[/bold]  |  "
                  f"Pending reviews: [bold]{stats['pending_reviews']}[/bold]")


def run_practice_session(coordinator: PracticeSessionCoordinator, session, idea: Idea | None,
                         book_title: str) -> list[str]:
    """Walk through a session, asking whether each answer was correct."""
    coordinator.start_session(session)
    questions = session.test.ordered_questions
    console.print(f"\n[bold]Practice[/bold] - {len(questions)} questions\n")
    responses = []
    for i, q in enumerate(questions, 1):
        tags = []
        if q.is_curveball:
            tags.append("curveball")
        if q.is_spaced_follow_up:
            tags.append("follow-up")
        tag = f" [magenta]({', '.join(tags)})[/magenta]" if tags else ""
        console.print(
            f"[bold]Q{i}.[/bold] [dim]{q.difficulty.value} {q.bloom_category.value} "
            f"{q.type.value}[/dim]{tag}\n{q.question_text}"
        )
        answer = Prompt.ask("Correct?", choices=["y", "n", "p"], default="y")
        if answer == "p":
            coordinator.pause_session(session)
            console.print("[dim]Session paused. Answers so far are not kept; "
                          "it restarts at Q1 when resumed.[/dim]")
            return []
        responses.append(Response(
            question_id=q.id, is_correct=answer == "y", bloom_category=q.bloom_category,
            question_type=q.type, difficulty=q.difficulty,
        ))
    correct = sum(1 for r in responses if r.is_correct)
    console.print(f"[bold]Score: {correct}/{len(responses)}[/bold]")
    return coordinator.complete_session(session, responses, idea, book_title)


def cmd_practice(db_path: str):
    book = choose_book(db_path)
    if book is None:
        return
    mode = Prompt.ask("Mode", choices=["lesson", "review"], default="lesson")
    coordinator = PracticeSessionCoordinator(db_path, TemplateQuestionGenerator())
    idea = None
    try:
        if mode == "lesson":
            idea = choose_idea(db_path, book)
            if idea is None:
                return
            session = coordinator.get_lesson_session(idea, book["book_id"], book["book_title"])
        else:
            key = f"review:{datetime.now().date().isoformat()}"
            session = coordinator.get_review_session(key, book["book_id"], book["book_title"])
            if session is None:
                console.print("[green]Nothing due for review today.[/green]")
                return
    except SessionGenerationError as e:
        console.print(f"[red]Could not prepare session: {e}[/red]")
        return
    solid = run_practice_session(coordinator, session, idea, book["book_title"])
    for idea_id in solid:
        console.print(f"[green]Solid mastery reached: {idea_id}[/green]")


def cmd_queue(db_path: str):
    book = choose_book(db_path)
    if book is None:
        return
    items = list_pending_items(db_path, book["book_id"], book["book_title"])
    if not items:
        console.print("[green]Review queue is empty.[/green]")
        return
    table = Table(title=f"Pending Reviews - {book['book_title']}")
    table.add_column("Added")
    table.add_column("Idea", style="cyan")
    table.add_column("Type")
    table.add_column("Concept")
    table.add_column("Kind")
    for item in items:
        kind = "curveball" if item.is_curveball else "follow-up" if item.is_spaced_follow_up else "mistake"
        table.add_row(
            item.added_date.strftime("%Y-%m-%d %H:%M"), item.idea_title,
            item.question_type.value, item.concept_tested, kind,
        )
    console.print(table)
    stats = get_queue_statistics(db_path, book["book_id"], book["book_title"])
    console.print(f"\n  MCQ: [bold]{stats['total_mcqs']}[/bold]  |  "
                  f"Open-ended: [bold]{stats['total_open_ended']}[/bold]  |  "
                  f"Curveballs: [bold]{stats['curveballs']}[/bold]  |  "
                  f"Follow-ups: [bold]{stats['spaced_follow_ups']}[/bold]")


def cmd_followups(db_path: str):
    book = choose_book(db_path)
    if book is None:
        return
    created = follow_up.ensure_queued_if_due(
        db_path, book["book_id"], book["book_title"], config=load_config(db_path)
    )
    console.print(f"[green]Queued {len(created)} spaced follow-ups.[/green]")


def cmd_curveballs(db_path: str):
    book = choose_book(db_path)
    if book is None:
        return
    created = curveball.ensure_curveballs_queued_if_due(
        db_path, book["book_id"], book["book_title"], config=load_config(db_path)
    )
    console.print(f"[green]Queued {len(created)} curveballs.[/green]")


def cmd_force(db_path: str):
    book = choose_book(db_path)
    if book is None:
        return
    config = load_config(db_path)
    follow_ups = follow_up.force_all_due(db_path, book["book_id"], book["book_title"], config=config)
    curveballs = curveball.force_all_due(db_path, book["book_id"], book["book_title"], config=config)
    console.print(f"[green]Forced due: {len(follow_ups)} follow-ups, {len(curveballs)} curveballs queued.[/green]")


def cmd_sessions(db_path: str):
    book = choose_book(db_path)
    if book is None:
        return
    sessions = list_sessions(db_path, book["book_id"])
    table = Table(title="Practice Sessions")
    table.add_column("Slot", style="cyan")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Updated")
    table.add_column("Error")
    for s in sessions:
        table.add_row(
            s.idea_id, s.session_type.value, s.status.value,
            s.updated_at.strftime("%Y-%m-%d %H:%M:%S"), s.error_message or "",
        )
    console.print(table)
    if sessions and Confirm.ask("Purge stale and failed sessions?", default=False):
        coordinator = PracticeSessionCoordinator(db_path, TemplateQuestionGenerator())
        purged = coordinator.purge_stale_sessions(book["book_id"])
        console.print(f"[green]Purged {purged} sessions.[/green]")


def cmd_settings(db_path: str):
    config = load_config(db_path)
    table = Table(title="Scheduling Settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", justify="right")
    for name, value in asdict(config).items():
        table.add_row(name, str(getattr(value, "value", value)))
    console.print(table)
    name = Prompt.ask("Setting to change (blank to keep)", default="").strip()
    if not name:
        return
    if name not in {f.name for f in fields(EngineConfig)}:
        console.print(f"[red]Unknown setting: {name}[/red]")
        return
    raw = Prompt.ask("New value").strip()
    try:
        coerce_value(name, raw)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        return
    set_setting(db_path, name, raw)
    console.print(f"[green]{name} = {raw}[/green]")


def main(db_path: str = DEFAULT_DB_PATH):
    setup_logging()
    init_db(db_path)
    show_welcome()

    while True:
        show_menu()
        choice = Prompt.ask("\n[bold]>[/bold]", default="dashboard").strip().lower()
        try:
            if choice == "add":
                cmd_add(db_path)
            elif choice == "dashboard":
                cmd_dashboard(db_path)
            elif choice == "practice":
                cmd_practice(db_path)
            elif choice == "queue":
                cmd_queue(db_path)
            elif choice == "followups":
                cmd_followups(db_path)
            elif choice == "curveballs":
                cmd_curveballs(db_path)
            elif choice == "force":
                cmd_force(db_path)
            elif choice == "sessions":
                cmd_sessions(db_path)
            elif choice == "settings":
                cmd_settings(db_path)
            elif choice in ("quit", "exit", "q"):
                console.print("[dim]Happy reading![/dim]")
                break
            else:
                console.print("[red]Unknown command. Try again.[/red]")
        except KeyboardInterrupt:
            console.print("\n[dim]Use 'quit' to exit.[/dim]")
        except Exception as e:
            logger.exception("Command %s failed", choice)
            console.print(f"[red]Error: {e}[/red]")


if __name__ == "__main__":
    main()
