"""Interactive terminal front end for taking a timed quiz."""
import asyncio
import string

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt, IntPrompt
from rich.table import Table

from quiz_taker.config import Settings, load_settings
from quiz_taker.errors import AttemptError, LedgerFrozenError, RetakeNotAllowedError
from quiz_taker.finalizer import FinalizeOutcome, FinalizeResult
from quiz_taker.grading import GradingClient
from quiz_taker.logging_config import configure_logging
from quiz_taker.models import AttemptHistory, AttemptStatus, QuestionType, SCORE_SCALE
from quiz_taker.session import AttemptSession
from quiz_taker.storage import SqliteStorage

console = Console()

POLL_SECONDS = 0.2
COMMANDS = {"/next": "next", "/prev": "prev", "/submit": "submit", "/quit": "quit"}


def format_clock(seconds: int) -> str:
    return f"{seconds // 60}:{seconds % 60:02d}"


def clock_color(seconds: int) -> str:
    if seconds <= 60:
        return "red"
    elif seconds <= 300:
        return "yellow"
    return "green"


def parse_input(raw: str, question_type: QuestionType, option_count: int = 0) -> tuple[str, object]:
    """Turn one line of input into an (action, argument) pair.

    Commands start with ``/``; an empty line moves to the next question.
    Anything else is an answer for the current question.
    """
    text = raw.strip()
    if text == "":
        return "next", None
    lowered = text.lower()
    if lowered in COMMANDS:
        return COMMANDS[lowered], None
    if lowered.startswith("/goto"):
        number = lowered[len("/goto"):].strip()
        if not number.isdigit():
            raise ValueError("Usage: /goto <question number>")
        return "goto", int(number) - 1
    if lowered.startswith("/"):
        raise ValueError(f"Unknown command: {text}")
    if question_type == QuestionType.MULTIPLE_CHOICE:
        letters = string.ascii_lowercase[:option_count]
        if len(lowered) == 1 and lowered in letters:
            return "answer", letters.index(lowered)
        raise ValueError(f"Choose one of: {', '.join(letters)}")
    if question_type == QuestionType.TRUE_FALSE:
        if lowered in ("t", "true"):
            return "answer", "true"
        if lowered in ("f", "false"):
            return "answer", "false"
        raise ValueError("Answer t (true) or f (false)")
    return "answer", raw


def show_welcome():
    console.print(Panel(
        "[bold]Timed Quiz[/bold]\n[dim]Answers are saved as you go; the attempt resumes after a restart.[/dim]",
        title="Welcome", border_style="blue",
    ))
    console.print("[dim]Commands: /next /prev /goto N /submit /quit (Enter = next question)[/dim]")


def show_history(history: AttemptHistory) -> None:
    if not history.submissions:
        console.print(f"[dim]No previous attempts. {history.attempts_remaining} of {history.max_attempts} left.[/dim]")
        return
    table = Table(title="Attempt History")
    table.add_column("#", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Time", justify="right")
    table.add_column("Submitted")
    for s in history.submissions:
        table.add_row(
            str(s.attempt_number),
            f"{s.normalized_score():.1f}/{SCORE_SCALE}",
            format_clock(int(s.time_spent_seconds)),
            s.submitted_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)
    retake = "[green]yes[/green]" if history.can_retake else "[red]no[/red]"
    console.print(f"  Best: [bold]{history.best_score:.1f}[/bold]  |  "
                  f"Attempts left: [bold]{history.attempts_remaining}[/bold]  |  Can retake: {retake}")


def render_question(session: AttemptSession) -> None:
    question = session.current_question
    index = session.current_index
    remaining = session.remaining_seconds
    color = clock_color(remaining)
    lines = [question.text or "[dim](no text)[/dim]", ""]
    answer = session.ledger.get_answer(index)
    if question.type == QuestionType.MULTIPLE_CHOICE:
        for letter, option in zip(string.ascii_lowercase, session.display_options(index)):
            marker = "[bold cyan]>[/bold cyan]" if answer == string.ascii_lowercase.index(letter) else " "
            lines.append(f"{marker} [cyan]{letter})[/cyan] {option}")
    elif question.type == QuestionType.TRUE_FALSE:
        lines.append("[cyan]t)[/cyan] True   [cyan]f)[/cyan] False")
        if answer:
            lines.append(f"[dim]Current answer: {answer}[/dim]")
    elif answer:
        lines.append(f"[dim]Current answer: {answer}[/dim]")
    console.print(Panel(
        "\n".join(lines),
        title=f"Question {index + 1}/{len(session.questions)} ({question.points} pt)",
        subtitle=f"[{color}]{format_clock(remaining)}[/{color}]  answered {session.ledger.answered_count()}/{len(session.questions)}",
        border_style="cyan",
    ))


def show_result(result: FinalizeResult | None, history: AttemptHistory | None) -> None:
    if result is None:
        console.print("[yellow]The submission is still being sent.[/yellow]")
        return
    if result.outcome == FinalizeOutcome.ABORTED:
        console.print("[red]This quiz has closed. Returning to the quiz list.[/red]")
        return
    if result.outcome == FinalizeOutcome.REVERTED:
        console.print(f"[red]Submission failed: {result.error}[/red] Your answers are kept; try /submit again.")
        return
    s = result.submission
    if s is None:
        console.print("[yellow]This attempt had already been submitted.[/yellow]")
    else:
        verdict = "[green]PASSED[/green]" if s.passed else "[red]NOT PASSED[/red]"
        console.print(Panel(
            f"Score: [bold]{s.normalized_score():.1f}/{SCORE_SCALE}[/bold] ({s.score}/{s.total_points} pts)\n"
            f"Correct: {s.correct_count}/{len(s.answers)}  |  Time: {format_clock(int(s.time_spent_seconds))}\n"
            f"{verdict}",
            title=f"Attempt {s.attempt_number} ({result.trigger.value.lower()})", border_style="green",
        ))
    if history is not None:
        show_history(history)


class LineReader:
    """Reads terminal input off the event loop.

    A read interrupted because the attempt left ACTIVE stays pending, and the
    next call picks up its line instead of starting a second reader.
    """

    def __init__(self):
        self._pending: asyncio.Future | None = None

    async def read(self, session: AttemptSession, prompt: str) -> str | None:
        if self._pending is None:
            self._pending = asyncio.ensure_future(
                asyncio.to_thread(Prompt.ask, prompt, default="", show_default=False)
            )
        while not self._pending.done():
            if session.status != AttemptStatus.ACTIVE:
                console.print("\n[yellow]Time is up! Submitting your answers... (press Enter)[/yellow]")
                return None
            await asyncio.sleep(POLL_SECONDS)
        pending, self._pending = self._pending, None
        return pending.result()


async def run_attempt(session: AttemptSession) -> FinalizeResult | None:
    history = await session.start()
    show_history(history)
    if session.resumed:
        console.print("[cyan]Resuming your unfinished attempt.[/cyan]")
    reader = LineReader()
    while True:
        while session.status == AttemptStatus.ACTIVE:
            render_question(session)
            question = session.current_question
            raw = await reader.read(session, "[bold]>[/bold]")
            if raw is None:
                break
            try:
                action, arg = parse_input(raw, question.type, len(question.options))
                if action == "answer":
                    session.set_answer(arg)
                    session.next_question()
                elif action == "next":
                    if not session.next_question():
                        console.print("[dim]Last question. Type /submit when ready.[/dim]")
                elif action == "prev":
                    session.previous_question()
                elif action == "goto":
                    session.go_to(arg)
                elif action == "submit":
                    result = await session.submit()
                    if result.outcome == FinalizeOutcome.REVERTED:
                        show_result(result, None)
                elif action == "quit":
                    return await session.on_session_teardown()
            except LedgerFrozenError:
                break
            except (ValueError, IndexError) as e:
                console.print(f"[red]{e}[/red]")
        if session.status == AttemptStatus.FINALIZING:
            result = await session.wait_settled()
            if result.outcome == FinalizeOutcome.REVERTED:
                show_result(result, None)
                continue
        return session.result


async def take_quiz(settings: Settings, user_id: str, quiz_id: int) -> None:
    async with GradingClient(settings.api_url, settings.api_token, settings.http_timeout) as client:
        quiz = await client.get_quiz(quiz_id)
        console.print(f"\n[bold]{quiz.title or f'Quiz {quiz.id}'}[/bold]: "
                      f"{len(quiz.questions)} questions, {format_clock(quiz.time_limit_seconds)}")
        session = AttemptSession(
            quiz, user_id, client, SqliteStorage(settings.db_path),
            tick_interval=settings.tick_interval,
            unload_timeout=settings.unload_timeout,
            network_retries=settings.network_retries,
        )
        try:
            result = await run_attempt(session)
        except RetakeNotAllowedError as e:
            show_history(e.history)
            console.print("[red]You have no attempts left for this quiz.[/red]")
            return
        show_result(result, session.history)


def main():
    settings = load_settings()
    configure_logging(settings.log_level)
    show_welcome()
    user_id = Prompt.ask("User id")
    quiz_id = IntPrompt.ask("Quiz id")
    try:
        asyncio.run(take_quiz(settings, user_id, quiz_id))
    except KeyboardInterrupt:
        console.print("\n[dim]Attempt saved. Run again to resume.[/dim]")
    except AttemptError as e:
        console.print(f"[red]Error: {e}[/red]")


if __name__ == "__main__":
    main()
