import asyncio
import threading
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from quiz_taker import app
from quiz_taker.app import LineReader, clock_color, format_clock, parse_input, run_attempt
from quiz_taker.errors import ErrorKind, GradingError
from quiz_taker.finalizer import FinalizeOutcome, FinalizeResult
from quiz_taker.models import AttemptStatus, FinalizeTrigger, QuestionType


def test_format_clock():
    assert format_clock(900) == "15:00"
    assert format_clock(61) == "1:01"
    assert format_clock(0) == "0:00"


def test_clock_color_thresholds():
    assert clock_color(301) == "green"
    assert clock_color(300) == "yellow"
    assert clock_color(60) == "red"


def test_parse_commands():
    assert parse_input("", QuestionType.ESSAY) == ("next", None)
    assert parse_input("/NEXT", QuestionType.ESSAY) == ("next", None)
    assert parse_input("/prev", QuestionType.ESSAY) == ("prev", None)
    assert parse_input(" /submit ", QuestionType.ESSAY) == ("submit", None)
    assert parse_input("/quit", QuestionType.ESSAY) == ("quit", None)
    assert parse_input("/goto 3", QuestionType.ESSAY) == ("goto", 2)


def test_parse_bad_commands():
    with pytest.raises(ValueError):
        parse_input("/goto x", QuestionType.ESSAY)
    with pytest.raises(ValueError):
        parse_input("/help", QuestionType.ESSAY)


def test_parse_multiple_choice_letters():
    assert parse_input("a", QuestionType.MULTIPLE_CHOICE, 4) == ("answer", 0)
    assert parse_input("D", QuestionType.MULTIPLE_CHOICE, 4) == ("answer", 3)
    with pytest.raises(ValueError):
        parse_input("e", QuestionType.MULTIPLE_CHOICE, 4)


def test_parse_true_false():
    assert parse_input("t", QuestionType.TRUE_FALSE) == ("answer", "true")
    assert parse_input("False", QuestionType.TRUE_FALSE) == ("answer", "false")
    with pytest.raises(ValueError):
        parse_input("maybe", QuestionType.TRUE_FALSE)


def test_parse_text_answer_kept_verbatim():
    assert parse_input("  Cloud Run ", QuestionType.FILL_BLANK) == ("answer", "  Cloud Run ")


def test_run_attempt_answers_and_submits(make_session, make_quiz, client):
    session = make_session(make_quiz(question_count=2))
    with patch("quiz_taker.app.POLL_SECONDS", 0.01), \
            patch("quiz_taker.app.Prompt.ask", side_effect=["b", "t", "/submit"]):
        result = asyncio.run(run_attempt(session))
    assert result.outcome == FinalizeOutcome.COMPLETED
    assert result.trigger == FinalizeTrigger.MANUAL
    assert session.status == AttemptStatus.COMPLETED
    answers = client.submit_calls[0]["answers"]
    assert [a["userAnswer"] for a in answers] == ["1", "true"]


def test_run_attempt_recovers_from_bad_input(make_session, make_quiz, client):
    session = make_session(make_quiz(question_count=2))
    inputs = ["z", "/goto 9", "/bogus", "a", "", "/prev", "/submit"]
    with patch("quiz_taker.app.POLL_SECONDS", 0.01), \
            patch("quiz_taker.app.Prompt.ask", side_effect=inputs):
        result = asyncio.run(run_attempt(session))
    assert result.completed
    assert [a["userAnswer"] for a in client.submit_calls[0]["answers"]] == ["0"]


def test_run_attempt_quit_submits_on_teardown(make_session, make_quiz, client):
    session = make_session(make_quiz(question_count=2))
    with patch("quiz_taker.app.POLL_SECONDS", 0.01), \
            patch("quiz_taker.app.Prompt.ask", side_effect=["c", "/quit"]):
        result = asyncio.run(run_attempt(session))
    assert result.trigger == FinalizeTrigger.UNLOAD
    assert len(client.submit_calls) == 1


def test_run_attempt_retries_after_failed_submit(make_session, make_quiz, client):
    client.errors = [GradingError(ErrorKind.VALIDATION, "try later")]
    session = make_session(make_quiz(question_count=2))
    with patch("quiz_taker.app.POLL_SECONDS", 0.01), \
            patch("quiz_taker.app.Prompt.ask", side_effect=["a", "/submit", "/submit"]):
        result = asyncio.run(run_attempt(session))
    assert result.completed
    assert len(client.submit_calls) == 2


def test_show_result_reports_failure():
    result = FinalizeResult(
        FinalizeTrigger.MANUAL, FinalizeOutcome.REVERTED,
        error=GradingError(ErrorKind.NETWORK, "offline"),
    )
    with app.console.capture() as capture:
        app.show_result(result, None)
    assert "offline" in capture.get()


def test_show_result_pending():
    with app.console.capture() as capture:
        app.show_result(None, None)
    assert "still being sent" in capture.get()


def test_line_reader_keeps_an_interrupted_read():
    release = threading.Event()
    calls = []

    def slow_ask(*args, **kwargs):
        calls.append(args)
        release.wait(5)
        return "a"

    session = SimpleNamespace(status=AttemptStatus.FINALIZING)
    reader = LineReader()

    async def scenario():
        first = await reader.read(session, ">")
        session.status = AttemptStatus.ACTIVE
        release.set()
        second = await reader.read(session, ">")
        return first, second

    with patch("quiz_taker.app.POLL_SECONDS", 0.01), \
            patch("quiz_taker.app.Prompt.ask", side_effect=slow_ask):
        first, second = asyncio.run(scenario())
    assert first is None
    assert second == "a"
    assert len(calls) == 1
