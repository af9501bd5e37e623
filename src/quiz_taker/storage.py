"""Local snapshot persistence for in-progress attempts.

One snapshot per (user, quiz) lives under a deterministic key and is
overwritten on every save, so a resumed page always finds at most one
in-progress attempt.
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol

from quiz_taker.db import get_connection, init_db
from quiz_taker.models import AnswerValue
from quiz_taker.timer import Clock, SystemClock

logger = logging.getLogger(__name__)


def snapshot_key(user_id, quiz_id) -> str:
    return f"quiz-attempt-{user_id}-{quiz_id}"


class KeyValueStorage(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStorage:
    def __init__(self):
        self.data: dict[str, str] = {}
        self.writes = 0

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.writes += 1
        self.data[key] = value

    def remove(self, key: str) -> None:
        self.data.pop(key, None)


class SqliteStorage:
    """Durable key/value storage in the ``attempt_snapshots`` table."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        init_db(db_path)

    def get(self, key: str) -> Optional[str]:
        conn = get_connection(self.db_path)
        row = conn.execute(
            "SELECT payload FROM attempt_snapshots WHERE key = ?", (key,)
        ).fetchone()
        conn.close()
        return row["payload"] if row else None

    def set(self, key: str, value: str) -> None:
        conn = get_connection(self.db_path)
        conn.execute(
            """INSERT INTO attempt_snapshots (key, payload, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET payload = excluded.payload, updated_at = excluded.updated_at""",
            (key, value, datetime.now().isoformat()),
        )
        conn.commit()
        conn.close()

    def remove(self, key: str) -> None:
        conn = get_connection(self.db_path)
        conn.execute("DELETE FROM attempt_snapshots WHERE key = ?", (key,))
        conn.commit()
        conn.close()


@dataclass
class AttemptSnapshot:
    answers: list[Optional[AnswerValue]]
    remaining_seconds: int
    started_at: float = 0.0
    saved_at: float = 0.0
    current_index: int = 0
    question_order: list[int] = field(default_factory=list)
    option_orders: list[Optional[list[int]]] = field(default_factory=list)
    time_taken: list[float] = field(default_factory=list)

    def to_json(self) -> str:
        return json.dumps({
            "answers": self.answers,
            "remainingSeconds": self.remaining_seconds,
            "startedAt": self.started_at,
            "savedAt": self.saved_at,
            "currentIndex": self.current_index,
            "questionOrder": self.question_order,
            "optionOrders": self.option_orders,
            "timeTaken": self.time_taken,
        })

    @classmethod
    def from_json(cls, raw: str) -> "AttemptSnapshot":
        """Parse a stored record; raises ValueError if any field has the wrong shape."""
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("snapshot is not an object")
        answers = _checked_list(data["answers"], "answers", _is_answer)
        remaining = data["remainingSeconds"]
        if not _is_number(remaining):
            raise ValueError("remainingSeconds must be a number")
        started_at = data.get("startedAt", 0.0)
        saved_at = data.get("savedAt", 0.0)
        for name, value in (("startedAt", started_at), ("savedAt", saved_at)):
            if not _is_number(value):
                raise ValueError(f"{name} must be a number")
        current_index = data.get("currentIndex", 0)
        if not _is_int(current_index):
            raise ValueError("currentIndex must be an integer")
        option_orders = _checked_list(
            data.get("optionOrders") or [], "optionOrders",
            lambda o: o is None or (isinstance(o, list) and all(_is_int(i) for i in o)),
        )
        return cls(
            answers=answers,
            remaining_seconds=int(remaining),
            started_at=started_at,
            saved_at=saved_at,
            current_index=current_index,
            question_order=_checked_list(data.get("questionOrder") or [], "questionOrder", _is_int),
            option_orders=option_orders,
            time_taken=_checked_list(data.get("timeTaken") or [], "timeTaken", _is_number),
        )


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_answer(value) -> bool:
    return value is None or _is_int(value) or isinstance(value, str)


def _checked_list(value, name: str, item_ok) -> list:
    if not isinstance(value, list) or not all(item_ok(item) for item in value):
        raise ValueError(f"{name} has an unexpected shape")
    return list(value)


class SnapshotStore:
    """Snapshot access for one (user, quiz) attempt.

    Forced saves (answer edits) always write; unforced saves (timer ticks)
    are throttled to one per ``min_write_interval`` seconds.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        user_id,
        quiz_id,
        clock: Clock | None = None,
        min_write_interval: float = 1.0,
    ):
        self.storage = storage
        self.key = snapshot_key(user_id, quiz_id)
        self.clock = clock or SystemClock()
        self.min_write_interval = min_write_interval
        self._last_write: float | None = None

    def load(self) -> Optional[AttemptSnapshot]:
        raw = self.storage.get(self.key)
        if raw is None:
            return None
        try:
            return AttemptSnapshot.from_json(raw)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Discarding unreadable snapshot %s: %s", self.key, e)
            self.storage.remove(self.key)
            return None

    def save(self, snapshot: AttemptSnapshot, force: bool = True) -> bool:
        now = self.clock.now()
        if (
            not force
            and self._last_write is not None
            and now - self._last_write < self.min_write_interval
        ):
            return False
        snapshot.saved_at = now
        self.storage.set(self.key, snapshot.to_json())
        self._last_write = now
        return True

    def clear(self) -> None:
        self.storage.remove(self.key)
        self._last_write = None
        logger.debug("Cleared snapshot %s", self.key)
