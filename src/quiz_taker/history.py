"""Attempt history and retake eligibility."""
import logging

from quiz_taker.models import AttemptHistory, Quiz, Submission

logger = logging.getLogger(__name__)


def build_history(quiz: Quiz, raw: dict) -> AttemptHistory:
    """Compute attempt accounting from the server's submission list.

    Eligibility is derived from ``quiz.max_attempts`` and the number of
    submissions; the summary fields the server sends alongside are ignored.
    """
    submissions = [Submission.from_dict(s) for s in raw.get("submissions") or []]
    return AttemptHistory(max_attempts=quiz.max_attempts, submissions=submissions)


class AttemptHistoryResolver:
    def __init__(self, client):
        self.client = client
        self.latest: AttemptHistory | None = None

    async def resolve(self, quiz: Quiz) -> AttemptHistory:
        raw = await self.client.get_history(quiz.id)
        history = build_history(quiz, raw)
        logger.info(
            "Quiz %s: %d submission(s), %d remaining, best %.1f",
            quiz.id, len(history.submissions), history.attempts_remaining, history.best_score,
        )
        self.latest = history
        return history
