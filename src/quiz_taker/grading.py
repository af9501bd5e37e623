"""HTTP client for the remote grading service."""
import logging
from typing import Optional

import httpx

from quiz_taker.errors import ErrorKind, GradingError
from quiz_taker.models import Quiz, Submission

logger = logging.getLogger(__name__)

STRUCTURED_KINDS = {
    ErrorKind.ALREADY_SUBMITTED.value: ErrorKind.ALREADY_SUBMITTED,
    ErrorKind.QUIZ_EXPIRED.value: ErrorKind.QUIZ_EXPIRED,
    ErrorKind.VALIDATION.value: ErrorKind.VALIDATION,
}


def classify_response(response: httpx.Response) -> GradingError:
    """Map an error response to a GradingError using its ``code`` field."""
    code = None
    message = ""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        code = body.get("code")
        message = body.get("message") or ""
        if isinstance(message, list):
            message = "; ".join(str(m) for m in message)
    if code in STRUCTURED_KINDS:
        kind = STRUCTURED_KINDS[code]
    elif response.status_code >= 500:
        kind = ErrorKind.NETWORK
    else:
        kind = ErrorKind.VALIDATION
    return GradingError(kind, message or f"HTTP {response.status_code}", response.status_code)


class GradingClient:
    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url, headers=headers, timeout=timeout, transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> dict:
        try:
            res = await self._client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            logger.warning("%s %s failed: %s", method, url, e)
            raise GradingError(ErrorKind.NETWORK, str(e) or type(e).__name__) from e
        if res.status_code >= 400:
            error = classify_response(res)
            logger.warning("%s %s -> %s (%s)", method, url, res.status_code, error.kind.value)
            raise error
        return res.json()

    async def get_quiz(self, quiz_id) -> Quiz:
        data = await self._request("GET", f"/quizzes/{quiz_id}")
        return Quiz.from_dict(data)

    async def submit(self, quiz_id, payload: dict) -> Submission:
        data = await self._request("POST", f"/quizzes/{quiz_id}/submissions", json=payload)
        return Submission.from_dict(data)

    async def get_history(self, quiz_id) -> dict:
        return await self._request("GET", f"/quizzes/{quiz_id}/submission-history")
