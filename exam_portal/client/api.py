"""Async HTTP client for the student attempt endpoints."""

import logging
from typing import Any, Dict, Optional

import httpx

from exam_portal.errors import ExamPortalError, error_from_kind

logger = logging.getLogger(__name__)


class ExamApiClient:
    """Thin wrapper over ``httpx.AsyncClient`` for start, save and submit.

    Non-2xx responses are raised as the same domain errors the server raised,
    rebuilt from the ``kind`` field of the JSON body.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        if client is None and base_url is None:
            raise ValueError("Either base_url or client is required")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "ExamApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _post(self, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        response = await self.client.post(path, json=payload or {})
        if response.is_success:
            return response.json()

        try:
            body = response.json()
        except ValueError:
            body = {"detail": response.text}
        if not isinstance(body, dict):
            body = {"detail": str(body)}
        kind = body.pop("kind", None)
        detail = body.pop("detail", None) or f"HTTP {response.status_code}"
        error = error_from_kind(kind, str(detail), **body)
        if type(error) is ExamPortalError:
            error.extra["http_status"] = response.status_code
        raise error

    async def start(self, exam_id: int) -> Dict[str, Any]:
        return await self._post(f"/exams/{exam_id}/start")

    async def save_answer(self, exam_id: int, attempt_id: int, question_id: int, response: Any) -> Dict[str, Any]:
        return await self._post(
            f"/exams/{exam_id}/answer",
            {"attemptId": attempt_id, "questionId": question_id, "response": response},
        )

    async def submit(
        self,
        exam_id: int,
        attempt_id: int,
        time_spent: Optional[float] = None,
        trigger: str = "manual",
    ) -> Dict[str, Any]:
        logger.info("Submitting attempt %s of exam %s (%s)", attempt_id, exam_id, trigger)
        return await self._post(
            f"/exams/{exam_id}/submit",
            {"attemptId": attempt_id, "timeSpent": time_spent, "trigger": trigger},
        )
