"""Countdown and autosave controller for a running exam attempt.

The countdown is only a display aid and a trigger for requests. The server
re-checks every deadline against its own clock, so nothing here decides
whether an attempt is late.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional

import httpx

from exam_portal import config
from exam_portal.client.api import ExamApiClient
from exam_portal.errors import AlreadySubmitted, ExamPortalError

logger = logging.getLogger(__name__)

SAVE_STATES = ("idle", "pending", "saving", "saved", "error")


class AttemptTimer:
    """Drives one attempt from the student's side.

    Call ``tick()`` once per second (``run()`` does that). Each tick updates
    ``time_remaining``, raises the low-time warning once, flushes the
    displayed question's answer after the debounce delay, and submits the
    attempt with ``trigger="auto"`` once time runs out.
    """

    def __init__(
        self,
        api: ExamApiClient,
        exam_id: int,
        attempt_id: int,
        time_remaining_ms: int,
        duration_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        on_warning: Optional[Callable[[float], None]] = None,
        debounce_seconds: Optional[float] = None,
        warning_seconds: Optional[float] = None,
        tick_seconds: Optional[float] = None,
    ):
        self.api = api
        self.exam_id = exam_id
        self.attempt_id = attempt_id
        self.clock = clock
        self.on_warning = on_warning
        self.debounce_seconds = config.AUTOSAVE_DEBOUNCE_SECONDS if debounce_seconds is None else debounce_seconds
        self.warning_seconds = config.TIME_WARNING_SECONDS if warning_seconds is None else warning_seconds
        self.tick_seconds = config.TIMER_TICK_SECONDS if tick_seconds is None else tick_seconds

        self.time_remaining = max(0.0, time_remaining_ms / 1000.0)
        self.duration_seconds = duration_seconds
        self._ends_at = clock() + self.time_remaining
        self._time_at_seed = self.time_remaining

        self.current_question_id: Optional[int] = None
        self._pending: Dict[int, Any] = {}
        self._last_change: Optional[float] = None
        self.save_state = "idle"
        self.last_error: Optional[Exception] = None

        self.warned = False
        self.submitting = False
        self.submitted = False
        self._auto_submit_fired = False
        self.result: Optional[Dict[str, Any]] = None

    @classmethod
    def from_start_payload(cls, api: ExamApiClient, payload: Dict[str, Any], **kwargs: Any) -> "AttemptTimer":
        """Build a timer from the body returned by ``POST /exams/{id}/start``."""
        exam = payload["exam"]
        timer = cls(
            api,
            exam["id"],
            payload["attempt"]["id"],
            payload["time_remaining_ms"],
            duration_seconds=exam["duration_minutes"] * 60,
            **kwargs,
        )
        if payload.get("questions"):
            timer.current_question_id = payload["questions"][0]["id"]
        return timer

    # --- Answers ---

    def set_answer(self, question_id: int, response: Any) -> None:
        """Record a change to a question's answer and restart the debounce."""
        self._pending[question_id] = response
        self._last_change = self.clock()
        self.save_state = "pending"

    async def show_question(self, question_id: int) -> None:
        """Switch the displayed question, saving the previous one's pending answer."""
        previous = self.current_question_id
        if previous is not None and previous != question_id and previous in self._pending:
            await self.save_now(previous)
        self.current_question_id = question_id

    async def save_now(self, question_id: Optional[int] = None) -> bool:
        """Save a pending answer immediately (the manual "Save Answer" action).

        Failures leave the answer pending and set ``save_state`` to
        ``"error"``; the next debounce cycle or manual save tries again.
        """
        question_id = self.current_question_id if question_id is None else question_id
        if question_id is None or question_id not in self._pending:
            return False
        response = self._pending.pop(question_id)
        self.save_state = "saving"
        try:
            await self.api.save_answer(self.exam_id, self.attempt_id, question_id, response)
        except (ExamPortalError, httpx.HTTPError) as e:
            logger.warning("Autosave failed for attempt %s question %s: %s", self.attempt_id, question_id, e)
            # Keep any newer edit made while the request was in flight
            self._pending.setdefault(question_id, response)
            self._last_change = self.clock()
            self.last_error = e
            self.save_state = "error"
            return False

        self.last_error = None
        if self._pending:
            self.save_state = "pending"
        else:
            self._last_change = None
            self.save_state = "saved"
        return True

    # --- Countdown ---

    def _time_spent(self) -> float:
        if self.duration_seconds is not None:
            return max(0.0, self.duration_seconds - self.time_remaining)
        return max(0.0, self._time_at_seed - self.time_remaining)

    async def tick(self) -> None:
        if self.submitted or self.submitting or self._auto_submit_fired:
            return

        now = self.clock()
        self.time_remaining = max(0.0, self._ends_at - now)

        if self.time_remaining <= 0:
            self._auto_submit_fired = True
            try:
                await self.submit(trigger="auto")
            except (ExamPortalError, httpx.HTTPError) as e:
                logger.error("Auto-submit failed for attempt %s: %s", self.attempt_id, e)
                self.last_error = e
            return

        if not self.warned and self.time_remaining <= self.warning_seconds:
            self.warned = True
            logger.info("Attempt %s: %d seconds remaining", self.attempt_id, int(self.time_remaining))
            if self.on_warning:
                self.on_warning(self.time_remaining)

        if (
            self._last_change is not None
            and self.current_question_id in self._pending
            and now - self._last_change >= self.debounce_seconds
        ):
            await self.save_now()

    async def run(self) -> Optional[Dict[str, Any]]:
        """Tick until the attempt is submitted or auto-submit has been tried."""
        while not (self.submitted or self._auto_submit_fired):
            await self.tick()
            if self.submitted or self._auto_submit_fired:
                break
            await asyncio.sleep(self.tick_seconds)
        return self.result

    # --- Submission ---

    async def submit(self, trigger: str = "manual") -> Optional[Dict[str, Any]]:
        """Submit the attempt; only one submit is ever in flight.

        On the auto path an ``AlreadySubmitted`` answer means another submit
        got there first, which is the end state wanted, so it counts as done.
        """
        if self.submitting or self.submitted:
            return self.result

        self.submitting = True
        try:
            if trigger == "manual":
                await self.save_now()
            try:
                self.result = await self.api.submit(self.exam_id, self.attempt_id, self._time_spent(), trigger)
            except AlreadySubmitted:
                if trigger != "auto":
                    raise
                logger.info("Attempt %s was already submitted", self.attempt_id)
                self.result = {"attempt_id": self.attempt_id, "status": "already_submitted"}
            self.submitted = True
        finally:
            self.submitting = False
        return self.result
