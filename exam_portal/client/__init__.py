"""Student-side client: HTTP wrapper and exam countdown controller."""

from exam_portal.client.api import ExamApiClient
from exam_portal.client.timer import AttemptTimer

__all__ = ["AttemptTimer", "ExamApiClient"]
