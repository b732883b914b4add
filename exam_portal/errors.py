"""Domain errors raised by the service layer.

Every error carries a stable machine-readable ``kind`` and the HTTP status
the API layer answers with. Extra keyword arguments are kept on
``extra`` and rendered alongside the message.
"""

from typing import Any, Dict, Optional, Type


class ExamPortalError(Exception):
    kind = "ExamPortalError"
    status_code = 500

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra: Dict[str, Any] = extra

    def to_dict(self) -> Dict[str, Any]:
        payload = {"kind": self.kind, "detail": self.message}
        payload.update(self.extra)
        return payload


class ValidationError(ExamPortalError):
    kind = "ValidationError"
    status_code = 400


class Forbidden(ExamPortalError):
    kind = "Forbidden"
    status_code = 403


class NotFound(ExamPortalError):
    kind = "NotFound"
    status_code = 404


class InvalidTransition(ExamPortalError):
    kind = "InvalidTransition"
    status_code = 409

    def __init__(self, message: str, current: Optional[str] = None, attempted: Optional[str] = None, **extra: Any):
        super().__init__(message, current=current, attempted=attempted, **extra)
        self.current = current
        self.attempted = attempted


class ExamNotActive(ExamPortalError):
    kind = "ExamNotActive"
    status_code = 409


class AttemptNotActive(ExamPortalError):
    kind = "AttemptNotActive"
    status_code = 409


class MaxAttemptsExceeded(ExamPortalError):
    kind = "MaxAttemptsExceeded"
    status_code = 409


class AlreadySubmitted(ExamPortalError):
    kind = "AlreadySubmitted"
    status_code = 409


class ScheduleConflict(ExamPortalError):
    kind = "ScheduleConflict"
    status_code = 409


_ERRORS_BY_KIND: Dict[str, Type[ExamPortalError]] = {
    cls.kind: cls
    for cls in (
        ValidationError,
        Forbidden,
        NotFound,
        InvalidTransition,
        ExamNotActive,
        AttemptNotActive,
        MaxAttemptsExceeded,
        AlreadySubmitted,
        ScheduleConflict,
    )
}


def error_from_kind(kind: Optional[str], message: str, **extra: Any) -> ExamPortalError:
    """Rebuild a domain error from its ``kind`` (used by the HTTP client)."""
    cls = _ERRORS_BY_KIND.get(kind or "", ExamPortalError)
    if cls is InvalidTransition:
        return InvalidTransition(message, extra.pop("current", None), extra.pop("attempted", None), **extra)
    return cls(message, **extra)
