"""
Error taxonomy for consultations.

Only the fatal kinds ever leave ``ConsultationOrchestrator.run``. The
recovered kinds are raised internally and converted into failed responses,
"unavailable" dialogue answers or log lines.
"""
from __future__ import annotations

from typing import Iterable, Optional


class ConsultationError(Exception):
    """Base class for consultation-originated errors."""


class FatalConsultationError(ConsultationError):
    """The consultation cannot produce a result."""


class RecoverableConsultationError(ConsultationError):
    """Degrades the consultation into a partial result."""


class NoSpecialistsAvailable(FatalConsultationError):
    """None of the requested specialist tags resolved to an available agent."""

    def __init__(self, requested: Iterable[str]):
        self.requested = list(requested)
        super().__init__(
            f"No requested specialists available for consultation: {', '.join(self.requested) or '(none)'}"
        )


class NoSuccessfulResponses(FatalConsultationError):
    """Every specialist failed, so there is nothing to synthesize."""

    def __init__(self, consultation_id: str, attempted: int):
        self.consultation_id = consultation_id
        self.attempted = attempted
        super().__init__(
            f"No successful specialist responses to synthesize "
            f"(consultation {consultation_id}, {attempted} attempted)"
        )


class ConsultationTimedOut(FatalConsultationError):
    """The whole consultation exceeded its outer deadline."""

    def __init__(self, consultation_id: Optional[str], deadline_seconds: float):
        self.consultation_id = consultation_id
        self.deadline_seconds = deadline_seconds
        super().__init__(f"Consultation timeout after {deadline_seconds:.0f}s")


class SpecialistCallFailed(RecoverableConsultationError):
    """A specialist raised while assessing the case."""

    def __init__(self, specialist: str, cause: BaseException):
        self.specialist = specialist
        self.cause = cause
        super().__init__(f"{specialist} failed: {type(cause).__name__}: {cause}")


class SpecialistCallTimedOut(RecoverableConsultationError):
    """A specialist exceeded its per-call timeout."""

    def __init__(self, specialist: str, timeout_seconds: float):
        self.specialist = specialist
        self.timeout_seconds = timeout_seconds
        super().__init__(f"{specialist} timed out after {timeout_seconds:.1f}s")


class ConferenceRoutingFailed(RecoverableConsultationError):
    """Questions could not be delivered to, or answered by, a target agent."""

    def __init__(self, target: str, reason: str):
        self.target = target
        self.reason = reason
        super().__init__(f"Routing to {target} failed: {reason}")


class BackgroundTaskFailed(RecoverableConsultationError):
    """A fire-and-forget task raised. Logged, never propagated to callers."""

    def __init__(self, task_name: str, cause: BaseException):
        self.task_name = task_name
        self.cause = cause
        super().__init__(f"Background task {task_name} failed: {type(cause).__name__}: {cause}")
