"""Exception hierarchy for the session report pipeline.

Only ``FatalStageError`` is allowed to escape the orchestrator.  Every other
category is absorbed at its stage boundary and reflected as data in the
final report (flags, omissions, empty lists).
"""

from __future__ import annotations


class SessionReportError(Exception):
    """Base class for all pipeline errors."""


class BackendUnavailableError(SessionReportError):
    """Raised when the generative backend is not configured."""


class ResponseValidationError(SessionReportError):
    """Raised when a model response does not match its expected structure.

    ``violations`` holds one ``(field_path, reason)`` pair per problem.
    """

    def __init__(self, message: str, violations: list[tuple[str, str]] | None = None) -> None:
        self.violations = violations or []
        if self.violations:
            detail = "; ".join(f"{path}: {reason}" for path, reason in self.violations)
            message = f"{message} ({detail})"
        super().__init__(message)


class FatalStageError(SessionReportError):
    """A stage failure that aborts the whole run."""


class SynthesisStageError(FatalStageError):
    """The synthesis call failed or returned an unusable body."""

    def __init__(self, message: str, violations: list[tuple[str, str]] | None = None) -> None:
        self.violations = violations or []
        super().__init__(message)


class ReportAssemblyError(FatalStageError):
    """An unexpected failure after synthesis succeeded."""


class IsolatedTaskError(SessionReportError):
    """A failure confined to a single fan-out task."""


class EnrichmentError(IsolatedTaskError):
    """An enrichment task could not produce a usable result."""


class NonFatalStageError(SessionReportError):
    """A stage failure whose contribution is simply omitted."""


class TrendStageError(NonFatalStageError):
    """The longitudinal trend stage failed."""


class TransientNetworkError(SessionReportError):
    """A best-effort network call (redirect resolution) failed."""


class CacheError(SessionReportError):
    """The research cache could not be read or written."""


class IllegalTransitionError(SessionReportError):
    """A pipeline status change that the transition table does not allow."""
