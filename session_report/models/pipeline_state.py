"""
Pipeline State Machine

PENDING -> ANALYZING -> RESEARCHING -> [CROSS_ANALYZING] -> COMPLETED
with FAILED reachable only from ANALYZING.

Every accepted transition is pushed to an optional status sink.  The sink
is for observability only: a missing or failing sink never blocks a run.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Optional

from session_report.exceptions import IllegalTransitionError

logger = logging.getLogger(__name__)


class PipelineStatus(str, Enum):
    PENDING = "pending"
    ANALYZING = "analyzing"
    RESEARCHING = "researching"
    CROSS_ANALYZING = "cross_analyzing"
    COMPLETED = "completed"
    FAILED = "failed"


ALLOWED_TRANSITIONS: dict[PipelineStatus, frozenset[PipelineStatus]] = {
    PipelineStatus.PENDING: frozenset({PipelineStatus.ANALYZING}),
    PipelineStatus.ANALYZING: frozenset(
        {PipelineStatus.RESEARCHING, PipelineStatus.FAILED}
    ),
    PipelineStatus.RESEARCHING: frozenset(
        {PipelineStatus.CROSS_ANALYZING, PipelineStatus.COMPLETED}
    ),
    PipelineStatus.CROSS_ANALYZING: frozenset({PipelineStatus.COMPLETED}),
    PipelineStatus.COMPLETED: frozenset(),
    PipelineStatus.FAILED: frozenset(),
}

StatusSink = Callable[[PipelineStatus], None]


class PipelineStateMachine:
    """Tracks the status of one run and reports each change to a sink."""

    def __init__(self, session_id: str, sink: Optional[StatusSink] = None) -> None:
        self.session_id = session_id
        self._sink = sink
        self._status = PipelineStatus.PENDING
        self.history: list[PipelineStatus] = [PipelineStatus.PENDING]
        self._report(PipelineStatus.PENDING)

    @property
    def status(self) -> PipelineStatus:
        return self._status

    def can_transition(self, target: PipelineStatus) -> bool:
        return target in ALLOWED_TRANSITIONS[self._status]

    def transition(self, target: PipelineStatus) -> None:
        """Move to ``target`` or raise IllegalTransitionError."""
        if not self.can_transition(target):
            raise IllegalTransitionError(
                f"Illegal transition {self._status.value} -> {target.value} "
                f"for session {self.session_id}"
            )
        logger.info(
            "pipeline %s: %s -> %s",
            self.session_id, self._status.value, target.value,
        )
        self._status = target
        self.history.append(target)
        self._report(target)

    def _report(self, status: PipelineStatus) -> None:
        if self._sink is None:
            return
        try:
            self._sink(status)
        except Exception as exc:
            logger.warning(
                "Status sink failed for session %s (%s): %s",
                self.session_id, status.value, exc,
            )
