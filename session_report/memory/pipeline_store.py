"""
Pipeline Store

In-memory store of pipeline status and finished reports per session.
Provides the status sink that the orchestrator reports transitions to.
"""

from __future__ import annotations

import logging
from typing import Optional

from session_report.models.pipeline_state import PipelineStatus, StatusSink
from session_report.models.schemas import PipelineOutput

logger = logging.getLogger(__name__)


class PipelineStore:
    """In-memory store for run status and reports."""

    def __init__(self) -> None:
        self._statuses: dict[str, PipelineStatus] = {}
        self._reports: dict[str, PipelineOutput] = {}

    def get_status(self, session_id: str) -> Optional[PipelineStatus]:
        return self._statuses.get(session_id)

    def set_status(self, session_id: str, status: PipelineStatus) -> None:
        self._statuses[session_id] = status
        logger.debug("Status for %s: %s", session_id, status.value)

    def sink_for(self, session_id: str) -> StatusSink:
        """Return a status sink bound to one session."""
        def _sink(status: PipelineStatus) -> None:
            self.set_status(session_id, status)
        return _sink

    def get_report(self, session_id: str) -> Optional[PipelineOutput]:
        return self._reports.get(session_id)

    def save_report(self, report: PipelineOutput) -> None:
        self._reports[report.session_id] = report

    def clear_session(self, session_id: str) -> None:
        self._statuses.pop(session_id, None)
        self._reports.pop(session_id, None)

    def clear_all(self) -> None:
        self._statuses.clear()
        self._reports.clear()


# Module-level singleton instance
pipeline_store = PipelineStore()
