"""
Session History

JSON-file backed record of analysed sessions per patient.  Feeds the
trend stage with the sessions recorded before the one being analysed.

File format: a list of ``{"patient_id": ..., "metrics": {SessionMetrics}}``.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

from session_report.config import settings
from session_report.models.schemas import SessionMetrics

logger = logging.getLogger(__name__)


class SessionRecord(BaseModel):
    patient_id: str
    metrics: SessionMetrics


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so recordings compare consistently."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SessionHistory:
    """Per-patient session history.

    With ``path=None`` the history lives only in memory.
    """

    def __init__(self, path: Optional[str | Path] = None) -> None:
        self.path = Path(path) if path is not None else None
        self._records: dict[str, SessionRecord] = {}
        self._loaded = False

    def _load(self) -> None:
        self._loaded = True
        if self.path is None or not self.path.exists():
            return
        with open(self.path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        for item in raw:
            record = SessionRecord.model_validate(item)
            self._records[record.metrics.session_id] = record
        logger.info("Loaded %d sessions from %s", len(self._records), self.path)

    def _save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = [r.model_dump(mode="json") for r in self._records.values()]
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self._load()

    def sessions_for(self, patient_id: str) -> list[SessionMetrics]:
        """All sessions of a patient, oldest first."""
        self._ensure_loaded()
        sessions = [
            r.metrics for r in self._records.values() if r.patient_id == patient_id
        ]
        return sorted(sessions, key=lambda m: as_utc(m.recorded_at))

    def sessions_before(
        self,
        patient_id: str,
        recorded_at: datetime,
        exclude_session_id: Optional[str] = None,
    ) -> list[SessionMetrics]:
        """Sessions recorded strictly before ``recorded_at``, oldest first."""
        cutoff = as_utc(recorded_at)
        return [
            m
            for m in self.sessions_for(patient_id)
            if as_utc(m.recorded_at) < cutoff and m.session_id != exclude_session_id
        ]

    def record(self, patient_id: str, metrics: SessionMetrics) -> None:
        """Add or replace a session and persist the file."""
        self._ensure_loaded()
        self._records[metrics.session_id] = SessionRecord(
            patient_id=patient_id, metrics=metrics
        )
        self._save()

    def patient_ids(self) -> list[str]:
        self._ensure_loaded()
        return sorted({r.patient_id for r in self._records.values()})


# Module-level singleton instance
session_history = SessionHistory(settings.SESSIONS_PATH)
