"""
Analysis Router

POST /analysis/{session_id}                   - Run the report pipeline for a session
GET  /analysis/{session_id}                   - Return the stored report
GET  /analysis/{session_id}/status            - Return the latest pipeline status
GET  /analysis/patients/{patient_id}/sessions - List a patient's recorded sessions
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from session_report.agents.pipeline import PipelineOrchestrator, build_default_orchestrator
from session_report.core.session_history import SessionHistory, session_history
from session_report.exceptions import FatalStageError
from session_report.memory.pipeline_store import PipelineStore, pipeline_store
from session_report.models.schemas import PipelineOutput, SessionMetrics, StatusResponse

logger = logging.getLogger(__name__)

router = APIRouter()

_orchestrator: Optional[PipelineOrchestrator] = None


def get_orchestrator() -> PipelineOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_default_orchestrator()
    return _orchestrator


def get_pipeline_store() -> PipelineStore:
    return pipeline_store


def get_session_history() -> SessionHistory:
    return session_history


# ── POST /analysis/{session_id} ───────────────────────────────────────────────

@router.post("/{session_id}", response_model=PipelineOutput)
async def analyze_session(
    session_id: str,
    metrics: SessionMetrics,
    patient_id: Optional[str] = Query(None),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
    store: PipelineStore = Depends(get_pipeline_store),
    history: SessionHistory = Depends(get_session_history),
) -> PipelineOutput:
    """Run synthesis, enrichment and (with a patient id) trend analysis.

    The finished report is stored and, when a patient id is given, the
    session is added to that patient's history.
    """
    if metrics.session_id != session_id:
        raise HTTPException(
            status_code=400,
            detail=f"Body session_id {metrics.session_id!r} does not match path {session_id!r}",
        )

    try:
        report = await orchestrator.run(
            metrics, patient_id=patient_id, status_sink=store.sink_for(session_id)
        )
    except FatalStageError as exc:
        raise HTTPException(
            status_code=502,
            detail={
                "message": str(exc),
                "violations": [
                    {"path": path, "reason": reason}
                    for path, reason in getattr(exc, "violations", [])
                ],
            },
        ) from exc

    store.save_report(report)
    if patient_id:
        history.record(patient_id, metrics)
    return report


# ── GET /analysis/patients/{patient_id}/sessions ──────────────────────────────

@router.get("/patients/{patient_id}/sessions")
async def list_patient_sessions(
    patient_id: str,
    history: SessionHistory = Depends(get_session_history),
) -> list[dict[str, Any]]:
    """Return a summary of a patient's recorded sessions, oldest first."""
    return [
        {
            "session_id": m.session_id,
            "recorded_at": m.recorded_at.isoformat(),
            "title": m.title,
            "opi_score": m.opi_score,
        }
        for m in history.sessions_for(patient_id)
    ]


# ── GET /analysis/{session_id} ────────────────────────────────────────────────

@router.get("/{session_id}", response_model=PipelineOutput)
async def get_report(
    session_id: str,
    store: PipelineStore = Depends(get_pipeline_store),
) -> PipelineOutput:
    report = store.get_report(session_id)
    if report is None:
        raise HTTPException(status_code=404, detail=f"No report for session {session_id}")
    return report


# ── GET /analysis/{session_id}/status ─────────────────────────────────────────

@router.get("/{session_id}/status", response_model=StatusResponse)
async def get_status(
    session_id: str,
    store: PipelineStore = Depends(get_pipeline_store),
) -> StatusResponse:
    status = store.get_status(session_id)
    if status is None:
        raise HTTPException(status_code=404, detail=f"No pipeline run for session {session_id}")
    return StatusResponse(session_id=session_id, status=status.value)
