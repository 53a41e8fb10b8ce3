"""
Pipeline Orchestrator

LangGraph workflow:
  synthesize -> enrich_sections -> [analyze_trends] -> assemble_report

analyze_trends only runs when a patient id is supplied.  Only a
FatalStageError escapes ``run``; enrichment failures become degraded
sections and trend failures are logged and omitted from the report.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, TypedDict

from langgraph.graph import END, StateGraph

from session_report.agents.enrichment import (
    Degraded,
    SectionEnricher,
    enrich_sections,
    pass_through_section,
)
from session_report.agents.synthesis import run_synthesis
from session_report.agents.trend import TrendStage
from session_report.core.research_cache import ResearchCache
from session_report.core.session_history import SessionHistory
from session_report.core.source_resolver import SourceResolver
from session_report.core.usage import aggregate_token_usage
from session_report.exceptions import FatalStageError, ReportAssemblyError
from session_report.models.pipeline_state import (
    PipelineStateMachine,
    PipelineStatus,
    StatusSink,
)
from session_report.models.schemas import (
    EnrichedSection,
    PipelineOutput,
    SessionMetrics,
    SynthesisOutput,
    TokenUsage,
    TrendResult,
    UsageBreakdown,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# State schema
# ---------------------------------------------------------------------------

class PipelineState(TypedDict):
    metrics: SessionMetrics
    patient_id: Optional[str]
    machine: PipelineStateMachine
    started_at: datetime
    synthesis: Optional[SynthesisOutput]
    synthesis_usage: Optional[TokenUsage]
    enriched_sections: Optional[list[EnrichedSection]]
    enrichment_usage: Optional[list[TokenUsage]]
    failed_enrichments: Optional[list[str]]
    trend_result: Optional[TrendResult]
    trend_usage: Optional[TokenUsage]
    output: Optional[PipelineOutput]


class PipelineOrchestrator:
    """Runs one report pipeline per call to ``run``.

    Args:
        backend: Generative backend exposing ``generate`` and
            ``generate_grounded`` (normally the Gemini client).
        cache: Research cache used by the enrichment tasks.
        resolver: Source resolver for grounded links.
        history: Session history consulted by the trend stage.
        status_sink: Default sink for status transitions.
    """

    def __init__(
        self,
        backend,
        cache: ResearchCache,
        resolver: SourceResolver,
        history: SessionHistory,
        status_sink: Optional[StatusSink] = None,
        trend_stage: Optional[TrendStage] = None,
    ) -> None:
        self.backend = backend
        self.enricher = SectionEnricher(backend, cache, resolver)
        self.trend_stage = trend_stage or TrendStage(backend, history)
        self.status_sink = status_sink
        self.graph = self._build_graph()

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    async def synthesize(self, state: PipelineState) -> dict:
        machine = state["machine"]
        machine.transition(PipelineStatus.ANALYZING)
        synthesis, usage = await run_synthesis(self.backend, state["metrics"])
        machine.transition(PipelineStatus.RESEARCHING)
        return {"synthesis": synthesis, "synthesis_usage": usage}

    async def enrich(self, state: PipelineState) -> dict:
        sections = state["synthesis"].sections
        targets = [(i, s) for i, s in enumerate(sections) if s.needs_research]
        logger.info(
            "enrich_sections: %d of %d sections need research",
            len(targets), len(sections),
        )

        outcomes = dict(
            await enrich_sections(
                self.enricher,
                [s for _, s in targets],
                [i for i, _ in targets],
            )
        )

        # Fan-in: restore original order by input index
        records: list[EnrichedSection] = []
        usage: list[TokenUsage] = []
        failed: list[str] = []
        for index, section in enumerate(sections):
            outcome = outcomes.get(index)
            if outcome is None:
                records.append(pass_through_section(section))
                continue
            records.append(outcome.section)
            usage.append(outcome.token_usage)
            if isinstance(outcome, Degraded):
                failed.append(section.id)

        if failed:
            logger.warning("enrich_sections: %d section(s) degraded: %s", len(failed), failed)
        return {
            "enriched_sections": records,
            "enrichment_usage": usage,
            "failed_enrichments": failed,
        }

    async def analyze_trends(self, state: PipelineState) -> dict:
        state["machine"].transition(PipelineStatus.CROSS_ANALYZING)
        metrics = state["metrics"]
        try:
            result, usage = await self.trend_stage.run(
                metrics,
                state["patient_id"],
                state["synthesis"].speculative_insights,
            )
        except Exception as exc:
            logger.warning("Trend stage failed for %s, omitting: %s", metrics.session_id, exc)
            return {"trend_result": None, "trend_usage": None}
        return {"trend_result": result, "trend_usage": usage}

    async def assemble_report(self, state: PipelineState) -> dict:
        synthesis = state["synthesis"]
        completed_at = datetime.now(timezone.utc)

        enrichment_usage = state["enrichment_usage"] or []
        trend_usage = state.get("trend_usage")
        stage_usages = [state["synthesis_usage"], *enrichment_usage]
        if trend_usage is not None:
            stage_usages.append(trend_usage)

        output = PipelineOutput(
            **synthesis.model_dump(exclude={"sections"}),
            session_id=state["metrics"].session_id,
            patient_id=state["patient_id"],
            sections=synthesis.sections,
            enriched_sections=state["enriched_sections"],
            failed_enrichments=state["failed_enrichments"] or [],
            trend_result=state.get("trend_result"),
            token_usage=UsageBreakdown(
                synthesis=state["synthesis_usage"],
                enrichment=enrichment_usage,
                trend=trend_usage,
                total=aggregate_token_usage(stage_usages),
            ),
            started_at=state["started_at"],
            completed_at=completed_at,
            total_duration_ms=int(
                (completed_at - state["started_at"]).total_seconds() * 1000
            ),
        )
        state["machine"].transition(PipelineStatus.COMPLETED)
        return {"output": output}

    # ------------------------------------------------------------------
    # Graph
    # ------------------------------------------------------------------

    @staticmethod
    def _route_after_enrichment(state: PipelineState) -> str:
        return "analyze_trends" if state.get("patient_id") else "assemble_report"

    def _build_graph(self):
        """Construct and compile the LangGraph StateGraph."""
        graph = StateGraph(PipelineState)

        graph.add_node("synthesize", self.synthesize)
        graph.add_node("enrich_sections", self.enrich)
        graph.add_node("analyze_trends", self.analyze_trends)
        graph.add_node("assemble_report", self.assemble_report)

        graph.set_entry_point("synthesize")
        graph.add_edge("synthesize", "enrich_sections")
        graph.add_conditional_edges(
            "enrich_sections",
            self._route_after_enrichment,
            {"analyze_trends": "analyze_trends", "assemble_report": "assemble_report"},
        )
        graph.add_edge("analyze_trends", "assemble_report")
        graph.add_edge("assemble_report", END)

        return graph.compile()

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    async def run(
        self,
        metrics: SessionMetrics,
        patient_id: Optional[str] = None,
        status_sink: Optional[StatusSink] = None,
    ) -> PipelineOutput:
        """Run the full pipeline for one session.

        Raises:
            SynthesisStageError: the synthesis call failed; status is FAILED.
            ReportAssemblyError: any other unexpected failure.  The status
                stays at the last stage reached once synthesis has passed,
                since FAILED is only reachable from ANALYZING.
        """
        machine = PipelineStateMachine(metrics.session_id, status_sink or self.status_sink)
        initial_state: PipelineState = {
            "metrics": metrics,
            "patient_id": patient_id,
            "machine": machine,
            "started_at": datetime.now(timezone.utc),
            "synthesis": None,
            "synthesis_usage": None,
            "enriched_sections": None,
            "enrichment_usage": None,
            "failed_enrichments": None,
            "trend_result": None,
            "trend_usage": None,
            "output": None,
        }

        try:
            result = await self.graph.ainvoke(initial_state)
        except FatalStageError:
            if machine.can_transition(PipelineStatus.FAILED):
                machine.transition(PipelineStatus.FAILED)
            raise
        except Exception as exc:
            stage = machine.status.value
            logger.error("Pipeline failed for %s while %s: %s", metrics.session_id, stage, exc)
            if machine.can_transition(PipelineStatus.FAILED):
                machine.transition(PipelineStatus.FAILED)
            raise ReportAssemblyError(f"Pipeline failed while {stage}: {exc}") from exc

        output = result["output"]
        logger.info(
            "Pipeline complete for %s in %d ms: %d sections, %d failed, cost=%.6f",
            metrics.session_id,
            output.total_duration_ms,
            len(output.enriched_sections),
            len(output.failed_enrichments),
            output.token_usage.total.estimated_cost,
        )
        return output


def build_default_orchestrator(status_sink: Optional[StatusSink] = None) -> PipelineOrchestrator:
    """Orchestrator wired to the process-wide client, cache, tiers and history."""
    from session_report.core.evidence_tiers import get_tier_table
    from session_report.core.gemini_client import gemini_client
    from session_report.core.research_cache import get_research_cache
    from session_report.core.session_history import session_history

    return PipelineOrchestrator(
        backend=gemini_client,
        cache=get_research_cache(),
        resolver=SourceResolver(get_tier_table()),
        history=session_history,
        status_sink=status_sink,
    )
