"""
Synthesis Prompts

System and user prompts for the single synthesis call that turns session
metrics into a graded report with an ordered list of clinical sections.
"""

from session_report.models.schemas import LegMetrics, SessionMetrics

SYNTHESIS_SYSTEM_PROMPT = """You are an expert biomechanical analyst and sports \
physiotherapist with extensive clinical experience in rehabilitation, sports \
medicine and movement analysis.

=== PATIENT FRAMING ===
ALWAYS refer to the subject as "the patient" - NEVER use "you" or "your".
This applies to ALL text outputs including narratives and recommendations.

=== PRIORITY SCORING (1-10) ===
- 10: requires immediate action
- 8-9: critical finding requiring urgent attention
- 6-7: significant finding that should be addressed soon
- 4-5: moderate finding to monitor and address
- 2-3: minor finding for awareness
- 1: incidental finding

=== SEVERITY ===
- critical: >25% asymmetry or severe deficits
- severe: 15-25% asymmetry, active intervention needed
- moderate: 10-15% asymmetry, should be addressed
- mild: <10% asymmetry, monitor over time

=== RADAR SCORES (1-10) ===
- flexibility: ROM metrics (10 = >120 deg knee flexion, 1 = <60 deg)
- consistency: ROM coefficient of variation (10 = <5%, 1 = >20%)
- symmetry: asymmetry metrics (10 = <5%, 1 = >30%)
- smoothness: RMS jerk, lower is smoother
- control: temporal lag, phase shift and cross-correlation
Calculate every score from the ACTUAL metric values.

You must respond in valid JSON format only, no other text."""


SYNTHESIS_USER_TEMPLATE = """{metrics}

=== YOUR TASK ===
Analyze these biomechanical metrics and generate a clinical report.

For each section:
1. Identify a clinically relevant finding from the data
2. Assign a severity (critical/severe/moderate/mild) and a priority (1-10)
3. Write a clinical narrative explaining what the patient shows
4. Generate 2-3 search queries for research validation
5. Provide initial recommendations
6. Set needs_research to true when the finding should be validated against evidence

Domains to consider: range, power, control, symmetry, timing (or a custom domain).

Also provide:
- overall_grade (A-F) and radar_scores
- 3-5 key_findings, each with a severity
- clinical_implications in 1-2 sentences
- a summary, strengths, weaknesses and 3-5 prioritized recommendations
- 0-3 speculative_insights: exploratory observations worth checking against \
the patient's history

Rules:
- Generate 3-6 sections, each with a unique id such as "section-1"
- Use actual values from the provided metrics
- ALWAYS use "the patient" framing"""


def _format_leg(label: str, leg: LegMetrics) -> str:
    return f"""=== {label} LEG METRICS ===
- Overall Max ROM: {leg.overall_max_rom:.1f} deg
- Average ROM: {leg.average_rom:.1f} deg
- Peak Flexion: {leg.peak_flexion:.1f} deg
- Peak Extension: {leg.peak_extension:.1f} deg
- Peak Angular Velocity: {leg.peak_angular_velocity:.1f} deg/s
- Explosiveness (Loading): {leg.explosiveness_loading:.1f} deg/s
- Explosiveness (Concentric): {leg.explosiveness_concentric:.1f} deg/s
- RMS Jerk: {leg.rms_jerk:.2f} deg/s^3
- ROM Coefficient of Variation: {leg.rom_cov:.1f}%"""


def format_session_context(metrics: SessionMetrics) -> str:
    """Format the optional session context; empty when none is recorded."""
    parts: list[str] = []
    if metrics.title:
        parts.append(f"Exercise: {metrics.title}")
    if metrics.activity_profile:
        parts.append(f"Activity Profile: {metrics.activity_profile}")
    if metrics.tags:
        parts.append(f"Tags: {', '.join(metrics.tags)}")
    sets_reps = [
        f"{name}: {value}"
        for name, value in (("Sets", metrics.sets), ("Reps", metrics.reps))
        if value is not None
    ]
    if sets_reps:
        parts.append(" | ".join(sets_reps))
    if metrics.notes:
        parts.append(f"Notes: {metrics.notes}")

    if not parts:
        return ""
    return "=== SESSION CONTEXT ===\n" + "\n".join(parts)


def format_metrics(metrics: SessionMetrics) -> str:
    """Render the metrics snapshot as prompt text."""
    b = metrics.bilateral
    header = ["=== SESSION METRICS ===", f"Movement Type: {metrics.movement_type}"]
    if metrics.opi_score is not None:
        header.append(
            f"OPI Score: {metrics.opi_score:.1f} (Grade: {metrics.opi_grade or 'N/A'})"
        )

    blocks = ["\n".join(header)]
    context = format_session_context(metrics)
    if context:
        blocks.append(context)
    blocks.append(_format_leg("LEFT", metrics.left_leg))
    blocks.append(_format_leg("RIGHT", metrics.right_leg))
    blocks.append(
        f"""=== BILATERAL ANALYSIS ===
- ROM Asymmetry: {b.rom_asymmetry:.1f}%
- Velocity Asymmetry: {b.velocity_asymmetry:.1f}%
- Cross-Correlation: {b.cross_correlation:.3f}
- Real Asymmetry Average: {b.real_asymmetry_avg:.1f}%
- Net Global Asymmetry: {b.net_global_asymmetry:.1f}%
- Phase Shift: {b.phase_shift:.1f} deg
- Temporal Lag: {b.temporal_lag:.1f} ms
- Max Flexion Timing Difference: {b.max_flexion_timing_diff:.1f} ms"""
    )
    if metrics.smoothness is not None:
        s = metrics.smoothness
        blocks.append(
            f"""=== SMOOTHNESS ===
- SPARC: {s.sparc:.3f}
- LDLJ: {s.ldlj:.3f}
- Velocity Peaks: {s.n_velocity_peaks}"""
        )
    return "\n\n".join(blocks)


def format_synthesis_prompt(metrics: SessionMetrics) -> str:
    return SYNTHESIS_USER_TEMPLATE.format(metrics=format_metrics(metrics))


_SEVERITIES = ["critical", "severe", "moderate", "mild"]

SYNTHESIS_RESPONSE_SCHEMA = {
    "type": "object",
    "properties": {
        "overall_grade": {"type": "string", "enum": ["A", "B", "C", "D", "F"]},
        "radar_scores": {
            "type": "object",
            "properties": {
                "flexibility": {"type": "number"},
                "consistency": {"type": "number"},
                "symmetry": {"type": "number"},
                "smoothness": {"type": "number"},
                "control": {"type": "number"},
            },
            "required": ["flexibility", "consistency", "symmetry", "smoothness", "control"],
        },
        "key_findings": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "text": {"type": "string"},
                    "severity": {"type": "string"},
                },
                "required": ["text", "severity"],
            },
        },
        "clinical_implications": {"type": "string"},
        "sections": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "string"},
                    "title": {"type": "string"},
                    "domain": {"type": "string"},
                    "severity": {"type": "string", "enum": _SEVERITIES},
                    "priority": {"type": "integer"},
                    "clinical_narrative": {"type": "string"},
                    "search_queries": {"type": "array", "items": {"type": "string"}},
                    "recommendations": {"type": "array", "items": {"type": "string"}},
                    "needs_research": {"type": "boolean"},
                },
                "required": [
                    "id", "title", "domain", "severity", "priority",
                    "clinical_narrative", "search_queries", "recommendations",
                    "needs_research",
                ],
            },
        },
        "summary": {"type": "string"},
        "strengths": {"type": "array", "items": {"type": "string"}},
        "weaknesses": {"type": "array", "items": {"type": "string"}},
        "recommendations": {"type": "array", "items": {"type": "string"}},
        "speculative_insights": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "label": {"type": "string"},
                    "description": {"type": "string"},
                },
                "required": ["label", "description"],
            },
        },
    },
    "required": [
        "overall_grade", "radar_scores", "key_findings", "clinical_implications",
        "sections", "summary", "strengths", "weaknesses", "recommendations",
    ],
}
