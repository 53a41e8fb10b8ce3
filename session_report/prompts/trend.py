"""
Trend Prompts

System and user prompts for the longitudinal trend call, which compares
the current session against the patient's earlier sessions.
"""

import json

TREND_SYSTEM_PROMPT = """You are an expert biomechanical analyst specializing \
in longitudinal patient progress assessment.  You analyze patterns across \
multiple sessions to identify trends, recurring issues and progress over time.

=== PATIENT FRAMING ===
ALWAYS refer to the subject as "the patient" - NEVER use "you" or "your".

=== CLINICAL SIGNIFICANCE ===
TREND MAGNITUDE:
- significant: >15% deviation from baseline or >3% change per session
- moderate: 10-15% deviation or 2-3% per session
- slight: 5-10% deviation or 1-2% per session
- below 5%: noise, do not report

PATTERN CONFIDENCE:
- 0.8+: seen in 4+ sessions with a consistent direction
- 0.5-0.8: seen in 3 sessions
- below 0.5: seen in 2 sessions only

BASELINE COMPARISON:
- notable: more than 1.5 standard deviations from the median
- within normal: less than 1 standard deviation

=== SPECULATIVE INSIGHTS ===
Evaluate each speculative insight against the history: keep the supported \
ones, refine those that need it, discard contradicted ones and add new \
insights the history reveals.  Use natural physiotherapy language, not \
parameter names.  Maximum 5 refined insights.

=== CONFIDENCE ===
- high: 5+ prior sessions
- moderate: 3-4 prior sessions
- low: 1-2 prior sessions; frame findings as "compared to the previous \
session" rather than trends, and state how many sessions were analyzed

You must respond in valid JSON format only, no other text."""


TREND_USER_TEMPLATE = """=== LONGITUDINAL CONTEXT ===
Sessions analyzed: {sessions_analyzed}
Date range: {date_range_days} days

{context}

=== YOUR TASK ===
Compare the current session to the patient's personal baseline and history:
- trend_insights: 2-5 meaningful trends with narrative and clinical relevance
- recurring_patterns: 0-3 patterns persisting across sessions
- baseline_comparison: overall assessment and significant deviations
- notable_sessions: 1-3 sessions from the history worth highlighting
- refined_insights: the evaluated speculative insights
- summary: 2-3 sentences
- analysis_confidence: high, moderate or low

Only reference session ids that appear in the context.
ALWAYS use "the patient" framing."""


def format_trend_prompt(context: dict, sessions_analyzed: int, date_range_days: int) -> str:
    """Render the longitudinal context as prompt text."""
    return TREND_USER_TEMPLATE.format(
        sessions_analyzed=sessions_analyzed,
        date_range_days=date_range_days,
        context=json.dumps(context, indent=2, default=str),
    )


TREND_RESPONSE_SCHEMA = {
    "type": "object",
    "properties": {
        "trend_insights": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "metric_name": {"type": "string"},
                    "display_name": {"type": "string"},
                    "direction": {"type": "string", "enum": ["improving", "stable", "declining"]},
                    "magnitude": {"type": "string", "enum": ["significant", "moderate", "slight"]},
                    "narrative": {"type": "string"},
                    "current_value": {"type": "number"},
                    "baseline_value": {"type": "number"},
                    "change_percent": {"type": "number"},
                    "clinical_relevance": {"type": "string"},
                },
                "required": [
                    "metric_name", "display_name", "direction", "magnitude",
                    "narrative", "current_value", "baseline_value", "change_percent",
                ],
            },
        },
        "recurring_patterns": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "pattern_type": {"type": "string"},
                    "title": {"type": "string"},
                    "description": {"type": "string"},
                    "affected_metrics": {"type": "array", "items": {"type": "string"}},
                    "session_ids": {"type": "array", "items": {"type": "string"}},
                    "confidence": {"type": "number"},
                    "recommendation": {"type": "string"},
                },
                "required": ["pattern_type", "title", "description"],
            },
        },
        "baseline_comparison": {
            "type": "object",
            "properties": {
                "overall_assessment": {"type": "string"},
                "compared_to_baseline": {"type": "string", "enum": ["above", "at", "below"]},
                "significant_deviations": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "metric_name": {"type": "string"},
                            "display_name": {"type": "string"},
                            "current_value": {"type": "number"},
                            "baseline_median": {"type": "number"},
                            "deviation_percent": {"type": "number"},
                            "direction": {"type": "string", "enum": ["above", "below"]},
                        },
                        "required": [
                            "metric_name", "display_name", "current_value",
                            "baseline_median", "deviation_percent", "direction",
                        ],
                    },
                },
            },
            "required": ["overall_assessment", "compared_to_baseline"],
        },
        "notable_sessions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "session_id": {"type": "string"},
                    "relation": {
                        "type": "string",
                        "enum": ["most_similar", "best_performance", "worst_performance"],
                    },
                    "relevance": {"type": "string"},
                },
                "required": ["session_id", "relation"],
            },
        },
        "refined_insights": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "title": {"type": "string"},
                    "summary": {"type": "string"},
                    "details": {"type": "string"},
                    "icon_hint": {"type": "string"},
                },
                "required": ["title", "summary"],
            },
        },
        "summary": {"type": "string"},
        "analysis_confidence": {"type": "string", "enum": ["high", "moderate", "low"]},
    },
    "required": ["baseline_comparison", "summary", "analysis_confidence"],
}
