"""
Usage Accountant

Pure helpers for token and cost bookkeeping.  The backend client prices
each call with ``calculate_cost``; everything downstream only sums the
precomputed figures with ``aggregate_token_usage``.
"""

from typing import Iterable

from session_report.models.schemas import TokenUsage


def calculate_cost(
    input_tokens: int,
    output_tokens: int,
    input_price_per_million: float,
    output_price_per_million: float,
) -> float:
    """Return the estimated cost of one call in the pricing currency."""
    return (
        (input_tokens / 1_000_000) * input_price_per_million
        + (output_tokens / 1_000_000) * output_price_per_million
    )


def empty_usage() -> TokenUsage:
    return TokenUsage()


def add_token_usage(a: TokenUsage, b: TokenUsage) -> TokenUsage:
    """Component-wise sum of two usage records."""
    return TokenUsage(
        input_tokens=a.input_tokens + b.input_tokens,
        output_tokens=a.output_tokens + b.output_tokens,
        total_tokens=a.total_tokens + b.total_tokens,
        estimated_cost=a.estimated_cost + b.estimated_cost,
    )


def aggregate_token_usage(usages: Iterable[TokenUsage]) -> TokenUsage:
    """Component-wise sum of any number of usage records.

    An empty input yields an all-zero record.
    """
    total = empty_usage()
    for usage in usages:
        total = add_token_usage(total, usage)
    return total


def format_cost(cost: float) -> str:
    """Format a cost for display, switching to thousandths below one cent."""
    if cost < 0.01:
        return f"${cost * 1000:.2f}m"
    return f"${cost:.4f}"


def format_tokens(tokens: int) -> str:
    if tokens >= 1_000_000:
        return f"{tokens / 1_000_000:.2f}M"
    if tokens >= 1_000:
        return f"{tokens / 1_000:.1f}K"
    return str(tokens)
