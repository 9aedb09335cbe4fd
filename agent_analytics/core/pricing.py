"""
Pricing calculations for token usage.

Estimates spend from the token counts carried in event metadata.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from agent_analytics.storage.models import Event


@dataclass(frozen=True)
class TokenPricing:
    """Flat per-token pricing applied to every model."""
    input_cost_per_1k: Decimal = Decimal("0.003")  # Cost per 1K input tokens
    output_cost_per_1k: Decimal = Decimal("0.015")  # Cost per 1K output tokens

    def __post_init__(self):
        """Validate prices are non-negative."""
        object.__setattr__(self, "input_cost_per_1k", Decimal(str(self.input_cost_per_1k)))
        object.__setattr__(self, "output_cost_per_1k", Decimal(str(self.output_cost_per_1k)))
        if self.input_cost_per_1k < 0:
            raise ValueError("input_cost_per_1k cannot be negative")
        if self.output_cost_per_1k < 0:
            raise ValueError("output_cost_per_1k cannot be negative")


DEFAULT_PRICING = TokenPricing()


def calculate_token_cost(
    tokens_input: float,
    tokens_output: float,
    pricing: TokenPricing = DEFAULT_PRICING,
) -> float:
    """Calculate the cost of a token count pair.

    Args:
        tokens_input: Input (prompt) tokens
        tokens_output: Output (completion) tokens
        pricing: Per-1K token prices

    Returns:
        Unrounded cost in USD
    """
    input_cost = (Decimal(str(tokens_input)) / Decimal("1000")) * pricing.input_cost_per_1k
    output_cost = (Decimal(str(tokens_output)) / Decimal("1000")) * pricing.output_cost_per_1k
    return float(input_cost + output_cost)


def calculate_events_cost(events: Iterable[Event], pricing: TokenPricing = DEFAULT_PRICING) -> float:
    """Sum token cost over every event's metadata; missing counts are 0."""
    tokens_input = 0
    tokens_output = 0
    for event in events:
        tokens_input += event.metadata.tokens_input
        tokens_output += event.metadata.tokens_output
    return calculate_token_cost(tokens_input, tokens_output, pricing)
