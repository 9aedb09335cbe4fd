"""
Unit tests for pricing calculations.

Tests cost accuracy, metadata tolerance, and price validation.
"""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from agent_analytics.core.pricing import (
    DEFAULT_PRICING,
    TokenPricing,
    calculate_events_cost,
    calculate_token_cost,
)
from agent_analytics.storage.models import Event, EventType


def _event(event_id, metadata):
    return Event(
        event_id=event_id,
        event_type=EventType.TASK_COMPLETE,
        timestamp=datetime(2024, 3, 1, tzinfo=timezone.utc),
        session_id="sess_1",
        user_id="user_1",
        agent_id="agent_1",
        metadata=metadata,
    )


class TestTokenPricing:
    """Test TokenPricing dataclass."""

    def test_default_rates(self):
        """Verify the default per-1K prices."""
        assert DEFAULT_PRICING.input_cost_per_1k == Decimal("0.003")
        assert DEFAULT_PRICING.output_cost_per_1k == Decimal("0.015")

    def test_float_rates_coerced_to_decimal(self):
        """Verify floats from YAML become exact decimals."""
        pricing = TokenPricing(input_cost_per_1k=0.01, output_cost_per_1k=0.03)
        assert pricing.input_cost_per_1k == Decimal("0.01")
        assert pricing.output_cost_per_1k == Decimal("0.03")

    def test_negative_rate_rejected(self):
        """Verify negative prices are invalid."""
        with pytest.raises(ValueError, match="cannot be negative"):
            TokenPricing(input_cost_per_1k=-1)


class TestCostCalculation:
    """Test cost calculation accuracy."""

    def test_exact_cost(self):
        """Verify exact cost for a typical task."""
        cost = calculate_token_cost(1000, 2000)
        # Input: 1000/1000 * $0.003 = $0.003
        # Output: 2000/1000 * $0.015 = $0.030
        # Total: $0.033
        assert cost == pytest.approx(0.033)

    def test_no_rounding(self):
        """Verify single tokens are not rounded away."""
        cost = calculate_token_cost(1, 1)
        # $0.000003 + $0.000015
        assert cost == pytest.approx(0.000018)

    def test_zero_tokens_cost(self):
        """Verify cost calculation with zero tokens."""
        assert calculate_token_cost(0, 0) == 0.0

    def test_custom_pricing(self):
        """Verify configured prices are applied."""
        pricing = TokenPricing(input_cost_per_1k=1, output_cost_per_1k=2)
        assert calculate_token_cost(500, 500, pricing) == pytest.approx(1.5)

    def test_events_cost_sums_metadata(self):
        """Verify cost over events, with missing or junk counts as zero."""
        events = [
            _event("evt_1", {"tokens_input": 1000, "tokens_output": 2000}),
            _event("evt_2", {"tokens_input": "oops"}),
            _event("evt_3", None),
        ]
        assert calculate_events_cost(events) == pytest.approx(0.033)
