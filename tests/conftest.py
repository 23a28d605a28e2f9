"""
Pytest fixtures for CCPI tests.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from ccpi.calculator import CCPICalculator
from ccpi.events import CollectingEventSink
from ccpi.indicators import IndicatorSnapshot
from ccpi.pillars import YieldCurvePolicy

FIXED_TIME = datetime(2025, 3, 10, 21, 0, tzinfo=timezone.utc)


@pytest.fixture
def sink():
    return CollectingEventSink()


@pytest.fixture
def calculator(sink):
    return CCPICalculator(event_sink=sink)


@pytest.fixture
def single_calculator(sink):
    return CCPICalculator(yield_curve_policy=YieldCurvePolicy.SINGLE, event_sink=sink)


@pytest.fixture
def make_snapshot():
    """Build a snapshot from overrides on top of the baseline defaults."""
    def _make(**values) -> IndicatorSnapshot:
        return IndicatorSnapshot.from_raw(values, timestamp=FIXED_TIME)
    return _make


@pytest.fixture
def baseline(make_snapshot):
    return make_snapshot()


@pytest.fixture
def stressed_values() -> dict:
    """Every ladder in its worst tier."""
    return {
        'nvidia_momentum': 15,
        'sox_index': 3800,
        'qqq_daily_return': -9.5,
        'qqq_consec_down': 5,
        'qqq_below_sma20': True,
        'qqq_below_sma50': True,
        'qqq_below_sma200': True,
        'qqq_below_bollinger': True,
        'qqq_death_cross': True,
        'vix': 42,
        'yield_curve': -0.6,
        'put_call_ratio': 0.55,
        'aaii_bullish': 60,
        'vxn': 45,
        'rvx': 40,
        'vix_term_structure': -2.0,
        'atr': 55,
        'ltv': 0.2,
        'bullish_percent': 80,
        'short_interest': 10,
        'spx_pe': 31,
        'buffett_indicator': 210,
        'spx_ps': 3.6,
        'qqq_pe': 41,
        'mag7_concentration': 66,
        'shiller_cape': 36,
        'equity_risk_premium': 1.2,
        'ism_pmi': 41,
        'fed_funds_rate': 6.25,
        'junk_spread': 9,
        'ted_spread': 1.2,
        'dxy_index': 116,
        'fed_reverse_repo': 50,
        'us_debt_to_gdp': 135,
    }
