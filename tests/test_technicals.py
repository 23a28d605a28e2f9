"""
Tests for QQQ technicals computed from daily closes.
"""

from __future__ import annotations

import pandas as pd
import pytest

from ccpi.technicals import (
    bollinger_lower,
    compute_qqq_technicals,
    consecutive_down_days,
    momentum_score,
    proximity,
)


@pytest.mark.parametrize("price,level,expected", [
    (100.0, 100.0, 100.0),
    (95.0, 100.0, 100.0),
    (103.0, 100.0, 40.0),
    (104.0, 100.0, 20.0),
    (105.0, 100.0, 0.0),
    (120.0, 100.0, 0.0),
])
def test_proximity(price, level, expected):
    assert proximity(price, level, 5.0) == pytest.approx(expected)


def test_consecutive_down_days_counts_from_latest():
    closes = pd.Series([100.0] * 5 + [98.0, 96.0, 94.0])
    assert consecutive_down_days(closes) == 3


def test_small_declines_do_not_count():
    closes = pd.Series([100.0, 98.0, 97.5, 97.0])
    assert consecutive_down_days(closes) == 0


def test_bollinger_needs_full_window():
    assert bollinger_lower(pd.Series([100.0] * 19)) is None
    assert bollinger_lower(pd.Series([100.0] * 20)) == pytest.approx(100.0)


def test_short_history_only_has_daily_fields():
    closes = pd.Series([100.0] * 9 + [97.0])
    result = compute_qqq_technicals(closes)
    assert result == {'qqq_daily_return': -3.0, 'qqq_consec_down': 1}


def test_single_close_gives_nothing():
    assert compute_qqq_technicals(pd.Series([100.0])) == {}


def test_uptrend_is_safe():
    closes = pd.Series([float(x) for x in range(100, 350)])
    result = compute_qqq_technicals(closes)

    assert result['qqq_below_sma20'] is False
    assert result['qqq_below_sma200'] is False
    assert result['qqq_death_cross'] is False
    assert result['qqq_consec_down'] == 0
    assert result['atr'] == pytest.approx(1.0)
    # 200-day average is ~249.5, price 349 is far above it
    assert result['qqq_sma200_proximity'] == 0.0


def test_downtrend_breaches_averages():
    closes = pd.Series([float(x) for x in range(350, 100, -1)])
    result = compute_qqq_technicals(closes)

    assert result['qqq_below_sma20'] is True
    assert result['qqq_below_sma50'] is True
    assert result['qqq_sma50_proximity'] == 100.0
    assert result['qqq_death_cross'] is True
    assert result['qqq_daily_return'] < 0


def test_technicals_feed_a_snapshot(make_snapshot):
    closes = pd.Series([float(x) for x in range(350, 100, -1)])
    snap = make_snapshot(**compute_qqq_technicals(closes))
    assert snap['qqq_below_sma200'] is True
    assert 'qqq_death_cross' not in snap.defaulted
    assert 'vix' in snap.defaulted


def test_momentum_score():
    closes = pd.Series([100.0] * 20 + [110.0])
    assert momentum_score(closes) == 75.0


def test_momentum_score_clamps():
    assert momentum_score(pd.Series([100.0] * 20 + [50.0])) == 0.0
    assert momentum_score(pd.Series([100.0] * 20 + [200.0])) == 100.0


def test_momentum_score_needs_history():
    assert momentum_score(pd.Series([100.0] * 20)) is None
