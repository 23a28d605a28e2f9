"""
Tests for the CCPI calculator: aggregation, amplifiers, confidence and regimes.
"""

from __future__ import annotations

import pytest

from ccpi.calculator import (
    BONUS_CAP,
    DEFAULT_WEIGHTS,
    PLAYBOOKS,
    CCPICalculator,
    classify_regime,
    detect_amplifiers,
    round_half_up,
    validate_weights,
)
from ccpi.events import (
    AMPLIFIER_TRIGGERED,
    CANARY_EMITTED,
    INDICATOR_DEFAULTED,
    PILLAR_COMPUTED,
    RESULT_READY,
    SNAPSHOT_NORMALIZED,
)
from ccpi.indicators import ConfigurationError, Pillar
from ccpi.pillars import YieldCurvePolicy


def test_round_half_up():
    assert round_half_up(12.5) == 13
    assert round_half_up(13.5) == 14
    assert round_half_up(12.49) == 12
    assert round_half_up(0) == 0


# ============== Baseline ==============

def test_all_defaults_scores_low_risk(calculator, baseline):
    result = calculator.evaluate(baseline)
    assert result.pillar_values == {
        'momentum': 0,
        'riskAppetite': 0,
        'valuation': 2,
        'macro': 0,
    }
    # 2 x 0.15 = 0.3 rounds to 0
    assert result.base_ccpi == 0
    assert result.total_bonus == 0
    assert result.crash_amplifiers == ()
    assert result.ccpi == 0
    assert result.regime.name == "Low Risk"
    assert result.regime.level == 1
    assert result.canaries == ()
    assert result.active_canaries == 0


def test_baseline_certainty(calculator, baseline):
    """std of (0, 0, 2, 0) is sqrt(0.75); no canaries agree."""
    result = calculator.evaluate(baseline)
    assert result.confidence.mean == pytest.approx(0.5)
    assert result.confidence.std_dev == pytest.approx(0.866, abs=1e-3)
    assert result.confidence.variance_alignment == pytest.approx(97.40, abs=1e-2)
    assert result.confidence.canary_agreement == 0
    assert result.certainty == 68


def test_raw_mapping_is_normalized(calculator):
    result = calculator.evaluate({'vix': float('nan'), 'spx_pe': "not a number"})
    assert result.snapshot['vix'] == 14.0
    assert 'vix' in result.snapshot.malformed
    assert result.ccpi == 0


# ============== Amplifiers ==============

def test_crash_scenario_amplifiers(calculator, make_snapshot):
    snap = make_snapshot(qqq_daily_return=-6.5, vix=40, put_call_ratio=1.4, yield_curve=-0.3)
    result = calculator.evaluate(snap)

    assert [a.points for a in result.crash_amplifiers] == [25, 20, 15, 15]
    assert result.total_bonus == 75
    assert result.crash_amplifiers[0].reason == "Severe 1-day QQQ drop of -6.50%"
    assert result.crash_amplifiers[1].reason == "VIX spike to 40.0"

    # momentum 8 + 9 + 7, risk 8 + 6, valuation 2
    assert result.pillar(Pillar.MOMENTUM).value == 24
    assert result.pillar(Pillar.RISK_APPETITE).value == 14
    assert result.base_ccpi == 13
    assert result.ccpi == 88
    assert result.regime.name == "Crash Watch"


def test_extreme_drop_takes_only_the_top_tier(make_snapshot):
    amplifiers, total = detect_amplifiers(make_snapshot(qqq_daily_return=-9.2))
    assert len(amplifiers) == 1
    assert amplifiers[0].points == 40
    assert total == 40


def test_bonus_is_capped_with_note(calculator, make_snapshot):
    snap = make_snapshot(
        qqq_daily_return=-9.5,
        qqq_below_sma50=True,
        vix=40,
        put_call_ratio=1.4,
        yield_curve=-0.3,
    )
    result = calculator.evaluate(snap)
    assert result.total_bonus == BONUS_CAP
    note = result.crash_amplifiers[-1]
    assert note.points == 0
    assert note.reason == "Bonus capped at 100 (raw 110)"
    assert result.ccpi == 100


def test_no_note_below_cap(make_snapshot, stressed_values):
    amplifiers, total = detect_amplifiers(make_snapshot(**stressed_values))
    assert total == 95
    assert all(a.points > 0 for a in amplifiers)


def test_stressed_snapshot_saturates(calculator, make_snapshot, stressed_values):
    result = calculator.evaluate(make_snapshot(**stressed_values))
    assert result.base_ccpi == 100
    assert result.ccpi == 100
    assert result.confidence.std_dev == 0
    assert result.active_canaries == 35
    assert result.certainty == 100
    assert result.regime.level == 5


# ============== Regimes ==============

@pytest.mark.parametrize("index,level,name", [
    (0, 1, "Low Risk"),
    (19, 1, "Low Risk"),
    (20, 2, "Normal"),
    (39, 2, "Normal"),
    (40, 3, "Elevated Risk"),
    (59, 3, "Elevated Risk"),
    (60, 4, "High Alert"),
    (79, 4, "High Alert"),
    (80, 5, "Crash Watch"),
    (100, 5, "Crash Watch"),
])
def test_regime_bands(index, level, name):
    regime = classify_regime(index)
    assert regime.level == level
    assert regime.name == name


def test_regime_clamps_out_of_range():
    assert classify_regime(-5).level == 1
    assert classify_regime(150).level == 5


def test_playbook_matches_regime(calculator, baseline):
    result = calculator.evaluate(baseline)
    assert result.playbook is PLAYBOOKS[result.regime.level]
    assert result.playbook.bias == "Risk-On / Bullish"


# ============== Weights and configuration ==============

def test_weights_accept_string_keys():
    weights = validate_weights({'momentum': 0.25, 'riskAppetite': 0.25, 'valuation': 0.25, 'macro': 0.25})
    assert weights[Pillar.VALUATION] == 0.25


@pytest.mark.parametrize("weights", [
    {},
    {'momentum': 0.5, 'riskAppetite': 0.5},
    {'momentum': 0.35, 'riskAppetite': 0.30, 'valuation': 0.15, 'macro': 0.25},
    {'momentum': 0.35, 'riskAppetite': 0.30, 'valuation': 0.15, 'macro': 0.10, 'crypto': 0.10},
    {'momentum': 1.2, 'riskAppetite': -0.1, 'valuation': -0.05, 'macro': -0.05},
    {'momentum': "0.35", 'riskAppetite': 0.30, 'valuation': 0.15, 'macro': 0.20},
])
def test_bad_weights_raise(weights):
    with pytest.raises(ConfigurationError):
        CCPICalculator(weights=weights)


def test_configuration_error_is_value_error():
    with pytest.raises(ValueError):
        validate_weights({'momentum': 1.0})


def test_unknown_policy_raises():
    with pytest.raises(ConfigurationError):
        CCPICalculator(yield_curve_policy="triple")


def test_custom_weights_change_base(make_snapshot):
    snap = make_snapshot(spx_pe=32, buffett_indicator=205)
    heavy = CCPICalculator(weights={
        Pillar.MOMENTUM: 0.10, Pillar.RISK_APPETITE: 0.10, Pillar.VALUATION: 0.70, Pillar.MACRO: 0.10,
    })
    result = heavy.evaluate(snap)
    # valuation 34 x 0.70
    assert result.base_ccpi == 24
    assert result.pillar(Pillar.VALUATION).weight == 0.70


# ============== Determinism and policy ==============

def test_evaluation_is_idempotent(calculator, make_snapshot):
    snap = make_snapshot(vix=27, spx_pe=26, ism_pmi=47, qqq_death_cross=True)
    assert calculator.evaluate(snap).to_dict() == calculator.evaluate(snap).to_dict()


def test_single_policy_lowers_momentum(calculator, single_calculator, make_snapshot):
    snap = make_snapshot(yield_curve=-0.6)
    dual = calculator.evaluate(snap)
    single = single_calculator.evaluate(snap)
    assert dual.pillar(Pillar.MOMENTUM).value == 10
    assert single.pillar(Pillar.MOMENTUM).value == 0
    assert len(dual.canaries) == len(single.canaries) + 1
    assert single.to_dict()['yieldCurvePolicy'] == "single"


def test_final_index_never_exceeds_100(calculator, make_snapshot, stressed_values):
    values = dict(stressed_values, put_call_ratio=1.5)
    result = calculator.evaluate(make_snapshot(**values))
    assert result.ccpi <= 100


# ============== Serialization ==============

def test_to_dict_shape(calculator, make_snapshot):
    result = calculator.evaluate(make_snapshot(vix=32))
    data = result.to_dict()
    assert set(data) == {
        'ccpi', 'baseCCPI', 'crashAmplifiers', 'totalBonus', 'confidence', 'certainty',
        'regime', 'playbook', 'pillars', 'pillarMean', 'pillarStdDev', 'canaries',
        'activeCanaries', 'totalIndicators', 'indicators', 'defaultedIndicators',
        'yieldCurvePolicy', 'timestamp',
    }
    assert data['confidence'] == data['certainty']
    assert data['totalIndicators'] == 38
    assert data['timestamp'] == result.timestamp.isoformat()
    assert data['regime']['name'] == result.regime.name
    assert data['canaries'][0]['severity'] == 'high'
    assert 'vix' not in data['defaultedIndicators']
    assert data['yieldCurvePolicy'] == YieldCurvePolicy.DUAL.value


# ============== Events ==============

def test_stage_events(calculator, sink, make_snapshot):
    calculator.evaluate(make_snapshot(vix=40))

    assert len(sink.of_stage(SNAPSHOT_NORMALIZED)) == 1
    assert len(sink.of_stage(INDICATOR_DEFAULTED)) == 37
    assert [e.name for e in sink.of_stage(PILLAR_COMPUTED)] == [p.value for p in Pillar]
    assert len(sink.of_stage(AMPLIFIER_TRIGGERED)) == 1
    assert [e.name for e in sink.of_stage(CANARY_EMITTED)] == ['vix']
    ready = sink.of_stage(RESULT_READY)
    assert len(ready) == 1
    assert sink.events[-1] is ready[0]
    assert sink.events[0].stage == SNAPSHOT_NORMALIZED


def test_failing_sink_does_not_break_evaluation(make_snapshot):
    def broken_sink(event):
        raise RuntimeError("sink down")

    calc = CCPICalculator(event_sink=broken_sink)
    result = calc.evaluate(make_snapshot(vix=40))
    assert result.ccpi > 0


def test_default_sink_logs_at_debug(make_snapshot, caplog):
    with caplog.at_level("DEBUG", logger="ccpi.events"):
        CCPICalculator().evaluate(make_snapshot())
    assert any("result_ready" in r.getMessage() for r in caplog.records)


def test_weights_class_attribute_matches_defaults():
    assert CCPICalculator.WEIGHTS == DEFAULT_WEIGHTS


def test_oversized_integer_input_scores_with_default(calculator):
    result = calculator.evaluate({'spx_pe': 10 ** 400})
    assert result.snapshot['spx_pe'] == 17.0
    assert 'spx_pe' in result.snapshot.malformed
    assert result.pillar(Pillar.VALUATION).value == 2
