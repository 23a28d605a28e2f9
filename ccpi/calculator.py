"""
Crash & Correction Prediction Index (CCPI) - Core Calculation Engine

Computes a composite correction-risk score (0-100) from four pillars:
- Momentum & Technical (35%)
- Risk Appetite & Volatility (30%)
- Valuation & Market Structure (15%)
- Macro (20%)

On top of the weighted base index, crash amplifiers add a capped bonus for
acute short-horizon stress. Canary signals, a certainty score and a regime
classification are derived from the same snapshot.

Every stage is a pure function of the snapshot; CCPICalculator only wires
them together and reports stage events to its sink.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

import numpy as np

from ccpi.canaries import (
    CANARY_NORMALIZATION, Canary, count_active, generate_canaries, validate_rules,
)
from ccpi.events import (
    AMPLIFIER_TRIGGERED, CANARY_EMITTED, INDICATOR_DEFAULTED, PILLAR_COMPUTED,
    RESULT_READY, SNAPSHOT_NORMALIZED, EventSink, LoggingEventSink, PipelineEvent,
)
from ccpi.indicators import (
    INDICATORS, TOTAL_INDICATORS, ConfigurationError, IndicatorSnapshot, Pillar,
    round_half_up, validate_registry,
)
from ccpi.pillars import (
    OPERATORS, Condition, PillarScore, YieldCurvePolicy, score_pillars, validate_ladders,
)

logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS: dict[Pillar, float] = {
    Pillar.MOMENTUM: 0.35,
    Pillar.RISK_APPETITE: 0.30,
    Pillar.VALUATION: 0.15,
    Pillar.MACRO: 0.20,
}

INDEX_MIN = 0
INDEX_MAX = 100
BONUS_CAP = 100


def validate_weights(weights: Mapping[Any, Any]) -> dict[Pillar, float]:
    """
    Normalize pillar weight keys and check the set.

    Raises:
        ConfigurationError: unknown or missing pillar, weight outside (0, 1],
            or weights not summing to 1.0
    """
    if not weights:
        raise ConfigurationError("Pillar weights are missing")

    normalized: dict[Pillar, float] = {}
    for key, weight in weights.items():
        try:
            pillar = Pillar(key)
        except ValueError:
            raise ConfigurationError(f"Unknown pillar {key!r}") from None
        if isinstance(weight, bool) or not isinstance(weight, (int, float)) or not math.isfinite(weight):
            raise ConfigurationError(f"Weight for {pillar.value} is not a number: {weight!r}")
        if not 0 < weight <= 1:
            raise ConfigurationError(f"Weight for {pillar.value} must be in (0, 1], got {weight}")
        normalized[pillar] = float(weight)

    missing = [p.value for p in Pillar if p not in normalized]
    if missing:
        raise ConfigurationError(f"Missing weights for pillars: {', '.join(missing)}")

    total = math.fsum(normalized.values())
    if not math.isclose(total, 1.0, abs_tol=1e-9):
        raise ConfigurationError(f"Pillar weights must sum to 1.0, got {total:.6f}")

    return {p: normalized[p] for p in Pillar}


def aggregate(pillars: tuple[PillarScore, ...]) -> int:
    """baseIndex = round(sum(pillar value x pillar weight))"""
    return round_half_up(sum(p.weighted for p in pillars))


# ============== Crash Amplifiers ==============

@dataclass(frozen=True)
class CrashAmplifier:
    reason: str
    points: int

    def to_dict(self) -> dict:
        return {'reason': self.reason, 'points': self.points}


@dataclass(frozen=True)
class AmplifierTier:
    condition: Condition
    points: int
    reason: str


@dataclass(frozen=True)
class AmplifierRule:
    """One acute condition; only its most extreme matching tier fires"""
    indicator: str
    tiers: tuple[AmplifierTier, ...]

    def evaluate(self, value) -> Optional[CrashAmplifier]:
        for tier in self.tiers:
            if tier.condition.matches(value):
                return CrashAmplifier(tier.reason.format(value=value), tier.points)
        return None


AMPLIFIER_RULES: tuple[AmplifierRule, ...] = (
    AmplifierRule('qqq_daily_return', (
        AmplifierTier(Condition('<=', -9), 40, "Extreme 1-day QQQ drop of {value:.2f}%"),
        AmplifierTier(Condition('<=', -6), 25, "Severe 1-day QQQ drop of {value:.2f}%"),
    )),
    AmplifierRule('qqq_below_sma50', (
        AmplifierTier(Condition('==', True), 20, "QQQ broke below its 50-day average"),
    )),
    AmplifierRule('vix', (
        AmplifierTier(Condition('>', 35), 20, "VIX spike to {value:.1f}"),
    )),
    AmplifierRule('put_call_ratio', (
        AmplifierTier(Condition('>', 1.3), 15, "Put/call ratio at {value:.2f} signals panic hedging"),
    )),
    AmplifierRule('yield_curve', (
        AmplifierTier(Condition('<', 0), 15, "Yield curve inverted at {value:.2f}%"),
    )),
)


def detect_amplifiers(snapshot: IndicatorSnapshot) -> tuple[tuple[CrashAmplifier, ...], int]:
    """
    Evaluate every amplifier rule against the snapshot.

    Returns:
        (amplifier entries, total bonus capped at BONUS_CAP). When the raw sum
        exceeds the cap a zero-point note entry is appended.
    """
    triggered = tuple(
        amp for amp in (r.evaluate(snapshot[r.indicator]) for r in AMPLIFIER_RULES)
        if amp is not None
    )
    raw_bonus = sum(a.points for a in triggered)
    if raw_bonus > BONUS_CAP:
        note = CrashAmplifier(f"Bonus capped at {BONUS_CAP} (raw {raw_bonus})", 0)
        return triggered + (note,), BONUS_CAP
    return triggered, raw_bonus


def validate_amplifiers() -> None:
    for amp_rule in AMPLIFIER_RULES:
        if amp_rule.indicator not in INDICATORS:
            raise ConfigurationError(f"Amplifier references unknown indicator {amp_rule.indicator}")
        if not amp_rule.tiers:
            raise ConfigurationError(f"Amplifier for {amp_rule.indicator} has no tiers")
        for tier in amp_rule.tiers:
            if tier.condition.op not in OPERATORS or tier.points < 0:
                raise ConfigurationError(f"Amplifier for {amp_rule.indicator} has a malformed tier")


# ============== Confidence ==============

@dataclass(frozen=True)
class Confidence:
    mean: float
    std_dev: float
    variance_alignment: float
    canary_agreement: float
    certainty: int


def estimate_confidence(pillars: tuple[PillarScore, ...], canaries: tuple[Canary, ...]) -> Confidence:
    values = np.array([p.value for p in pillars], dtype=float)
    mean = float(values.mean())
    std_dev = float(values.std())  # population (ddof=0)

    variance_alignment = max(0.0, 100.0 - std_dev * 3.0)
    canary_agreement = min(100.0, count_active(canaries) / CANARY_NORMALIZATION * 100)

    return Confidence(
        mean=mean,
        std_dev=std_dev,
        variance_alignment=variance_alignment,
        canary_agreement=canary_agreement,
        certainty=round_half_up(variance_alignment * 0.7 + canary_agreement * 0.3),
    )


# ============== Regime ==============

@dataclass(frozen=True)
class Regime:
    level: int
    name: str
    color: str
    description: str
    lower: int

    def to_dict(self) -> dict:
        return {
            'level': self.level,
            'name': self.name,
            'color': self.color,
            'description': self.description,
        }


REGIMES: tuple[Regime, ...] = (
    Regime(1, "Low Risk", "green", "Healthy market conditions. Low crash probability.", 0),
    Regime(2, "Normal", "lightgreen", "Market conditions normal but watchful. No major red flags.", 20),
    Regime(3, "Elevated Risk", "yellow", "Caution warranted. Some metrics extended, defensive moves prudent.", 40),
    Regime(4, "High Alert", "orange", "Elevated risk signals. Multiple warning indicators flashing.", 60),
    Regime(5, "Crash Watch", "red", "Extreme risk across multiple pillars. Correction or crash increasingly likely.", 80),
)


def classify_regime(index: float) -> Regime:
    """Inclusive lower bound, exclusive upper; the top band includes 100"""
    index = max(INDEX_MIN, min(INDEX_MAX, index))
    for regime in reversed(REGIMES):
        if index >= regime.lower:
            return regime
    return REGIMES[0]


@dataclass(frozen=True)
class Playbook:
    bias: str
    strategies: tuple[str, ...]
    allocation: dict[str, str]

    def to_dict(self) -> dict:
        return {
            'bias': self.bias,
            'strategies': list(self.strategies),
            'allocation': dict(self.allocation),
        }


PLAYBOOKS: dict[int, Playbook] = {
    1: Playbook(
        bias="Risk-On / Bullish",
        strategies=(
            "Maintain or modestly increase exposure to AI leaders and proxies",
            "Use cash-secured puts on quality AI names (30-45 DTE, 0.30 delta)",
            "Sell covered calls above resistance on existing long positions",
            "Minimal index hedges, very small allocation to tail risk protection",
        ),
        allocation={
            'equities': "60-80% (focus on AI, tech, growth)",
            'defensive': "5-10% (value sectors)",
            'cash': "10-20%",
            'alternatives': "5-10% (optional: small gold/BTC allocation)",
        },
    ),
    2: Playbook(
        bias="Neutral / Watchful",
        strategies=(
            "Keep core AI/tech exposure but avoid large new leverage",
            "Continue income strategies: covered calls and moderate put selling",
            "Wheel strategy on robust AI-adjacent names",
            "Initiate small diagonal call spreads to reduce cost",
            "Small amount of index puts or inverse ETF as low-cost tail hedge",
        ),
        allocation={
            'equities': "50-70% (balanced across sectors)",
            'defensive': "10-20% (add some defensive sectors)",
            'cash': "15-25%",
            'alternatives': "5-10% (gold, BTC for diversification)",
        },
    ),
    3: Playbook(
        bias="Defensive / Cautious",
        strategies=(
            "Trim oversized AI positions, rotate capital to value sectors and cash",
            "Buy put spreads on AI-heavy indices or key names (30-90 DTE)",
            "Use collars on large long positions (long put + short call)",
            "Increase hedge notional to 20-40% of equity exposure",
            "Reduce use of leverage and margin",
        ),
        allocation={
            'equities': "40-60% (underweight AI/tech)",
            'defensive': "20-30% (utilities, consumer staples)",
            'cash': "20-30%",
            'alternatives': "10-15% (gold, BTC, defensive commodities)",
        },
    ),
    4: Playbook(
        bias="Heavily Defensive / Short Bias",
        strategies=(
            "Substantially reduce net long AI exposure",
            "Large put spreads on AI names and indices",
            "Ratio put spreads, calendars, diagonals to capture volatility",
            "Strategic short calls or call spreads against extended rallies",
            "Hedge 50-100% of AI equity exposure notionally",
        ),
        allocation={
            'equities': "20-40% (defensive sectors only)",
            'defensive': "30-40% (gold, bonds, defensive)",
            'cash': "30-40%",
            'alternatives': "10-20% (gold, BTC per risk tolerance)",
        },
    ),
    5: Playbook(
        bias="Maximum Defense / Crisis Mode",
        strategies=(
            "Very light or no net long AI exposure",
            "Deep OTM index puts or put spreads as tail risk",
            "Positions in volatility products via options structures",
            "Short or buy puts on most overextended AI names",
            "Focus on capital preservation and liquidity",
        ),
        allocation={
            'equities': "0-20% (only highest quality defensive)",
            'defensive': "40-50% (gold, bonds, cash equivalents)",
            'cash': "40-50%",
            'alternatives': "5-10% (optional BTC lottery ticket)",
        },
    ),
}


# ============== Output ==============

@dataclass(frozen=True)
class CCPIOutput:
    """Computed CCPI result for one snapshot"""
    snapshot: IndicatorSnapshot
    yield_curve_policy: YieldCurvePolicy

    ccpi: int  # final index, 0-100
    base_ccpi: int
    total_bonus: int
    crash_amplifiers: tuple[CrashAmplifier, ...]

    pillars: tuple[PillarScore, ...]
    canaries: tuple[Canary, ...]
    confidence: Confidence

    regime: Regime
    playbook: Playbook

    @property
    def timestamp(self):
        return self.snapshot.timestamp

    @property
    def certainty(self) -> int:
        return self.confidence.certainty

    @property
    def active_canaries(self) -> int:
        return count_active(self.canaries)

    @property
    def total_indicators(self) -> int:
        return TOTAL_INDICATORS

    def pillar(self, pillar: Union[Pillar, str]) -> PillarScore:
        pillar = Pillar(pillar)
        return next(p for p in self.pillars if p.pillar == pillar)

    @property
    def pillar_values(self) -> dict[str, int]:
        return {p.pillar.value: p.value for p in self.pillars}

    def to_dict(self) -> dict:
        return {
            'ccpi': self.ccpi,
            'baseCCPI': self.base_ccpi,
            'crashAmplifiers': [a.to_dict() for a in self.crash_amplifiers],
            'totalBonus': self.total_bonus,
            'confidence': self.certainty,
            'certainty': self.certainty,
            'regime': self.regime.to_dict(),
            'playbook': self.playbook.to_dict(),
            'pillars': self.pillar_values,
            'pillarMean': round(self.confidence.mean, 2),
            'pillarStdDev': round(self.confidence.std_dev, 2),
            'canaries': [c.to_dict() for c in self.canaries],
            'activeCanaries': self.active_canaries,
            'totalIndicators': self.total_indicators,
            'indicators': self.snapshot.to_dict(),
            'defaultedIndicators': list(self.snapshot.defaulted),
            'yieldCurvePolicy': self.yield_curve_policy.value,
            'timestamp': self.timestamp.isoformat(),
        }


def validate_configuration(
    weights: Optional[Mapping[Any, Any]] = None,
) -> dict[Pillar, float]:
    """Check registry, weights, ladders, canary rules and amplifiers together"""
    validate_registry()
    validated = validate_weights(weights if weights is not None else DEFAULT_WEIGHTS)
    validate_ladders()
    validate_rules(validated)
    validate_amplifiers()
    return validated


class CCPICalculator:
    """
    Calculates the Crash & Correction Prediction Index

    Holds only configuration; evaluate() keeps no state between calls, so one
    instance can score any number of snapshots concurrently.
    """

    WEIGHTS = DEFAULT_WEIGHTS

    def __init__(
        self,
        weights: Optional[Mapping[Any, float]] = None,
        yield_curve_policy: Union[YieldCurvePolicy, str] = YieldCurvePolicy.DUAL,
        event_sink: Optional[EventSink] = None,
    ):
        """
        Args:
            weights: Pillar weights keyed by Pillar or its value; must sum to 1.0
            yield_curve_policy: DUAL scores the yield curve in two pillars,
                SINGLE only in Risk Appetite
            event_sink: Receives stage events (defaults to DEBUG logging)

        Raises:
            ConfigurationError: when weights or rule tables are malformed
        """
        self.weights = validate_configuration(weights if weights is not None else self.WEIGHTS)
        try:
            self.yield_curve_policy = YieldCurvePolicy(yield_curve_policy)
        except ValueError:
            raise ConfigurationError(f"Unknown yield curve policy {yield_curve_policy!r}") from None
        self.event_sink = event_sink if event_sink is not None else LoggingEventSink()

    def evaluate(self, snapshot: Union[IndicatorSnapshot, Mapping[str, Any]]) -> CCPIOutput:
        """Score a snapshot; raw mappings are normalized first"""
        if not isinstance(snapshot, IndicatorSnapshot):
            snapshot = IndicatorSnapshot.from_raw(snapshot)

        pillars = score_pillars(snapshot, self.weights, self.yield_curve_policy)
        base_ccpi = aggregate(pillars)

        amplifiers, total_bonus = detect_amplifiers(snapshot)
        final_ccpi = min(INDEX_MAX, base_ccpi + total_bonus)

        canaries = generate_canaries(snapshot, self.weights, self.yield_curve_policy)
        confidence = estimate_confidence(pillars, canaries)
        regime = classify_regime(final_ccpi)

        output = CCPIOutput(
            snapshot=snapshot,
            yield_curve_policy=self.yield_curve_policy,
            ccpi=final_ccpi,
            base_ccpi=base_ccpi,
            total_bonus=total_bonus,
            crash_amplifiers=amplifiers,
            pillars=pillars,
            canaries=canaries,
            confidence=confidence,
            regime=regime,
            playbook=PLAYBOOKS[regime.level],
        )

        self._report(output)
        return output

    def _report(self, output: CCPIOutput) -> None:
        """Replay the finished result to the sink as stage events"""
        snapshot = output.snapshot
        self._emit(SNAPSHOT_NORMALIZED, 'snapshot', {
            'defaulted': len(snapshot.defaulted),
            'malformed': list(snapshot.malformed),
            'ignored': list(snapshot.ignored),
        })
        for name in snapshot.defaulted:
            self._emit(INDICATOR_DEFAULTED, name, {'default': snapshot[name]})

        for p in output.pillars:
            self._emit(PILLAR_COMPUTED, p.pillar.value, {
                'value': p.value,
                'raw_points': p.raw_points,
                'weight': p.weight,
            })

        for amp in output.crash_amplifiers:
            self._emit(AMPLIFIER_TRIGGERED, amp.reason, {'points': amp.points})

        for canary in output.canaries:
            self._emit(CANARY_EMITTED, canary.key, {
                'severity': canary.severity.value,
                'impact_score': canary.impact_score,
            })

        self._emit(RESULT_READY, 'ccpi', {
            'ccpi': output.ccpi,
            'base_ccpi': output.base_ccpi,
            'total_bonus': output.total_bonus,
            'certainty': output.certainty,
            'regime': output.regime.name,
        })

    def _emit(self, stage: str, name: str, data: dict) -> None:
        try:
            self.event_sink(PipelineEvent(stage, name, data))
        except Exception as e:
            logger.error(f"Event sink failed on {stage}/{name}: {e}")
