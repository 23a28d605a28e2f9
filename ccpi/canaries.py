"""
CCPI Canary Signals

A canary is an individual indicator that has crossed a warning threshold.
Every rule has a stricter "high" condition and a looser "medium" condition.
High is checked first and suppresses medium, so each rule emits at most one
canary per evaluation.

Impact = indicator weight (max ladder points within its pillar)
         x pillar weight (percent share of the composite) / 100
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from ccpi.indicators import (
    ConfigurationError, IndicatorSnapshot, IndicatorValue, Pillar, round_half_up,
)
from ccpi.pillars import (
    DUAL_ONLY_LADDERS, LADDERS_BY_KEY, OPERATORS, Condition, YieldCurvePolicy,
)

# Expected maximum count of concurrent signals, used by the confidence estimator
CANARY_NORMALIZATION = 15


class Severity(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return {'high': 3, 'medium': 2, 'low': 1}[self.value]


ACTIVE_SEVERITIES = (Severity.HIGH, Severity.MEDIUM)


@dataclass(frozen=True)
class CanaryRule:
    key: str
    label: str
    high: Condition
    medium: Optional[Condition] = None
    fmt: str = '.2f'

    @property
    def ladder(self):
        return LADDERS_BY_KEY[self.key]

    @property
    def indicator(self) -> str:
        return self.ladder.indicator

    @property
    def pillar(self) -> Pillar:
        return self.ladder.pillar

    @property
    def indicator_weight(self) -> int:
        return self.ladder.max_points

    def match(self, value: IndicatorValue) -> Optional[tuple[Severity, Condition]]:
        if self.high.matches(value):
            return Severity.HIGH, self.high
        if self.medium is not None and self.medium.matches(value):
            return Severity.MEDIUM, self.medium
        return None

    def describe(self, value: IndicatorValue, condition: Condition) -> str:
        if isinstance(value, bool):
            return self.label
        return f"{self.label}: {value:{self.fmt}} ({condition})"


def rule(key: str, label: str, high: tuple, medium: tuple = None, fmt: str = '.2f') -> CanaryRule:
    return CanaryRule(
        key=key,
        label=label,
        high=Condition(*high),
        medium=Condition(*medium) if medium else None,
        fmt=fmt,
    )


CANARY_RULES: tuple[CanaryRule, ...] = (
    # Momentum & Technical
    rule('nvidia_momentum', "NVIDIA momentum weakening", ('<', 20), ('<', 40), fmt='.0f'),
    rule('sox_index', "Semiconductor index breaking down", ('<', 4000), ('<', 4500), fmt=',.0f'),
    rule('qqq_daily_return', "QQQ daily decline", ('<=', -3), ('<=', -1)),
    rule('qqq_consec_down', "QQQ consecutive down days", ('>=', 4), ('>=', 3), fmt='.0f'),
    rule('qqq_sma20', "QQQ near 20-day average", ('>=', 100), ('>=', 50), fmt='.0f'),
    rule('qqq_sma50', "QQQ near 50-day average", ('>=', 100), ('>=', 50), fmt='.0f'),
    rule('qqq_sma200', "QQQ near 200-day average", ('>=', 100), ('>=', 50), fmt='.0f'),
    rule('qqq_bollinger', "QQQ near lower Bollinger band", ('>=', 100), ('>=', 50), fmt='.0f'),
    rule('qqq_death_cross', "QQQ death cross (50-day below 200-day)", ('==', True)),
    rule('vix', "VIX elevated", ('>', 30), ('>', 20), fmt='.1f'),
    rule('yield_curve_trend', "Yield curve trend deteriorating", ('<', -0.3), ('<', 0)),

    # Risk Appetite & Volatility
    rule('put_call_ratio', "Put/call ratio signals complacency", ('<', 0.7), ('<', 0.85)),
    rule('aaii_bullish', "Retail sentiment overly bullish", ('>', 55), ('>', 45), fmt='.1f'),
    rule('vxn', "Nasdaq volatility elevated", ('>', 35), ('>', 25), fmt='.1f'),
    rule('rvx', "Small-cap volatility elevated", ('>', 35), ('>', 28), fmt='.1f'),
    rule('vix_term_structure', "VIX term structure flattening", ('<', 0), ('<', 1.0)),
    rule('atr', "QQQ true range expanding", ('>', 50), ('>', 40), fmt='.1f'),
    rule('ltv', "Left-tail risk elevated", ('>', 0.15), ('>', 0.12)),
    rule('bullish_percent', "Breadth overbought", ('>', 75), ('>', 70), fmt='.1f'),
    rule('short_interest', "Short interest depleted", ('<', 12), ('<', 14), fmt='.1f'),
    rule('yield_curve', "Yield curve inverted", ('<', -0.3), ('<', 0)),

    # Valuation & Market Structure
    rule('spx_pe', "S&P 500 forward P/E stretched", ('>', 25), ('>', 18), fmt='.1f'),
    rule('buffett_indicator', "Market cap to GDP extreme", ('>', 160), ('>', 120), fmt='.0f'),
    rule('spx_ps', "S&P 500 price/sales stretched", ('>', 3.0), ('>', 2.5)),
    rule('qqq_pe', "QQQ P/E stretched", ('>', 35), ('>', 30), fmt='.1f'),
    rule('mag7_concentration', "Magnificent 7 concentration high", ('>', 65), ('>', 55), fmt='.1f'),
    rule('shiller_cape', "Shiller CAPE elevated", ('>', 35), ('>', 30), fmt='.1f'),
    rule('equity_risk_premium', "Equity risk premium compressed", ('<', 2.0), ('<', 3.0)),

    # Macro
    rule('ism_pmi', "ISM manufacturing contracting", ('<', 46), ('<', 50), fmt='.1f'),
    rule('fed_funds_rate', "Policy rate restrictive", ('>', 5.5), ('>', 4.5)),
    rule('junk_spread', "High-yield spreads widening", ('>', 6), ('>', 5)),
    rule('ted_spread', "Interbank funding stress", ('>', 1.0), ('>', 0.5)),
    rule('dxy_index', "Dollar strength tightening conditions", ('>', 110), ('>', 105), fmt='.1f'),
    rule('fed_reverse_repo', "Reverse repo liquidity draining", ('<', 250), ('<', 500), fmt=',.0f'),
    rule('us_debt_to_gdp', "Federal debt to GDP elevated", ('>', 130), ('>', 120), fmt='.0f'),
)


@dataclass(frozen=True)
class Canary:
    key: str
    signal: str
    pillar: Pillar
    severity: Severity
    indicator_weight: int
    pillar_weight: int
    impact_score: float

    @property
    def is_active(self) -> bool:
        return self.severity in ACTIVE_SEVERITIES

    def to_dict(self) -> dict:
        return {
            'signal': self.signal,
            'pillar': self.pillar.label,
            'severity': self.severity.value,
            'indicatorWeight': self.indicator_weight,
            'pillarWeight': self.pillar_weight,
            'impactScore': self.impact_score,
        }


def rules_for(policy: YieldCurvePolicy = YieldCurvePolicy.DUAL) -> tuple[CanaryRule, ...]:
    if policy == YieldCurvePolicy.SINGLE:
        return tuple(r for r in CANARY_RULES if r.key not in DUAL_ONLY_LADDERS)
    return CANARY_RULES


def pillar_percent(weight: float) -> int:
    return round_half_up(weight * 100)


def evaluate_rule(
    canary_rule: CanaryRule,
    snapshot: IndicatorSnapshot,
    weights: dict[Pillar, float],
) -> Optional[Canary]:
    """Evaluate one rule; None when neither tier matches"""
    value = snapshot[canary_rule.indicator]
    matched = canary_rule.match(value)
    if matched is None:
        return None

    severity, condition = matched
    pillar_weight = pillar_percent(weights[canary_rule.pillar])
    return Canary(
        key=canary_rule.key,
        signal=canary_rule.describe(value, condition),
        pillar=canary_rule.pillar,
        severity=severity,
        indicator_weight=canary_rule.indicator_weight,
        pillar_weight=pillar_weight,
        impact_score=round(canary_rule.indicator_weight * pillar_weight / 100, 2),
    )


def sort_canaries(canaries: Iterable[Canary]) -> tuple[Canary, ...]:
    """Severity descending, then impact descending; ties keep generation order"""
    return tuple(sorted(canaries, key=lambda c: (-c.severity.rank, -c.impact_score)))


def generate_canaries(
    snapshot: IndicatorSnapshot,
    weights: dict[Pillar, float],
    policy: YieldCurvePolicy = YieldCurvePolicy.DUAL,
) -> tuple[Canary, ...]:
    emitted = (evaluate_rule(r, snapshot, weights) for r in rules_for(policy))
    return sort_canaries(c for c in emitted if c is not None)


def count_active(canaries: Iterable[Canary]) -> int:
    return sum(1 for c in canaries if c.is_active)


def validate_rules(weights: dict[Pillar, float]) -> None:
    """Raise ConfigurationError if any canary rule is malformed"""
    seen = set()
    for canary_rule in CANARY_RULES:
        if canary_rule.key in seen:
            raise ConfigurationError(f"Duplicate canary rule {canary_rule.key}")
        seen.add(canary_rule.key)
        if canary_rule.key not in LADDERS_BY_KEY:
            raise ConfigurationError(f"Canary rule {canary_rule.key} has no matching ladder")
        for condition in (canary_rule.high, canary_rule.medium):
            if condition is not None and condition.op not in OPERATORS:
                raise ConfigurationError(f"Canary rule {canary_rule.key} uses unknown operator {condition.op!r}")
        if canary_rule.pillar not in weights:
            raise ConfigurationError(f"Canary rule {canary_rule.key} belongs to unweighted pillar {canary_rule.pillar.value}")
