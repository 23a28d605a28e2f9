"""
CCPI Pillar Scorers

Each pillar owns an ordered set of staircase ladders. A ladder checks its
tiers from most severe to least severe and the first match wins. Scoring
maps the snapshot to an immutable tuple of contributions, then reduces it to
a pillar value clamped to [0, 100].

Pillars:
- Momentum & Technical (NVIDIA, SOX, QQQ trend and breadth, VIX)
- Risk Appetite & Volatility (options positioning, sentiment, vol indices)
- Valuation & Market Structure (multiples, concentration, risk premium)
- Macro (PMI, policy rate, credit, funding, dollar, fiscal)
"""

import operator
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ccpi.indicators import (
    INDICATORS, ConfigurationError, IndicatorSnapshot, IndicatorValue, Pillar,
)

PILLAR_MIN = 0
PILLAR_MAX = 100

OPERATORS = {
    '<': operator.lt,
    '<=': operator.le,
    '>': operator.gt,
    '>=': operator.ge,
    '==': operator.eq,
}


class YieldCurvePolicy(str, Enum):
    """
    How the yield curve is attributed.

    DUAL scores it in Momentum (trend view) and Risk Appetite (credit view)
    and emits two distinct canaries. SINGLE keeps only the Risk Appetite view.
    """
    DUAL = "dual"
    SINGLE = "single"


@dataclass(frozen=True)
class Condition:
    """A single threshold comparison against an indicator value"""
    op: str
    threshold: IndicatorValue

    def matches(self, value: IndicatorValue) -> bool:
        return OPERATORS[self.op](value, self.threshold)

    def __str__(self) -> str:
        if isinstance(self.threshold, bool):
            return str(self.threshold).lower()
        return f"{self.op} {self.threshold:g}"


@dataclass(frozen=True)
class Tier:
    condition: Condition
    points: int


@dataclass(frozen=True)
class Ladder:
    """Staircase of tiers for one indicator within one pillar"""
    key: str
    indicator: str
    pillar: Pillar
    tiers: tuple[Tier, ...]
    otherwise: int = 0

    @property
    def max_points(self) -> int:
        return max([tier.points for tier in self.tiers] + [self.otherwise])

    def evaluate(self, value: IndicatorValue) -> tuple[int, Optional[Tier]]:
        """Return (points, matched tier) for a value; tier is None on fall-through"""
        for tier in self.tiers:
            if tier.condition.matches(value):
                return tier.points, tier
        return self.otherwise, None


def ladder(key: str, pillar: Pillar, *steps, indicator: str = None, otherwise: int = 0) -> Ladder:
    """Build a Ladder from (op, threshold, points) steps"""
    tiers = tuple(Tier(Condition(op, threshold), points) for op, threshold, points in steps)
    return Ladder(key, indicator or key, pillar, tiers, otherwise)


M, R, V, X = Pillar.MOMENTUM, Pillar.RISK_APPETITE, Pillar.VALUATION, Pillar.MACRO

PILLAR_LADDERS: dict[Pillar, tuple[Ladder, ...]] = {
    Pillar.MOMENTUM: (
        ladder('nvidia_momentum', M, ('<', 20, 12), ('<', 30, 8), ('<', 40, 4)),
        ladder('sox_index', M, ('<', 4000, 10), ('<', 4500, 6), ('<', 4800, 3)),
        ladder('qqq_daily_return', M, ('<=', -6, 8), ('<=', -3, 6), ('<=', -1.5, 4), ('<=', -1, 2)),
        ladder('qqq_consec_down', M, ('>=', 5, 10), ('>=', 4, 7), ('>=', 3, 4), ('>=', 2, 2)),
        ladder('qqq_sma20', M, ('>=', 100, 6), ('>=', 50, 4), ('>=', 25, 2),
               indicator='qqq_sma20_proximity'),
        ladder('qqq_sma50', M, ('>=', 100, 8), ('>=', 50, 5), ('>=', 25, 2),
               indicator='qqq_sma50_proximity'),
        ladder('qqq_sma200', M, ('>=', 100, 10), ('>=', 50, 7), ('>=', 25, 3),
               indicator='qqq_sma200_proximity'),
        ladder('qqq_bollinger', M, ('>=', 100, 8), ('>=', 50, 4), ('>=', 25, 2),
               indicator='qqq_bollinger_proximity'),
        ladder('qqq_death_cross', M, ('==', True, 12)),
        ladder('vix', M, ('>', 35, 9), ('>', 25, 6), ('>', 20, 4), ('>', 15, 2)),
        ladder('yield_curve_trend', M, ('<', -0.5, 10), ('<', -0.2, 7), ('<', 0, 4),
               indicator='yield_curve'),
    ),
    Pillar.RISK_APPETITE: (
        # extreme complacency first, then contrarian fear
        ladder('put_call_ratio', R, ('<', 0.6, 18), ('<', 0.7, 14), ('<', 0.9, 10),
               ('>', 1.3, 8), ('>', 1.1, 4)),
        ladder('aaii_bullish', R, ('>', 55, 16), ('>', 50, 12), ('>', 45, 8),
               ('<', 25, 6), ('<', 30, 3)),
        ladder('vxn', R, ('>', 35, 10), ('>', 25, 6), ('>', 20, 3)),
        ladder('rvx', R, ('>', 35, 8), ('>', 28, 5), ('>', 24, 2)),
        ladder('vix_term_structure', R, ('<', 0, 12), ('<', 0.5, 8), ('<', 1.0, 4)),
        ladder('atr', R, ('>', 50, 8), ('>', 40, 5), ('>', 35, 2)),
        ladder('ltv', R, ('>', 0.15, 10), ('>', 0.12, 6), ('>', 0.10, 3)),
        ladder('bullish_percent', R, ('>', 75, 8), ('>', 70, 5), ('<', 30, 5)),
        ladder('short_interest', R, ('<', 12, 8), ('<', 14, 5), ('>', 25, 4)),
        ladder('yield_curve', R, ('<', -0.5, 8), ('<', -0.2, 6), ('<', 0, 4)),
    ),
    Pillar.VALUATION: (
        ladder('spx_pe', V, ('>', 30, 18), ('>', 25, 14), ('>', 22, 10), ('>', 18, 6), otherwise=2),
        ladder('buffett_indicator', V, ('>', 200, 16), ('>', 180, 13), ('>', 150, 9), ('>', 120, 5)),
        ladder('spx_ps', V, ('>', 3.5, 14), ('>', 3.0, 10), ('>', 2.5, 5)),
        ladder('qqq_pe', V, ('>', 40, 14), ('>', 35, 10), ('>', 30, 6)),
        ladder('mag7_concentration', V, ('>', 65, 14), ('>', 60, 10), ('>', 55, 5)),
        ladder('shiller_cape', V, ('>', 35, 14), ('>', 30, 10), ('>', 25, 5)),
        ladder('equity_risk_premium', V, ('<', 1.5, 12), ('<', 2.5, 8), ('<', 3.5, 4)),
    ),
    Pillar.MACRO: (
        ladder('ism_pmi', X, ('<', 42, 18), ('<', 46, 14), ('<', 50, 10), ('<', 52, 4)),
        ladder('fed_funds_rate', X, ('>', 6.0, 17), ('>', 5.5, 14), ('>', 5.0, 10),
               ('>', 4.5, 7), ('>', 4.0, 3)),
        ladder('junk_spread', X, ('>', 8, 16), ('>', 6, 12), ('>', 5, 8), ('>', 4, 4)),
        ladder('ted_spread', X, ('>', 1.0, 14), ('>', 0.75, 10), ('>', 0.5, 6), ('>', 0.35, 2)),
        ladder('dxy_index', X, ('>', 115, 10), ('>', 110, 7), ('>', 105, 3)),
        ladder('fed_reverse_repo', X, ('<', 100, 12), ('<', 250, 8), ('<', 500, 4)),
        ladder('us_debt_to_gdp', X, ('>', 130, 14), ('>', 120, 10), ('>', 100, 5)),
    ),
}

# Ladders that only exist under the dual yield-curve attribution
DUAL_ONLY_LADDERS = frozenset({'yield_curve_trend'})

LADDERS_BY_KEY: dict[str, Ladder] = {
    lad.key: lad for ladders in PILLAR_LADDERS.values() for lad in ladders
}


def ladders_for(pillar: Pillar, policy: YieldCurvePolicy = YieldCurvePolicy.DUAL) -> tuple[Ladder, ...]:
    ladders = PILLAR_LADDERS[pillar]
    if policy == YieldCurvePolicy.SINGLE:
        ladders = tuple(lad for lad in ladders if lad.key not in DUAL_ONLY_LADDERS)
    return ladders


@dataclass(frozen=True)
class Contribution:
    """Points a single ladder added to its pillar"""
    key: str
    indicator: str
    pillar: Pillar
    value: IndicatorValue
    points: int
    matched: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'key': self.key,
            'indicator': self.indicator,
            'value': self.value,
            'points': self.points,
            'matched': self.matched,
        }


@dataclass(frozen=True)
class PillarScore:
    pillar: Pillar
    value: int
    weight: float
    raw_points: int
    contributions: tuple[Contribution, ...]

    @property
    def name(self) -> str:
        return self.pillar.label

    @property
    def weighted(self) -> float:
        return self.value * self.weight


def contribute(lad: Ladder, snapshot: IndicatorSnapshot) -> Contribution:
    value = snapshot[lad.indicator]
    points, tier = lad.evaluate(value)
    return Contribution(
        key=lad.key,
        indicator=lad.indicator,
        pillar=lad.pillar,
        value=value,
        points=points,
        matched=str(tier.condition) if tier else None,
    )


def clamp_pillar(points: int) -> int:
    return max(PILLAR_MIN, min(PILLAR_MAX, points))


def score_pillar(
    pillar: Pillar,
    snapshot: IndicatorSnapshot,
    weight: float,
    policy: YieldCurvePolicy = YieldCurvePolicy.DUAL,
) -> PillarScore:
    """Score one pillar: contributions first, then reduce and clamp"""
    contributions = tuple(contribute(lad, snapshot) for lad in ladders_for(pillar, policy))
    raw_points = sum(c.points for c in contributions)
    return PillarScore(
        pillar=pillar,
        value=clamp_pillar(raw_points),
        weight=weight,
        raw_points=raw_points,
        contributions=contributions,
    )


def score_pillars(
    snapshot: IndicatorSnapshot,
    weights: dict[Pillar, float],
    policy: YieldCurvePolicy = YieldCurvePolicy.DUAL,
) -> tuple[PillarScore, ...]:
    """Score all four pillars in canonical order; each is independent of the others"""
    return tuple(score_pillar(pillar, snapshot, weights[pillar], policy) for pillar in Pillar)


def validate_ladders() -> None:
    """Raise ConfigurationError if any ladder table is malformed"""
    seen = set()
    for pillar in Pillar:
        ladders = PILLAR_LADDERS.get(pillar)
        if not ladders:
            raise ConfigurationError(f"No ladders configured for pillar {pillar.value}")
        for lad in ladders:
            if lad.key in seen:
                raise ConfigurationError(f"Duplicate ladder key {lad.key}")
            seen.add(lad.key)
            if lad.pillar != pillar:
                raise ConfigurationError(f"Ladder {lad.key} filed under {pillar.value} but owned by {lad.pillar.value}")
            if lad.indicator not in INDICATORS:
                raise ConfigurationError(f"Ladder {lad.key} references unknown indicator {lad.indicator}")
            if not lad.tiers:
                raise ConfigurationError(f"Ladder {lad.key} has no tiers")
            for tier in lad.tiers:
                if tier.condition.op not in OPERATORS:
                    raise ConfigurationError(f"Ladder {lad.key} uses unknown operator {tier.condition.op!r}")
                if tier.points < 0:
                    raise ConfigurationError(f"Ladder {lad.key} has negative points")
            if lad.otherwise < 0:
                raise ConfigurationError(f"Ladder {lad.key} has negative fall-through points")
