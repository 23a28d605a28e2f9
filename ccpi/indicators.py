"""
CCPI Indicator Registry and Snapshot Normalization

Every indicator the engine understands is declared once here with:
- The pillar that owns it
- Its unit
- A historically plausible baseline default

A raw mapping from a data collector is normalized into an immutable
IndicatorSnapshot exactly once. Absent or malformed values are replaced by the
registry default at that point and never inline at the point of use.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union

IndicatorValue = Union[float, bool]


class ConfigurationError(ValueError):
    """Raised when weights, ladders or rule tables are malformed"""


class Pillar(str, Enum):
    MOMENTUM = "momentum"
    RISK_APPETITE = "riskAppetite"
    VALUATION = "valuation"
    MACRO = "macro"

    @property
    def label(self) -> str:
        return PILLAR_LABELS[self]


PILLAR_LABELS = {
    Pillar.MOMENTUM: "Momentum & Technical",
    Pillar.RISK_APPETITE: "Risk Appetite & Volatility",
    Pillar.VALUATION: "Valuation & Market Structure",
    Pillar.MACRO: "Macro",
}


@dataclass(frozen=True)
class IndicatorSpec:
    """Registry entry for a single indicator"""
    name: str
    pillar: Pillar
    default: IndicatorValue
    unit: str
    description: str

    @property
    def is_flag(self) -> bool:
        return isinstance(self.default, bool)


def _spec(name, pillar, default, unit, description) -> tuple[str, IndicatorSpec]:
    return name, IndicatorSpec(name, pillar, default, unit, description)


# Defaults sit in the safe tier of every ladder so a fully defaulted snapshot
# scores the fall-through path everywhere.
INDICATORS: dict[str, IndicatorSpec] = dict([
    # Momentum & Technical
    _spec('nvidia_momentum', Pillar.MOMENTUM, 55.0, 'score', "NVIDIA 20-day momentum score (0-100)"),
    _spec('sox_index', Pillar.MOMENTUM, 5000.0, 'points', "Philadelphia Semiconductor Index level"),
    _spec('qqq_daily_return', Pillar.MOMENTUM, 0.05, '%', "QQQ 1-day return"),
    _spec('qqq_consec_down', Pillar.MOMENTUM, 1.0, 'days', "Consecutive QQQ down days worse than -1%"),
    _spec('qqq_below_sma20', Pillar.MOMENTUM, False, 'flag', "QQQ closed below its 20-day average"),
    _spec('qqq_sma20_proximity', Pillar.MOMENTUM, 10.0, '%', "Proximity to the 20-day average (100 = breached)"),
    _spec('qqq_below_sma50', Pillar.MOMENTUM, False, 'flag', "QQQ closed below its 50-day average"),
    _spec('qqq_sma50_proximity', Pillar.MOMENTUM, 10.0, '%', "Proximity to the 50-day average (100 = breached)"),
    _spec('qqq_below_sma200', Pillar.MOMENTUM, False, 'flag', "QQQ closed below its 200-day average"),
    _spec('qqq_sma200_proximity', Pillar.MOMENTUM, 10.0, '%', "Proximity to the 200-day average (100 = breached)"),
    _spec('qqq_below_bollinger', Pillar.MOMENTUM, False, 'flag', "QQQ closed below its lower Bollinger band"),
    _spec('qqq_bollinger_proximity', Pillar.MOMENTUM, 10.0, '%', "Proximity to the lower Bollinger band (100 = breached)"),
    _spec('qqq_death_cross', Pillar.MOMENTUM, False, 'flag', "50-day average below 200-day average"),
    _spec('vix', Pillar.MOMENTUM, 14.0, 'points', "CBOE Volatility Index"),

    # Risk Appetite & Volatility
    _spec('vxn', Pillar.RISK_APPETITE, 18.0, 'points', "Nasdaq-100 Volatility Index"),
    _spec('rvx', Pillar.RISK_APPETITE, 21.0, 'points', "Russell 2000 Volatility Index"),
    _spec('vix_term_structure', Pillar.RISK_APPETITE, 1.5, 'points', "VIX 1-month future minus spot"),
    _spec('atr', Pillar.RISK_APPETITE, 30.0, 'points', "QQQ average true range"),
    _spec('ltv', Pillar.RISK_APPETITE, 0.08, 'probability', "Left-tail volatility probability"),
    _spec('bullish_percent', Pillar.RISK_APPETITE, 55.0, '%', "Share of stocks on point-and-figure buy signals"),
    _spec('yield_curve', Pillar.RISK_APPETITE, 0.5, '%', "10Y minus 2Y Treasury spread"),
    _spec('put_call_ratio', Pillar.RISK_APPETITE, 0.95, 'ratio', "Equity put/call ratio"),
    _spec('aaii_bullish', Pillar.RISK_APPETITE, 38.0, '%', "AAII survey bullish share"),
    _spec('short_interest', Pillar.RISK_APPETITE, 16.0, '%', "Aggregate short interest as share of float"),

    # Valuation & Market Structure
    _spec('spx_pe', Pillar.VALUATION, 17.0, 'ratio', "S&P 500 forward P/E"),
    _spec('spx_ps', Pillar.VALUATION, 2.2, 'ratio', "S&P 500 price/sales"),
    _spec('buffett_indicator', Pillar.VALUATION, 110.0, '%', "Total market cap to GDP"),
    _spec('qqq_pe', Pillar.VALUATION, 26.0, 'ratio', "QQQ P/E"),
    _spec('mag7_concentration', Pillar.VALUATION, 50.0, '%', "Magnificent 7 share of QQQ"),
    _spec('shiller_cape', Pillar.VALUATION, 22.0, 'ratio', "Shiller cyclically adjusted P/E"),
    _spec('equity_risk_premium', Pillar.VALUATION, 4.2, '%', "Earnings yield minus 10Y Treasury yield"),

    # Macro
    _spec('ted_spread', Pillar.MACRO, 0.25, '%', "TED spread"),
    _spec('dxy_index', Pillar.MACRO, 100.0, 'points', "US Dollar Index"),
    _spec('ism_pmi', Pillar.MACRO, 53.0, 'points', "ISM manufacturing PMI"),
    _spec('fed_funds_rate', Pillar.MACRO, 3.5, '%', "Effective federal funds rate"),
    _spec('fed_reverse_repo', Pillar.MACRO, 800.0, '$B', "Fed overnight reverse repo balance"),
    _spec('junk_spread', Pillar.MACRO, 3.5, '%', "High-yield option-adjusted spread"),
    _spec('us_debt_to_gdp', Pillar.MACRO, 95.0, '%', "Federal debt to GDP"),
])

TOTAL_INDICATORS = len(INDICATORS)

DEFAULTS: Mapping[str, IndicatorValue] = MappingProxyType(
    {name: spec.default for name, spec in INDICATORS.items()}
)

# below-flag -> paired proximity field
PROXIMITY_FLAGS = {
    'qqq_below_sma20': 'qqq_sma20_proximity',
    'qqq_below_sma50': 'qqq_sma50_proximity',
    'qqq_below_sma200': 'qqq_sma200_proximity',
    'qqq_below_bollinger': 'qqq_bollinger_proximity',
}

BREACH_PROXIMITY = 100.0

_FLAG_STRINGS = {'true': True, 'false': False, 'yes': True, 'no': False, '1': True, '0': False}


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative scores (Python's round() is banker's rounding)"""
    return int(math.floor(value + 0.5))


class _Malformed(Exception):
    pass


def _coerce_number(value: Any) -> float:
    # bool is an int subclass and is never a valid reading
    if isinstance(value, bool):
        raise _Malformed
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            # ints beyond float range
            raise _Malformed from None
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            raise _Malformed from None
    else:
        raise _Malformed
    if not math.isfinite(number):
        raise _Malformed
    return number


def _coerce_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str) and value.strip().lower() in _FLAG_STRINGS:
        return _FLAG_STRINGS[value.strip().lower()]
    raise _Malformed


def coerce_value(spec: IndicatorSpec, value: Any) -> Optional[IndicatorValue]:
    """Coerce a raw value for an indicator, returning None when it is unusable"""
    if value is None:
        return None
    try:
        return _coerce_flag(value) if spec.is_flag else _coerce_number(value)
    except _Malformed:
        return None


@dataclass(frozen=True)
class IndicatorSnapshot:
    """
    Fully resolved indicator values for one evaluation instant.

    Build with IndicatorSnapshot.from_raw(); the constructor assumes the
    values are already normalized.
    """
    values: Mapping[str, IndicatorValue]
    timestamp: datetime
    defaulted: tuple[str, ...] = ()
    malformed: tuple[str, ...] = ()
    ignored: tuple[str, ...] = ()

    def __getitem__(self, name: str) -> IndicatorValue:
        return self.values[name]

    def __contains__(self, name: str) -> bool:
        return name in self.values

    def get(self, name: str, default: Optional[IndicatorValue] = None) -> Optional[IndicatorValue]:
        return self.values.get(name, default)

    def to_dict(self) -> dict[str, IndicatorValue]:
        return dict(self.values)

    @classmethod
    def from_raw(
        cls,
        raw: Optional[Mapping[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> 'IndicatorSnapshot':
        return normalize_snapshot(raw or {}, timestamp)

    @classmethod
    def baseline(cls, timestamp: Optional[datetime] = None) -> 'IndicatorSnapshot':
        """Snapshot with every indicator at its documented default"""
        return normalize_snapshot({}, timestamp)


def normalize_snapshot(
    raw: Mapping[str, Any],
    timestamp: Optional[datetime] = None,
) -> IndicatorSnapshot:
    """
    Resolve a raw indicator mapping into an IndicatorSnapshot.

    Missing, None, non-numeric and non-finite values take the registry
    default. Below-average flags and their proximities are reconciled so a
    breach reads the same through either field.
    """
    values: dict[str, IndicatorValue] = {}
    defaulted = []
    malformed = []

    for name, spec in INDICATORS.items():
        raw_value = raw.get(name)
        value = coerce_value(spec, raw_value)
        if value is None:
            value = spec.default
            defaulted.append(name)
            if raw_value is not None:
                malformed.append(name)
        values[name] = value

    for flag, proximity in PROXIMITY_FLAGS.items():
        if values[flag] and values[proximity] < BREACH_PROXIMITY:
            values[proximity] = BREACH_PROXIMITY
        elif values[proximity] >= BREACH_PROXIMITY:
            values[flag] = True

    ignored = sorted(key for key in raw if key not in INDICATORS)

    return IndicatorSnapshot(
        values=MappingProxyType(values),
        timestamp=timestamp or datetime.now(timezone.utc),
        defaulted=tuple(sorted(defaulted)),
        malformed=tuple(sorted(malformed)),
        ignored=tuple(ignored),
    )


def validate_registry() -> None:
    """Check that every registry default is itself a valid value"""
    if not INDICATORS:
        raise ConfigurationError("Indicator registry is empty")
    for name, spec in INDICATORS.items():
        if name != spec.name:
            raise ConfigurationError(f"Registry key {name} does not match spec name {spec.name}")
        if not isinstance(spec.pillar, Pillar):
            raise ConfigurationError(f"{name} has unknown pillar {spec.pillar!r}")
        if coerce_value(spec, spec.default) is None:
            raise ConfigurationError(f"{name} has an invalid default {spec.default!r}")
    for flag, proximity in PROXIMITY_FLAGS.items():
        if flag not in INDICATORS or proximity not in INDICATORS:
            raise ConfigurationError(f"Unknown proximity pairing {flag} -> {proximity}")
