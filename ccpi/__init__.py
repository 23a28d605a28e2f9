"""
CCPI Core Module

Crash & Correction Prediction Index calculation engine.
"""

from ccpi.indicators import (
    INDICATORS, TOTAL_INDICATORS, ConfigurationError, IndicatorSnapshot, Pillar,
)
from ccpi.pillars import YieldCurvePolicy
from ccpi.canaries import Canary, Severity
from ccpi.calculator import (
    CCPICalculator, CCPIOutput, CrashAmplifier, Regime, classify_regime,
    validate_configuration,
)
from ccpi.events import CollectingEventSink, LoggingEventSink, PipelineEvent

# Rule tables are module constants; fail at import rather than at evaluation
validate_configuration()

__all__ = [
    'INDICATORS',
    'TOTAL_INDICATORS',
    'ConfigurationError',
    'IndicatorSnapshot',
    'Pillar',
    'YieldCurvePolicy',
    'Canary',
    'Severity',
    'CCPICalculator',
    'CCPIOutput',
    'CrashAmplifier',
    'Regime',
    'classify_regime',
    'validate_configuration',
    'CollectingEventSink',
    'LoggingEventSink',
    'PipelineEvent',
]
