"""
Pipeline stage events

The calculator emits a PipelineEvent at every stage boundary so observability
stays out of the scoring code. Sinks are plain callables.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger(__name__)

SNAPSHOT_NORMALIZED = "snapshot_normalized"
INDICATOR_DEFAULTED = "indicator_defaulted"
PILLAR_COMPUTED = "pillar_computed"
AMPLIFIER_TRIGGERED = "amplifier_triggered"
CANARY_EMITTED = "canary_emitted"
RESULT_READY = "result_ready"


@dataclass(frozen=True)
class PipelineEvent:
    stage: str
    name: str
    data: dict[str, Any] = field(default_factory=dict)


EventSink = Callable[[PipelineEvent], None]


class LoggingEventSink:
    """Writes events to the standard logger at DEBUG"""

    def __init__(self, log: logging.Logger = logger, level: int = logging.DEBUG):
        self.log = log
        self.level = level

    def __call__(self, event: PipelineEvent) -> None:
        self.log.log(self.level, f"[{event.stage}] {event.name} {event.data}")


class CollectingEventSink:
    """Keeps events in memory"""

    def __init__(self):
        self.events: list[PipelineEvent] = []

    def __call__(self, event: PipelineEvent) -> None:
        self.events.append(event)

    def of_stage(self, stage: str) -> list[PipelineEvent]:
        return [e for e in self.events if e.stage == stage]

    def clear(self) -> None:
        self.events.clear()
