"""Observability events for LLM calls and mapped API errors.

A :class:`Telemetry` instance is built once by the process entry point and
handed to the invoker and the response mapper.  Without a sink, ``emit`` does
nothing.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Callable, Optional, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LlmSuccessEvent:
    preset: str
    latency_ms: int
    request_id: Optional[str] = None
    type: str = "llm.success"


@dataclass(frozen=True)
class LlmErrorEvent:
    preset: str
    latency_ms: int
    code: str
    request_id: Optional[str] = None
    type: str = "llm.error"


@dataclass(frozen=True)
class ApiErrorEvent:
    code: str
    endpoint: str
    request_id: Optional[str] = None
    type: str = "api.error"


Event = Union[LlmSuccessEvent, LlmErrorEvent, ApiErrorEvent]
Sink = Callable[[Event], None]


def logging_sink(event: Event) -> None:
    """Default sink: one INFO line per event."""
    fields = {k: v for k, v in asdict(event).items() if k != "type" and v is not None}
    logger.info("[telemetry] %s %s", event.type, fields)


class Telemetry:
    def __init__(self, sink: Optional[Sink] = None) -> None:
        self.sink = sink

    def emit(self, event: Event) -> None:
        if self.sink is None:
            return
        try:
            self.sink(event)
        except Exception:
            # sink failures never reach the caller
            logger.exception("telemetry sink failed for %s", event.type)
