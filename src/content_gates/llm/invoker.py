"""Single-attempt LLM invocation with a deadline and an output contract.

``LLMInvoker.invoke`` is the only way stage code talks to a model.  It never
retries; each outcome is either a contract-valid value or one classified
:class:`~content_gates.errors.StageError`.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass
from typing import Callable, ClassVar, Dict, Generic, Literal, Mapping, NoReturn, Optional, Type, TypeVar, Union

import httpx
import openai
from pydantic import BaseModel, ValidationError

from content_gates.errors import ERROR_TABLE, ErrorKind, StageError
from content_gates.llm.base import CompletionRequest, LLMProvider, ProviderConfigError, parse_json_payload
from content_gates.resources import read_yaml
from content_gates.telemetry import LlmErrorEvent, LlmSuccessEvent, Telemetry

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

Preset = Literal["classification", "generation", "creative", "validation"]

DEFAULT_TIMEOUT_MS = 30_000


@dataclass(frozen=True)
class PresetConfig:
    temperature: float
    max_tokens: int
    timeout_ms: int = DEFAULT_TIMEOUT_MS


DEFAULT_PRESETS: Dict[str, PresetConfig] = {
    # intent classification, deterministic
    "classification": PresetConfig(temperature=0.35, max_tokens=2000),
    # template proposals, some diversity
    "generation": PresetConfig(temperature=0.4, max_tokens=4000),
    # long-form content
    "creative": PresetConfig(temperature=0.5, max_tokens=8000),
    # approval gates, strict
    "validation": PresetConfig(temperature=0.2, max_tokens=1200),
}


def load_presets(rel_path: str = "profiles/presets.yaml") -> Dict[str, PresetConfig]:
    """Load preset tuning from YAML, falling back to the defaults per key."""
    raw = read_yaml(rel_path) or {}
    presets = dict(DEFAULT_PRESETS)
    for name, values in (raw.get("presets") or {}).items():
        base = presets.get(name, PresetConfig(temperature=0.3, max_tokens=2000))
        presets[name] = PresetConfig(
            temperature=float(values.get("temperature", base.temperature)),
            max_tokens=int(values.get("max_tokens", base.max_tokens)),
            timeout_ms=int(values.get("timeout_ms", base.timeout_ms)),
        )
    return presets


@dataclass(frozen=True)
class LLMCallSpec(Generic[T]):
    prompt: str
    output_contract: Type[T]
    preset: Preset = "classification"
    # None means "use the preset's timeout"
    timeout_ms: Optional[int] = None
    json_mode: bool = True
    request_id: Optional[str] = None


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T
    ok: ClassVar[bool] = True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Failure:
    error: StageError
    ok: ClassVar[bool] = False

    def unwrap(self) -> NoReturn:
        raise self.error


LLMOutcome = Union[Success[T], Failure]

_TIMEOUT_ERRORS = (TimeoutError, FuturesTimeout, openai.APITimeoutError, httpx.TimeoutException)


class LLMInvoker:
    """Wraps an :class:`LLMProvider` with deadline, parsing and validation."""

    def __init__(
        self,
        provider: Optional[LLMProvider],
        presets: Optional[Mapping[str, PresetConfig]] = None,
        telemetry: Optional[Telemetry] = None,
        clock: Callable[[], float] = time.monotonic,
        max_workers: int = 32,
    ) -> None:
        self.provider = provider
        self.presets = dict(presets or DEFAULT_PRESETS)
        self.telemetry = telemetry or Telemetry()
        self._clock = clock
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="llm-call")

    @property
    def model(self) -> str:
        return self.provider.model if self.provider is not None else "unconfigured"

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def invoke(self, spec: LLMCallSpec[T]) -> LLMOutcome[T]:
        started = self._clock()
        try:
            value = self._call(spec)
        except StageError as exc:
            self._report(spec, started, exc.kind)
            return Failure(exc)
        except Exception as exc:
            logger.exception("unexpected failure invoking preset %s", spec.preset)
            self._report(spec, started, ErrorKind.INTERNAL)
            return Failure(StageError(ErrorKind.INTERNAL, type(exc).__name__))
        self._report(spec, started, None)
        return Success(value)

    def _call(self, spec: LLMCallSpec[T]) -> T:
        if self.provider is None:
            raise StageError(ErrorKind.CONFIG_MISSING, "no LLM provider configured")

        preset = self.presets[spec.preset]
        timeout_ms = spec.timeout_ms or preset.timeout_ms
        request = CompletionRequest(
            prompt=spec.prompt,
            temperature=preset.temperature,
            max_tokens=preset.max_tokens,
            timeout_s=timeout_ms / 1000,
            json_mode=spec.json_mode,
            contract_name=spec.output_contract.__name__,
        )

        future = self._executor.submit(self.provider.complete, request)
        try:
            text = future.result(timeout=timeout_ms / 1000)
        except _TIMEOUT_ERRORS as exc:
            future.cancel()
            raise StageError(ErrorKind.TIMEOUT, f"no response within {timeout_ms} ms") from exc
        except ProviderConfigError as exc:
            raise StageError(ErrorKind.CONFIG_MISSING, str(exc)) from exc
        except Exception as exc:
            raise StageError(ErrorKind.UPSTREAM_FAILURE, f"provider error: {type(exc).__name__}") from exc

        if not text or not text.strip():
            raise StageError(ErrorKind.INVALID_PAYLOAD, "provider returned an empty payload")
        try:
            data = parse_json_payload(text)
        except ValueError as exc:
            raise StageError(ErrorKind.INVALID_PAYLOAD, "provider payload is not valid JSON") from exc

        try:
            return spec.output_contract.model_validate(data)
        except ValidationError as exc:
            raise StageError(
                ErrorKind.OUTPUT_CONTRACT_VIOLATION,
                f"output failed {spec.output_contract.__name__} contract ({exc.error_count()} issues)",
                issues=exc.errors(include_url=False, include_input=False),
            ) from None

    def _report(self, spec: LLMCallSpec, started: float, kind: Optional[ErrorKind]) -> None:
        latency_ms = int((self._clock() - started) * 1000)
        if kind is None:
            event = LlmSuccessEvent(preset=spec.preset, latency_ms=latency_ms, request_id=spec.request_id)
        else:
            event = LlmErrorEvent(
                preset=spec.preset,
                latency_ms=latency_ms,
                code=ERROR_TABLE[kind].code,
                request_id=spec.request_id,
            )
        self.telemetry.emit(event)
