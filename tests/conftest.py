"""Pytest configuration and fixtures."""

from __future__ import annotations

import threading
from typing import Any, Callable, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from content_gates.api import create_app
from content_gates.config import Settings
from content_gates.llm import CompletionRequest, LLMInvoker, LLMProvider
from content_gates.models import (
    ContentVerdict,
    IntentAnalysis,
    ResultBundle,
    TemplateProposal,
)
from content_gates.ratelimit import RateLimiter
from content_gates.resources import read_json, read_text
from content_gates.storage import FileResultStore
from content_gates.telemetry import Telemetry


def fixture_data(contract_name: str) -> Dict[str, Any]:
    """Parsed copy of the bundled fixture for *contract_name*."""
    return read_json(f"fixtures/{contract_name}.json")


class ScriptedProvider(LLMProvider):
    """Answers from the bundled fixtures unless a reply is scripted.

    ``replies`` maps a contract name to a string, an exception, a callable
    taking the request, or a list of those consumed in order (the last one
    repeats).
    """

    model = "scripted"

    def __init__(self, replies: Optional[Dict[str, Any]] = None) -> None:
        self.replies = {k: list(v) if isinstance(v, list) else v for k, v in (replies or {}).items()}
        self.requests: List[CompletionRequest] = []
        self._lock = threading.Lock()

    def calls(self, contract_name: str) -> int:
        return sum(1 for r in self.requests if r.contract_name == contract_name)

    def prompts(self, contract_name: str) -> List[str]:
        return [r.prompt for r in self.requests if r.contract_name == contract_name]

    def complete(self, request: CompletionRequest) -> str:
        with self._lock:
            self.requests.append(request)
            reply = self.replies.get(request.contract_name)
            if isinstance(reply, list):
                reply = reply.pop(0) if len(reply) > 1 else reply[0]
        if reply is None:
            return read_text(f"fixtures/{request.contract_name}.json")
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            return reply(request)
        return reply


class BlockingProvider(LLMProvider):
    """Never answers until released."""

    model = "blocking"

    def __init__(self) -> None:
        self.release = threading.Event()

    def complete(self, request: CompletionRequest) -> str:
        self.release.wait(5)
        return "{}"


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def events() -> List[Any]:
    return []


@pytest.fixture
def telemetry(events) -> Telemetry:
    return Telemetry(sink=events.append)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(environment="test", results_dir=str(tmp_path / "results"), rate_limit_max=100)


@pytest.fixture
def store(settings) -> FileResultStore:
    return FileResultStore(settings.results_dir)


@pytest.fixture
def make_client(settings, store) -> Callable[..., TestClient]:
    """Build a TestClient around an app with injected collaborators."""

    def _make(
        provider: Optional[LLMProvider] = None,
        *,
        invoker: Optional[LLMInvoker] = None,
        limiter: Optional[RateLimiter] = None,
        telemetry: Optional[Telemetry] = None,
        app_settings: Optional[Settings] = None,
    ) -> TestClient:
        if invoker is None:
            invoker = LLMInvoker(provider or ScriptedProvider(), telemetry=telemetry)
        app = create_app(
            app_settings or settings,
            invoker=invoker,
            limiter=limiter,
            store=store,
            telemetry=telemetry,
        )
        return TestClient(app)

    return _make


def make_bundle(
    result_id: str = "crm-guide-a1b2c3",
    published_at: str = "2024-05-01T12:00:00Z",
    keyword: str = "crm",
) -> ResultBundle:
    return ResultBundle(
        id=result_id,
        keyword=keyword,
        intent_analysis=IntentAnalysis.model_validate(fixture_data("IntentAnalysis")),
        selected_opportunity_index=0,
        template_proposal=TemplateProposal.model_validate(fixture_data("TemplateProposal")),
        selected_template_index=0,
        content_draft=fixture_data("ContentDraft"),
        guard_content_result=ContentVerdict.model_validate(fixture_data("ContentVerdict")),
        published_at=published_at,
    )
