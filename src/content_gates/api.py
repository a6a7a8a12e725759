"""FastAPI HTTP API for content-gates.

Run with: uvicorn content_gates.api:create_app --factory --reload
(or ``cg serve``).

Every response uses one envelope::

    {"ok": true, "data": ..., "requestId": "..."}
    {"ok": false, "error": "...", "code": "...", "requestId": "..."}
"""

from __future__ import annotations

import hmac
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, Optional, Type

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from content_gates import __version__
from content_gates.config import Settings
from content_gates.errors import ErrorKind, MappedError, ResponseMapper, StageError
from content_gates.llm import FixtureProvider, LLMInvoker, LLMProvider, OpenAIProvider, ProviderConfigError
from content_gates.llm.invoker import load_presets
from content_gates.models import (
    ContentGuardInput,
    ContentRequest,
    KeywordInput,
    OpportunityGuardInput,
    PublishInput,
    TemplateGuardInput,
    TemplateRequest,
)
from content_gates.ratelimit import RateLimiter, client_key
from content_gates.stages import Stages
from content_gates.storage import FileResultStore, ResultStore
from content_gates.telemetry import Telemetry, logging_sink

logger = logging.getLogger(__name__)

StageCall = Callable[[Any, Optional[str]], BaseModel]


def build_provider(settings: Settings) -> Optional[LLMProvider]:
    """Pick the provider for this process; ``None`` when no key is configured."""
    if settings.mock_llm:
        logger.info("MOCK_LLM set, answering from bundled fixtures")
        return FixtureProvider()
    try:
        return OpenAIProvider(
            api_key=settings.llm_api_key,
            model=settings.llm_model,
            base_url=settings.llm_base_url,
        )
    except ProviderConfigError as exc:
        logger.error("LLM provider unavailable: %s", exc)
        return None


def build_telemetry(settings: Settings) -> Telemetry:
    if settings.is_production and not settings.telemetry_debug:
        return Telemetry()
    return Telemetry(sink=logging_sink)


def _success(data: Any, request_id: Optional[str]) -> JSONResponse:
    body: Dict[str, Any] = {"ok": True, "data": data}
    if request_id:
        body["requestId"] = request_id
    return JSONResponse(body, headers={"x-request-id": request_id} if request_id else None)


def _failure(
    status: int,
    code: str,
    message: str,
    request_id: Optional[str],
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    body: Dict[str, Any] = {"ok": False, "error": message, "code": code}
    headers = dict(headers or {})
    if request_id:
        body["requestId"] = request_id
        headers["x-request-id"] = request_id
    return JSONResponse(body, status_code=status, headers=headers)


def _mapped_failure(mapped: MappedError, request_id: Optional[str], **kwargs: Any) -> JSONResponse:
    return _failure(mapped.status, mapped.code, mapped.message, request_id, **kwargs)


def _request_id(request: Request) -> str:
    return request.headers.get("x-request-id") or str(uuid.uuid4())


def create_app(
    settings: Optional[Settings] = None,
    *,
    invoker: Optional[LLMInvoker] = None,
    limiter: Optional[RateLimiter] = None,
    store: Optional[ResultStore] = None,
    telemetry: Optional[Telemetry] = None,
) -> FastAPI:
    """Build the app.  Collaborators default to what *settings* describes."""
    settings = settings or Settings.from_env()
    settings.validate_required()
    telemetry = telemetry or build_telemetry(settings)
    owns_invoker = invoker is None
    if invoker is None:
        invoker = LLMInvoker(build_provider(settings), presets=load_presets(), telemetry=telemetry)
    owns_limiter = limiter is None
    limiter = limiter or RateLimiter.from_settings(settings)
    store = store or FileResultStore(settings.results_dir)
    stages = Stages(invoker, settings, store)
    mapper = ResponseMapper(telemetry)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        if owns_invoker:
            invoker.close()
        if owns_limiter:
            limiter.close()

    app = FastAPI(title="content-gates", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.stages = stages
    app.state.limiter = limiter
    app.state.store = store

    @app.middleware("http")
    async def require_api_key(request: Request, call_next):
        if settings.is_production and request.url.path.startswith("/api/"):
            supplied = request.headers.get("x-api-key", "")
            if not hmac.compare_digest(supplied.encode(), settings.api_key.encode()):
                return _failure(401, "UNAUTHORIZED", "Unauthorized", request.headers.get("x-request-id"))
        return await call_next(request)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        code = {404: "NOT_FOUND", 405: "METHOD_NOT_ALLOWED"}.get(exc.status_code, f"HTTP_{exc.status_code}")
        return _failure(exc.status_code, code, str(exc.detail), request.headers.get("x-request-id"))

    def stage_route(endpoint: str, contract: Type[BaseModel], call: StageCall):
        async def handler(request: Request) -> JSONResponse:
            request_id = _request_id(request)
            key = client_key(request.headers, request.client.host if request.client else None)
            allowed, info = await run_in_threadpool(limiter.check, key)
            if not allowed:
                mapped = mapper.map_error(ErrorKind.ADMISSION_DENIED, endpoint, request_id)
                retry = str(limiter.seconds_until_reset(info))
                return _mapped_failure(mapped, request_id, headers={"Retry-After": retry})

            try:
                body = await request.json()
            except ValueError:
                error = StageError(ErrorKind.CALLER_VALIDATION, "request body is not valid JSON")
                return _mapped_failure(mapper.map_error(error, endpoint, request_id), request_id)

            try:
                payload = contract.model_validate(body)
                result = await run_in_threadpool(call, payload, request_id)
            except Exception as exc:
                return _mapped_failure(mapper.map_error(exc, endpoint, request_id), request_id)
            return _success(result.model_dump(mode="json"), request_id)

        handler.__name__ = endpoint.replace("-", "_")
        app.add_api_route(f"/api/{endpoint}", handler, methods=["POST"])

    stage_route("analyze-intent", KeywordInput, stages.analyze_intent)
    stage_route("approve-opportunity", OpportunityGuardInput, stages.approve_opportunity)
    stage_route("propose-templates", TemplateRequest, stages.propose_templates)
    stage_route("approve-template", TemplateGuardInput, stages.approve_template)
    stage_route("generate-content", ContentRequest, stages.generate_content)
    stage_route("approve-content", ContentGuardInput, stages.approve_content)
    stage_route("publish-result", PublishInput, lambda payload, _request_id: stages.publish(payload))

    @app.get("/api/results")
    def list_results(request: Request) -> JSONResponse:
        summaries = [s.model_dump() for s in store.list()]
        return _success(summaries, request.headers.get("x-request-id"))

    @app.get("/api/results/{result_id}")
    def get_result(result_id: str, request: Request) -> JSONResponse:
        request_id = request.headers.get("x-request-id")
        bundle = store.get(result_id)
        if bundle is None:
            return _failure(404, "NOT_FOUND", f"Result not found: {result_id}", request_id)
        return _success(bundle.model_dump(mode="json"), request_id)

    @app.get("/health")
    def health() -> JSONResponse:
        return _success(
            {
                "status": "ok",
                "version": __version__,
                "model": invoker.model,
                "rateLimiter": limiter.backend.name,
            },
            None,
        )

    return app
