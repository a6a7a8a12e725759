"""HTTP client for the stage endpoints.

Unwraps the response envelope and raises :class:`StageCallError` carrying the
server's stable error code, so callers never inspect status codes.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, TypeVar

import httpx
from pydantic import TypeAdapter, ValidationError

from content_gates.models import (
    ContentVerdict,
    DraftPayload,
    IntentAnalysis,
    Opportunity,
    OpportunityVerdict,
    PublishReceipt,
    ResultBundle,
    ResultSummary,
    RunInput,
    TemplateProposal,
    TemplateStructure,
    TemplateSummary,
    TemplateVerdict,
)

logger = logging.getLogger(__name__)

# the server gives the provider 30s; leave room for the rest of the request
DEFAULT_TIMEOUT_S = 35.0

_draft_adapter: TypeAdapter[DraftPayload] = TypeAdapter(DraftPayload)
_results_adapter: TypeAdapter[List[ResultSummary]] = TypeAdapter(List[ResultSummary])

T = TypeVar("T")


class StageCallError(Exception):
    def __init__(
        self,
        code: str,
        message: str = "",
        status: Optional[int] = None,
        request_id: Optional[str] = None,
    ) -> None:
        super().__init__(f"{code}: {message}" if message else code)
        self.code = code
        self.message = message
        self.status = status
        self.request_id = request_id


def _run_fields(run: RunInput) -> Dict[str, Any]:
    return run.model_dump(mode="json", include={"keyword", "location", "business_type"}, exclude_none=True)


class HttpStageClient:
    def __init__(
        self,
        base_url: str = "http://127.0.0.1:8000",
        api_key: Optional[str] = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.timeout_s = timeout_s
        self._client = client or httpx.Client(base_url=base_url)
        self._headers = {"x-api-key": api_key} if api_key else {}

    def close(self) -> None:
        self._client.close()

    def _unwrap(self, response: httpx.Response, parse: Callable[[Any], T]) -> T:
        try:
            body = response.json()
        except ValueError as exc:
            raise StageCallError("INVALID_RESPONSE", "server did not return JSON", response.status_code) from exc
        if not isinstance(body, dict):
            raise StageCallError("INVALID_RESPONSE", "unexpected response shape", response.status_code)
        if not body.get("ok"):
            raise StageCallError(
                body.get("code") or "UNKNOWN_ERROR",
                body.get("error") or "",
                response.status_code,
                body.get("requestId"),
            )
        try:
            return parse(body.get("data"))
        except ValidationError as exc:
            # an ok envelope whose data does not fit the contract, e.g. a version skew
            raise StageCallError(
                "INVALID_RESPONSE", "unexpected response shape", response.status_code, body.get("requestId")
            ) from exc

    def _request(
        self, method: str, path: str, parse: Callable[[Any], T], payload: Optional[Dict[str, Any]] = None
    ) -> T:
        try:
            response = self._client.request(
                method, path, json=payload, headers=self._headers, timeout=self.timeout_s
            )
        except httpx.TimeoutException as exc:
            raise StageCallError("CLIENT_TIMEOUT", f"no response within {self.timeout_s:g}s") from exc
        except httpx.HTTPError as exc:
            raise StageCallError("NETWORK_ERROR", str(exc)) from exc
        return self._unwrap(response, parse)

    def _post(self, endpoint: str, payload: Dict[str, Any], parse: Callable[[Any], T]) -> T:
        logger.debug("POST /api/%s", endpoint)
        return self._request("POST", f"/api/{endpoint}", parse, payload)

    # ── Stages ───────────────────────────────────────────────────────────

    def analyze_intent(self, run: RunInput) -> IntentAnalysis:
        return self._post("analyze-intent", _run_fields(run), IntentAnalysis.model_validate)

    def approve_opportunity(self, run: RunInput, analysis: IntentAnalysis, index: int) -> OpportunityVerdict:
        payload = {
            **_run_fields(run),
            "intent_analysis": analysis.model_dump(mode="json"),
            "selected_opportunity_index": index,
            "selected_opportunity": analysis.opportunities[index].model_dump(mode="json"),
        }
        return self._post("approve-opportunity", payload, OpportunityVerdict.model_validate)

    def propose_templates(self, run: RunInput, opportunity: Opportunity, index: int) -> TemplateProposal:
        payload = {
            **_run_fields(run),
            "selected_opportunity": opportunity.model_dump(mode="json"),
            "selected_opportunity_index": index,
        }
        return self._post("propose-templates", payload, TemplateProposal.model_validate)

    def approve_template(
        self, run: RunInput, opportunity: Opportunity, template: TemplateStructure, index: int
    ) -> TemplateVerdict:
        payload = {
            **_run_fields(run),
            "opportunity": opportunity.model_dump(mode="json"),
            "selected_template_index": index,
            "template": TemplateSummary.of(template).model_dump(mode="json"),
        }
        return self._post("approve-template", payload, TemplateVerdict.model_validate)

    def generate_content(
        self,
        run: RunInput,
        template: TemplateStructure,
        index: int,
        improvement_hint: Optional[str] = None,
    ) -> DraftPayload:
        payload = {
            **_run_fields(run),
            "selected_template": template.model_dump(mode="json"),
            "selected_template_index": index,
        }
        if run.entity_profile is not None:
            payload["entity_profile"] = run.entity_profile.model_dump(mode="json")
        if improvement_hint:
            payload["improvement_hint"] = improvement_hint[:1000]
        return self._post("generate-content", payload, _draft_adapter.validate_python)

    def approve_content(
        self, run: RunInput, opportunity: Opportunity, template: TemplateStructure, draft: DraftPayload
    ) -> ContentVerdict:
        payload = {
            **_run_fields(run),
            "opportunity": opportunity.model_dump(mode="json"),
            "template": template.model_dump(mode="json"),
            "content": draft.model_dump(mode="json"),
        }
        return self._post("approve-content", payload, ContentVerdict.model_validate)

    def publish(
        self,
        run: RunInput,
        analysis: IntentAnalysis,
        opportunity_index: int,
        proposal: TemplateProposal,
        template_index: int,
        draft: DraftPayload,
        verdict: ContentVerdict,
    ) -> PublishReceipt:
        payload = {
            **_run_fields(run),
            "intent_analysis": analysis.model_dump(mode="json"),
            "selected_opportunity_index": opportunity_index,
            "template_proposal": proposal.model_dump(mode="json"),
            "selected_template_index": template_index,
            "content_draft": draft.model_dump(mode="json"),
            "guard_content_result": verdict.model_dump(mode="json"),
        }
        if run.entity_profile is not None:
            payload["entity_profile"] = run.entity_profile.model_dump(mode="json")
        return self._post("publish-result", payload, PublishReceipt.model_validate)

    # ── Results ──────────────────────────────────────────────────────────

    def list_results(self) -> List[ResultSummary]:
        return self._request("GET", "/api/results", _results_adapter.validate_python)

    def get_result(self, result_id: str) -> ResultBundle:
        return self._request("GET", f"/api/results/{result_id}", ResultBundle.model_validate)
