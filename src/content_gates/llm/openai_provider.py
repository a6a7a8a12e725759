"""OpenAI-compatible LLM provider (OpenAI, Groq and other compatible APIs)."""

from __future__ import annotations

from typing import Optional

from openai import OpenAI

from content_gates.llm.base import CompletionRequest, LLMProvider, ProviderConfigError


class OpenAIProvider(LLMProvider):
    """LLM provider backed by the chat completions API.

    SDK-level retries are disabled: every stage makes exactly one attempt.
    """

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-4o-mini",
        base_url: Optional[str] = None,
    ) -> None:
        if not api_key:
            raise ProviderConfigError(
                "LLM_API_KEY environment variable is not set. "
                "Export it before starting the server:\n"
                "  export LLM_API_KEY='...'"
            )
        self._client = OpenAI(api_key=api_key, base_url=base_url, max_retries=0)
        self.model = model

    def complete(self, request: CompletionRequest) -> str:
        extra = {"response_format": {"type": "json_object"}} if request.json_mode else {}
        response = self._client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": request.prompt}],
            temperature=request.temperature,
            top_p=request.top_p,
            max_tokens=request.max_tokens,
            timeout=request.timeout_s,
            **extra,
        )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""
