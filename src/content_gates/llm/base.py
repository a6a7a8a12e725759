"""Base LLM provider interface and payload helpers."""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)```", re.DOTALL)


def _strip_code_fences(text: str) -> str:
    """Remove markdown code fences wrapping JSON."""
    m = _FENCE_RE.search(text)
    if m:
        return m.group(1).strip()
    return text.strip()


def parse_json_payload(text: str) -> Any:
    """Parse a model reply as JSON, tolerating a surrounding code fence.

    Raises ``json.JSONDecodeError`` (a ``ValueError``) on anything else.
    """
    return json.loads(_strip_code_fences(text))


@dataclass(frozen=True)
class CompletionRequest:
    """One chat completion as the provider sees it."""

    prompt: str
    temperature: float
    max_tokens: int
    timeout_s: float
    json_mode: bool = True
    top_p: float = 0.9
    # Name of the output contract; fixture providers key canned replies on it.
    contract_name: str = ""


class ProviderConfigError(EnvironmentError):
    """Raised when a provider cannot be built because a secret is missing."""


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    model: str = "unknown"

    @abstractmethod
    def complete(self, request: CompletionRequest) -> str:
        """Send the prompt and return the assistant response text."""
        ...
