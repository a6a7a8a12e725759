"""LLM provider abstraction and invocation core."""

from content_gates.llm.base import CompletionRequest, LLMProvider, ProviderConfigError
from content_gates.llm.fixture_provider import FixtureProvider
from content_gates.llm.invoker import Failure, LLMCallSpec, LLMInvoker, LLMOutcome, Preset, Success
from content_gates.llm.openai_provider import OpenAIProvider

__all__ = [
    "CompletionRequest",
    "Failure",
    "FixtureProvider",
    "LLMCallSpec",
    "LLMInvoker",
    "LLMOutcome",
    "LLMProvider",
    "OpenAIProvider",
    "Preset",
    "ProviderConfigError",
    "Success",
]
