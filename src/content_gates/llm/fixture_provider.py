"""Offline provider that answers every call with a canned fixture.

Selected with ``MOCK_LLM=1``.  Fixtures live in ``fixtures/<ContractName>.json``
and are returned verbatim, so the full gate pipeline can be walked without a
provider key.
"""

from __future__ import annotations

from content_gates.llm.base import CompletionRequest, LLMProvider
from content_gates.resources import read_text


class FixtureProvider(LLMProvider):
    model = "mock"

    def complete(self, request: CompletionRequest) -> str:
        if not request.contract_name:
            raise LookupError("fixture provider needs a contract name")
        return read_text(f"fixtures/{request.contract_name}.json")
