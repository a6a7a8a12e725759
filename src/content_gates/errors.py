"""Error taxonomy shared by the LLM invoker and the HTTP edge.

Every fault raised inside a stage is a :class:`StageError` carrying one
:class:`ErrorKind`, or a pydantic ``ValidationError`` raised while parsing
caller input.  :class:`ResponseMapper` turns either into the status/code pair
the API returns, so stage code never picks a status code itself.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from pydantic import ValidationError

from content_gates.telemetry import ApiErrorEvent, Telemetry

logger = logging.getLogger(__name__)


class ErrorKind(enum.Enum):
    CONFIG_MISSING = "config_missing"
    TIMEOUT = "timeout"
    INVALID_PAYLOAD = "invalid_payload"
    OUTPUT_CONTRACT_VIOLATION = "output_contract_violation"
    UPSTREAM_FAILURE = "upstream_failure"
    CALLER_VALIDATION = "caller_validation"
    ADMISSION_DENIED = "admission_denied"
    INTERNAL = "internal"


class StageError(Exception):
    """A classified failure.

    ``issues`` holds the violated fields of an output-contract failure.  It is
    deliberately left out of ``str()``, ``repr()`` and :meth:`to_dict` so that
    logging the error whole never dumps generated content.
    """

    def __init__(self, kind: ErrorKind, message: str = "", issues: Sequence[Dict[str, Any]] = ()) -> None:
        super().__init__(message or kind.value)
        self.kind = kind
        self.message = message or kind.value
        self._issues = tuple(issues)

    @property
    def issues(self) -> tuple:
        return self._issues

    def __repr__(self) -> str:
        return f"StageError({self.kind.name}, {self.message!r})"

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind.value, "message": self.message}


@dataclass(frozen=True)
class MappedError:
    status: int
    code: str
    message: str


# One row per ErrorKind; tests assert the table covers the whole enum.
ERROR_TABLE: Dict[ErrorKind, MappedError] = {
    ErrorKind.CALLER_VALIDATION: MappedError(400, "VALIDATION_ERROR", "Validation failed"),
    ErrorKind.ADMISSION_DENIED: MappedError(429, "RATE_LIMITED", "Too many requests"),
    ErrorKind.TIMEOUT: MappedError(504, "TIMEOUT", "Request timeout"),
    ErrorKind.INVALID_PAYLOAD: MappedError(502, "LLM_INVALID_JSON", "LLM returned invalid JSON"),
    ErrorKind.OUTPUT_CONTRACT_VIOLATION: MappedError(
        502, "LLM_OUTPUT_VALIDATION", "LLM output validation failed"
    ),
    ErrorKind.UPSTREAM_FAILURE: MappedError(502, "UPSTREAM_ERROR", "Upstream error"),
    ErrorKind.CONFIG_MISSING: MappedError(500, "MISSING_PROVIDER_KEY", "Server misconfigured"),
    ErrorKind.INTERNAL: MappedError(500, "INTERNAL_ERROR", "Internal error"),
}

_PROVIDER_FAULTS = {
    ErrorKind.TIMEOUT,
    ErrorKind.INVALID_PAYLOAD,
    ErrorKind.OUTPUT_CONTRACT_VIOLATION,
    ErrorKind.UPSTREAM_FAILURE,
}


def classify(error: BaseException) -> ErrorKind:
    """Return the kind of any exception that reached the stage boundary."""
    if isinstance(error, StageError):
        return error.kind
    if isinstance(error, ValidationError):
        return ErrorKind.CALLER_VALIDATION
    return ErrorKind.INTERNAL


class ResponseMapper:
    """Maps classified faults to a protocol-level error and reports each one."""

    def __init__(self, telemetry: Optional[Telemetry] = None) -> None:
        self.telemetry = telemetry or Telemetry()

    def map_error(
        self,
        error: BaseException | ErrorKind,
        endpoint: str,
        request_id: Optional[str] = None,
    ) -> MappedError:
        kind = error if isinstance(error, ErrorKind) else classify(error)
        mapped = ERROR_TABLE[kind]

        if kind in (ErrorKind.CALLER_VALIDATION, ErrorKind.ADMISSION_DENIED):
            logger.info("%s %s request_id=%s", endpoint, mapped.code, request_id)
        elif kind in _PROVIDER_FAULTS:
            logger.warning("%s %s request_id=%s: %r", endpoint, mapped.code, request_id, error)
        else:
            logger.error(
                "%s %s request_id=%s",
                endpoint,
                mapped.code,
                request_id,
                exc_info=error if isinstance(error, BaseException) else None,
            )

        self.telemetry.emit(ApiErrorEvent(code=mapped.code, endpoint=endpoint, request_id=request_id))
        return mapped
