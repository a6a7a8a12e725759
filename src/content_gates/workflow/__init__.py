"""Client-side gate workflow: states, stage client and controller."""

from content_gates.workflow.client import HttpStageClient, StageCallError
from content_gates.workflow.controller import WorkflowController
from content_gates.workflow.state import (
    GateAState,
    GateBState,
    InputState,
    InvalidTransition,
    ResultState,
    WorkflowState,
    transition,
)

__all__ = [
    "GateAState",
    "GateBState",
    "HttpStageClient",
    "InputState",
    "InvalidTransition",
    "ResultState",
    "StageCallError",
    "WorkflowController",
    "WorkflowState",
    "transition",
]
