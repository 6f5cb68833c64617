"""
tern.provision.protocol — Custom provisioning request/response protocol.

The orchestrator sends one ProvisionRequest per step per stack
transition and expects exactly one terminal ProvisionResponse back,
keyed by the request's correlation token.

    Pending → Invoked → Succeeded | Failed | TimedOut
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any


class TransitionKind(str, enum.Enum):
    CREATE = "Create"
    UPDATE = "Update"
    DELETE = "Delete"


class StepState(str, enum.Enum):
    PENDING = "Pending"
    INVOKED = "Invoked"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"

    @property
    def is_terminal(self) -> bool:
        return self in (StepState.SUCCEEDED, StepState.FAILED, StepState.TIMED_OUT)


@dataclass(frozen=True)
class ProvisionRequest:
    """Lifecycle transition delivered by the orchestrator for one step."""
    kind: TransitionKind
    stack_id: str
    logical_id: str
    token: str
    properties: dict[str, Any] = field(default_factory=dict)
    old_properties: dict[str, Any] | None = None
    physical_resource_id: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", TransitionKind(self.kind))
        if not self.token:
            raise ValueError("ProvisionRequest.token is required")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProvisionRequest:
        """Parse an orchestrator payload (RequestType/StackId/... keys)."""
        return cls(
            kind=TransitionKind(data["RequestType"]),
            stack_id=data["StackId"],
            logical_id=data["LogicalResourceId"],
            token=data["RequestId"],
            properties=dict(data.get("ResourceProperties") or {}),
            old_properties=data.get("OldResourceProperties"),
            physical_resource_id=data.get("PhysicalResourceId"),
        )


@dataclass(frozen=True)
class ProvisionResponse:
    """Terminal result reported back to the orchestrator."""
    token: str
    logical_id: str
    state: StepState
    data: dict[str, Any] = field(default_factory=dict)
    reason: str = ""
    physical_resource_id: str | None = None

    @property
    def status(self) -> str:
        return "SUCCESS" if self.state is StepState.SUCCEEDED else "FAILED"

    @property
    def succeeded(self) -> bool:
        return self.state is StepState.SUCCEEDED

    def to_dict(self) -> dict[str, Any]:
        """Orchestrator result-reporting payload."""
        doc: dict[str, Any] = {
            "Status": self.status,
            "RequestId": self.token,
            "LogicalResourceId": self.logical_id,
            "PhysicalResourceId": self.physical_resource_id or self.logical_id,
        }
        if self.reason:
            doc["Reason"] = self.reason
        if self.data:
            doc["Data"] = dict(self.data)
        return doc
