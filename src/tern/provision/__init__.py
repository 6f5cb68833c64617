"""tern.provision — Custom provisioning lifecycle."""

from tern.provision.protocol import (
    ProvisionRequest,
    ProvisionResponse,
    StepState,
    TransitionKind,
)
from tern.provision.store import MetadataStore
from tern.provision.engine import ProvisioningEngine
from tern.provision.orchestrator import LocalOrchestrator, TransitionResult

__all__ = [
    "ProvisionRequest",
    "ProvisionResponse",
    "StepState",
    "TransitionKind",
    "MetadataStore",
    "ProvisioningEngine",
    "LocalOrchestrator",
    "TransitionResult",
]
