"""
tern — Pythonic serverless stack DSL.

Declare functions, their triggers and custom provisioning steps in
Python; get a dependency-ordered template, a provisioning engine for the
custom steps, and runtime discovery of the resulting metadata.
"""

from tern.core import (
    CloudWatchEventsPermission,
    CustomProvisioningStep,
    EventSourceBinding,
    EventSourceMapping,
    FunctionDescriptor,
    FunctionOptions,
    Permission,
    Ref,
    S3Permission,
    SNSPermission,
    StackBuilder,
    StartingPosition,
    StepOutput,
    lambda_name,
)
from tern.errors import (
    CyclicDependencyError,
    DuplicateNameError,
    HandlerError,
    HandlerTimeoutError,
    PropertyError,
    ResourceNotFoundError,
    TernError,
    UnresolvedReferenceError,
)
from tern.graph import Graph, ResourceRecord, build
from tern.template import Template, synthesize
from tern.provision import (
    LocalOrchestrator,
    ProvisioningEngine,
    ProvisionRequest,
    ProvisionResponse,
    StepState,
    TransitionKind,
)
from tern.discovery import DiscoverySnapshot, capture_snapshot, discover, resolve

__version__ = "0.1.0"

__all__ = [
    # entities
    "CloudWatchEventsPermission",
    "CustomProvisioningStep",
    "EventSourceBinding",
    "EventSourceMapping",
    "FunctionDescriptor",
    "FunctionOptions",
    "Permission",
    "Ref",
    "S3Permission",
    "SNSPermission",
    "StackBuilder",
    "StartingPosition",
    "StepOutput",
    "lambda_name",
    # errors
    "CyclicDependencyError",
    "DuplicateNameError",
    "HandlerError",
    "HandlerTimeoutError",
    "PropertyError",
    "ResourceNotFoundError",
    "TernError",
    "UnresolvedReferenceError",
    # graph + template
    "Graph",
    "ResourceRecord",
    "build",
    "Template",
    "synthesize",
    # provisioning
    "LocalOrchestrator",
    "ProvisioningEngine",
    "ProvisionRequest",
    "ProvisionResponse",
    "StepState",
    "TransitionKind",
    # discovery
    "DiscoverySnapshot",
    "capture_snapshot",
    "discover",
    "resolve",
]
