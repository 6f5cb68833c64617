"""tern.core — Entity model and stack builder."""

from tern.core.values import deep_merge, validate_properties
from tern.core.entities import (
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
    StartingPosition,
    StepOutput,
    lambda_name,
)
from tern.core.builder import StackBuilder

__all__ = [
    "deep_merge",
    "validate_properties",
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
    "StartingPosition",
    "StepOutput",
    "lambda_name",
    "StackBuilder",
]
