"""
tern.core.entities — Declared stack entities.

What the developer writes:

  FunctionDescriptor   — a deployable function
  Permission           — push authorization (S3, SNS, CloudWatch Events...)
  EventSourceBinding   — pull subscription (streams, queues)
  CustomProvisioningStep — logic run by the orchestrator during
                           Create/Update/Delete

Cross-resource references use Ref("declared-name"); a provisioning
result is referenced with StepOutput("step-name", "key").
"""

from __future__ import annotations

import enum
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, ClassVar

from tern.core.values import Placeholder, validate_properties, validate_value


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# REFERENCES
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
@dataclass(frozen=True)
class Ref(Placeholder):
    """Reference to another declared resource by name.

    ``attribute=None`` means the resource's primary reference (its name
    or physical ID); otherwise an attribute such as ``Arn``.
    """
    name: str
    attribute: str | None = "Arn"


@dataclass(frozen=True)
class StepOutput(Placeholder):
    """One key of a custom provisioning step's result.

    ``step`` is the step's declared name or its logical ID.
    """
    step: str
    key: str


def _check_source(value: Any, what: str) -> None:
    if isinstance(value, Ref):
        return
    if not isinstance(value, str) or not value:
        raise ValueError(f"{what} must be a non-empty ARN string or a Ref, got {value!r}")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# PERMISSIONS (push)
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
@dataclass
class Permission:
    """Grant that lets an event source invoke a function."""

    kind: ClassVar[str] = "generic"

    source_arn: str | Ref
    principal: str = ""
    source_account: str | None = None

    def __post_init__(self) -> None:
        _check_source(self.source_arn, f"{type(self).__name__}.source_arn")
        if not self.principal:
            raise ValueError(f"{type(self).__name__}.principal is required")

    def filters(self) -> dict[str, Any]:
        """Source-specific filter attributes. Subclasses extend."""
        return {}


@dataclass
class S3Permission(Permission):
    """Object-storage notifications.

    Event filters: http://docs.aws.amazon.com/AmazonS3/latest/dev/NotificationHowTo.html
    """

    kind: ClassVar[str] = "s3"

    principal: str = "s3.amazonaws.com"
    events: list[str] = field(default_factory=lambda: ["s3:ObjectCreated:*"])
    prefix: str | None = None
    suffix: str | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        if not self.events:
            raise ValueError("S3Permission.events must not be empty")
        for ev in self.events:
            if not isinstance(ev, str) or not ev.startswith("s3:"):
                raise ValueError(f"Invalid S3 event filter: {ev!r}")

    def filters(self) -> dict[str, Any]:
        result: dict[str, Any] = {"Events": list(self.events)}
        key_filter = {}
        if self.prefix:
            key_filter["Prefix"] = self.prefix
        if self.suffix:
            key_filter["Suffix"] = self.suffix
        if key_filter:
            result["Key"] = key_filter
        return result


@dataclass
class SNSPermission(Permission):
    """Pub/sub topic subscription."""

    kind: ClassVar[str] = "sns"

    principal: str = "sns.amazonaws.com"
    filter_policy: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.filter_policy is not None:
            validate_value(self.filter_policy, "SNSPermission.filter_policy")

    def filters(self) -> dict[str, Any]:
        if self.filter_policy:
            return {"FilterPolicy": dict(self.filter_policy)}
        return {}


@dataclass
class CloudWatchEventsPermission(Permission):
    """Scheduled or pattern-matched events."""

    kind: ClassVar[str] = "events"

    principal: str = "events.amazonaws.com"
    schedule_expression: str | None = None
    event_pattern: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.schedule_expression and self.event_pattern:
            raise ValueError(
                "CloudWatchEventsPermission takes schedule_expression "
                "or event_pattern, not both"
            )
        if self.event_pattern is not None:
            validate_value(self.event_pattern, "CloudWatchEventsPermission.event_pattern")

    def filters(self) -> dict[str, Any]:
        if self.schedule_expression:
            return {"ScheduleExpression": self.schedule_expression}
        if self.event_pattern:
            return {"EventPattern": dict(self.event_pattern)}
        return {}


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# EVENT SOURCE BINDINGS (pull)
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
class StartingPosition(str, enum.Enum):
    TRIM_HORIZON = "TRIM_HORIZON"
    LATEST = "LATEST"
    AT_TIMESTAMP = "AT_TIMESTAMP"


MAX_BATCH_SIZE = 10000


@dataclass
class EventSourceBinding:
    """Pull-based trigger (stream or queue polling)."""

    kind: ClassVar[str] = "event_source"

    event_source_arn: str | Ref
    starting_position: StartingPosition | str = StartingPosition.TRIM_HORIZON
    batch_size: int = 10
    enabled: bool = True

    def __post_init__(self) -> None:
        _check_source(self.event_source_arn, "EventSourceBinding.event_source_arn")
        try:
            self.starting_position = StartingPosition(self.starting_position)
        except ValueError:
            raise ValueError(
                f"Invalid starting position {self.starting_position!r}. "
                f"Expected one of: {[p.value for p in StartingPosition]}"
            ) from None
        if (
            isinstance(self.batch_size, bool)
            or not isinstance(self.batch_size, int)
            or not 0 < self.batch_size <= MAX_BATCH_SIZE
        ):
            raise ValueError(
                f"batch_size must be an integer in 1..{MAX_BATCH_SIZE}, "
                f"got {self.batch_size!r}"
            )


# Same shape, name used by the stream-mapping API.
EventSourceMapping = EventSourceBinding


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# FUNCTIONS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
@dataclass
class FunctionOptions:
    """Runtime settings for a function."""
    timeout: int = 3
    memory_size: int = 128
    runtime: str = "python3.12"
    environment: dict[str, str] = field(default_factory=dict)
    description: str = ""

    def __post_init__(self) -> None:
        if not 1 <= self.timeout <= 900:
            raise ValueError(f"timeout must be in 1..900 seconds, got {self.timeout}")
        if not 128 <= self.memory_size <= 10240:
            raise ValueError(f"memory_size must be in 128..10240 MB, got {self.memory_size}")
        for key, value in self.environment.items():
            if not isinstance(key, str) or not isinstance(value, str):
                raise ValueError(f"environment entries must be str -> str, got {key!r}: {value!r}")


Decorator = Callable[..., Any]


@dataclass
class FunctionDescriptor:
    """A named, deployable unit of logic."""
    name: str
    handler: Callable[..., Any]
    role: str | Ref
    permissions: list[Permission] = field(default_factory=list)
    event_sources: list[EventSourceBinding] = field(default_factory=list)
    depends_on_step: str | None = None
    decorator: Decorator | None = None
    options: FunctionOptions = field(default_factory=FunctionOptions)
    code: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("FunctionDescriptor.name is required")
        if not callable(self.handler):
            raise TypeError(f"Handler for '{self.name}' is not callable")
        _check_source(self.role, f"FunctionDescriptor('{self.name}').role")
        self.code = validate_properties(self.code, f"{self.name}.code")

    @property
    def handler_path(self) -> str:
        return callable_path(self.handler)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# CUSTOM PROVISIONING STEPS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
@dataclass
class CustomProvisioningStep:
    """Logic the orchestrator runs during stack lifecycle transitions.

    The handler receives a ProvisionRequest and returns a mapping of
    outputs (or None for no outputs). ``timeout`` overrides the engine's
    default budget for this step.
    """
    name: str
    handler: Callable[..., Any]
    role: str | Ref
    properties: dict[str, Any] = field(default_factory=dict)
    timeout: float | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("CustomProvisioningStep.name is required")
        if not callable(self.handler):
            raise TypeError(f"Handler for step '{self.name}' is not callable")
        _check_source(self.role, f"CustomProvisioningStep('{self.name}').role")
        self.properties = validate_properties(self.properties, f"{self.name}.properties")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError(f"Step '{self.name}' timeout must be positive")

    @property
    def handler_path(self) -> str:
        return callable_path(self.handler)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# HELPERS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
_NON_ALNUM = re.compile(r"[^A-Za-z0-9]+")


def callable_path(fn: Callable[..., Any]) -> str:
    """Importable dotted path of a callable (module.qualname)."""
    module = getattr(fn, "__module__", None) or "__main__"
    qualname = getattr(fn, "__qualname__", None) or type(fn).__name__
    return f"{module}.{qualname}"


def lambda_name(fn: Callable[..., Any]) -> str:
    """Stable declared name for a Python callable.

    >>> def handler(event, context): ...
    >>> lambda_name(handler)
    'tern_core_entities_handler'
    """
    return _NON_ALNUM.sub("_", callable_path(fn)).strip("_")
