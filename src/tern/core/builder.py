"""
tern.core.builder — Stack builder.

Collects a stack's declarations in order. One builder per stack,
passed around explicitly:

    with StackBuilder("orders") as stack:
        cfg = stack.step("cfgStep", handler=seed_config, role=ROLE)
        fn = stack.function(process_order, role=ROLE,
                            permissions=[SNSPermission(source_arn=TOPIC)])

    template = stack.synthesize()
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Mapping
from typing import Any

from tern.core.entities import (
    CustomProvisioningStep,
    Decorator,
    EventSourceBinding,
    FunctionDescriptor,
    FunctionOptions,
    Permission,
    Ref,
    lambda_name,
)
from tern.core.values import deep_merge


DEFAULT_STACK_NAME = "stack"


class StackBuilder:
    """Accumulates functions and custom provisioning steps for one stack."""

    def __init__(self, name: str = DEFAULT_STACK_NAME):
        if not name:
            raise ValueError("Stack name is required")
        self.name = name
        self._functions: list[FunctionDescriptor] = []
        self._steps: list[CustomProvisioningStep] = []

    def __enter__(self) -> StackBuilder:
        return self

    def __exit__(self, *exc: Any) -> bool:
        return False

    @property
    def functions(self) -> list[FunctionDescriptor]:
        return list(self._functions)

    @property
    def steps(self) -> list[CustomProvisioningStep]:
        return list(self._steps)

    def add_function(self, descriptor: FunctionDescriptor) -> FunctionDescriptor:
        if not isinstance(descriptor, FunctionDescriptor):
            raise TypeError(f"Expected FunctionDescriptor, got {type(descriptor).__name__}")
        self._functions.append(descriptor)
        return descriptor

    def function(
        self,
        handler: Callable[..., Any],
        role: str | Ref,
        name: str | None = None,
        permissions: list[Permission] | None = None,
        event_sources: list[EventSourceBinding] | None = None,
        depends_on_step: str | None = None,
        decorator: Decorator | None = None,
        options: FunctionOptions | None = None,
        code: dict[str, Any] | None = None,
    ) -> FunctionDescriptor:
        """Declare a function. The name defaults to lambda_name(handler)."""
        return self.add_function(FunctionDescriptor(
            name=name or lambda_name(handler),
            handler=handler,
            role=role,
            permissions=list(permissions or []),
            event_sources=list(event_sources or []),
            depends_on_step=depends_on_step,
            decorator=decorator,
            options=options or FunctionOptions(),
            code=dict(code or {}),
        ))

    def add_step(self, step: CustomProvisioningStep) -> CustomProvisioningStep:
        if not isinstance(step, CustomProvisioningStep):
            raise TypeError(f"Expected CustomProvisioningStep, got {type(step).__name__}")
        self._steps.append(step)
        return step

    def step(
        self,
        name: str,
        handler: Callable[..., Any],
        role: str | Ref,
        properties: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> CustomProvisioningStep:
        """Declare a custom provisioning step."""
        return self.add_step(CustomProvisioningStep(
            name=name,
            handler=handler,
            role=role,
            properties=dict(properties or {}),
            timeout=timeout,
        ))

    def override(self, values: Mapping[str, Any]) -> None:
        """Deep-merge step property overrides, keyed by step name.

        Fed by ``--set cfgStep.Mode=reseed`` on the command line.
        """
        for name, props in values.items():
            index = self._step_index(name)
            if not isinstance(props, Mapping):
                raise ValueError(f"Override for step '{name}' must be step.key=value")
            step = self._steps[index]
            self._steps[index] = dataclasses.replace(
                step, properties=deep_merge(step.properties, props),
            )

    def _step_index(self, name: str) -> int:
        for i, step in enumerate(self._steps):
            if step.name == name:
                return i
        raise ValueError(
            f"No step named '{name}'. Declared: {[s.name for s in self._steps]}"
        )

    def build(self):
        """Build the frozen resource graph. See tern.graph.build.build()."""
        from tern.graph.build import build
        return build(self._functions, self._steps, stack_name=self.name)

    def synthesize(self):
        """Build and synthesize the template in one go."""
        from tern.template.synth import synthesize
        return synthesize(self.build())
