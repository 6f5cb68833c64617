"""
tern.template.synth — Template synthesizer.

Walks a built Graph in order and emits one template resource per
record. Deferred references become intrinsic references; they are
never replaced with literal values:

    DeferredRef(id, "Arn")    → {"Fn::GetAtt": [id, "Arn"]}
    DeferredRef(id, None)     → {"Ref": id}
    DeferredOutput(id, key)   → {"Fn::GetAtt": [id, key]}

Synthesis is pure: the same Graph always produces the same Template,
and to_json()/to_yaml() are byte-identical across runs.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

import structlog
import yaml

from tern.core.values import Placeholder, map_placeholders
from tern.errors import UnresolvedReferenceError
from tern.graph.graph import STEP, DeferredOutput, DeferredRef, Graph, thaw

logger = structlog.get_logger(__name__)

SERVICE_TOKEN_PARAMETER = "TernProvisioningServiceToken"


@dataclass(frozen=True)
class TemplateResource:
    """A single template entry."""
    logical_id: str
    type: str
    properties: dict[str, Any] = field(default_factory=dict)
    depends_on: tuple[str, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        doc: dict[str, Any] = {"Type": self.type}
        if self.depends_on:
            doc["DependsOn"] = list(self.depends_on)
        if self.properties:
            doc["Properties"] = self.properties
        if self.metadata:
            doc["Metadata"] = self.metadata
        return doc


class Template:
    """Ordered resource list handed to the stack orchestrator."""

    def __init__(self, description: str, resources: list[TemplateResource],
                 parameters: dict[str, Any] | None = None):
        self.description = description
        self._resources = list(resources)
        self.parameters = dict(parameters or {})

    @property
    def resources(self) -> list[TemplateResource]:
        return list(self._resources)

    def get(self, logical_id: str) -> TemplateResource | None:
        for res in self._resources:
            if res.logical_id == logical_id:
                return res
        return None

    def of_type(self, resource_type: str) -> list[TemplateResource]:
        return [r for r in self._resources if r.type == resource_type]

    def to_dict(self) -> dict[str, Any]:
        doc: dict[str, Any] = {"Description": self.description}
        if self.parameters:
            doc["Parameters"] = self.parameters
        doc["Resources"] = {r.logical_id: r.to_dict() for r in self._resources}
        return doc

    def to_json(self, indent: int | None = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def to_yaml(self) -> str:
        return yaml.dump(
            self.to_dict(),
            default_flow_style=False,
            sort_keys=False,
            allow_unicode=True,
        )


def synthesize(graph: Graph) -> Template:
    """Produce the Template for a built graph.

    Raises:
        UnresolvedReferenceError: a reference or dependency targets a
            logical ID that is not in the graph
    """
    resources: list[TemplateResource] = []
    has_steps = False

    for record in graph:
        def intrinsic(placeholder: Placeholder, _referrer: str = record.logical_id) -> Any:
            if isinstance(placeholder, (DeferredRef, DeferredOutput)):
                if placeholder.logical_id not in graph:
                    raise UnresolvedReferenceError(placeholder.logical_id, _referrer)
                if isinstance(placeholder, DeferredOutput):
                    return {"Fn::GetAtt": [placeholder.logical_id, placeholder.key]}
                if placeholder.attribute is None:
                    return {"Ref": placeholder.logical_id}
                return {"Fn::GetAtt": [placeholder.logical_id, placeholder.attribute]}
            raise UnresolvedReferenceError(repr(placeholder), _referrer)

        for dep in record.depends_on:
            if dep not in graph:
                raise UnresolvedReferenceError(dep, record.logical_id)
        if record.owner is not None and record.owner not in graph:
            raise UnresolvedReferenceError(record.owner, record.logical_id)

        properties = map_placeholders(thaw(record.properties), intrinsic)
        if record.kind == STEP:
            has_steps = True
            properties = {"ServiceToken": {"Ref": SERVICE_TOKEN_PARAMETER}, **properties}

        resources.append(TemplateResource(
            logical_id=record.logical_id,
            type=record.resource_type,
            properties=properties,
            depends_on=tuple(record.depends_on),
            metadata=map_placeholders(thaw(record.metadata), intrinsic),
        ))

    parameters = {}
    if has_steps:
        parameters[SERVICE_TOKEN_PARAMETER] = {
            "Type": "String",
            "Description": "Endpoint that delivers custom provisioning requests",
        }

    template = Template(
        description=f"tern stack: {graph.stack_name}",
        resources=resources,
        parameters=parameters,
    )
    logger.info("template_synthesized", stack=graph.stack_name, resources=len(resources))
    return template
