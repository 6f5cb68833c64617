"""
tern.graph.build — Resource graph builder.

Turns declared functions and steps into a frozen Graph:

1. Check declared names are unique, assign logical IDs
2. Create function records and their permission/binding records
3. Resolve Ref/StepOutput placeholders: declared name → deferred
   reference + edge (consumer → producer); literal ARNs stay as-is
4. Apply function decorators, in declaration order
5. Detect cycles (depth-first), linearize (ties by declaration order)
6. Freeze
"""

from __future__ import annotations

import dataclasses
import heapq
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

import structlog

from tern.core.entities import (
    CustomProvisioningStep,
    EventSourceBinding,
    FunctionDescriptor,
    Permission,
    Ref,
    StepOutput,
)
from tern.core.values import Placeholder, map_placeholders, validate_properties
from tern.errors import CyclicDependencyError, DuplicateNameError, UnresolvedReferenceError
from tern.graph.graph import (
    EVENT_SOURCE,
    FUNCTION,
    PERMISSION,
    STEP,
    DeferredOutput,
    DeferredRef,
    Graph,
    ResourceRecord,
    freeze_record,
)
from tern.graph.ids import logical_id

logger = structlog.get_logger(__name__)

LOGICAL_ID_ENV = "TERN_LOGICAL_ID"

RESOURCE_TYPES = {
    FUNCTION: "AWS::Lambda::Function",
    PERMISSION: "AWS::Lambda::Permission",
    EVENT_SOURCE: "AWS::Lambda::EventSourceMapping",
    STEP: "Custom::TernProvisioningStep",
}


@dataclass(frozen=True)
class DecoratorContext:
    """What a decorator may look up while the graph is being built."""
    stack_name: str
    names: Mapping[str, str]
    step_ids: frozenset[str]

    def logical_id(self, name: str) -> str:
        """Logical ID of a declared function or step."""
        if name not in self.names:
            raise UnresolvedReferenceError(name)
        return self.names[name]

    def step_output(self, step: str, key: str) -> StepOutput:
        """Placeholder for one key of a step's result.

        Placing it in a record's metadata adds an edge to the step.
        """
        return StepOutput(self.names.get(step, step), key)


def build(
    descriptors: Iterable[FunctionDescriptor],
    steps: Iterable[CustomProvisioningStep] = (),
    stack_name: str = "stack",
) -> Graph:
    """Build the resource graph for a stack.

    Raises:
        DuplicateNameError: two declarations share a name
        UnresolvedReferenceError: a Ref/StepOutput names nothing declared
        CyclicDependencyError: the references form a cycle
    """
    descriptors = list(descriptors)
    steps = list(steps)

    # 1. Names → logical IDs
    names: dict[str, str] = {}
    kinds: dict[str, str] = {}
    for kind, entities in ((FUNCTION, descriptors), (STEP, steps)):
        for entity in entities:
            if entity.name in names:
                raise DuplicateNameError(entity.name, (kinds[entity.name], kind))
            names[entity.name] = logical_id(entity.name, kind)
            kinds[entity.name] = kind
    step_ids = frozenset(names[s.name] for s in steps)

    resolver = _Resolver(names, step_ids)
    records: dict[str, ResourceRecord] = {}

    # 2-3. Functions + attachments
    for fn in descriptors:
        fn_id = names[fn.name]
        deps: list[str] = []
        if fn.depends_on_step is not None:
            step_id = names.get(fn.depends_on_step)
            if step_id not in step_ids:
                raise UnresolvedReferenceError(fn.depends_on_step, fn.name)
            deps.append(step_id)

        records[fn_id] = ResourceRecord(
            logical_id=fn_id,
            name=fn.name,
            kind=FUNCTION,
            resource_type=RESOURCE_TYPES[FUNCTION],
            properties=resolver.resolve(_function_properties(fn, fn_id), fn.name, deps),
            depends_on=tuple(deps),
            entity=fn,
        )

        for i, perm in enumerate(fn.permissions):
            record = _permission_record(fn, fn_id, i, perm, resolver)
            records[record.logical_id] = record

        for i, binding in enumerate(fn.event_sources):
            record = _binding_record(fn, fn_id, i, binding, resolver)
            records[record.logical_id] = record

    # Steps
    for step in steps:
        step_id = names[step.name]
        deps = []
        records[step_id] = ResourceRecord(
            logical_id=step_id,
            name=step.name,
            kind=STEP,
            resource_type=RESOURCE_TYPES[STEP],
            properties=resolver.resolve(_step_properties(step), step.name, deps),
            depends_on=tuple(deps),
            entity=step,
        )

    # 4. Decorators
    context = DecoratorContext(stack_name, MappingProxyType(dict(names)), step_ids)
    for fn in descriptors:
        if fn.decorator is not None:
            fn_id = names[fn.name]
            records[fn_id] = _apply_decorator(fn, records[fn_id], context, resolver)

    # 5. Cycles + order
    _check_cycles(records)
    order = _linearize(records)

    graph = Graph(
        stack_name,
        {lid: freeze_record(records[lid]) for lid in order},
        order,
    )
    logger.info(
        "graph_built",
        stack=stack_name,
        records=len(graph),
        edges=len(graph.edges),
    )
    return graph


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# RECORDS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
def _function_properties(fn: FunctionDescriptor, fn_id: str) -> dict[str, Any]:
    opts = fn.options
    variables = dict(opts.environment)
    variables[LOGICAL_ID_ENV] = fn_id
    props: dict[str, Any] = {
        "Code": dict(fn.code),
        "Handler": fn.handler_path,
        "Role": fn.role,
        "Runtime": opts.runtime,
        "Timeout": opts.timeout,
        "MemorySize": opts.memory_size,
        "Environment": {"Variables": variables},
    }
    if opts.description:
        props["Description"] = opts.description
    return props


def _permission_record(
    fn: FunctionDescriptor,
    fn_id: str,
    index: int,
    perm: Permission,
    resolver: _Resolver,
) -> ResourceRecord:
    name = f"{fn.name}.{perm.kind}.{index}"
    lid = logical_id(name, PERMISSION, type(perm).__name__, _source_key(perm.source_arn))
    props: dict[str, Any] = {
        "Action": "lambda:InvokeFunction",
        "FunctionName": DeferredRef(fn_id, "Arn"),
        "Principal": perm.principal,
        "SourceArn": perm.source_arn,
    }
    if perm.source_account:
        props["SourceAccount"] = perm.source_account
    deps: list[str] = []
    filters = perm.filters()
    return ResourceRecord(
        logical_id=lid,
        name=name,
        kind=PERMISSION,
        resource_type=RESOURCE_TYPES[PERMISSION],
        properties=resolver.resolve(props, name, deps),
        depends_on=tuple(deps),
        metadata={"EventFilters": filters} if filters else {},
        owner=fn_id,
        entity=perm,
    )


def _binding_record(
    fn: FunctionDescriptor,
    fn_id: str,
    index: int,
    binding: EventSourceBinding,
    resolver: _Resolver,
) -> ResourceRecord:
    name = f"{fn.name}.{binding.kind}.{index}"
    lid = logical_id(name, EVENT_SOURCE, _source_key(binding.event_source_arn))
    props = {
        "EventSourceArn": binding.event_source_arn,
        "FunctionName": DeferredRef(fn_id, None),
        "StartingPosition": binding.starting_position.value,
        "BatchSize": binding.batch_size,
        "Enabled": binding.enabled,
    }
    deps: list[str] = []
    return ResourceRecord(
        logical_id=lid,
        name=name,
        kind=EVENT_SOURCE,
        resource_type=RESOURCE_TYPES[EVENT_SOURCE],
        properties=resolver.resolve(props, name, deps),
        depends_on=tuple(deps),
        owner=fn_id,
        entity=binding,
    )


def _step_properties(step: CustomProvisioningStep) -> dict[str, Any]:
    return {
        "StepName": step.name,
        "Handler": step.handler_path,
        "Role": step.role,
        "Properties": dict(step.properties),
    }


def _source_key(source: str | Ref) -> str:
    if isinstance(source, Ref):
        return f"ref:{source.name}:{source.attribute or ''}"
    return source


class _Resolver:
    """Replaces Ref/StepOutput with deferred references, collecting edges."""

    def __init__(self, names: Mapping[str, str], step_ids: frozenset[str]):
        self._names = names
        self._step_ids = step_ids

    def resolve(self, value: Any, referrer: str, deps: list[str]) -> Any:
        def replace(placeholder: Placeholder) -> Placeholder:
            if isinstance(placeholder, Ref):
                if placeholder.name not in self._names:
                    raise UnresolvedReferenceError(placeholder.name, referrer)
                target = self._names[placeholder.name]
                _add(deps, target)
                return DeferredRef(target, placeholder.attribute)
            if isinstance(placeholder, StepOutput):
                target = self._names.get(placeholder.step, placeholder.step)
                if target not in self._step_ids:
                    raise UnresolvedReferenceError(placeholder.step, referrer)
                _add(deps, target)
                return DeferredOutput(target, placeholder.key)
            if isinstance(placeholder, (DeferredRef, DeferredOutput)):
                _add(deps, placeholder.logical_id)
            return placeholder

        return map_placeholders(value, replace)


def _add(deps: list[str], logical_id: str) -> None:
    if logical_id not in deps:
        deps.append(logical_id)


def _apply_decorator(
    fn: FunctionDescriptor,
    record: ResourceRecord,
    context: DecoratorContext,
    resolver: _Resolver,
) -> ResourceRecord:
    result = fn.decorator(record, context)
    if result is None:
        result = record
    if not isinstance(result, ResourceRecord):
        raise TypeError(
            f"Decorator for '{fn.name}' must return a ResourceRecord or None, "
            f"got {type(result).__name__}"
        )
    if result.logical_id != record.logical_id or result.kind != record.kind:
        raise ValueError(f"Decorator for '{fn.name}' may not change logical_id or kind")

    # Added edges may only point at steps
    for dep in result.depends_on:
        if dep not in record.depends_on and dep not in context.step_ids:
            raise UnresolvedReferenceError(dep, fn.name)

    deps = list(result.depends_on)
    properties = validate_properties(result.properties, f"{fn.name}.properties")
    properties = resolver.resolve(properties, fn.name, deps)
    metadata = validate_properties(result.metadata, f"{fn.name}.metadata")
    metadata = resolver.resolve(metadata, fn.name, deps)

    logger.debug(
        "decorator_applied",
        logical_id=record.logical_id,
        metadata_keys=sorted(metadata),
        added_edges=[d for d in deps if d not in record.depends_on],
    )
    return dataclasses.replace(result, properties=properties, metadata=metadata, depends_on=tuple(deps))


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# ORDERING
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
def _predecessors(record: ResourceRecord) -> list[str]:
    """Edges plus the ownership constraint."""
    preds = list(record.depends_on)
    if record.owner is not None and record.owner not in preds:
        preds.append(record.owner)
    return preds


def _check_cycles(records: Mapping[str, ResourceRecord]) -> None:
    """Depth-first search; raises on the first back edge found."""
    white, gray, black = 0, 1, 2
    color = {lid: white for lid in records}

    for root in records:
        if color[root] != white:
            continue
        path: list[str] = [root]
        color[root] = gray
        stack = [iter(_predecessors(records[root]))]
        while stack:
            nxt = next(stack[-1], None)
            if nxt is None:
                stack.pop()
                color[path.pop()] = black
                continue
            if nxt not in records:
                raise UnresolvedReferenceError(nxt, path[-1])
            if color[nxt] == gray:
                cycle = path[path.index(nxt):] + [nxt]
                raise CyclicDependencyError(cycle)
            if color[nxt] == white:
                color[nxt] = gray
                path.append(nxt)
                stack.append(iter(_predecessors(records[nxt])))


def _linearize(records: Mapping[str, ResourceRecord]) -> tuple[str, ...]:
    """Topological order, ties broken by declaration order."""
    position = {lid: i for i, lid in enumerate(records)}
    waiting = {lid: set(_predecessors(r)) for lid, r in records.items()}
    dependents: dict[str, list[str]] = {lid: [] for lid in records}
    for lid, preds in waiting.items():
        for pred in preds:
            dependents[pred].append(lid)

    ready = [(position[lid], lid) for lid, preds in waiting.items() if not preds]
    heapq.heapify(ready)
    order: list[str] = []
    while ready:
        _, lid = heapq.heappop(ready)
        order.append(lid)
        for dep in dependents[lid]:
            waiting[dep].discard(lid)
            if not waiting[dep]:
                heapq.heappush(ready, (position[dep], dep))
    return tuple(order)
