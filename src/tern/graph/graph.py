"""
tern.graph.graph — Resource records and the built graph.

A Graph is produced by tern.graph.build.build() and is frozen from then
on: records are immutable and there is no API to add records or edges.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from tern.core.values import Placeholder, deep_merge

FUNCTION = "function"
STEP = "step"
PERMISSION = "permission"
EVENT_SOURCE = "event_source"


@dataclass(frozen=True)
class DeferredRef(Placeholder):
    """Graph-resolved reference to another record.

    Emitted as an intrinsic reference, resolved by the orchestrator.
    """
    logical_id: str
    attribute: str | None = "Arn"


@dataclass(frozen=True)
class DeferredOutput(Placeholder):
    """Graph-resolved reference to one key of a step's provisioning result."""
    logical_id: str
    key: str


@dataclass(frozen=True)
class ResourceRecord:
    """One node of the graph.

    ``depends_on`` holds the outgoing edges (this record → producer).
    ``owner`` is set for permissions and bindings: the function they are
    attached to. Ownership orders the records but is not an edge.
    """
    logical_id: str
    name: str
    kind: str
    resource_type: str
    properties: Mapping[str, Any] = field(default_factory=dict)
    depends_on: tuple[str, ...] = ()
    metadata: Mapping[str, Any] = field(default_factory=dict)
    owner: str | None = None
    entity: Any = field(default=None, compare=False, repr=False)

    def with_metadata(self, entries: Mapping[str, Any] | None = None, **kwargs: Any) -> ResourceRecord:
        """Copy of this record with entries deep-merged into its metadata."""
        merged = deep_merge(thaw(self.metadata), dict(entries or {}, **kwargs))
        return dataclasses.replace(self, metadata=merged)

    def with_properties(self, entries: Mapping[str, Any] | None = None, **kwargs: Any) -> ResourceRecord:
        """Copy of this record with entries deep-merged into its properties."""
        merged = deep_merge(thaw(self.properties), dict(entries or {}, **kwargs))
        return dataclasses.replace(self, properties=merged)

    def with_dependency(self, logical_id: str) -> ResourceRecord:
        """Copy of this record with an extra edge to logical_id."""
        if logical_id in self.depends_on:
            return self
        return dataclasses.replace(self, depends_on=self.depends_on + (logical_id,))


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


def freeze_record(record: ResourceRecord) -> ResourceRecord:
    """Read-only copy: property and metadata bags become mapping proxies."""
    return dataclasses.replace(
        record,
        properties=_freeze(record.properties),
        metadata=_freeze(record.metadata),
        depends_on=tuple(record.depends_on),
    )


class Graph:
    """Built, frozen resource graph.

    ``order`` is a topological ordering: every producer appears before
    its consumers, and every owner before its attachments.
    """

    def __init__(
        self,
        stack_name: str,
        records: Mapping[str, ResourceRecord],
        order: tuple[str, ...],
    ):
        self.stack_name = stack_name
        self._records = MappingProxyType(dict(records))
        self._order = tuple(order)
        self._by_name = {
            r.name: r.logical_id
            for r in self._records.values()
            if r.kind in (FUNCTION, STEP)
        }

    @property
    def records(self) -> Mapping[str, ResourceRecord]:
        return self._records

    @property
    def order(self) -> tuple[str, ...]:
        return self._order

    @property
    def edges(self) -> tuple[tuple[str, str], ...]:
        """(consumer, producer) pairs, in graph order."""
        return tuple(
            (lid, dep)
            for lid in self._order
            for dep in self._records[lid].depends_on
        )

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[ResourceRecord]:
        for lid in self._order:
            yield self._records[lid]

    def __contains__(self, logical_id: object) -> bool:
        return logical_id in self._records

    def get(self, logical_id: str) -> ResourceRecord | None:
        return self._records.get(logical_id)

    def logical_id(self, name: str) -> str:
        """Logical ID of a declared function or step."""
        try:
            return self._by_name[name]
        except KeyError:
            raise KeyError(
                f"No function or step named '{name}'. "
                f"Declared: {sorted(self._by_name)}"
            ) from None

    def functions(self) -> list[ResourceRecord]:
        return [r for r in self if r.kind == FUNCTION]

    def steps(self) -> list[ResourceRecord]:
        return [r for r in self if r.kind == STEP]

    def attachments(self, function_id: str) -> list[ResourceRecord]:
        """Permissions and bindings owned by a function."""
        return [r for r in self if r.owner == function_id]

    def step_dependencies(self) -> dict[str, set[str]]:
        """For each step, the steps it transitively depends on."""
        result: dict[str, set[str]] = {}
        for step in self.steps():
            seen: set[str] = set()
            pending = list(step.depends_on)
            while pending:
                lid = pending.pop()
                if lid in seen:
                    continue
                seen.add(lid)
                record = self._records.get(lid)
                if record is not None:
                    pending.extend(record.depends_on)
            result[step.logical_id] = {
                lid for lid in seen
                if lid != step.logical_id
                and lid in self._records
                and self._records[lid].kind == STEP
            }
        return result


def thaw(value: Any) -> Any:
    """Plain dict/list copy of a frozen bag."""
    if isinstance(value, Mapping):
        return {k: thaw(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [thaw(v) for v in value]
    return value
