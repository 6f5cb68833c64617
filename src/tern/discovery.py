"""
tern.discovery — Runtime discovery.

A deployed function knows its own logical ID (TERN_LOGICAL_ID in its
environment) and can fetch the stack's DiscoverySnapshot through some
external mechanism. resolve() returns the function's metadata bag plus
the whole snapshot for lookups of other resources:

    result = discover(fetch_snapshot)
    result.metadata["CustomResource"]          # own metadata
    result.find("cfgStep").metadata["key"]     # a step's outputs

The snapshot is immutable; reads hand out copies.
"""

from __future__ import annotations

import copy
import json
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from tern.core.values import map_placeholders, prune
from tern.errors import ResourceNotFoundError
from tern.graph.build import LOGICAL_ID_ENV
from tern.graph.graph import STEP, DeferredOutput, DeferredRef, Graph, thaw

if TYPE_CHECKING:
    from tern.provision.store import MetadataStore


@dataclass(frozen=True)
class SnapshotEntry:
    logical_id: str
    name: str
    type: str
    metadata: Mapping[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "type": self.type, "metadata": copy.deepcopy(dict(self.metadata))}


class DiscoverySnapshot:
    """Point-in-time view of every record's metadata, keyed by logical ID."""

    def __init__(self, stack_name: str, entries: Mapping[str, Mapping[str, Any]]):
        self.stack_name = stack_name
        frozen = {}
        for lid, entry in entries.items():
            frozen[lid] = SnapshotEntry(
                logical_id=lid,
                name=entry.get("name", lid),
                type=entry.get("type", ""),
                metadata=MappingProxyType(copy.deepcopy(dict(entry.get("metadata") or {}))),
            )
        self._entries = MappingProxyType(frozen)

    def __contains__(self, logical_id: object) -> bool:
        return logical_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def logical_ids(self) -> list[str]:
        return list(self._entries)

    def entry(self, logical_id: str) -> SnapshotEntry:
        try:
            return self._entries[logical_id]
        except KeyError:
            raise ResourceNotFoundError(logical_id) from None

    def metadata(self, logical_id: str) -> dict[str, Any]:
        """Copy of a record's metadata bag."""
        return copy.deepcopy(dict(self.entry(logical_id).metadata))

    def find(self, name: str) -> SnapshotEntry:
        """Entry by declared name."""
        for entry in self._entries.values():
            if entry.name == name:
                return entry
        raise ResourceNotFoundError(name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "stack": self.stack_name,
            "resources": {lid: e.to_dict() for lid, e in self._entries.items()},
        }

    def to_json(self, indent: int | None = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DiscoverySnapshot:
        return cls(data.get("stack", ""), data.get("resources") or {})

    @classmethod
    def from_json(cls, text: str) -> DiscoverySnapshot:
        return cls.from_dict(json.loads(text))


@dataclass(frozen=True)
class DiscoveryResult:
    """A function's own metadata plus the snapshot it came from."""
    logical_id: str
    metadata: dict[str, Any]
    snapshot: DiscoverySnapshot

    def lookup(self, logical_id: str) -> dict[str, Any]:
        """Metadata of another resource, by logical ID."""
        return self.snapshot.metadata(logical_id)

    def find(self, name: str) -> SnapshotEntry:
        """Another resource's entry, by declared name."""
        return self.snapshot.find(name)


def resolve(logical_id: str, snapshot: DiscoverySnapshot) -> DiscoveryResult:
    """Look up a logical ID in the snapshot.

    Raises:
        ResourceNotFoundError: the ID is not in the snapshot (stale or
            mismatched deployment). Not retried here.
    """
    return DiscoveryResult(
        logical_id=logical_id,
        metadata=snapshot.metadata(logical_id),
        snapshot=snapshot,
    )


def discover(
    fetch_snapshot: Callable[[], DiscoverySnapshot],
    environ: Mapping[str, str] | None = None,
) -> DiscoveryResult:
    """Resolve the running function's own logical ID from its environment."""
    env = os.environ if environ is None else environ
    logical_id = env.get(LOGICAL_ID_ENV)
    if not logical_id:
        raise ResourceNotFoundError(f"${LOGICAL_ID_ENV} (not set)")
    return resolve(logical_id, fetch_snapshot())


def capture_snapshot(graph: Graph, store: MetadataStore) -> DiscoverySnapshot:
    """Freeze graph metadata + provisioning results into a snapshot.

    The store is copied once under its lock, so no partial update is
    visible. Step output placeholders resolve to the provisioned values;
    outputs that are not available are left out.
    """
    outputs = store.snapshot()

    _missing = object()

    def resolve_placeholder(placeholder):
        if isinstance(placeholder, DeferredOutput):
            return outputs.get(placeholder.logical_id, {}).get(placeholder.key, _missing)
        if isinstance(placeholder, DeferredRef):
            return placeholder.logical_id
        return placeholder

    entries: dict[str, dict[str, Any]] = {}
    for record in graph:
        metadata = prune(map_placeholders(thaw(record.metadata), resolve_placeholder), _missing)
        if record.kind == STEP and record.logical_id in outputs:
            metadata = {**metadata, **outputs[record.logical_id]}
        entries[record.logical_id] = {
            "name": record.name,
            "type": record.resource_type,
            "metadata": metadata,
        }
    return DiscoverySnapshot(graph.stack_name, entries)

