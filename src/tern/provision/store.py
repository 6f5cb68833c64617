"""
tern.provision.store — Shared provisioning metadata store.

Append-only log of step results, keyed by logical ID. Each step writes
only under its own logical ID, so concurrent steps never contend for a
key; the lock keeps the log and snapshot copies consistent.
"""

from __future__ import annotations

import copy
import threading
from dataclasses import dataclass, field
from typing import Any

from tern.provision.protocol import TransitionKind


@dataclass(frozen=True)
class StoreEntry:
    logical_id: str
    kind: TransitionKind
    data: dict[str, Any] = field(default_factory=dict)


class MetadataStore:
    """Thread-safe, append-only results store."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, list[StoreEntry]] = {}

    def record(self, logical_id: str, kind: TransitionKind, data: dict[str, Any]) -> None:
        entry = StoreEntry(logical_id, TransitionKind(kind), copy.deepcopy(dict(data)))
        with self._lock:
            self._entries.setdefault(logical_id, []).append(entry)

    def history(self, logical_id: str) -> list[StoreEntry]:
        with self._lock:
            return list(self._entries.get(logical_id, []))

    def outputs(self, logical_id: str) -> dict[str, Any] | None:
        """Latest Create/Update result, or None if the step never succeeded."""
        with self._lock:
            return self._latest(logical_id)

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """Consistent copy of the latest outputs of every step."""
        with self._lock:
            result = {}
            for lid in self._entries:
                outputs = self._latest(lid)
                if outputs is not None:
                    result[lid] = outputs
            return result

    def _latest(self, logical_id: str) -> dict[str, Any] | None:
        for entry in reversed(self._entries.get(logical_id, [])):
            if entry.kind is not TransitionKind.DELETE:
                return copy.deepcopy(entry.data)
        return None

    def __contains__(self, logical_id: object) -> bool:
        with self._lock:
            return logical_id in self._entries
