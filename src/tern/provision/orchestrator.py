"""
tern.provision.orchestrator — Local stack orchestrator.

Stands in for the remote orchestrator: drives the engine through one
stack transition the way the remote side does.

  - steps run in dependency waves; steps in the same wave have no edge
    between them and are invoked concurrently
  - Create/Update stop after a wave with a failed step (later steps are
    skipped)
  - Delete runs the waves in reverse and always delivers every request,
    whatever happened before; step outputs that were never produced are
    left out of its properties

Used by `tern deploy` and by the tests.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

import structlog

from tern.core.values import map_placeholders, prune
from tern.discovery import DiscoverySnapshot, capture_snapshot
from tern.graph.graph import DeferredOutput, DeferredRef, Graph, thaw
from tern.provision.engine import ProvisioningEngine
from tern.provision.protocol import ProvisionRequest, ProvisionResponse, TransitionKind

logger = structlog.get_logger(__name__)


@dataclass
class TransitionResult:
    """Outcome of one stack transition."""
    kind: TransitionKind
    stack_id: str
    graph: Graph
    engine: ProvisioningEngine
    responses: dict[str, ProvisionResponse] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.skipped and all(r.succeeded for r in self.responses.values())

    def failed(self) -> list[ProvisionResponse]:
        return [r for r in self.responses.values() if not r.succeeded]

    def snapshot(self) -> DiscoverySnapshot:
        return capture_snapshot(self.graph, self.engine.store)


class _UnresolvedOutput(Exception):
    pass


_MISSING = object()


class LocalOrchestrator:
    """Runs stack transitions against a ProvisioningEngine in-process."""

    def __init__(
        self,
        graph: Graph,
        engine: ProvisioningEngine,
        stack_id: str | None = None,
        token_factory: Callable[[], str] | None = None,
    ):
        self.graph = graph
        self.engine = engine
        self.stack_id = stack_id or f"arn:tern:local:stack/{graph.stack_name}"
        self._new_token = token_factory or (lambda: str(uuid.uuid4()))
        self._last_properties: dict[str, dict[str, Any]] = {}
        self._physical_ids: dict[str, str] = {}

    def waves(self) -> list[list[str]]:
        """Steps grouped so that each wave only depends on earlier waves."""
        deps = self.graph.step_dependencies()
        level: dict[str, int] = {}
        for step in self.graph.steps():
            # graph order puts producers first
            lid = step.logical_id
            level[lid] = 1 + max((level[d] for d in deps[lid]), default=-1)
        waves: list[list[str]] = [[] for _ in range(max(level.values(), default=-1) + 1)]
        for step in self.graph.steps():
            waves[level[step.logical_id]].append(step.logical_id)
        return waves

    def run(self, kind: TransitionKind | str) -> TransitionResult:
        kind = TransitionKind(kind)
        result = TransitionResult(kind, self.stack_id, self.graph, self.engine)
        waves = self.waves()
        if kind is TransitionKind.DELETE:
            waves.reverse()

        log = logger.bind(stack=self.graph.stack_name, kind=kind.value)
        log.info("transition_started", waves=len(waves))

        aborted = False
        for wave in waves:
            if aborted:
                result.skipped.extend(wave)
                continue
            with ThreadPoolExecutor(max_workers=max(len(wave), 1)) as pool:
                responses = list(pool.map(lambda lid: self._deliver(kind, lid), wave))
            for response in responses:
                result.responses[response.logical_id] = response
            if kind is not TransitionKind.DELETE and any(not r.succeeded for r in responses):
                aborted = True

        if result.succeeded:
            log.info("transition_succeeded", steps=len(result.responses))
        else:
            log.warning(
                "transition_failed",
                failed=[r.logical_id for r in result.failed()],
                skipped=result.skipped,
            )
        return result

    def _deliver(self, kind: TransitionKind, logical_id: str) -> ProvisionResponse:
        record = self.graph.records[logical_id]
        raw = thaw(record.properties.get("Properties", {}))
        unresolved = None
        try:
            if kind is TransitionKind.DELETE:
                properties = prune(self._resolve(raw, missing=_MISSING), _MISSING)
            else:
                properties = self._resolve(raw)
        except _UnresolvedOutput as e:
            properties, unresolved = {}, e

        request = ProvisionRequest(
            kind=kind,
            stack_id=self.stack_id,
            logical_id=logical_id,
            token=self._new_token(),
            properties=properties,
            old_properties=self._last_properties.get(logical_id) if kind is TransitionKind.UPDATE else None,
            physical_resource_id=self._physical_ids.get(logical_id),
        )
        if unresolved is not None:
            return self.engine.reject(request, f"unresolved step output: {unresolved}")

        response = self.engine.handle(request)
        if response.succeeded and kind is not TransitionKind.DELETE:
            self._last_properties[logical_id] = properties
            if response.physical_resource_id:
                self._physical_ids[logical_id] = response.physical_resource_id
        return response

    def _resolve(self, value: Any, missing: object = None) -> Any:
        """Resolve deferred references the way the remote orchestrator would.

        An unavailable step output raises, unless a missing marker is given
        to stand in for it.
        """
        def resolve(placeholder):
            if isinstance(placeholder, DeferredOutput):
                outputs = self.engine.store.outputs(placeholder.logical_id) or {}
                if placeholder.key not in outputs:
                    if missing is not None:
                        return missing
                    raise _UnresolvedOutput(f"{placeholder.logical_id}.{placeholder.key}")
                return outputs[placeholder.key]
            if isinstance(placeholder, DeferredRef):
                physical = f"{self.stack_id}/{placeholder.logical_id}"
                if placeholder.attribute:
                    return f"{physical}#{placeholder.attribute}"
                return physical
            return placeholder

        return map_placeholders(value, resolve)
