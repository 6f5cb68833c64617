"""
tern.provision.engine — Provisioning lifecycle engine.

Runs a step's handler for each ProvisionRequest and always produces a
terminal ProvisionResponse:

  handler returns a mapping        → Succeeded (result stored)
  handler raises / returns error   → Failed
  handler exceeds its budget       → TimedOut (reported as FAILED)

Requests are idempotent per correlation token. A token seen before is
never invoked again: if its invocation is terminal the recorded
response is resent, if it is still running the caller waits for it.
The first terminal transition of an invocation wins; a late handler
result after a timeout is discarded.

Handlers run on daemon threads, at most max_workers at once. A step's
budget starts when its handler starts, not while it waits for a free
worker. A timed-out handler gives its worker back and is abandoned, so
it never holds up later steps or interpreter exit.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from concurrent.futures import Future, wait
from typing import Any

import structlog

from tern.errors import HandlerError, HandlerTimeoutError, PropertyError, ProvisioningError
from tern.core.values import validate_properties
from tern.graph.graph import STEP, Graph
from tern.provision.protocol import ProvisionRequest, ProvisionResponse, StepState
from tern.provision.store import MetadataStore

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT = 300.0
DEFAULT_MAX_WORKERS = 8

Reporter = Callable[[ProvisionResponse], None]


class _Invocation:
    """State of one correlation token."""

    def __init__(self, request: ProvisionRequest):
        self.request = request
        self.state = StepState.PENDING
        self.response: ProvisionResponse | None = None
        self._done = threading.Event()
        self._lock = threading.Lock()

    def finish(self, response: ProvisionResponse) -> bool:
        """Record the terminal response. Only the first call wins."""
        with self._lock:
            if self._done.is_set():
                return False
            self.response = response
            self.state = response.state
            self._done.set()
            return True

    def wait(self) -> ProvisionResponse:
        self._done.wait()
        # finish() assigns response before setting _done
        return self.response


class _HandlerRun:
    """One handler call on its own daemon thread.

    Holds a worker slot until the handler returns or the run is
    abandoned, whichever comes first.
    """

    def __init__(self, handler: Callable, request: ProvisionRequest, slots: threading.Semaphore):
        self.future: Future = Future()
        self.started = threading.Event()
        self._handler = handler
        self._request = request
        self._slots = slots
        self._lock = threading.Lock()
        self._held = True
        self._abandoned = False

    def start(self) -> None:
        thread = threading.Thread(
            target=self._run,
            name=f"tern-step-{self._request.logical_id}",
            daemon=True,
        )
        thread.start()

    def abandon(self) -> None:
        """Give up on the handler; its result will be discarded."""
        self._abandoned = True
        self.future.cancel()
        self._release()

    def _run(self) -> None:
        self.started.set()
        if not self.future.set_running_or_notify_cancel():
            self._release()
            return
        try:
            result = self._handler(self._request)
        except BaseException as e:
            self.future.set_exception(e)
        else:
            self.future.set_result(result)
        finally:
            self._release()
        if self._abandoned:
            logger.warning(
                "late_result_discarded",
                logical_id=self._request.logical_id,
                token=self._request.token,
            )

    def _release(self) -> None:
        with self._lock:
            if not self._held:
                return
            self._held = False
        self._slots.release()


class ProvisioningEngine:
    """Delivers lifecycle requests to custom provisioning step handlers.

    Usage::

        with ProvisioningEngine(graph, timeout=60) as engine:
            response = engine.handle(request)
            orchestrator.report(response.to_dict())

    Independent steps can be invoked concurrently from several
    orchestrator threads; at most max_workers handlers run at once.
    """

    def __init__(
        self,
        graph: Graph,
        store: MetadataStore | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_workers: int = DEFAULT_MAX_WORKERS,
        reporter: Reporter | None = None,
    ):
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.graph = graph
        self.store = store if store is not None else MetadataStore()
        self.timeout = timeout
        self._reporter = reporter
        self._slots = threading.BoundedSemaphore(max_workers)
        self._closed = False
        self._lock = threading.Lock()
        self._invocations: dict[str, _Invocation] = {}

    def __enter__(self) -> ProvisioningEngine:
        return self

    def __exit__(self, *exc: Any) -> bool:
        self.close()
        return False

    def close(self) -> None:
        """Refuse further invocations. Abandoned handlers are not waited for."""
        self._closed = True

    def state(self, token: str) -> StepState:
        with self._lock:
            inv = self._invocations.get(token)
        return inv.state if inv is not None else StepState.PENDING

    def response(self, token: str) -> ProvisionResponse | None:
        with self._lock:
            inv = self._invocations.get(token)
        return inv.response if inv is not None else None

    def handle(self, request: ProvisionRequest) -> ProvisionResponse:
        """Process one request and return its terminal response."""
        inv, duplicate = self._register(request)
        if duplicate:
            response = self._redelivered(inv, request)
        else:
            try:
                response = self._invoke(inv)
            except Exception as e:
                logger.exception("engine_error", token=request.token, logical_id=request.logical_id)
                response = self._terminal(inv, StepState.FAILED, reason=f"internal error: {e}")

        self._report(response)
        return response

    def reject(self, request: ProvisionRequest, reason: str) -> ProvisionResponse:
        """Fail a request without invoking its handler.

        The response is recorded under the request's token and reported
        like any other terminal response.
        """
        inv, duplicate = self._register(request)
        if duplicate:
            response = self._redelivered(inv, request)
        else:
            logger.warning(
                "step_rejected",
                logical_id=request.logical_id,
                token=request.token,
                kind=request.kind.value,
                reason=reason,
            )
            response = self._terminal(inv, StepState.FAILED, reason=reason)

        self._report(response)
        return response

    def _register(self, request: ProvisionRequest) -> tuple[_Invocation, bool]:
        with self._lock:
            inv = self._invocations.get(request.token)
            if inv is not None:
                return inv, True
            inv = _Invocation(request)
            self._invocations[request.token] = inv
            return inv, False

    def _redelivered(self, inv: _Invocation, request: ProvisionRequest) -> ProvisionResponse:
        if inv.request.logical_id != request.logical_id:
            logger.warning(
                "token_reused_for_other_step",
                token=request.token,
                logical_id=request.logical_id,
                original=inv.request.logical_id,
            )
        response = inv.wait()
        logger.info(
            "duplicate_token",
            token=request.token,
            logical_id=inv.request.logical_id,
            state=response.state.value,
        )
        return response

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # INVOCATION
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    def _invoke(self, inv: _Invocation) -> ProvisionResponse:
        request = inv.request
        log = logger.bind(
            logical_id=request.logical_id,
            token=request.token,
            kind=request.kind.value,
        )

        record = self.graph.get(request.logical_id)
        if record is None or record.kind != STEP:
            error = HandlerError(request.logical_id, "not a custom provisioning step of this stack")
            log.warning("step_unknown")
            return self._terminal(inv, StepState.FAILED, reason=error.reason)

        step = record.entity
        budget = step.timeout or self.timeout

        self._slots.acquire()
        run = _HandlerRun(step.handler, request, self._slots)
        if self._closed:
            run.abandon()
            log.warning("step_not_scheduled", error="engine is closed")
            return self._terminal(inv, StepState.FAILED, reason="engine unavailable: engine is closed")
        try:
            run.start()
        except RuntimeError as e:
            run.abandon()
            log.warning("step_not_scheduled", error=str(e))
            return self._terminal(inv, StepState.FAILED, reason=f"engine unavailable: {e}")

        run.started.wait()
        inv.state = StepState.INVOKED
        log.info("step_invoked", budget=budget)
        done, _ = wait([run.future], timeout=budget)

        if not done:
            run.abandon()
            error = HandlerTimeoutError(
                request.logical_id,
                f"handler did not respond within {budget:g}s",
            )
            log.warning("step_timed_out", reason=error.reason)
            return self._terminal(inv, StepState.TIMED_OUT, reason=error.reason)

        try:
            data = _check_result(request.logical_id, run.future)
        except ProvisioningError as error:
            log.warning("step_failed", reason=error.reason)
            return self._terminal(inv, StepState.FAILED, reason=error.reason)

        self.store.record(request.logical_id, request.kind, data)
        log.info("step_succeeded", outputs=sorted(data))
        return self._terminal(inv, StepState.SUCCEEDED, data=data)

    def _terminal(
        self,
        inv: _Invocation,
        state: StepState,
        data: dict[str, Any] | None = None,
        reason: str = "",
    ) -> ProvisionResponse:
        request = inv.request
        response = ProvisionResponse(
            token=request.token,
            logical_id=request.logical_id,
            state=state,
            data=data or {},
            reason=reason,
            physical_resource_id=request.physical_resource_id or request.logical_id,
        )
        if not inv.finish(response):
            return inv.wait()
        return response

    def _report(self, response: ProvisionResponse) -> None:
        if self._reporter is None:
            return
        try:
            self._reporter(response)
        except Exception:
            logger.exception("report_failed", token=response.token)


def _check_result(logical_id: str, future: Future) -> dict[str, Any]:
    """Validate a finished handler future into a result mapping."""
    if future.cancelled():
        raise HandlerError(logical_id, "invocation cancelled")
    exc = future.exception()
    if exc is not None:
        raise HandlerError(logical_id, f"{type(exc).__name__}: {exc}") from exc

    result = future.result()
    if isinstance(result, BaseException):
        raise HandlerError(logical_id, f"{type(result).__name__}: {result}")
    if result is None:
        return {}
    if not isinstance(result, Mapping):
        raise HandlerError(
            logical_id,
            f"handler must return a mapping, got {type(result).__name__}",
        )
    try:
        return validate_properties(result, "result")
    except PropertyError as e:
        raise HandlerError(logical_id, str(e)) from e
