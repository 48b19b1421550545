"""Watch loop that reconciles AppTemplate custom resources."""

import asyncio
import logging
import threading
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Deque, Dict, Iterable, Optional, Tuple

from apptemplate_controller.exceptions import AppTemplateControllerError, KubernetesAPIError
from apptemplate_controller.models import AppTemplateRef, ReconciliationResult

logger = logging.getLogger(__name__)

MAX_REPORTED_FAILURES = 20


class ControllerState(str, Enum):
    DISCONNECTED = "Disconnected"
    WATCHING = "Watching"
    ERROR_BACKOFF = "ErrorBackoff"
    STOPPED = "Stopped"


def utc_now_rfc3339() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _pump_events(stream: Iterable[Dict[str, Any]], queue: asyncio.Queue,
                 loop: asyncio.AbstractEventLoop) -> None:
    """Forward events from a blocking watch stream onto the event loop."""
    try:
        try:
            for event in stream:
                loop.call_soon_threadsafe(queue.put_nowait, ("event", event))
        except Exception as e:
            loop.call_soon_threadsafe(queue.put_nowait, ("error", e))
            return
        loop.call_soon_threadsafe(queue.put_nowait, ("end", None))
    except RuntimeError:
        # Event loop already closed during shutdown.
        pass


class AppTemplateController:
    """Keeps the cluster in line with every AppTemplate, indefinitely.

    State machine::

        Disconnected -> Watching -> ErrorBackoff -> Watching -> ...

    A watch stream that fails for any reason moves the controller to
    ``ErrorBackoff`` for a fixed ``retry_delay`` before it subscribes again.
    Retries are unlimited. A stream that simply ends (server-side timeout) is
    re-established immediately.

    ``ADDED`` and ``MODIFIED`` events start a reconciliation. At most one
    reconciliation runs per AppTemplate; an event arriving meanwhile is queued
    and only the most recent queued object is reconciled once the running pass
    finishes. Different AppTemplates reconcile concurrently.
    """

    def __init__(self, cluster, reconciler, group: str = "myapp.domain.com", version: str = "v1",
                 plural: str = "apptemplates", retry_delay: float = 5.0,
                 watch_timeout: Optional[int] = 300, report_status: bool = True):
        self.cluster = cluster
        self.reconciler = reconciler
        self.group = group
        self.version = version
        self.plural = plural
        self.retry_delay = retry_delay
        self.watch_timeout = watch_timeout
        self.report_status = report_status

        self.state = ControllerState.DISCONNECTED
        self.history: Deque[ControllerState] = deque([self.state], maxlen=100)
        self.subscriptions = 0
        self.last_results: Dict[str, ReconciliationResult] = {}

        self._stop: Optional[asyncio.Event] = None
        self._inflight: Dict[str, asyncio.Task] = {}
        self._queued: Dict[str, Dict[str, Any]] = {}
        self._observed_generation: Dict[str, Optional[int]] = {}

    @property
    def resource(self) -> str:
        return f"{self.plural}.{self.group}/{self.version}"

    def _set_state(self, state: ControllerState) -> None:
        if state is not self.state:
            logger.debug("Controller state %s -> %s", self.state.value, state.value)
        self.state = state
        self.history.append(state)

    def _stopping(self) -> bool:
        return self._stop is not None and self._stop.is_set()

    def stop(self) -> None:
        """Request a cooperative stop of :meth:`run`."""
        if self._stop is not None:
            self._stop.set()

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Watch AppTemplates across all namespaces until stopped."""
        self._stop = stop_event or asyncio.Event()
        logger.info("Watching %s in all namespaces", self.resource)

        while not self._stopping():
            try:
                await self._watch_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if self._stopping():
                    break
                message = e.message if isinstance(e, AppTemplateControllerError) else str(e)
                self._set_state(ControllerState.ERROR_BACKOFF)
                logger.error("Watch on %s failed: %s; retrying in %.1fs", self.resource, message, self.retry_delay)
                await self._sleep(self.retry_delay)

        self._set_state(ControllerState.STOPPED)
        await self.wait_idle()
        logger.info("Stopped watching %s", self.resource)

    async def _sleep(self, delay: float) -> None:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def _watch_once(self) -> None:
        stream = await asyncio.to_thread(
            self.cluster.watch, self.group, self.version, self.plural, self.watch_timeout
        )
        self._set_state(ControllerState.WATCHING)
        self.subscriptions += 1

        queue: asyncio.Queue = asyncio.Queue()
        pump = threading.Thread(
            target=_pump_events,
            args=(stream, queue, asyncio.get_running_loop()),
            name=f"watch-{self.plural}",
            daemon=True,
        )
        pump.start()

        try:
            while True:
                kind, payload = await self._next_item(queue)
                if kind == "stop":
                    return
                if kind == "end":
                    logger.debug("Watch stream on %s ended; resubscribing", self.resource)
                    return
                if kind == "error":
                    raise payload
                self.handle_event(payload.get("type"), payload.get("object"))
        finally:
            # The stream ends at its next event and releases its connection.
            stream.stop()

    async def _next_item(self, queue: asyncio.Queue) -> Tuple[str, Any]:
        getter = asyncio.ensure_future(queue.get())
        stopper = asyncio.ensure_future(self._stop.wait())
        done, pending = await asyncio.wait({getter, stopper}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        if getter in done:
            return getter.result()
        return "stop", None

    def handle_event(self, event_type: Optional[str], obj: Any) -> None:
        """Dispatch one watch event.

        Raises:
            KubernetesAPIError: For an ``ERROR`` event, which ends the subscription
        """
        if event_type == "ERROR":
            message = obj.get("message") if isinstance(obj, dict) else obj
            raise KubernetesAPIError(f"Watch error event: {message}",
                                     obj.get("code") if isinstance(obj, dict) else None)

        if not isinstance(obj, dict):
            logger.debug("Ignoring %s event without an object", event_type)
            return

        template = AppTemplateRef.from_object(obj)

        if event_type in ("ADDED", "MODIFIED"):
            if event_type == "MODIFIED" and self._already_observed(template):
                logger.debug("Ignoring status-only update of AppTemplate %s", template.key)
                return
            logger.info("AppTemplate %s %s", template.key, event_type.lower())
            self.schedule(template.key, obj)
        elif event_type == "DELETED":
            self._observed_generation.pop(template.key, None)
            self.last_results.pop(template.key, None)
            logger.info("AppTemplate %s deleted; its resources are left in place", template.key)
        else:
            logger.debug("Ignoring %s event for %s", event_type, template.key)

    def _already_observed(self, template: AppTemplateRef) -> bool:
        # Status patches raise MODIFIED events without bumping the generation.
        if not self.report_status or template.generation is None:
            return False
        return self._observed_generation.get(template.key) == template.generation

    def schedule(self, key: str, obj: Dict[str, Any]) -> None:
        """Reconcile ``obj`` now, or after the in-flight pass for the same key."""
        if key in self._inflight:
            self._queued[key] = obj
            return
        self._inflight[key] = asyncio.ensure_future(self._drain(key, obj))

    async def _drain(self, key: str, obj: Optional[Dict[str, Any]]) -> None:
        try:
            while obj is not None:
                await self.reconcile(obj)
                obj = self._queued.pop(key, None)
        finally:
            self._inflight.pop(key, None)

    async def reconcile(self, obj: Dict[str, Any]) -> Optional[ReconciliationResult]:
        """Run one pass for an AppTemplate object. Never raises."""
        template = AppTemplateRef.from_object(obj)
        try:
            result = await self.reconciler.reconcile_object(obj)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Reconciliation of AppTemplate %s failed", template.key)
            return None

        self.last_results[template.key] = result
        self._observed_generation[template.key] = template.generation
        if self.report_status:
            await self._report_status(template, result)
        return result

    async def _report_status(self, template: AppTemplateRef, result: ReconciliationResult) -> None:
        failures = [str(failure) for failure in result.outcome.failures]
        status = {
            "phase": result.phase,
            "observedGeneration": template.generation,
            "appliedResources": len(result.outcome.applied),
            "failedResources": failures[:MAX_REPORTED_FAILURES],
            "lastReconciled": utc_now_rfc3339(),
        }
        if result.error:
            status["message"] = result.error
        elif result.render_errors:
            status["message"] = "; ".join(result.render_errors[:MAX_REPORTED_FAILURES])

        try:
            await self.cluster.patch_status(self.group, self.version, self.plural,
                                            template.namespace, template.name, status)
        except Exception as e:
            message = e.message if isinstance(e, AppTemplateControllerError) else str(e)
            logger.warning("Could not update status of AppTemplate %s: %s", template.key, message)

    async def wait_idle(self) -> None:
        """Wait until no reconciliation is running or queued."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight.values()), return_exceptions=True)
