"""Controller runtime: watch streams, work queues and reconcile workers.

The manager runs one watch thread per resource kind and hands every event to
the handlers registered for that kind. Handlers turn events into
:class:`~contour_plus.models.ReconcileRequest` objects which land on the
owning controller's :class:`WorkQueue`. Each controller has a single worker
thread, so one key is never reconciled twice at the same time by the same
controller. Failed requests are re-queued with exponential backoff.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable

import structlog

from contour_plus.handlers import EnqueueRequestForOwner, enqueue_request_for_object
from contour_plus.kinds import ResourceKind
from contour_plus.models import ReconcileRequest, WatchEvent
from contour_plus.store import KubernetesStore

logger = structlog.get_logger(__name__)

EventHandler = Callable[[WatchEvent], list[ReconcileRequest]]
ReconcileFunc = Callable[[ReconcileRequest], None]


# ---------------------------------------------------------------------------
# Work queue
# ---------------------------------------------------------------------------


class WorkQueue:
    """De-duplicating FIFO of reconcile requests with per-item backoff.

    An item is handed out to at most one consumer at a time. Adding an item
    that is currently being processed marks it dirty; it is queued again once
    :meth:`done` is called for it.

    Parameters
    ----------
    base_delay:
        Delay before the first retry of a failed item, in seconds.
    max_delay:
        Upper bound for the retry delay.
    """

    def __init__(self, base_delay: float = 0.5, max_delay: float = 300.0) -> None:
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._cond = threading.Condition()
        self._queue: deque[ReconcileRequest] = deque()
        self._dirty: set[ReconcileRequest] = set()
        self._processing: set[ReconcileRequest] = set()
        self._failures: dict[ReconcileRequest, int] = {}
        self._timers: set[threading.Timer] = set()
        self._shutting_down = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def add(self, item: ReconcileRequest) -> None:
        with self._cond:
            if self._shutting_down or item in self._dirty:
                return
            self._dirty.add(item)
            if item in self._processing:
                return
            self._queue.append(item)
            self._cond.notify()

    def get(self, timeout: float | None = None) -> ReconcileRequest | None:
        """Return the next item, or ``None`` on shutdown or timeout."""
        with self._cond:
            deadline = None if timeout is None else time.monotonic() + timeout
            while not self._queue and not self._shutting_down:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return None
                self._cond.wait(remaining)
            if self._shutting_down:
                return None
            item = self._queue.popleft()
            self._processing.add(item)
            self._dirty.discard(item)
            return item

    def done(self, item: ReconcileRequest) -> None:
        with self._cond:
            self._processing.discard(item)
            if item in self._dirty:
                self._queue.append(item)
                self._cond.notify()

    def retry_delay(self, item: ReconcileRequest) -> float:
        """Delay the next :meth:`add_rate_limited` call for ``item`` would use."""
        with self._cond:
            failures = self._failures.get(item, 0)
        return min(self._base_delay * (2**failures), self._max_delay)

    def add_rate_limited(self, item: ReconcileRequest) -> float:
        """Queue ``item`` again after its backoff delay. Returns the delay."""
        delay = self.retry_delay(item)
        with self._cond:
            if self._shutting_down:
                return delay
            self._failures[item] = self._failures.get(item, 0) + 1
        self.add_after(item, delay)
        return delay

    def add_after(self, item: ReconcileRequest, delay: float) -> None:
        if delay <= 0:
            self.add(item)
            return

        def _fire() -> None:
            with self._cond:
                self._timers.discard(timer)
            self.add(item)

        timer = threading.Timer(delay, _fire)
        timer.daemon = True
        with self._cond:
            if self._shutting_down:
                return
            self._timers.add(timer)
        timer.start()

    def forget(self, item: ReconcileRequest) -> None:
        """Reset the backoff of ``item`` after a successful reconcile."""
        with self._cond:
            self._failures.pop(item, None)

    def shut_down(self) -> None:
        with self._cond:
            self._shutting_down = True
            for timer in self._timers:
                timer.cancel()
            self._timers.clear()
            self._cond.notify_all()

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


class Controller:
    """A reconcile function with its own queue and worker thread."""

    def __init__(self, name: str, reconcile: ReconcileFunc, queue: WorkQueue) -> None:
        self.name = name
        self.queue = queue
        self._reconcile = reconcile
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        self._thread = threading.Thread(target=self._worker_loop, daemon=True, name=f"worker-{self.name}")
        self._thread.start()
        logger.info("controller_started", controller=self.name)

    def stop(self) -> None:
        self.queue.shut_down()
        if self._thread:
            self._thread.join(timeout=5)

    def process_next(self, timeout: float | None = None) -> bool:
        """Reconcile one queued request. Returns ``False`` if none was available."""
        request = self.queue.get(timeout=timeout)
        if request is None:
            return False
        try:
            self._reconcile(request)
        except Exception:
            delay = self.queue.add_rate_limited(request)
            logger.exception("reconcile_failed", controller=self.name, request=str(request), retry_in=delay)
        else:
            self.queue.forget(request)
        finally:
            self.queue.done(request)
        return True

    def _worker_loop(self) -> None:
        while not self.queue.shutting_down:
            self.process_next(timeout=1.0)


class ControllerBuilder:
    """Declares which watches feed a controller.

    Obtain one from :meth:`ControllerManager.new_controller`.
    """

    def __init__(self, manager: ControllerManager, controller: Controller) -> None:
        self._manager = manager
        self._controller = controller
        self._primary: ResourceKind | None = None
        self._watches: list[tuple[ResourceKind, EventHandler]] = []

    def for_kind(self, kind: ResourceKind) -> ControllerBuilder:
        """Reconcile objects of ``kind`` whenever they change."""
        self._primary = kind
        self._watches.append((kind, enqueue_request_for_object))
        return self

    def watches(self, kind: ResourceKind, handler: EventHandler) -> ControllerBuilder:
        """Map events on ``kind`` to requests through ``handler``."""
        self._watches.append((kind, handler))
        return self

    def owns(self, kind: ResourceKind) -> ControllerBuilder:
        """Reconcile the owner whenever an object of ``kind`` it controls changes."""
        if self._primary is None:
            raise ValueError("for_kind() must be called before owns()")
        self._watches.append((kind, EnqueueRequestForOwner(self._primary)))
        return self

    def complete(self) -> Controller:
        if self._primary is None:
            raise ValueError(f"controller {self._controller.name} has no primary kind")
        for kind, handler in self._watches:
            self._manager.register_watch(kind, handler, self._controller.queue)
        self._manager.add_controller(self._controller)
        return self._controller


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class ControllerManager:
    """Runs watch streams and controllers until stopped.

    Parameters
    ----------
    store:
        Store used to open watch streams.
    watch_timeout:
        Server-side timeout of each watch stream; streams are reopened after it.
    retry_base_delay, retry_max_delay:
        Backoff bounds for requests whose reconcile raised.
    reconnect_delay:
        Wait before reopening a watch stream that failed.
    """

    def __init__(
        self,
        store: KubernetesStore,
        watch_timeout: int = 300,
        retry_base_delay: float = 0.5,
        retry_max_delay: float = 300.0,
        reconnect_delay: float = 5.0,
    ) -> None:
        self._store = store
        self._watch_timeout = watch_timeout
        self._retry_base_delay = retry_base_delay
        self._retry_max_delay = retry_max_delay
        self._reconnect_delay = reconnect_delay
        self._stop_event = threading.Event()
        self._controllers: list[Controller] = []
        self._handlers: dict[ResourceKind, list[tuple[EventHandler, WorkQueue]]] = {}
        self._threads: list[threading.Thread] = []

    @property
    def controllers(self) -> list[Controller]:
        return list(self._controllers)

    def watched_kinds(self) -> list[ResourceKind]:
        return list(self._handlers)

    def handlers_for(self, kind: ResourceKind) -> list[EventHandler]:
        return [handler for handler, _ in self._handlers.get(kind, [])]

    # -- registration -----------------------------------------------------------

    def new_controller(self, name: str, reconcile: ReconcileFunc) -> ControllerBuilder:
        queue = WorkQueue(base_delay=self._retry_base_delay, max_delay=self._retry_max_delay)
        return ControllerBuilder(self, Controller(name, reconcile, queue))

    def register_watch(self, kind: ResourceKind, handler: EventHandler, queue: WorkQueue) -> None:
        self._handlers.setdefault(kind, []).append((handler, queue))

    def add_controller(self, controller: Controller) -> None:
        self._controllers.append(controller)

    # -- lifecycle --------------------------------------------------------------

    def start(self) -> None:
        """Start controllers and watches, then block until :meth:`stop`."""
        for controller in self._controllers:
            controller.start()

        for kind in self._handlers:
            t = threading.Thread(target=self._watch_loop, args=(kind,), daemon=True, name=f"watch-{kind.plural}")
            self._threads.append(t)
            t.start()
            logger.info("watcher_started", kind=str(kind))

        self._stop_event.wait()

    def stop(self) -> None:
        """Signal watch threads and controllers to stop."""
        if self._stop_event.is_set():
            return
        logger.info("manager_stopping")
        self._stop_event.set()
        for controller in self._controllers:
            controller.stop()
        for t in self._threads:
            t.join(timeout=5)
        logger.info("manager_stopped")

    # -- watching ---------------------------------------------------------------

    def dispatch(self, kind: ResourceKind, event: WatchEvent) -> None:
        """Run every handler registered for ``kind`` and enqueue the results."""
        for handler, queue in self._handlers.get(kind, []):
            try:
                requests = handler(event)
            except Exception:
                logger.exception("event_handler_error", kind=str(kind), event_type=event.type)
                continue
            for request in requests:
                queue.add(request)

    def _watch_loop(self, kind: ResourceKind) -> None:
        """Run the watch stream for ``kind``, reconnecting on timeout or error."""
        while not self._stop_event.is_set():
            try:
                for event in self._store.watch(kind, timeout_seconds=self._watch_timeout):
                    if self._stop_event.is_set():
                        break
                    self.dispatch(kind, event)
            except Exception:
                if not self._stop_event.is_set():
                    logger.exception("watch_error", kind=str(kind))
                    # Brief backoff before reconnecting
                    self._stop_event.wait(self._reconnect_delay)
