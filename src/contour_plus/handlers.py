"""Event handlers: map watch events to reconcile requests.

A handler takes one :class:`~contour_plus.models.WatchEvent` and returns the
requests (possibly none) to enqueue for the controller's primary kind.
Handlers cannot report errors to the watch loop, so failures are logged and
produce no requests.
"""

from __future__ import annotations

import structlog

from contour_plus.kinds import ResourceKind, VirtualHostKind
from contour_plus.models import NamespacedName, ReconcileRequest, WatchEvent
from contour_plus.ownership import controller_of
from contour_plus.store import KubernetesStore, StoreError

logger = structlog.get_logger(__name__)


def enqueue_request_for_object(event: WatchEvent) -> list[ReconcileRequest]:
    """Reconcile the object the event is about."""
    return [ReconcileRequest.for_object(event.object)]


class EnqueueRequestForOwner:
    """Reconcile the controller owner of a derived object, if it is ``owner_kind``."""

    def __init__(self, owner_kind: ResourceKind) -> None:
        self._owner_kind = owner_kind

    def __call__(self, event: WatchEvent) -> list[ReconcileRequest]:
        ref = controller_of(event.object)
        if ref is None:
            return []
        if ref.get("kind") != self._owner_kind.kind:
            return []
        if ref.get("apiVersion", "").rpartition("/")[0] != self._owner_kind.group:
            return []

        namespace = NamespacedName.of(event.object).namespace
        return [ReconcileRequest(NamespacedName(namespace, ref.get("name", "")))]


class ServiceEventRouter:
    """Fan a change of the load-balancer Service out to every virtual host.

    DNSEndpoints depend on the Service's addresses, not only on the virtual
    host, so every virtual host of ``kind`` is reconciled when the Service
    changes. Events for any other Service are ignored.
    """

    def __init__(self, store: KubernetesStore, service_key: NamespacedName, kind: VirtualHostKind) -> None:
        self._store = store
        self._service_key = service_key
        self._kind = kind

    def __call__(self, event: WatchEvent) -> list[ReconcileRequest]:
        if NamespacedName.of(event.object) != self._service_key:
            return []

        try:
            items = self._store.list(self._kind)
        except StoreError:
            logger.exception("list_virtual_hosts_failed", kind=self._kind.kind)
            return []

        requests = [ReconcileRequest.for_object(item) for item in items]
        logger.debug(
            "service_change_fanned_out",
            service=str(self._service_key),
            kind=self._kind.kind,
            requests=len(requests),
        )
        return requests
