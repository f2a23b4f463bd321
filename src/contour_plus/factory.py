"""Wire the HTTPProxy and IngressRoute reconcilers into a controller manager."""

from __future__ import annotations

import structlog

from contour_plus.handlers import ServiceEventRouter
from contour_plus.kinds import CERTIFICATE, DNS_ENDPOINT, SERVICE, VIRTUAL_HOST_KINDS
from contour_plus.manager import ControllerManager
from contour_plus.models import ReconcilerOptions
from contour_plus.reconciler import VirtualHostReconciler
from contour_plus.store import KubernetesStore

logger = structlog.get_logger(__name__)


def setup_reconcilers(
    manager: ControllerManager,
    store: KubernetesStore,
    options: ReconcilerOptions,
) -> list[VirtualHostReconciler]:
    """Create one reconciler per virtual-host kind and register its watches.

    Derived kinds are only watched (``owns``) when their derivation is enabled.
    """
    reconcilers: list[VirtualHostReconciler] = []
    for kind in VIRTUAL_HOST_KINDS:
        reconciler = VirtualHostReconciler(store, kind, options)

        builder = (
            manager.new_controller(kind.kind.lower(), reconciler.reconcile)
            .for_kind(kind)
            .watches(SERVICE, ServiceEventRouter(store, options.service_key, kind))
        )
        if options.create_dns_endpoint:
            builder = builder.owns(DNS_ENDPOINT)
        if options.create_certificate:
            builder = builder.owns(CERTIFICATE)
        builder.complete()

        logger.info(
            "reconciler_registered",
            kind=kind.kind,
            create_dns_endpoint=options.create_dns_endpoint,
            create_certificate=options.create_certificate,
        )
        reconcilers.append(reconciler)
    return reconcilers
