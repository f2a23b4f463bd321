"""Virtual-host reconciler: derives a DNSEndpoint and a Certificate per virtual host.

Every reconcile recomputes the desired state from scratch. Derivation is pure
(:func:`desired_certificate`, :func:`~contour_plus.endpoints.make_endpoints`);
the ``apply_*`` functions copy that state onto a loaded-or-new object, keeping
metadata and any fields this controller does not own, and the store does the
write under optimistic concurrency.

Derived objects are never deleted here. When a precondition stops holding
(fqdn removed, ACME annotation dropped, ...) the object is left as it was and
only garbage collection of the owning virtual host removes it.
"""

from __future__ import annotations

from typing import Any

import structlog

from contour_plus.annotations import (
    is_excluded,
    matches_ingress_class,
    resolve_issuer,
    wants_certificate,
)
from contour_plus.endpoints import make_endpoints, service_addresses
from contour_plus.kinds import CERTIFICATE, DNS_ENDPOINT, SERVICE, VirtualHostKind
from contour_plus.models import (
    CertificateSpec,
    Endpoint,
    NamespacedName,
    ReconcileRequest,
    ReconcilerOptions,
    VirtualHost,
)
from contour_plus.ownership import AlreadyOwnedError, set_controller_reference
from contour_plus.store import KubernetesStore, NotFoundError, StoreError

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Desired state
# ---------------------------------------------------------------------------


def desired_certificate(vh: VirtualHost, options: ReconcilerOptions) -> CertificateSpec | None:
    """Return the Certificate ``vh`` should have, or ``None`` if it should not have one."""
    if not wants_certificate(vh.annotations):
        return None
    if not vh.fqdn or not vh.tls_secret_name:
        return None

    issuer = resolve_issuer(vh.annotations, options.default_issuer_name, options.default_issuer_kind)
    if issuer is None:
        logger.info("no_issuer_name", virtual_host=str(vh.namespaced_name))
        return None

    return CertificateSpec(
        dns_names=[vh.fqdn],
        common_name=vh.fqdn,
        secret_name=vh.tls_secret_name,
        issuer_ref=issuer,
    )


def apply_dns_endpoint(obj: dict[str, Any], endpoints: list[Endpoint], owner: VirtualHost) -> None:
    """Replace ``spec.endpoints`` of a DNSEndpoint and claim it for ``owner``."""
    spec = obj["spec"] = obj.get("spec") or {}
    spec["endpoints"] = [ep.to_manifest() for ep in endpoints]
    set_controller_reference(owner, obj)


def apply_certificate(obj: dict[str, Any], desired: CertificateSpec, owner: VirtualHost) -> None:
    """Set the Certificate fields this controller owns and claim it for ``owner``."""
    spec = obj["spec"] = obj.get("spec") or {}
    spec["dnsNames"] = list(desired.dns_names)
    spec["commonName"] = desired.common_name
    spec["secretName"] = desired.secret_name
    issuer_ref = spec["issuerRef"] = spec.get("issuerRef") or {}
    issuer_ref["name"] = desired.issuer_ref.name
    issuer_ref["kind"] = desired.issuer_ref.kind.value
    set_controller_reference(owner, obj)


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------


class VirtualHostReconciler:
    """Reconciles one virtual-host kind (HTTPProxy or IngressRoute).

    Parameters
    ----------
    store:
        Object store used for every read and write.
    kind:
        The virtual-host kind this reconciler is responsible for.
    options:
        Shared reconciler configuration.
    """

    def __init__(self, store: KubernetesStore, kind: VirtualHostKind, options: ReconcilerOptions) -> None:
        self._store = store
        self._kind = kind
        self._options = options
        self._log = logger.bind(controller=kind.kind)

    @property
    def kind(self) -> VirtualHostKind:
        return self._kind

    @property
    def options(self) -> ReconcilerOptions:
        return self._options

    def reconcile(self, request: ReconcileRequest) -> None:
        """Bring the derived objects of one virtual host up to date.

        Raises
        ------
        StoreError
            When a read or write fails; the caller retries the request.
        AlreadyOwnedError
            When a derived object with the target name is controlled by
            something else.
        """
        log = self._log.bind(virtual_host=str(request))

        try:
            obj = self._store.get(self._kind, request.namespaced_name)
        except NotFoundError:
            return
        except StoreError:
            log.exception("get_virtual_host_failed")
            raise

        vh = self._kind.parse(obj)

        if is_excluded(vh.annotations):
            log.debug("virtual_host_excluded")
            return
        if not matches_ingress_class(vh, self._options.ingress_class_name):
            log.debug("ingress_class_mismatch", ingress_class=self._options.ingress_class_name)
            return

        try:
            self._reconcile_dns_endpoint(vh, log)
        except (StoreError, AlreadyOwnedError):
            log.exception("dnsendpoint_reconcile_failed")
            raise

        try:
            self._reconcile_certificate(vh, log)
        except (StoreError, AlreadyOwnedError):
            log.exception("certificate_reconcile_failed")
            raise

    def _reconcile_dns_endpoint(self, vh: VirtualHost, log: Any) -> None:
        if not self._options.create_dns_endpoint:
            return
        if not vh.fqdn:
            return

        service = self._store.get(SERVICE, self._options.service_key)
        addresses = service_addresses(service)
        if not addresses:
            # The Service watch re-triggers this once an address is assigned.
            log.info("no_service_address", service=str(self._options.service_key))
            return

        endpoints = make_endpoints(vh.fqdn, addresses)
        key = self._derived_key(vh)
        op = self._store.create_or_update(
            DNS_ENDPOINT, key, lambda obj: apply_dns_endpoint(obj, endpoints, vh)
        )
        log.info("dnsendpoint_reconciled", name=key.name, operation=op.value)

    def _reconcile_certificate(self, vh: VirtualHost, log: Any) -> None:
        if not self._options.create_certificate:
            return

        desired = desired_certificate(vh, self._options)
        if desired is None:
            return

        key = self._derived_key(vh)
        op = self._store.create_or_update(
            CERTIFICATE, key, lambda obj: apply_certificate(obj, desired, vh)
        )
        log.info("certificate_reconciled", name=key.name, operation=op.value)

    def _derived_key(self, vh: VirtualHost) -> NamespacedName:
        return NamespacedName(vh.namespace, self._options.derived_name(vh.name))
