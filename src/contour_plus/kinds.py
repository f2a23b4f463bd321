"""Descriptors for the Kubernetes resource kinds the controller reads and writes.

Both virtual-host flavours (Contour ``HTTPProxy`` and the older
``IngressRoute``) carry the same ``spec.virtualhost`` block, so a
:class:`VirtualHostKind` only has to say where its objects live and how to
parse one into a :class:`~contour_plus.models.VirtualHost`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from contour_plus.models import NamespacedName, VirtualHost


@dataclass(frozen=True)
class ResourceKind:
    """Group/version/kind plus the REST plural used to address a resource."""

    kind: str
    group: str
    version: str
    plural: str

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version

    @property
    def is_core(self) -> bool:
        return not self.group

    def new_object(self, key: NamespacedName) -> dict[str, Any]:
        """Return an empty object of this kind named ``key``."""
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": {"namespace": key.namespace, "name": key.name},
        }

    def __str__(self) -> str:
        return f"{self.kind}.{self.group}" if self.group else self.kind


@dataclass(frozen=True)
class VirtualHostKind(ResourceKind):
    """A resource kind whose objects can be read as virtual hosts."""

    def parse(self, obj: dict[str, Any]) -> VirtualHost:
        return parse_virtual_host(obj)


def parse_virtual_host(obj: dict[str, Any]) -> VirtualHost:
    """Read the ``spec.virtualhost`` block shared by HTTPProxy and IngressRoute.

    A missing virtualhost, fqdn, tls block or secretName is not an error; the
    corresponding field is simply ``None``.
    """
    metadata = obj.get("metadata") or {}
    spec = obj.get("spec") or {}
    vhost = spec.get("virtualhost") or {}
    tls = vhost.get("tls") or {}

    return VirtualHost(
        api_version=obj.get("apiVersion", ""),
        kind=obj.get("kind", ""),
        namespace=metadata.get("namespace") or "",
        name=metadata.get("name") or "",
        uid=metadata.get("uid") or "",
        fqdn=vhost.get("fqdn") or None,
        tls_secret_name=tls.get("secretName") or None,
        ingress_class_name=spec.get("ingressClassName") or None,
        annotations=metadata.get("annotations") or {},
    )


# ---------------------------------------------------------------------------
# Known kinds
# ---------------------------------------------------------------------------

SERVICE = ResourceKind(kind="Service", group="", version="v1", plural="services")

DNS_ENDPOINT = ResourceKind(
    kind="DNSEndpoint",
    group="externaldns.k8s.io",
    version="v1alpha1",
    plural="dnsendpoints",
)

CERTIFICATE = ResourceKind(
    kind="Certificate",
    group="cert-manager.io",
    version="v1",
    plural="certificates",
)

HTTP_PROXY = VirtualHostKind(
    kind="HTTPProxy",
    group="projectcontour.io",
    version="v1",
    plural="httpproxies",
)

INGRESS_ROUTE = VirtualHostKind(
    kind="IngressRoute",
    group="contour.heptio.com",
    version="v1beta1",
    plural="ingressroutes",
)

VIRTUAL_HOST_KINDS: tuple[VirtualHostKind, ...] = (HTTP_PROXY, INGRESS_ROUTE)
