"""Data models for contour-plus."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Annotation constants
# ---------------------------------------------------------------------------

ANNOTATION_PREFIX = "contour-plus.cybozu.com"
"""Annotation prefix owned by this controller."""

EXCLUDE_ANNOTATION = f"{ANNOTATION_PREFIX}/exclude"
TLS_ACME_ANNOTATION = "kubernetes.io/tls-acme"
ISSUER_NAME_ANNOTATION = "cert-manager.io/issuer"
CLUSTER_ISSUER_NAME_ANNOTATION = "cert-manager.io/cluster-issuer"
INGRESS_CLASS_ANNOTATION = "kubernetes.io/ingress.class"
CONTOUR_INGRESS_CLASS_ANNOTATION = "projectcontour.io/ingress.class"

DEFAULT_RECORD_TTL = 3600


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class IssuerKind(str, Enum):
    """cert-manager issuer kinds a Certificate may reference."""

    ISSUER = "Issuer"
    CLUSTER_ISSUER = "ClusterIssuer"


class OperationResult(str, Enum):
    """Outcome of a create-or-update call."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


class RecordType(str, Enum):
    """DNS record type of an endpoint, chosen by address family."""

    A = "A"
    AAAA = "AAAA"


# ---------------------------------------------------------------------------
# Keys, requests and events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NamespacedName:
    """Identity of a namespaced Kubernetes object."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def parse(cls, value: str) -> NamespacedName:
        """Parse a ``namespace/name`` string."""
        namespace, sep, name = value.partition("/")
        if not sep or not namespace or not name or "/" in name:
            raise ValueError(f"Expected 'namespace/name', got {value!r}")
        return cls(namespace=namespace, name=name)

    @classmethod
    def of(cls, obj: dict[str, Any]) -> NamespacedName:
        """Key of a raw API object."""
        metadata = obj.get("metadata") or {}
        return cls(namespace=metadata.get("namespace") or "", name=metadata.get("name") or "")


@dataclass(frozen=True)
class ReconcileRequest:
    """A request to reconcile one object of a controller's primary kind."""

    namespaced_name: NamespacedName

    def __str__(self) -> str:
        return str(self.namespaced_name)

    @classmethod
    def for_object(cls, obj: dict[str, Any]) -> ReconcileRequest:
        return cls(NamespacedName.of(obj))


@dataclass(frozen=True)
class WatchEvent:
    """A change notification from a watch stream."""

    type: str
    object: dict[str, Any]


# ---------------------------------------------------------------------------
# Virtual hosts
# ---------------------------------------------------------------------------


class VirtualHost(BaseModel):
    """The fields of an HTTPProxy or IngressRoute this controller cares about."""

    api_version: str
    kind: str
    namespace: str
    name: str
    uid: str = ""
    fqdn: str | None = None
    tls_secret_name: str | None = None
    ingress_class_name: str | None = None
    annotations: dict[str, str] = Field(default_factory=dict)

    @property
    def namespaced_name(self) -> NamespacedName:
        return NamespacedName(self.namespace, self.name)


# ---------------------------------------------------------------------------
# Derived resource specs
# ---------------------------------------------------------------------------


class Endpoint(BaseModel):
    """One external-dns record: a name and its targets."""

    dns_name: str = Field(..., min_length=1)
    targets: list[str] = Field(..., min_length=1)
    record_type: RecordType
    record_ttl: int = DEFAULT_RECORD_TTL

    def to_manifest(self) -> dict[str, Any]:
        """Serialize to the DNSEndpoint ``spec.endpoints[]`` shape."""
        return {
            "dnsName": self.dns_name,
            "targets": list(self.targets),
            "recordType": self.record_type.value,
            "recordTTL": self.record_ttl,
        }


class IssuerRef(BaseModel):
    """Reference to the cert-manager issuer that signs a Certificate."""

    name: str
    kind: IssuerKind


class CertificateSpec(BaseModel):
    """The Certificate fields this controller owns."""

    dns_names: list[str]
    common_name: str
    secret_name: str
    issuer_ref: IssuerRef


# ---------------------------------------------------------------------------
# Reconciler options
# ---------------------------------------------------------------------------


class ReconcilerOptions(BaseModel):
    """Configuration shared by every virtual-host reconciler."""

    model_config = {"frozen": True}

    service_key: NamespacedName
    prefix: str = ""
    default_issuer_name: str = ""
    default_issuer_kind: IssuerKind = IssuerKind.CLUSTER_ISSUER
    create_dns_endpoint: bool = True
    create_certificate: bool = True
    ingress_class_name: str = ""

    def derived_name(self, owner_name: str) -> str:
        """Name of the DNSEndpoint / Certificate derived from ``owner_name``."""
        return f"{self.prefix}{owner_name}"
