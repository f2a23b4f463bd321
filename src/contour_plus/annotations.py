"""Annotation policy: which virtual hosts to handle and how to issue their certificates."""

from __future__ import annotations

from collections.abc import Mapping

from contour_plus.models import (
    CLUSTER_ISSUER_NAME_ANNOTATION,
    CONTOUR_INGRESS_CLASS_ANNOTATION,
    EXCLUDE_ANNOTATION,
    INGRESS_CLASS_ANNOTATION,
    ISSUER_NAME_ANNOTATION,
    TLS_ACME_ANNOTATION,
    IssuerKind,
    IssuerRef,
    VirtualHost,
)


def is_excluded(annotations: Mapping[str, str]) -> bool:
    """Return ``True`` if the object opted out of contour-plus.

    Only the exact string ``"true"`` counts; ``"True"`` or ``"1"`` do not.
    """
    return annotations.get(EXCLUDE_ANNOTATION) == "true"


def wants_certificate(annotations: Mapping[str, str]) -> bool:
    """Return ``True`` if the object asks for an ACME certificate."""
    return annotations.get(TLS_ACME_ANNOTATION) == "true"


def resolve_issuer(
    annotations: Mapping[str, str],
    default_name: str,
    default_kind: IssuerKind,
) -> IssuerRef | None:
    """Pick the issuer for a Certificate.

    Starts from the configured default. ``cert-manager.io/issuer`` switches to a
    namespaced Issuer; ``cert-manager.io/cluster-issuer`` is checked afterwards
    and wins when both are present. Returns ``None`` when no issuer name results.
    """
    name = default_name
    kind = default_kind
    if ISSUER_NAME_ANNOTATION in annotations:
        name = annotations[ISSUER_NAME_ANNOTATION]
        kind = IssuerKind.ISSUER
    if CLUSTER_ISSUER_NAME_ANNOTATION in annotations:
        name = annotations[CLUSTER_ISSUER_NAME_ANNOTATION]
        kind = IssuerKind.CLUSTER_ISSUER

    if not name:
        return None
    return IssuerRef(name=name, kind=kind)


def matches_ingress_class(vh: VirtualHost, ingress_class_name: str) -> bool:
    """Return ``True`` if ``vh`` belongs to the configured ingress class.

    An empty ``ingress_class_name`` matches every virtual host.
    """
    if not ingress_class_name:
        return True
    candidates = (
        vh.annotations.get(INGRESS_CLASS_ANNOTATION),
        vh.annotations.get(CONTOUR_INGRESS_CLASS_ANNOTATION),
        vh.ingress_class_name,
    )
    return ingress_class_name in candidates
