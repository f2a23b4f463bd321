"""Controller owner references on derived objects.

Kubernetes garbage-collects an object once its controller owner is gone, so a
DNSEndpoint or Certificate disappears together with its virtual host.
"""

from __future__ import annotations

from typing import Any

from contour_plus.models import VirtualHost


class AlreadyOwnedError(Exception):
    """Raised when a derived object is already controlled by a different owner."""

    def __init__(self, obj_name: str, owner_kind: str, owner_name: str) -> None:
        super().__init__(f"{obj_name} is already owned by {owner_kind}/{owner_name}")
        self.owner_kind = owner_kind
        self.owner_name = owner_name


def _group(api_version: str) -> str:
    return api_version.rpartition("/")[0]


def controller_of(obj: dict[str, Any]) -> dict[str, Any] | None:
    """Return the owner reference with ``controller: true``, if any."""
    for ref in (obj.get("metadata") or {}).get("ownerReferences") or []:
        if ref.get("controller"):
            return ref
    return None


def set_controller_reference(owner: VirtualHost, obj: dict[str, Any]) -> None:
    """Make ``owner`` the controller of ``obj``, editing its metadata in place.

    An existing reference to the same owner is replaced; references to other
    non-controller owners are kept.
    """
    metadata = obj["metadata"] = obj.get("metadata") or {}
    name = metadata.get("name", "")

    existing = controller_of(obj)
    if existing is not None and not _same_owner(existing, owner):
        raise AlreadyOwnedError(name, existing.get("kind", ""), existing.get("name", ""))

    ref = {
        "apiVersion": owner.api_version,
        "kind": owner.kind,
        "name": owner.name,
        "uid": owner.uid,
        "controller": True,
        "blockOwnerDeletion": True,
    }
    refs = list(metadata.get("ownerReferences") or [])
    for i, current in enumerate(refs):
        if _same_owner(current, owner):
            refs[i] = ref
            break
    else:
        refs.append(ref)
    metadata["ownerReferences"] = refs


def _same_owner(ref: dict[str, Any], owner: VirtualHost) -> bool:
    return (
        _group(ref.get("apiVersion", "")) == _group(owner.api_version)
        and ref.get("kind") == owner.kind
        and ref.get("name") == owner.name
    )
