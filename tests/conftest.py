"""Shared fixtures: an in-memory object store with resourceVersion conflict detection."""

from __future__ import annotations

import copy
import itertools
from typing import Any

import pytest

from contour_plus.kinds import ResourceKind
from contour_plus.models import NamespacedName
from contour_plus.store import ConflictError, KubernetesStore, NotFoundError, StoreError


class FakeStore(KubernetesStore):
    """KubernetesStore with the API server replaced by a dict.

    ``create_or_update`` is inherited unchanged, so tests exercise the real
    load-mutate-save logic.
    """

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str, str], dict[str, Any]] = {}
        self.writes: list[tuple[str, str, str]] = []
        self.failures: dict[tuple[str, str], Exception] = {}
        self._versions = itertools.count(1)
        self._uids = itertools.count(1)

    # -- test helpers -----------------------------------------------------------

    def add(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]:
        """Seed an object directly, bypassing write tracking and failures."""
        obj = copy.deepcopy(obj)
        obj.setdefault("apiVersion", kind.api_version)
        obj.setdefault("kind", kind.kind)
        metadata = obj.setdefault("metadata", {})
        metadata.setdefault("uid", f"uid-{next(self._uids)}")
        metadata["resourceVersion"] = str(next(self._versions))
        self.objects[self._key(kind, NamespacedName.of(obj))] = obj
        return copy.deepcopy(obj)

    def find(self, kind: ResourceKind, namespace: str, name: str) -> dict[str, Any] | None:
        obj = self.objects.get((kind.plural, namespace, name))
        return copy.deepcopy(obj) if obj is not None else None

    def all(self, kind: ResourceKind) -> list[dict[str, Any]]:
        return [copy.deepcopy(o) for (plural, _, _), o in self.objects.items() if plural == kind.plural]

    def fail(self, operation: str, kind: ResourceKind, exc: Exception) -> None:
        """Make every ``operation`` on ``kind`` raise ``exc``."""
        self.failures[(operation, kind.plural)] = exc

    # -- KubernetesStore interface ----------------------------------------------

    def get(self, kind: ResourceKind, key: NamespacedName) -> dict[str, Any]:
        self._maybe_fail("get", kind)
        obj = self.objects.get(self._key(kind, key))
        if obj is None:
            raise NotFoundError(f"get {kind.kind} {key}: not found", status_code=404)
        return copy.deepcopy(obj)

    def list(self, kind: ResourceKind, namespace: str | None = None) -> list[dict[str, Any]]:
        self._maybe_fail("list", kind)
        return [
            copy.deepcopy(o)
            for (plural, ns, _), o in sorted(self.objects.items())
            if plural == kind.plural and (namespace is None or ns == namespace)
        ]

    def create(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]:
        self._maybe_fail("create", kind)
        key = self._key(kind, NamespacedName.of(obj))
        if key in self.objects:
            raise ConflictError(f"create {kind.kind}: already exists", status_code=409)
        self.writes.append(("create", kind.plural, key[2]))
        return self.add(kind, obj)

    def update(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]:
        self._maybe_fail("update", kind)
        key = self._key(kind, NamespacedName.of(obj))
        current = self.objects.get(key)
        if current is None:
            raise NotFoundError(f"update {kind.kind}: not found", status_code=404)
        sent = (obj.get("metadata") or {}).get("resourceVersion")
        if sent != current["metadata"]["resourceVersion"]:
            raise ConflictError(f"update {kind.kind}: stale resourceVersion", status_code=409)
        self.writes.append(("update", kind.plural, key[2]))
        return self.add(kind, obj)

    # -- internals --------------------------------------------------------------

    def _key(self, kind: ResourceKind, key: NamespacedName) -> tuple[str, str, str]:
        return (kind.plural, key.namespace, key.name)

    def _maybe_fail(self, operation: str, kind: ResourceKind) -> None:
        exc = self.failures.get((operation, kind.plural))
        if exc is not None:
            raise exc


@pytest.fixture()
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture()
def store_error() -> StoreError:
    return StoreError("internal error", status_code=500)
