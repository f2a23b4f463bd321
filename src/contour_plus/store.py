"""Kubernetes-backed object store.

Reads and writes objects as plain dicts in the API server's JSON shape, for
both custom resources (through ``CustomObjectsApi``) and the core ``Service``
kind (through ``CoreV1Api``). API errors are translated into
:class:`StoreError` and its subclasses so callers never see
``kubernetes.client.ApiException`` directly.
"""

from __future__ import annotations

import copy
from typing import Any, Callable, Iterator

import structlog
from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException

from contour_plus.kinds import ResourceKind
from contour_plus.models import NamespacedName, OperationResult, WatchEvent

logger = structlog.get_logger(__name__)

# Core kinds by plural -> (read method, list-all method, list-namespaced method)
_CORE_METHODS: dict[str, tuple[str, str, str]] = {
    "services": ("read_namespaced_service", "list_service_for_all_namespaces", "list_namespaced_service"),
}


class StoreError(Exception):
    """Raised when the API server rejects or fails a request."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(StoreError):
    """The requested object does not exist."""


class ConflictError(StoreError):
    """The write was based on a stale resourceVersion, or the object already exists."""


def load_k8s_config() -> None:
    """Load Kubernetes configuration (in-cluster preferred, fallback to kubeconfig)."""
    try:
        config.load_incluster_config()
        logger.info("k8s_config_loaded", source="in-cluster")
    except config.ConfigException:
        config.load_kube_config()
        logger.info("k8s_config_loaded", source="kubeconfig")


def _translate(exc: ApiException, action: str, kind: ResourceKind, target: str) -> StoreError:
    message = f"{action} {kind.kind} {target}: {exc.status} {exc.reason}"
    if exc.status == 404:
        return NotFoundError(message, status_code=404)
    if exc.status == 409:
        return ConflictError(message, status_code=409)
    return StoreError(message, status_code=exc.status)


class KubernetesStore:
    """Typed access to the API server with optimistic-concurrency writes.

    Parameters
    ----------
    api_client:
        Optional pre-configured :class:`kubernetes.client.ApiClient`. When
        omitted the default configuration loaded by :func:`load_k8s_config`
        is used.
    """

    def __init__(self, api_client: client.ApiClient | None = None) -> None:
        self._api_client = api_client or client.ApiClient()
        self._custom = client.CustomObjectsApi(self._api_client)
        self._core = client.CoreV1Api(self._api_client)

    # -- reads ------------------------------------------------------------------

    def get(self, kind: ResourceKind, key: NamespacedName) -> dict[str, Any]:
        """Fetch one object. Raises :class:`NotFoundError` when absent."""
        try:
            if kind.is_core:
                read, _, _ = self._core_methods(kind)
                obj = getattr(self._core, read)(name=key.name, namespace=key.namespace)
                return self._to_dict(kind, obj)
            return self._custom.get_namespaced_custom_object(
                kind.group, kind.version, key.namespace, kind.plural, key.name
            )
        except ApiException as exc:
            raise _translate(exc, "get", kind, str(key)) from exc

    def list(self, kind: ResourceKind, namespace: str | None = None) -> list[dict[str, Any]]:
        """List objects of ``kind`` in ``namespace`` (all namespaces when ``None``)."""
        try:
            if kind.is_core:
                _, list_all, list_ns = self._core_methods(kind)
                if namespace:
                    result = getattr(self._core, list_ns)(namespace=namespace)
                else:
                    result = getattr(self._core, list_all)()
                return [self._to_dict(kind, item) for item in result.items]

            if namespace:
                result = self._custom.list_namespaced_custom_object(
                    kind.group, kind.version, namespace, kind.plural
                )
            else:
                result = self._custom.list_cluster_custom_object(kind.group, kind.version, kind.plural)
            return list(result.get("items") or [])
        except ApiException as exc:
            raise _translate(exc, "list", kind, namespace or "all namespaces") from exc

    # -- writes -----------------------------------------------------------------

    def create(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]:
        key = NamespacedName.of(obj)
        self._require_custom(kind)
        try:
            return self._custom.create_namespaced_custom_object(
                kind.group, kind.version, key.namespace, kind.plural, obj
            )
        except ApiException as exc:
            raise _translate(exc, "create", kind, str(key)) from exc

    def update(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]:
        """Replace an object. The body's ``resourceVersion`` guards against lost updates."""
        key = NamespacedName.of(obj)
        self._require_custom(kind)
        try:
            return self._custom.replace_namespaced_custom_object(
                kind.group, kind.version, key.namespace, kind.plural, key.name, obj
            )
        except ApiException as exc:
            raise _translate(exc, "update", kind, str(key)) from exc

    def create_or_update(
        self,
        kind: ResourceKind,
        key: NamespacedName,
        mutate: Callable[[dict[str, Any]], None],
    ) -> OperationResult:
        """Load ``key`` (or start from an empty object), apply ``mutate`` and save.

        ``mutate`` edits the object in place. Nothing is written when the
        mutation leaves an existing object unchanged.
        """
        try:
            obj = self.get(kind, key)
            exists = True
        except NotFoundError:
            obj = kind.new_object(key)
            exists = False

        before = copy.deepcopy(obj)
        mutate(obj)

        if NamespacedName.of(obj) != key:
            raise StoreError(f"mutation must not change the name or namespace of {kind.kind} {key}")

        if not exists:
            self.create(kind, obj)
            return OperationResult.CREATED
        if obj == before:
            return OperationResult.UNCHANGED
        self.update(kind, obj)
        return OperationResult.UPDATED

    # -- watch ------------------------------------------------------------------

    def watch(self, kind: ResourceKind, timeout_seconds: int = 300) -> Iterator[WatchEvent]:
        """Stream change events for ``kind`` across all namespaces.

        The stream ends after ``timeout_seconds``; callers reconnect. A fresh
        stream starts with an ``ADDED`` event for every existing object.
        """
        w = watch.Watch()
        if kind.is_core:
            _, list_all, _ = self._core_methods(kind)
            stream = w.stream(getattr(self._core, list_all), timeout_seconds=timeout_seconds)
        else:
            stream = w.stream(
                self._custom.list_cluster_custom_object,
                kind.group,
                kind.version,
                kind.plural,
                timeout_seconds=timeout_seconds,
            )
        try:
            for event in stream:
                event_type = event.get("type", "")
                raw = event.get("raw_object")
                if event_type == "ERROR":
                    raise StoreError(f"watch {kind.kind} failed: {raw}", status_code=(raw or {}).get("code"))
                if not isinstance(raw, dict):
                    continue
                yield WatchEvent(type=event_type, object=raw)
        except ApiException as exc:
            raise _translate(exc, "watch", kind, "all namespaces") from exc
        finally:
            w.stop()

    # -- helpers ----------------------------------------------------------------

    def _core_methods(self, kind: ResourceKind) -> tuple[str, str, str]:
        try:
            return _CORE_METHODS[kind.plural]
        except KeyError:
            raise StoreError(f"unsupported core kind {kind.kind}") from None

    def _require_custom(self, kind: ResourceKind) -> None:
        if kind.is_core:
            raise StoreError(f"writes to core kind {kind.kind} are not supported")

    def _to_dict(self, kind: ResourceKind, obj: Any) -> dict[str, Any]:
        data = self._api_client.sanitize_for_serialization(obj)
        data.setdefault("apiVersion", kind.api_version)
        data.setdefault("kind", kind.kind)
        return data
