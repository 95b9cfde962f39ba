"""Cluster API client used by direct deployment.

The orchestrator only needs create / patch / read / delete with a
three-way outcome: success, :class:`ClusterNotFoundError`,
:class:`ClusterConflictError`, or any other :class:`ClusterApiError`.
:class:`KubernetesClusterClient` provides that on top of the
kubernetes-asyncio dynamic client.
"""

from __future__ import annotations

from typing import Any, Protocol

import structlog

from kroflow.errors import ClusterApiError, ClusterConflictError, ClusterNotFoundError

_log = structlog.get_logger(component="client")

_MERGE_PATCH = "application/merge-patch+json"


class ClusterClient(Protocol):
    """Minimal cluster API surface the orchestrator depends on."""

    async def create(self, manifest: dict[str, Any]) -> dict[str, Any]: ...

    async def patch(self, manifest: dict[str, Any]) -> dict[str, Any]: ...

    async def read(self, api_version: str, kind: str, name: str, namespace: str | None = None) -> dict[str, Any]: ...

    async def delete(self, api_version: str, kind: str, name: str, namespace: str | None = None) -> None: ...


def _translate(exc: Exception, action: str, kind: str, name: str) -> ClusterApiError:
    status = getattr(exc, "status", None)
    reason = getattr(exc, "reason", None) or str(exc)
    message = f"{action} {kind}/{name} failed: {reason}"
    if status == 404:
        return ClusterNotFoundError(message)
    if status == 409:
        return ClusterConflictError(message)
    return ClusterApiError(message, status=status)


class KubernetesClusterClient:
    """ClusterClient backed by ``kubernetes_asyncio.dynamic.DynamicClient``.

    Create instances with :meth:`connect`; call :meth:`close` when done.
    """

    def __init__(self, api_client: Any, dynamic_client: Any, default_namespace: str = "default") -> None:
        self._api_client = api_client
        self._dynamic = dynamic_client
        self._default_namespace = default_namespace or "default"

    @classmethod
    async def connect(cls, default_namespace: str = "") -> KubernetesClusterClient:
        """Configure from the in-cluster service account, falling back to kubeconfig."""
        # Import lazily; kubernetes-asyncio inspects the environment on import in some versions.
        import kubernetes_asyncio.config as k8s_config  # type: ignore[import-untyped]
        from kubernetes_asyncio.client import ApiClient  # type: ignore[import-untyped]
        from kubernetes_asyncio.dynamic import DynamicClient  # type: ignore[import-untyped]

        try:
            # load_incluster_config() is synchronous in kubernetes-asyncio
            k8s_config.load_incluster_config()
            _log.info("k8s_client_configured", source="incluster")
        except k8s_config.ConfigException:
            await k8s_config.load_kube_config()
            _log.info("k8s_client_configured", source="kubeconfig")

        api_client = ApiClient()
        dynamic_client = await DynamicClient(api_client)
        return cls(api_client, dynamic_client, default_namespace=default_namespace)

    async def close(self) -> None:
        await self._api_client.close()

    async def _resource(self, api_version: str, kind: str) -> Any:
        try:
            return await self._dynamic.resources.get(api_version=api_version, kind=kind)
        except Exception as exc:
            raise ClusterApiError(f"Unknown resource type {api_version}/{kind}: {exc}") from exc

    def _namespace_for(self, resource: Any, namespace: str | None) -> str | None:
        if not getattr(resource, "namespaced", False):
            return None
        return namespace or self._default_namespace

    async def create(self, manifest: dict[str, Any]) -> dict[str, Any]:
        from kubernetes_asyncio.client.exceptions import ApiException  # type: ignore[import-untyped]

        api_version, kind, name, namespace = _identity(manifest)
        resource = await self._resource(api_version, kind)
        try:
            created = await self._dynamic.create(
                resource, body=manifest, namespace=self._namespace_for(resource, namespace)
            )
        except ApiException as exc:
            raise _translate(exc, "create", kind, name) from exc
        return created.to_dict()

    async def patch(self, manifest: dict[str, Any]) -> dict[str, Any]:
        from kubernetes_asyncio.client.exceptions import ApiException  # type: ignore[import-untyped]

        api_version, kind, name, namespace = _identity(manifest)
        resource = await self._resource(api_version, kind)
        try:
            patched = await self._dynamic.patch(
                resource,
                body=manifest,
                name=name,
                namespace=self._namespace_for(resource, namespace),
                content_type=_MERGE_PATCH,
            )
        except ApiException as exc:
            raise _translate(exc, "patch", kind, name) from exc
        return patched.to_dict()

    async def read(self, api_version: str, kind: str, name: str, namespace: str | None = None) -> dict[str, Any]:
        from kubernetes_asyncio.client.exceptions import ApiException  # type: ignore[import-untyped]

        resource = await self._resource(api_version, kind)
        try:
            live = await self._dynamic.get(resource, name=name, namespace=self._namespace_for(resource, namespace))
        except ApiException as exc:
            raise _translate(exc, "read", kind, name) from exc
        return live.to_dict()

    async def delete(self, api_version: str, kind: str, name: str, namespace: str | None = None) -> None:
        from kubernetes_asyncio.client.exceptions import ApiException  # type: ignore[import-untyped]

        resource = await self._resource(api_version, kind)
        try:
            await self._dynamic.delete(resource, name=name, namespace=self._namespace_for(resource, namespace))
        except ApiException as exc:
            raise _translate(exc, "delete", kind, name) from exc


def _identity(manifest: dict[str, Any]) -> tuple[str, str, str, str | None]:
    metadata = manifest.get("metadata") or {}
    return (
        str(manifest.get("apiVersion", "v1")),
        str(manifest.get("kind", "")),
        str(metadata.get("name", "")),
        metadata.get("namespace"),
    )
