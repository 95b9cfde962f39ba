"""Shared fixtures for kroflow integration tests.

Provides an in-memory cluster client that behaves like the API server for
create/patch/read/delete (including not-found and conflict outcomes), so
orchestrator flows can run end to end without a real cluster.
"""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import pytest

from kroflow.errors import ClusterConflictError, ClusterNotFoundError
from kroflow.events import EventDispatcher
from kroflow.models.config import DeploymentConfig, RetryPolicy
from kroflow.models.deployment import ReadinessResult
from kroflow.models.events import DeploymentEvent
from kroflow.models.resources import ResourceNode
from kroflow.readiness import ReadinessRegistry, default_registry

# ---------------------------------------------------------------------------
# Fake cluster
# ---------------------------------------------------------------------------

Key = tuple[str, str, str]


@dataclass
class Call:
    op: str
    kind: str
    name: str
    manifest: dict[str, Any] | None = None


@dataclass
class FakeClusterClient:
    """In-memory ClusterClient.

    ``on_create`` hooks per kind simulate controllers filling in fields
    (status, assigned IPs).  ``create_errors`` queues exceptions to raise
    for the next create calls of a given name.  ``apply_delay`` makes
    create/patch of a name take that many seconds.
    """

    objects: dict[Key, dict[str, Any]] = field(default_factory=dict)
    calls: list[Call] = field(default_factory=list)
    on_create: dict[str, Callable[[dict[str, Any]], None]] = field(default_factory=dict)
    create_errors: dict[str, list[Exception]] = field(default_factory=dict)
    apply_delay: dict[str, float] = field(default_factory=dict)
    in_flight: int = 0
    max_in_flight: int = 0

    @staticmethod
    def _key(kind: str, name: str, namespace: str | None) -> Key:
        return (kind, namespace or "", name)

    def _manifest_key(self, manifest: dict[str, Any]) -> Key:
        metadata = manifest.get("metadata") or {}
        return self._key(manifest["kind"], metadata["name"], metadata.get("namespace"))

    def seed(self, manifest: dict[str, Any]) -> None:
        self.objects[self._manifest_key(manifest)] = copy.deepcopy(manifest)

    def get(self, kind: str, name: str, namespace: str | None = None) -> dict[str, Any] | None:
        return self.objects.get(self._key(kind, name, namespace))

    def set_status(self, kind: str, name: str, status: dict[str, Any], namespace: str | None = None) -> None:
        self.objects[self._key(kind, name, namespace)]["status"] = status

    def ops(self, op: str | None = None) -> list[tuple[str, str]]:
        return [(c.op, c.name) for c in self.calls if op is None or c.op == op]

    async def create(self, manifest: dict[str, Any]) -> dict[str, Any]:
        name = manifest["metadata"]["name"]
        self.calls.append(Call("create", manifest["kind"], name, copy.deepcopy(manifest)))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.apply_delay.get(name):
                await asyncio.sleep(self.apply_delay[name])
        finally:
            self.in_flight -= 1
        queued = self.create_errors.get(name)
        if queued:
            raise queued.pop(0)
        key = self._manifest_key(manifest)
        if key in self.objects:
            raise ClusterConflictError(f"{manifest['kind']} {name} already exists")
        stored = copy.deepcopy(manifest)
        hook = self.on_create.get(manifest["kind"])
        if hook is not None:
            hook(stored)
        self.objects[key] = stored
        return copy.deepcopy(stored)

    async def patch(self, manifest: dict[str, Any]) -> dict[str, Any]:
        name = manifest["metadata"]["name"]
        self.calls.append(Call("patch", manifest["kind"], name, copy.deepcopy(manifest)))
        if self.apply_delay.get(name):
            await asyncio.sleep(self.apply_delay[name])
        key = self._manifest_key(manifest)
        if key not in self.objects:
            raise ClusterNotFoundError(f"{manifest['kind']} {name} not found")
        existing = self.objects[key]
        existing.update({k: copy.deepcopy(v) for k, v in manifest.items() if k != "status"})
        return copy.deepcopy(existing)

    async def read(self, api_version: str, kind: str, name: str, namespace: str | None = None) -> dict[str, Any]:
        self.calls.append(Call("read", kind, name))
        live = self.objects.get(self._key(kind, name, namespace))
        if live is None:
            raise ClusterNotFoundError(f"{kind} {name} not found")
        return copy.deepcopy(live)

    async def delete(self, api_version: str, kind: str, name: str, namespace: str | None = None) -> None:
        self.calls.append(Call("delete", kind, name))
        if self.objects.pop(self._key(kind, name, namespace), None) is None:
            raise ClusterNotFoundError(f"{kind} {name} not found")


# ---------------------------------------------------------------------------
# Controller simulations
# ---------------------------------------------------------------------------


def activate_namespace(obj: dict[str, Any]) -> None:
    obj["status"] = {"phase": "Active"}


def assign_cluster_ip(obj: dict[str, Any]) -> None:
    obj.setdefault("spec", {})["clusterIP"] = "10.96.0.15"


def roll_out_deployment(obj: dict[str, Any]) -> None:
    replicas = obj.get("spec", {}).get("replicas", 1)
    obj["status"] = {"readyReplicas": replicas, "availableReplicas": replicas, "updatedReplicas": replicas}


def never_ready(live: dict[str, Any]) -> ReadinessResult:
    return ReadinessResult(ready=False, reason="Pending", message="still provisioning")


def always_failed(live: dict[str, Any]) -> ReadinessResult:
    return ReadinessResult(ready=False, failed=True, reason="ProvisioningFailed", message="quota exceeded")


def make_node(id: str, kind: str, name: Any, api_version: str = "v1", **body: Any) -> ResourceNode:
    """ResourceNode for a manifest named *name*; *body* supplies top-level sections like ``spec``."""
    return ResourceNode(
        id=id,
        kind=kind,
        config={"apiVersion": api_version, "kind": kind, "metadata": {"name": name}, **body},
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def cluster() -> FakeClusterClient:
    return FakeClusterClient(
        on_create={
            "Namespace": activate_namespace,
            "Service": assign_cluster_ip,
            "Deployment": roll_out_deployment,
        }
    )


@pytest.fixture()
def registry() -> ReadinessRegistry:
    registry = default_registry()
    registry.register_for_kind("Widget", never_ready)
    registry.register_for_kind("BrokenWidget", always_failed)
    return registry


@pytest.fixture()
def fast_config() -> DeploymentConfig:
    return DeploymentConfig(readiness_timeout_seconds=0.3, poll_interval_seconds=0.01)


@pytest.fixture()
def no_backoff() -> RetryPolicy:
    return RetryPolicy(max_retries=2, initial_delay=0.0, max_delay=0.0)


@pytest.fixture()
def events() -> tuple[EventDispatcher, list[DeploymentEvent]]:
    received: list[DeploymentEvent] = []
    dispatcher = EventDispatcher()
    dispatcher.add_sink(received.append)
    return dispatcher, received
