"""Direct deployment: resolve references against live state and roll out in order.

Each resource moves through resolve -> apply -> await-ready.  A resource is
scheduled only when every dependency has completed await-ready, so a
dependent always reads its dependency's ready live state.  Independent
branches run concurrently up to ``max_concurrency``.

Failures are resource scoped: the failed resource's dependents are skipped
while unrelated branches continue.
"""

from __future__ import annotations

import asyncio
import dataclasses
import time
import uuid
from collections.abc import Iterable
from typing import Any

from kroflow.client import ClusterClient
from kroflow.deployment.apply import apply_with_retry
from kroflow.deployment.readiness import wait_until_ready
from kroflow.errors import (
    ClusterApiError,
    ClusterNotFoundError,
    ReadinessFailureError,
    ReadinessTimeoutError,
    ResourceApplyError,
    ResourceIdError,
    UnresolvedReferenceError,
)
from kroflow.events.dispatcher import EventDispatcher
from kroflow.expressions.evaluator import resolve_value
from kroflow.expressions.paths import get_field
from kroflow.graph.builder import build_dependency_graph
from kroflow.graph.dependency_graph import DependencyGraph
from kroflow.models.config import DeploymentConfig, RetryPolicy
from kroflow.models.deployment import (
    AppliedResource,
    DeploymentResult,
    DeploymentStatus,
    ReadinessResult,
    ResourceError,
    ResourcePhase,
    RollbackResult,
    summarize_status,
)
from kroflow.models.events import DeploymentEvent, DeploymentEventType
from kroflow.models.expressions import is_dynamic
from kroflow.models.references import Reference
from kroflow.models.resources import ResourceNode
from kroflow.observability.logging import deployment_context, get_logger
from kroflow.observability.metrics import (
    deployments_total,
    readiness_wait_seconds,
    resource_failures_total,
    resources_applied_total,
)
from kroflow.readiness.evaluators import default_registry
from kroflow.readiness.registry import ReadinessRegistry

_log = get_logger("deployment.orchestrator")

# Kinds that never take metadata.namespace.
CLUSTER_SCOPED_KINDS = frozenset(
    {
        "Namespace",
        "Node",
        "PersistentVolume",
        "StorageClass",
        "ClusterRole",
        "ClusterRoleBinding",
        "CustomResourceDefinition",
        "PriorityClass",
        "IngressClass",
        "ClusterIssuer",
        "MutatingWebhookConfiguration",
        "ValidatingWebhookConfiguration",
    },
)

_PENDING = "pending"
_RUNNING = "running"
_SUCCEEDED = "succeeded"
_FAILED = "failed"
_SKIPPED = "skipped"
_INTERRUPTED = "interrupted"


def _failure_reason(exc: Exception) -> str:
    if isinstance(exc, ReadinessTimeoutError):
        return "readiness_timeout"
    if isinstance(exc, ReadinessFailureError):
        return "readiness_failed"
    if isinstance(exc, ResourceApplyError):
        return "apply_error"
    return "resolve_error"


class DirectDeploymentOrchestrator:
    """Applies a DependencyGraph to a cluster without an in-cluster controller.

    Args:
        client:       Cluster API client.
        registry:     Readiness evaluators by kind.  A fresh default registry
                      is used when omitted.
        config:       Waiting, concurrency and rollback behaviour.
        retry_policy: Backoff for failed apply calls.
        events:       Receives progress events.
    """

    def __init__(
        self,
        client: ClusterClient,
        registry: ReadinessRegistry | None = None,
        config: DeploymentConfig | None = None,
        retry_policy: RetryPolicy | None = None,
        events: EventDispatcher | None = None,
    ) -> None:
        self._client = client
        self._registry = registry if registry is not None else default_registry()
        self._config = config or DeploymentConfig()
        self._retry = retry_policy or RetryPolicy()
        self._events = events or EventDispatcher()

    @property
    def registry(self) -> ReadinessRegistry:
        return self._registry

    @property
    def config(self) -> DeploymentConfig:
        return self._config

    async def deploy(
        self,
        graph: DependencyGraph,
        spec: dict[str, Any] | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
        deployment_id: str | None = None,
    ) -> DeploymentResult:
        """Roll out *graph*; *spec* provides values for ``schema.spec.*`` references.

        Setting *cancel_event* stops scheduling new resources; applies already
        in flight finish and are reported.

        Raises:
            CircularDependencyError: before anything is applied.
        """
        order = graph.topological_order()
        run = _DeploymentRun(
            orchestrator=self,
            graph=graph,
            order=order,
            spec=spec or {},
            cancel_event=cancel_event,
            deployment_id=deployment_id or f"deployment-{uuid.uuid4().hex[:12]}",
        )
        with deployment_context(run.deployment_id):
            return await run.execute()

    async def deploy_resources(
        self,
        resources: Iterable[ResourceNode],
        spec: dict[str, Any] | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> DeploymentResult:
        """Build the dependency graph for *resources* and deploy it."""
        return await self.deploy(build_dependency_graph(resources), spec, cancel_event=cancel_event)

    async def rollback(self, result: DeploymentResult, graph: DependencyGraph) -> RollbackResult:
        """Delete everything *result* applied, leaves first."""
        applied = {a.id: a for a in result.applied_resources if a.action != "dry_run"}
        order = graph.subgraph(list(applied)).deletion_order()
        targets = [
            (resource_id, str(applied[resource_id].manifest.get("apiVersion", "v1")), applied[resource_id])
            for resource_id in order
        ]
        return await self._delete_targets(
            [(rid, api, a.kind, a.name, a.namespace or None) for rid, api, a in targets],
            deployment_id=result.deployment_id,
        )

    async def delete(self, graph: DependencyGraph) -> RollbackResult:
        """Tear down every resource of *graph*, leaves first.

        Deleting a resource that does not exist counts as success.
        """
        targets: list[tuple[str, str, str, str, str | None]] = []
        errors: list[ResourceError] = []
        for resource_id in graph.deletion_order():
            node = graph.node(resource_id)
            name = node.metadata.get("name")
            if is_dynamic(name) or not name:
                errors.append(
                    ResourceError(
                        resource_id=resource_id,
                        kind=node.kind,
                        phase=ResourcePhase.ROLLBACK,
                        error=ResourceIdError(f"Cannot delete {node.kind} {resource_id}: name is not a literal"),
                    )
                )
                continue
            namespace = self._namespace_of(node.kind, node.config)
            targets.append((resource_id, node.api_version, node.kind, str(name), namespace))
        outcome = await self._delete_targets(targets, deployment_id="")
        all_errors = (*errors, *outcome.errors)
        return RollbackResult(
            status=summarize_status(len(outcome.deleted), len(all_errors)),
            deleted=outcome.deleted,
            errors=all_errors,
        )

    def _namespace_of(self, kind: str, manifest: dict[str, Any]) -> str | None:
        namespace = (manifest.get("metadata") or {}).get("namespace")
        if isinstance(namespace, str) and namespace:
            return namespace
        if kind in CLUSTER_SCOPED_KINDS:
            return None
        return self._config.namespace or None

    async def _delete_targets(
        self,
        targets: list[tuple[str, str, str, str, str | None]],
        deployment_id: str,
    ) -> RollbackResult:
        log = _log.bind(deployment_id=deployment_id) if deployment_id else _log
        deleted: list[str] = []
        errors: list[ResourceError] = []
        for resource_id, api_version, kind, name, namespace in targets:
            try:
                await self._client.delete(api_version, kind, name, namespace)
            except ClusterNotFoundError:
                log.debug("resource_already_absent", resource_id=resource_id, kind=kind, name=name)
            except ClusterApiError as exc:
                log.error("resource_delete_failed", resource_id=resource_id, kind=kind, name=name, error=str(exc))
                errors.append(ResourceError(resource_id, kind, ResourcePhase.ROLLBACK, exc))
                continue
            deleted.append(resource_id)
            log.info("resource_deleted", resource_id=resource_id, kind=kind, name=name)
            await self._events.emit(
                DeploymentEvent(
                    type=DeploymentEventType.ROLLBACK,
                    message=f"Deleted {kind}/{name}",
                    deployment_id=deployment_id,
                    resource_id=resource_id,
                )
            )
        return RollbackResult(
            status=summarize_status(len(deleted), len(errors)),
            deleted=tuple(deleted),
            errors=tuple(errors),
        )


class _DeploymentRun:
    """Mutable state of one deploy() call.  Never shared between calls."""

    def __init__(
        self,
        orchestrator: DirectDeploymentOrchestrator,
        graph: DependencyGraph,
        order: list[str],
        spec: dict[str, Any],
        cancel_event: asyncio.Event | None,
        deployment_id: str,
    ) -> None:
        self._orch = orchestrator
        self._config = orchestrator._config
        self._graph = graph
        self._order = order
        self._schema_values = {"spec": spec}
        self._cancel_event = cancel_event
        self.deployment_id = deployment_id

        self._state: dict[str, str] = dict.fromkeys(order, _PENDING)
        self._applied: dict[str, AppliedResource] = {}
        self._live: dict[str, dict[str, Any]] = {}
        self._errors: list[ResourceError] = []
        self._deadline: float | None = None
        self._timed_out = False

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _cancel_requested(self) -> bool:
        return self._cancel_event is not None and self._cancel_event.is_set()

    def _deadline_passed(self, loop: asyncio.AbstractEventLoop) -> bool:
        return self._deadline is not None and loop.time() >= self._deadline

    async def execute(self) -> DeploymentResult:
        loop = asyncio.get_running_loop()
        started = time.monotonic()
        if self._config.deployment_timeout_seconds > 0:
            self._deadline = loop.time() + self._config.deployment_timeout_seconds

        _log.info(
            "deployment_started",
            resources=len(self._order),
            dry_run=self._config.dry_run,
            wait_for_ready=self._config.wait_for_ready,
        )
        await self._emit(
            DeploymentEventType.STARTED,
            f"Deploying {len(self._order)} resources",
            details={"resources": list(self._order)},
        )

        pending = list(self._order)
        running: dict[asyncio.Task[None], str] = {}
        cancel_waiter = asyncio.ensure_future(self._cancel_event.wait()) if self._cancel_event is not None else None

        try:
            while True:
                if self._deadline_passed(loop) and not self._timed_out:
                    self._timed_out = True
                    _log.warning("deployment_timeout", timeout=self._config.deployment_timeout_seconds)
                stop = self._cancel_requested() or self._timed_out

                if not stop:
                    await self._schedule(pending, running)
                if not running:
                    break

                if self._cancel_requested():
                    await self._interrupt(running)
                    break

                wait_set: set[asyncio.Future[Any]] = set(running)
                if cancel_waiter is not None:
                    wait_set.add(cancel_waiter)
                timeout = None
                if self._deadline is not None and not self._timed_out:
                    timeout = max(self._deadline - loop.time(), 0.0)
                done, _ = await asyncio.wait(wait_set, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    if task in running:
                        running.pop(task)
                        task.result()
        except asyncio.CancelledError:
            # Caller cancelled deploy() itself: drain in-flight applies, then propagate.
            await self._interrupt(running)
            raise
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()

        for node_id in pending:
            await self._skip(node_id, "deployment cancelled" if self._cancel_requested() else "deployment timed out")

        return await self._finish(started)

    async def _schedule(self, pending: list[str], running: dict[asyncio.Task[None], str]) -> None:
        """Start every pending node whose dependencies all succeeded; skip the blocked ones.

        *pending* is in topological order, so skips propagate transitively in one pass.
        """
        for node_id in list(pending):
            deps = self._graph.dependencies_of(node_id)
            blocked = [d for d in deps if self._state[d] in (_FAILED, _SKIPPED, _INTERRUPTED)]
            if blocked:
                pending.remove(node_id)
                await self._skip(node_id, f"dependency {blocked[0]} did not complete")
                continue
            if len(running) >= self._config.max_concurrency:
                continue
            if all(self._state[d] == _SUCCEEDED for d in deps):
                pending.remove(node_id)
                self._state[node_id] = _RUNNING
                task = asyncio.create_task(self._deploy_one(node_id), name=f"deploy-{node_id}")
                running[task] = node_id

    async def _interrupt(self, running: dict[asyncio.Task[None], str]) -> None:
        for task in running:
            task.cancel()
        if running:
            await asyncio.gather(*running, return_exceptions=True)
        running.clear()

    # ------------------------------------------------------------------
    # Per-resource state machine
    # ------------------------------------------------------------------

    async def _deploy_one(self, node_id: str) -> None:
        node = self._graph.node(node_id)
        phase = ResourcePhase.RESOLVE
        try:
            manifest = self._resolve(node)
            name = str((manifest.get("metadata") or {}).get("name", ""))

            if self._config.dry_run:
                self._record(node, manifest, live_state=None, action="dry_run", readiness=None)
                self._live[node_id] = manifest
                await self._succeed(node, name)
                return

            phase = ResourcePhase.APPLY
            live, action = await self._apply(node, manifest, name)

            phase = ResourcePhase.READINESS
            readiness, live = await self._await_ready(node, manifest, name, live)
            self._applied[node_id] = dataclasses.replace(
                self._applied[node_id], readiness_result=readiness, live_state=live
            )
            self._live[node_id] = live
            await self._succeed(node, name)
        except asyncio.CancelledError:
            if self._state[node_id] == _RUNNING:
                self._state[node_id] = _INTERRUPTED
            raise
        except Exception as exc:  # noqa: BLE001
            await self._fail(node, phase, exc)

    def _resolve(self, node: ResourceNode) -> dict[str, Any]:
        def lookup(ref: Reference) -> Any:
            if ref.is_schema:
                return get_field(self._schema_values, ref.field_path)
            if ref.resource_id not in self._live:
                raise UnresolvedReferenceError(ref.resource_id, ref.field_path, node.id)
            return get_field(self._live[ref.resource_id], ref.field_path)

        manifest = resolve_value(node.config, lookup)
        if not isinstance(manifest, dict):
            raise ResourceIdError(f"Resource {node.id} config did not resolve to an object")
        metadata = manifest.setdefault("metadata", {})
        if not metadata.get("namespace") and node.kind not in CLUSTER_SCOPED_KINDS and self._config.namespace:
            metadata["namespace"] = self._config.namespace
        return manifest

    async def _apply(self, node: ResourceNode, manifest: dict[str, Any], name: str) -> tuple[dict[str, Any], str]:
        apply_task = asyncio.ensure_future(
            apply_with_retry(
                self._orch._client,
                manifest,
                resource_id=node.id,
                kind=node.kind,
                name=name,
                retry=self._orch._retry,
            )
        )
        try:
            live, action = await asyncio.shield(apply_task)
        except asyncio.CancelledError:
            # Let the in-flight write land so the result reports it.
            try:
                live, action = await apply_task
            except ResourceApplyError as exc:
                await self._fail(node, ResourcePhase.APPLY, exc)
            else:
                await self._report_applied(node, manifest, name, live, action)
            raise

        await self._report_applied(node, manifest, name, live, action)
        return live, action

    async def _report_applied(
        self,
        node: ResourceNode,
        manifest: dict[str, Any],
        name: str,
        live: dict[str, Any],
        action: str,
    ) -> None:
        self._record(node, manifest, live_state=live, action=action, readiness=None)
        resources_applied_total.labels(kind=node.kind, action=action).inc()
        _log.info("resource_applied", resource_id=node.id, kind=node.kind, name=name, action=action)
        await self._emit(
            DeploymentEventType.RESOURCE_APPLIED,
            f"{action.capitalize()} {node.kind}/{name}",
            resource_id=node.id,
            details={"action": action},
        )

    async def _await_ready(
        self,
        node: ResourceNode,
        manifest: dict[str, Any],
        name: str,
        live: dict[str, Any],
    ) -> tuple[ReadinessResult | None, dict[str, Any]]:
        if not self._config.wait_for_ready:
            return None, live
        evaluator = node.readiness_evaluator or self._orch._registry.get_evaluator_for_kind(node.kind)
        if evaluator is None:
            return ReadinessResult.immediate(), live

        timeout = self._config.readiness_timeout_seconds
        if self._deadline is not None:
            timeout = max(min(timeout, self._deadline - asyncio.get_running_loop().time()), 0.0)

        async def on_status(result: ReadinessResult) -> None:
            await self._emit(
                DeploymentEventType.RESOURCE_STATUS,
                result.message or f"{node.kind}/{name} not ready",
                resource_id=node.id,
                details={"reason": result.reason},
            )

        started = time.monotonic()
        try:
            return await wait_until_ready(
                self._orch._client,
                evaluator,
                resource_id=node.id,
                api_version=str(manifest.get("apiVersion", "v1")),
                kind=node.kind,
                name=name,
                namespace=(manifest.get("metadata") or {}).get("namespace"),
                timeout=timeout,
                poll_interval=self._config.poll_interval_seconds,
                on_status=on_status,
            )
        finally:
            readiness_wait_seconds.labels(kind=node.kind).observe(time.monotonic() - started)

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _record(
        self,
        node: ResourceNode,
        manifest: dict[str, Any],
        live_state: dict[str, Any] | None,
        action: str,
        readiness: ReadinessResult | None,
    ) -> None:
        metadata = manifest.get("metadata") or {}
        self._applied[node.id] = AppliedResource(
            id=node.id,
            kind=node.kind,
            name=str(metadata.get("name", "")),
            namespace=str(metadata.get("namespace") or ""),
            manifest=manifest,
            readiness_result=readiness,
            live_state=live_state,
            action=action,
        )

    async def _succeed(self, node: ResourceNode, name: str) -> None:
        self._state[node.id] = _SUCCEEDED
        _log.info("resource_ready", resource_id=node.id, kind=node.kind, name=name)
        await self._emit(DeploymentEventType.RESOURCE_READY, f"{node.kind}/{name} is ready", resource_id=node.id)
        await self._emit_progress()

    async def _fail(self, node: ResourceNode, phase: ResourcePhase, exc: Exception) -> None:
        self._state[node.id] = _FAILED
        self._errors.append(ResourceError(resource_id=node.id, kind=node.kind, phase=phase, error=exc))
        reason = _failure_reason(exc)
        resource_failures_total.labels(kind=node.kind, reason=reason).inc()
        _log.error(
            "resource_failed",
            resource_id=node.id,
            kind=node.kind,
            phase=str(phase),
            reason=reason,
            error=str(exc),
        )
        await self._emit(
            DeploymentEventType.RESOURCE_FAILED,
            str(exc),
            resource_id=node.id,
            details={"phase": str(phase), "reason": reason},
        )
        await self._emit_progress()

    async def _skip(self, node_id: str, reason: str) -> None:
        self._state[node_id] = _SKIPPED
        _log.warning("resource_skipped", resource_id=node_id, reason=reason)
        await self._emit(DeploymentEventType.RESOURCE_SKIPPED, f"Skipped {node_id}: {reason}", resource_id=node_id)

    async def _emit_progress(self) -> None:
        completed = sum(1 for state in self._state.values() if state in (_SUCCEEDED, _FAILED))
        await self._emit(
            DeploymentEventType.PROGRESS,
            f"{completed}/{len(self._order)} resources processed",
            details={"completed": completed, "total": len(self._order)},
        )

    async def _emit(
        self,
        event_type: DeploymentEventType,
        message: str,
        resource_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        await self._orch._events.emit(
            DeploymentEvent(
                type=event_type,
                message=message,
                deployment_id=self.deployment_id,
                resource_id=resource_id,
                details=details,
            )
        )

    async def _finish(self, started: float) -> DeploymentResult:
        ready_ids = tuple(node_id for node_id in self._order if self._state[node_id] == _SUCCEEDED)
        skipped = tuple(node_id for node_id in self._order if self._state[node_id] in (_SKIPPED, _INTERRUPTED))
        status = summarize_status(len(ready_ids), len(self._errors) + len(skipped))

        rollback: RollbackResult | None = None
        applied = tuple(self._applied[node_id] for node_id in self._order if node_id in self._applied)
        if status != DeploymentStatus.SUCCEEDED and self._config.rollback_on_failure and not self._config.dry_run:
            _log.info("deployment_rollback_started", resources=len(applied))
            partial = DeploymentResult(deployment_id=self.deployment_id, status=status, applied_resources=applied)
            rollback = await self._orch.rollback(partial, self._graph)

        result = DeploymentResult(
            deployment_id=self.deployment_id,
            status=status,
            applied_resources=applied,
            errors=tuple(self._errors),
            ready_ids=ready_ids,
            skipped=skipped,
            cancelled=self._cancel_requested(),
            duration_ms=(time.monotonic() - started) * 1000,
            rollback=rollback,
        )

        deployments_total.labels(status=str(status)).inc()
        _log.info(
            "deployment_finished",
            status=str(status),
            ready=len(ready_ids),
            failed=len(self._errors),
            skipped=len(skipped),
            cancelled=result.cancelled,
            duration_ms=round(result.duration_ms, 1),
        )
        if status == DeploymentStatus.SUCCEEDED:
            await self._emit(DeploymentEventType.COMPLETED, f"Deployed {len(ready_ids)} resources")
        else:
            await self._emit(
                DeploymentEventType.FAILED,
                f"Deployment {status}: {len(ready_ids)} ready, {len(self._errors)} failed, {len(skipped)} skipped",
                details={"status": str(status), "errors": [e.message for e in self._errors]},
            )
        return result
