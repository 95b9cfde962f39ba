"""End-to-end orchestrator flows against the in-memory cluster."""

from __future__ import annotations

import asyncio

import pytest
from prometheus_client import REGISTRY

from kroflow.deployment import DirectDeploymentOrchestrator
from kroflow.errors import (
    CircularDependencyError,
    ClusterApiError,
    ReadinessFailureError,
    ReadinessTimeoutError,
    ResourceApplyError,
    ResourceIdError,
)
from kroflow.events import EventDispatcher
from kroflow.graph import build_dependency_graph
from kroflow.models.config import DeploymentConfig, RetryPolicy
from kroflow.models.deployment import DeploymentStatus, ReadinessResult, ResourcePhase
from kroflow.models.events import DeploymentEvent, DeploymentEventType
from kroflow.models.expressions import template
from kroflow.models.references import schema_ref
from kroflow.readiness import ReadinessRegistry

from .conftest import FakeClusterClient, make_node

pytestmark = pytest.mark.integration


def _orchestrator(
    cluster: FakeClusterClient,
    registry: ReadinessRegistry,
    config: DeploymentConfig,
    retry: RetryPolicy | None = None,
    events: EventDispatcher | None = None,
) -> DirectDeploymentOrchestrator:
    return DirectDeploymentOrchestrator(
        cluster,
        registry=registry,
        config=config,
        retry_policy=retry or RetryPolicy(max_retries=0, initial_delay=0.0),
        events=events,
    )


# ---------------------------------------------------------------------------
# Ordering and reference resolution
# ---------------------------------------------------------------------------


class TestOrderedRollout:
    async def test_dependent_applied_after_dependency_is_ready(
        self, cluster: FakeClusterClient, registry: ReadinessRegistry, fast_config: DeploymentConfig
    ) -> None:
        ns = make_node("ns", "Namespace", "shop")
        app = make_node(
            "app",
            "Deployment",
            "web",
            api_version="apps/v1",
            spec={"replicas": 2},
        )
        app.config["metadata"]["namespace"] = ns.ref("metadata.name")

        result = await _orchestrator(cluster, registry, fast_config).deploy_resources([app, ns])

        assert result.status == DeploymentStatus.SUCCEEDED
        assert result.ready_ids == ("ns", "app")
        ops = cluster.ops()
        assert ops.index(("create", "shop")) < ops.index(("read", "shop")) < ops.index(("create", "web"))
        deployment_payload = next(c.manifest for c in cluster.calls if c.op == "create" and c.kind == "Deployment")
        assert deployment_payload is not None
        assert deployment_payload["metadata"]["namespace"] == "shop"
        assert cluster.get("Deployment", "web", "shop") is not None

    async def test_references_read_live_state(
        self, cluster: FakeClusterClient, registry: ReadinessRegistry, fast_config: DeploymentConfig
    ) -> None:
        svc = make_node("svc", "Service", "db", spec={"ports": [{"port": 5432}]})
        cm = make_node(
            "cm",
            "ConfigMap",
            "app-config",
            data={"DB_HOST": svc.ref("spec.clusterIP"), "DB_URL": template("postgres://", svc.ref("spec.clusterIP"))},
        )

        result = await _orchestrator(cluster, registry, fast_config).deploy_resources([cm, svc])

        assert result.status == DeploymentStatus.SUCCEEDED
        applied = result.get("cm")
        assert applied is not None
        assert applied.manifest["data"] == {"DB_HOST": "10.96.0.15", "DB_URL": "postgres://10.96.0.15"}
        assert applied.action == "created"

    async def test_schema_values_come_from_spec(
        self, cluster: FakeClusterClient, registry: ReadinessRegistry, fast_config: DeploymentConfig
    ) -> None:
        cm = make_node("cm", "ConfigMap", template(schema_ref("spec.name"), "-config"))

        result = await _orchestrator(cluster, registry, fast_config).deploy_resources([cm], {"name": "shop"})

        assert result.status == DeploymentStatus.SUCCEEDED
        assert cluster.get("ConfigMap", "shop-config") is not None

    async def test_default_namespace_skips_cluster_scoped_kinds(
        self, cluster: FakeClusterClient, registry: ReadinessRegistry
    ) -> None:
        config = DeploymentConfig(readiness_timeout_seconds=0.3, poll_interval_seconds=0.01, namespace="apps")
        nodes = [make_node("ns", "Namespace", "apps"), make_node("cm", "ConfigMap", "settings")]

        result = await _orchestrator(cluster, registry, config).deploy_resources(nodes)

        assert result.status == DeploymentStatus.SUCCEEDED
        assert cluster.get("Namespace", "apps") is not None
        assert cluster.get("ConfigMap", "settings", "apps") is not None

    async def test_existing_object_is_patched(
        self, cluster: FakeClusterClient, registry: ReadinessRegistry, fast_config: DeploymentConfig
    ) -> None:
        cluster.seed({"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": "settings"}, "data": {"a": "1"}})
        cm = make_node("cm", "ConfigMap", "settings", data={"a": "2"})

        result = await _orchestrator(cluster, registry, fast_config).deploy_resources([cm])

        assert result.status == DeploymentStatus.SUCCEEDED
        assert cluster.ops("patch") == [("patch", "settings")]
        applied = result.get("cm")
        assert applied is not None and applied.action == "patched"
        stored = cluster.get("ConfigMap", "settings")
        assert stored is not None and stored["data"] == {"a": "2"}

    async def test_empty_graph_succeeds(
        self, cluster: FakeClusterClient, registry: ReadinessRegistry, fast_config: DeploymentConfig
    ) -> None:
        result = await _orchestrator(cluster, registry, fast_config).deploy_resources([])
        assert result.status == DeploymentStatus.SUCCEEDED
        assert result.applied_resources == ()
        assert cluster.calls == []

    async def test_cycle_is_rejected_before_any_apply(
        self, cluster: FakeClusterClient, registry: ReadinessRegistry, fast_config: DeploymentConfig
    ) -> None:
        a = make_node("a", "ConfigMap", "a")
        b = make_node("b", "ConfigMap", "b", data={"x": a.ref("data.x")})
        a.config["data"] = {"x": b.ref("data.x")}

        with pytest.raises(CircularDependencyError):
            await _orchestrator(cluster, registry, fast_config).deploy_resources([a, b])
        assert cluster.calls == []


# ---------------------------------------------------------------------------
# Readiness
# ---------------------------------------------------------------------------


class TestReadiness:
    async def test_timeout_is_partial_with_resource_error(
        self, cluster: FakeClusterClient, registry: ReadinessRegistry
    ) -> None:
        config = DeploymentConfig(readiness_timeout_seconds=0.1, poll_interval_seconds=0.01)
        nodes = [
            make_node("widget", "Widget", "w1", api_version="example.com/v1"),
            make_node("cm", "ConfigMap", "settings"),
        ]

        result = await _orchestrator(cluster, registry, config).deploy_resources(nodes)

        assert result.status == DeploymentStatus.PARTIAL
        assert result.ready_ids == ("cm",)
        error = result.error_for("widget")
        assert error is not None
        assert error.phase == ResourcePhase.READINESS
        assert isinstance(error.error, ReadinessTimeoutError)
        assert error.error.last_reason == "Pending"
        assert "Widget/w1 (widget)" in error.message
        assert result.get("widget") is not None

    async def test_terminal_failure_skips_dependents_only(
        self, cluster: FakeClusterClient, registry: ReadinessRegistry, fast_config: DeploymentConfig
    ) -> None:
        broken = make_node("broken", "BrokenWidget", "b1", api_version="example.com/v1")
        child = make_node("child", "ConfigMap", "child", data={"owner": broken.ref("metadata.name")})
        grandchild = make_node("grandchild", "ConfigMap", "grandchild", data={"parent": child.ref("metadata.name")})
        other = make_node("other", "ConfigMap", "other")

        result = await _orchestrator(cluster, registry, fast_config).deploy_resources(
            [broken, child, grandchild, other]
        )

        assert result.status == DeploymentStatus.PARTIAL
        assert result.ready_ids == ("other",)
        assert set(result.skipped) == {"child", "grandchild"}
        error = result.error_for("broken")
        assert error is not None and isinstance(error.error, ReadinessFailureError)
        assert error.error.reason == "ProvisioningFailed"
        assert ("create", "child") not in cluster.ops()

    async def test_node_evaluator_overrides_registry(
        self, cluster: FakeClusterClient, registry: ReadinessRegistry, fast_config: DeploymentConfig
    ) -> None:
        widget = make_node("widget", "Widget", "w1", api_version="example.com/v1")
        widget.readiness_evaluator = lambda live: ReadinessResult(ready=True, message="custom")

        result = await _orchestrator(cluster, registry, fast_config).deploy_resources([widget])

        assert result.status == DeploymentStatus.SUCCEEDED
        applied = result.get("widget")
        assert applied is not None and applied.readiness_result is not None
        assert applied.readiness_result.message == "custom"

    async def test_kind_without_evaluator_is_ready_once_applied(
        self, cluster: FakeClusterClient, fast_config: DeploymentConfig
    ) -> None:
        gadget = make_node("gadget", "Gadget", "g1", api_version="example.com/v1")

        result = await _orchestrator(cluster, ReadinessRegistry(), fast_config).deploy_resources([gadget])

        assert result.status == DeploymentStatus.SUCCEEDED
        assert ("read", "g1") not in cluster.ops()

    async def test_no_wait_for_ready(self, cluster: FakeClusterClient, registry: ReadinessRegistry) -> None:
        config = DeploymentConfig(wait_for_ready=False)
        widget = make_node("widget", "Widget", "w1", api_version="example.com/v1")
        cm = make_node("cm", "ConfigMap", "settings", data={"widget": widget.ref("metadata.name")})

        result = await _orchestrator(cluster, registry, config).deploy_resources([cm, widget])

        assert result.status == DeploymentStatus.SUCCEEDED
        assert cluster.ops("read") == []
        applied = result.get("cm")
        assert applied is not None
        assert applied.readiness_result is None
        assert applied.manifest["data"] == {"widget": "w1"}


# ---------------------------------------------------------------------------
# Apply failures and retries
# ---------------------------------------------------------------------------


class TestApplyRetry:
    async def test_transient_errors_are_retried(
        self,
        cluster: FakeClusterClient,
        registry: ReadinessRegistry,
        fast_config: DeploymentConfig,
        no_backoff: RetryPolicy,
    ) -> None:
        cluster.create_errors["settings"] = [ClusterApiError("etcd timeout", 500), ClusterApiError("busy", 503)]

        result = await _orchestrator(cluster, registry, fast_config, retry=no_backoff).deploy_resources(
            [make_node("cm", "ConfigMap", "settings")]
        )

        assert result.status == DeploymentStatus.SUCCEEDED
        assert cluster.ops("create") == [("create", "settings")] * 3

    async def test_exhausted_retries_fail_the_resource(
        self,
        cluster: FakeClusterClient,
        registry: ReadinessRegistry,
        fast_config: DeploymentConfig,
        no_backoff: RetryPolicy,
    ) -> None:
        cluster.create_errors["settings"] = [ClusterApiError("etcd timeout", 500) for _ in range(3)]
        cm = make_node("cm", "ConfigMap", "settings")
        child = make_node("child", "ConfigMap", "child", data={"ref": cm.ref("metadata.name")})

        result = await _orchestrator(cluster, registry, fast_config, retry=no_backoff).deploy_resources([cm, child])

        assert result.status == DeploymentStatus.FAILED
        assert result.skipped == ("child",)
        error = result.error_for("cm")
        assert error is not None and error.phase == ResourcePhase.APPLY
        assert isinstance(error.error, ResourceApplyError)
        assert error.error.attempts == 3
        assert result.get("cm") is None

    async def test_non_api_error_is_not_retried(
        self,
        cluster: FakeClusterClient,
        registry: ReadinessRegistry,
        fast_config: DeploymentConfig,
        no_backoff: RetryPolicy,
    ) -> None:
        cluster.create_errors["settings"] = [ValueError("invalid manifest")]

        result = await _orchestrator(cluster, registry, fast_config, retry=no_backoff).deploy_resources(
            [make_node("cm", "ConfigMap", "settings")]
        )

        error = result.error_for("cm")
        assert error is not None and isinstance(error.error, ResourceApplyError)
        assert error.error.attempts == 1
        assert len(cluster.ops("create")) == 1


# ---------------------------------------------------------------------------
# Concurrency, cancellation and timeouts
# ---------------------------------------------------------------------------


class TestConcurrency:
    @pytest.mark.parametrize(("limit", "expected"), [(1, 1), (8, 3)])
    async def test_max_concurrency(
        self, cluster: FakeClusterClient, registry: ReadinessRegistry, limit: int, expected: int
    ) -> None:
        config = DeploymentConfig(readiness_timeout_seconds=0.3, poll_interval_seconds=0.01, max_concurrency=limit)
        nodes = [make_node(f"cm{i}", "ConfigMap", f"cm-{i}") for i in range(3)]
        for i in range(3):
            cluster.apply_delay[f"cm-{i}"] = 0.05

        result = await _orchestrator(cluster, registry, config).deploy_resources(nodes)

        assert result.status == DeploymentStatus.SUCCEEDED
        assert cluster.max_in_flight == expected


class TestCancellation:
    async def test_cancel_event_stops_scheduling(
        self, cluster: FakeClusterClient, registry: ReadinessRegistry, fast_config: DeploymentConfig
    ) -> None:
        cancel = asyncio.Event()

        def cancel_after_widget_applied(event: DeploymentEvent) -> None:
            if event.type == DeploymentEventType.RESOURCE_APPLIED and event.resource_id == "widget":
                cancel.set()

        events = EventDispatcher()
        events.add_sink(cancel_after_widget_applied)
        widget = make_node("widget", "Widget", "w1", api_version="example.com/v1")
        cm = make_node("cm", "ConfigMap", "settings", data={"widget": widget.ref("metadata.name")})

        result = await _orchestrator(cluster, registry, fast_config, events=events).deploy_resources(
            [widget, cm], cancel_event=cancel
        )

        assert result.cancelled
        assert result.status == DeploymentStatus.FAILED
        assert result.skipped == ("widget", "cm")
        assert result.get("widget") is not None
        assert result.errors == ()
        assert ("create", "settings") not in cluster.ops()

    async def test_in_flight_apply_completes_and_is_reported(
        self, cluster: FakeClusterClient, registry: ReadinessRegistry, fast_config: DeploymentConfig
    ) -> None:
        cancel = asyncio.Event()
        cluster.apply_delay["slow"] = 0.1
        slow = make_node("slow", "ConfigMap", "slow")
        child = make_node("child", "ConfigMap", "child", data={"ref": slow.ref("metadata.name")})

        async def cancel_soon() -> None:
            await asyncio.sleep(0.02)
            cancel.set()

        canceller = asyncio.create_task(cancel_soon())
        result = await _orchestrator(cluster, registry, fast_config).deploy_resources(
            [slow, child], cancel_event=cancel
        )
        await canceller

        assert result.cancelled
        applied = result.get("slow")
        assert applied is not None and applied.action == "created"
        assert cluster.get("ConfigMap", "slow") is not None
        assert "child" in result.skipped
        assert cluster.get("ConfigMap", "child") is None

    async def test_in_flight_apply_is_counted_and_announced(
        self,
        cluster: FakeClusterClient,
        registry: ReadinessRegistry,
        fast_config: DeploymentConfig,
        events: tuple[EventDispatcher, list[DeploymentEvent]],
    ) -> None:
        dispatcher, received = events
        labels = {"kind": "ConfigMap", "action": "created"}
        before = REGISTRY.get_sample_value("kroflow_resources_applied_total", labels) or 0.0
        cancel = asyncio.Event()
        cluster.apply_delay["late"] = 0.1

        async def cancel_soon() -> None:
            await asyncio.sleep(0.02)
            cancel.set()

        canceller = asyncio.create_task(cancel_soon())
        result = await _orchestrator(cluster, registry, fast_config, events=dispatcher).deploy_resources(
            [make_node("late", "ConfigMap", "late")], cancel_event=cancel
        )
        await canceller

        assert result.cancelled
        applied = [e for e in received if e.type == DeploymentEventType.RESOURCE_APPLIED]
        assert [e.resource_id for e in applied] == ["late"]
        assert applied[0].details == {"action": "created"}
        assert REGISTRY.get_sample_value("kroflow_resources_applied_total", labels) == before + 1

    async def test_cancel_before_start_skips_everything(
        self, cluster: FakeClusterClient, registry: ReadinessRegistry, fast_config: DeploymentConfig
    ) -> None:
        cancel = asyncio.Event()
        cancel.set()

        result = await _orchestrator(cluster, registry, fast_config).deploy_resources(
            [make_node("cm", "ConfigMap", "settings")], cancel_event=cancel
        )

        assert result.cancelled
        assert result.status == DeploymentStatus.FAILED
        assert result.skipped == ("cm",)
        assert cluster.calls == []

    async def test_cancelling_the_deploy_task_drains_applies(
        self, cluster: FakeClusterClient, registry: ReadinessRegistry, fast_config: DeploymentConfig
    ) -> None:
        cluster.apply_delay["slow"] = 0.1
        orchestrator = _orchestrator(cluster, registry, fast_config)
        task = asyncio.create_task(orchestrator.deploy_resources([make_node("slow", "ConfigMap", "slow")]))
        await asyncio.sleep(0.02)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert cluster.get("ConfigMap", "slow") is not None


class TestDeploymentTimeout:
    async def test_deadline_caps_readiness_and_skips_the_rest(
        self, cluster: FakeClusterClient, registry: ReadinessRegistry
    ) -> None:
        config = DeploymentConfig(
            readiness_timeout_seconds=30, poll_interval_seconds=0.01, deployment_timeout_seconds=0.1
        )
        widget = make_node("widget", "Widget", "w1", api_version="example.com/v1")
        child = make_node("child", "ConfigMap", "child", data={"ref": widget.ref("metadata.name")})
        other = make_node("other", "ConfigMap", "other")

        result = await asyncio.wait_for(
            _orchestrator(cluster, registry, config).deploy_resources([widget, child, other]), timeout=5
        )

        assert result.status == DeploymentStatus.PARTIAL
        assert result.ready_ids == ("other",)
        assert result.skipped == ("child",)
        error = result.error_for("widget")
        assert error is not None and isinstance(error.error, ReadinessTimeoutError)
        assert not result.cancelled


# ---------------------------------------------------------------------------
# Rollback, delete and dry run
# ---------------------------------------------------------------------------


class TestRollbackAndDelete:
    async def test_rollback_on_failure_deletes_leaves_first(
        self, cluster: FakeClusterClient, registry: ReadinessRegistry
    ) -> None:
        config = DeploymentConfig(readiness_timeout_seconds=0.3, poll_interval_seconds=0.01, rollback_on_failure=True)
        settings = make_node("settings", "ConfigMap", "settings")
        broken = make_node(
            "broken",
            "BrokenWidget",
            "b1",
            api_version="example.com/v1",
            spec={"config": settings.ref("metadata.name")},
        )

        result = await _orchestrator(cluster, registry, config).deploy_resources([broken, settings])

        assert result.status == DeploymentStatus.PARTIAL
        assert result.rollback is not None
        assert result.rollback.deleted == ("broken", "settings")
        assert result.rollback.status == DeploymentStatus.SUCCEEDED
        assert cluster.ops("delete") == [("delete", "b1"), ("delete", "settings")]
        assert cluster.objects == {}

    async def test_no_rollback_by_default(
        self, cluster: FakeClusterClient, registry: ReadinessRegistry, fast_config: DeploymentConfig
    ) -> None:
        broken = make_node("broken", "BrokenWidget", "b1", api_version="example.com/v1")

        result = await _orchestrator(cluster, registry, fast_config).deploy_resources([broken])

        assert result.rollback is None
        assert cluster.get("BrokenWidget", "b1") is not None

    async def test_delete_graph(
        self, cluster: FakeClusterClient, registry: ReadinessRegistry, fast_config: DeploymentConfig
    ) -> None:
        ns = make_node("ns", "Namespace", "shop")
        cm = make_node("cm", "ConfigMap", "settings")
        cm.config["metadata"]["namespace"] = "shop"
        graph = build_dependency_graph([ns, cm])
        graph.add_edge("cm", "ns")
        orchestrator = _orchestrator(cluster, registry, fast_config)
        await orchestrator.deploy(graph)

        outcome = await orchestrator.delete(graph)

        assert outcome.deleted == ("cm", "ns")
        assert cluster.objects == {}
        again = await orchestrator.delete(graph)
        assert again.status == DeploymentStatus.SUCCEEDED
        assert again.deleted == ("cm", "ns")

    async def test_delete_rejects_computed_names(
        self, cluster: FakeClusterClient, registry: ReadinessRegistry, fast_config: DeploymentConfig
    ) -> None:
        graph = build_dependency_graph([make_node("cm", "ConfigMap", schema_ref("spec.name"))])

        outcome = await _orchestrator(cluster, registry, fast_config).delete(graph)

        assert outcome.status == DeploymentStatus.FAILED
        assert isinstance(outcome.errors[0].error, ResourceIdError)
        assert cluster.calls == []


class TestDryRun:
    async def test_dry_run_resolves_without_touching_the_cluster(
        self, cluster: FakeClusterClient, registry: ReadinessRegistry
    ) -> None:
        config = DeploymentConfig(dry_run=True, rollback_on_failure=True)
        ns = make_node("ns", "Namespace", "shop")
        cm = make_node("cm", "ConfigMap", "settings")
        cm.config["metadata"]["namespace"] = ns.ref("metadata.name")

        result = await _orchestrator(cluster, registry, config).deploy_resources([cm, ns])

        assert result.status == DeploymentStatus.SUCCEEDED
        assert cluster.calls == []
        applied = result.get("cm")
        assert applied is not None
        assert applied.action == "dry_run"
        assert applied.namespace == "shop"


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class TestEvents:
    async def test_event_sequence(
        self,
        cluster: FakeClusterClient,
        registry: ReadinessRegistry,
        fast_config: DeploymentConfig,
        events: tuple[EventDispatcher, list[DeploymentEvent]],
    ) -> None:
        dispatcher, received = events
        ns = make_node("ns", "Namespace", "shop")
        cm = make_node("cm", "ConfigMap", "settings", data={"ns": ns.ref("metadata.name")})

        result = await _orchestrator(cluster, registry, fast_config, events=dispatcher).deploy_resources([ns, cm])

        types = [e.type for e in received]
        assert types[0] == DeploymentEventType.STARTED
        assert types[-1] == DeploymentEventType.COMPLETED
        assert {e.deployment_id for e in received} == {result.deployment_id}
        per_resource = [(e.type, e.resource_id) for e in received if e.resource_id is not None]
        assert per_resource.index((DeploymentEventType.RESOURCE_APPLIED, "ns")) < per_resource.index(
            (DeploymentEventType.RESOURCE_READY, "ns")
        )
        assert per_resource.index((DeploymentEventType.RESOURCE_READY, "ns")) < per_resource.index(
            (DeploymentEventType.RESOURCE_APPLIED, "cm")
        )
        progress = [e for e in received if e.type == DeploymentEventType.PROGRESS]
        assert progress[-1].details == {"completed": 2, "total": 2}

    async def test_failure_events(
        self,
        cluster: FakeClusterClient,
        registry: ReadinessRegistry,
        fast_config: DeploymentConfig,
        events: tuple[EventDispatcher, list[DeploymentEvent]],
    ) -> None:
        dispatcher, received = events
        broken = make_node("broken", "BrokenWidget", "b1", api_version="example.com/v1")
        child = make_node("child", "ConfigMap", "child", data={"ref": broken.ref("metadata.name")})

        await _orchestrator(cluster, registry, fast_config, events=dispatcher).deploy_resources([broken, child])

        types = [e.type for e in received]
        assert DeploymentEventType.RESOURCE_FAILED in types
        assert DeploymentEventType.RESOURCE_SKIPPED in types
        assert types[-1] == DeploymentEventType.FAILED

    async def test_raising_sink_does_not_break_deployment(
        self, cluster: FakeClusterClient, registry: ReadinessRegistry, fast_config: DeploymentConfig
    ) -> None:
        def explode(event: DeploymentEvent) -> None:
            raise RuntimeError("sink down")

        dispatcher = EventDispatcher()
        dispatcher.add_sink(explode)

        result = await _orchestrator(cluster, registry, fast_config, events=dispatcher).deploy_resources(
            [make_node("cm", "ConfigMap", "settings")]
        )

        assert result.status == DeploymentStatus.SUCCEEDED
