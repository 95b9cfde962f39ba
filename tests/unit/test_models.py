"""Unit tests for references, resource ids, retry policy and result helpers."""

from __future__ import annotations

import pytest

from kroflow.errors import ReadinessTimeoutError, ResourceApplyError, ResourceIdError
from kroflow.models import (
    DeploymentStatus,
    ReadinessResult,
    Reference,
    ResourceNode,
    RetryPolicy,
    TypeTag,
    deterministic_resource_id,
    resource_ref,
    schema_ref,
)
from kroflow.models.deployment import summarize_status
from kroflow.models.expressions import template


class TestReference:
    def test_equality_ignores_value_type(self) -> None:
        assert Reference("db", "status.podIP", TypeTag.STRING) == Reference("db", "status.podIP")
        assert Reference("db", "status.podIP") != Reference("db", "status.hostIP")
        assert len({Reference("db", "a", TypeTag.STRING), Reference("db", "a", TypeTag.ANY)}) == 1

    def test_schema_reference(self) -> None:
        ref = schema_ref("spec.name")
        assert ref.is_schema
        assert str(ref) == "schema.spec.name"

    def test_node_ref_helper(self) -> None:
        node = ResourceNode(id="db", kind="Deployment", config={})
        assert node.ref("status.readyReplicas", TypeTag.INTEGER) == resource_ref("db", "status.readyReplicas")


class TestDeterministicIds:
    def test_kind_and_name(self) -> None:
        assert deterministic_resource_id("Deployment", "web-app") == "deploymentWebApp"

    def test_non_default_namespace_is_included(self) -> None:
        assert deterministic_resource_id("Deployment", "web-app", "production") == "deploymentProductionWebApp"
        assert deterministic_resource_id("Deployment", "web-app", "default") == "deploymentWebApp"

    def test_kind_already_in_name_is_not_repeated(self) -> None:
        assert deterministic_resource_id("Service", "my-service") == "myService"

    def test_same_inputs_same_id(self) -> None:
        assert deterministic_resource_id("ConfigMap", "app-config", "apps") == deterministic_resource_id(
            "ConfigMap", "app-config", "apps"
        )

    def test_template_names_are_rejected(self) -> None:
        with pytest.raises(ResourceIdError):
            deterministic_resource_id("Deployment", "${schema.spec.name}")
        with pytest.raises(ResourceIdError):
            deterministic_resource_id("Deployment", template(schema_ref("spec.name"), "-web"))
        with pytest.raises(ResourceIdError):
            deterministic_resource_id("Deployment", "")

    def test_from_manifest(self) -> None:
        manifest = {"apiVersion": "apps/v1", "kind": "Deployment", "metadata": {"name": "web", "namespace": "shop"}}
        node = ResourceNode.from_manifest(manifest)
        assert node.id == "deploymentShopWeb"
        assert node.api_version == "apps/v1"
        assert node.name == "web"
        assert ResourceNode.from_manifest(manifest, id="web").id == "web"

    def test_from_manifest_without_kind(self) -> None:
        with pytest.raises(ResourceIdError):
            ResourceNode.from_manifest({"metadata": {"name": "x"}})

    def test_dynamic_name_is_reported_as_expression(self) -> None:
        node = ResourceNode(id="web", kind="Deployment", config={"metadata": {"name": schema_ref("spec.name")}})
        assert node.name == "<expr>"


class TestRetryPolicy:
    def test_exponential_backoff_is_capped(self) -> None:
        policy = RetryPolicy()
        assert [policy.delay_for(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 10.0]


class TestResults:
    def test_summarize_status(self) -> None:
        assert summarize_status(3, 0) == DeploymentStatus.SUCCEEDED
        assert summarize_status(0, 0) == DeploymentStatus.SUCCEEDED
        assert summarize_status(2, 1) == DeploymentStatus.PARTIAL
        assert summarize_status(0, 2) == DeploymentStatus.FAILED

    def test_immediate_readiness(self) -> None:
        result = ReadinessResult.immediate()
        assert result.ready
        assert not result.failed

    def test_deployment_errors_name_resource_kind_and_reason(self) -> None:
        timeout = ReadinessTimeoutError("web", "Deployment", "web", 30, "ReplicasNotReady", "0/2 ready")
        assert str(timeout) == (
            "Deployment/web (web): ReadinessTimeout: not ready after 30s (last status: ReplicasNotReady: 0/2 ready)"
        )
        applied = ResourceApplyError("db", "StatefulSet", "pg", RuntimeError("boom"), attempts=4)
        assert str(applied) == "StatefulSet/pg (db): ApplyFailed: boom (after 4 attempt(s))"
        assert applied.code == "RESOURCE_APPLY_FAILED"
