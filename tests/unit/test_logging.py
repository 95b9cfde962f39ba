"""Unit tests for structlog setup."""

from __future__ import annotations

import json
from collections.abc import Iterator

import pytest
import structlog

from kroflow.models.config import LogConfig
from kroflow.observability.logging import deployment_context, get_logger, setup_logging


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


def test_json_lines_carry_component_and_deployment(capsys: pytest.CaptureFixture[str]) -> None:
    setup_logging(LogConfig(level="info"))
    log = get_logger("deployment.test")

    with deployment_context("deployment-abc"):
        log.info("resource_applied", resource_id="web")
    log.debug("hidden")

    lines = capsys.readouterr().err.strip().splitlines()
    assert len(lines) == 1
    record = json.loads(lines[0])
    assert record["event"] == "resource_applied"
    assert record["component"] == "deployment.test"
    assert record["deployment_id"] == "deployment-abc"
    assert record["level"] == "info"
    assert "T" in record["ts"]


def test_binding_ends_with_the_block(capsys: pytest.CaptureFixture[str]) -> None:
    setup_logging(LogConfig(level="debug"))
    log = get_logger("deployment.test")

    with deployment_context("deployment-abc"):
        pass
    log.debug("after")

    record = json.loads(capsys.readouterr().err.strip())
    assert "deployment_id" not in record


def test_invalid_format_is_rejected() -> None:
    with pytest.raises(ValueError, match="Invalid log format"):
        setup_logging(LogConfig(format="xml"))
