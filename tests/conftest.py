"""
Shared test fixtures and configuration.
"""

import textwrap
from pathlib import Path

import pytest

from provisioner.adapters.mock import MockAdapter
from provisioner.adapters.registry import AdapterRegistry
from provisioner.core.config.settings import RunSettings
from provisioner.core.engine.graph import build_plan
from provisioner.core.models.plan import Plan
from provisioner.core.models.step import Step


def make_step(step_id: str, *prereqs: str, **fields) -> Step:
    """Build a command step (mock-friendly) with the given prerequisites."""
    data = {"id": step_id, "classification": "command", "prerequisites": list(prereqs)}
    data.update(fields)
    return Step.model_validate(data)


def make_plan(*steps: Step, name: str = "test") -> Plan:
    return build_plan(steps, name=name)


@pytest.fixture
def mock() -> MockAdapter:
    return MockAdapter()


@pytest.fixture
def registry(mock: MockAdapter) -> AdapterRegistry:
    return AdapterRegistry(mock_adapter=mock)


@pytest.fixture
def fast_settings() -> RunSettings:
    """No backoff delays, generous concurrency."""
    return RunSettings(concurrency=4, max_retries=2, backoff_base=0.0)


@pytest.fixture
def plan_file(tmp_path: Path):
    """Write a provision.yml into tmp_path and return its path."""

    def _write(content: str, name: str = "provision.yml") -> Path:
        path = tmp_path / name
        path.write_text(textwrap.dedent(content))
        return path

    return _write
