"""Shared fixtures for toolgate tests."""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from toolgate.foundation.config import DispatchSettings, clear_settings_cache
from toolgate.foundation.core import ToolContract
from toolgate.foundation.registry import ToolRegistry
from toolgate.foundation.schema import FieldSpec, ParameterSchema, required
from toolgate.foundation.testing import MemoryAuditSink
from toolgate.runtime.observability import MemoryRenderer, configure_logging


@pytest.fixture(autouse=True)
def memory_logs() -> Iterator[MemoryRenderer]:
    """Capture log output in memory for every test."""
    renderer = MemoryRenderer()
    configure_logging(level="DEBUG", renderer=renderer)
    yield renderer
    configure_logging(format="none")


@pytest.fixture(autouse=True)
def clean_settings() -> Iterator[None]:
    """Re-read settings from the environment in each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def echo_schema() -> ParameterSchema:
    return ParameterSchema.of(text=required(FieldSpec(type="string")))


@pytest.fixture
def echo_contract(echo_schema: ParameterSchema) -> ToolContract:
    return ToolContract(name="echo", description="Echo text back", parameter_schema=echo_schema)


@pytest.fixture
def registry() -> ToolRegistry:
    return ToolRegistry()


@pytest.fixture
def audit() -> MemoryAuditSink:
    return MemoryAuditSink()


@pytest.fixture
def dispatch_settings() -> DispatchSettings:
    return DispatchSettings(default_deadline=5.0, max_deadline=30.0, default_caller_id="tester")
