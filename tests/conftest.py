"""Shared fixtures for exporter tests."""
import pytest

from gauges import Registry
from labels import ProjectRefDetails


@pytest.fixture
def registry():
    registry = Registry()
    registry.register_default_metrics()
    return registry


@pytest.fixture
def details():
    return ProjectRefDetails(project_id=7, path='group/app', topics='go,cli', ref='main')


@pytest.fixture
def gate_calls():
    return []


@pytest.fixture
def gate(gate_calls):
    def _gate():
        gate_calls.append('gate')
    return _gate


@pytest.fixture
def sample(registry):
    """Read a single sample back from the registry's CollectorRegistry."""
    def _sample(name, labels=None):
        return registry.registry.get_sample_value(name, labels or {})
    return _sample
