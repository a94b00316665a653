"""Pytest configuration and fixtures for cytogate tests."""

import pytest

from cytogate.events.table import EventTable
from tests.helpers.synthetic_data import (
    make_scatter_events,
    make_scatter_sample_set,
    make_singlet_events,
    make_two_cluster_events,
)


def pytest_configure(config):
    """Register custom test markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests that do not require external dependencies"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests combining multiple components"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take significant time (>5 seconds)"
    )


def pytest_collection_modifyitems(items):
    """Mark tests by directory (tests/unit, tests/integration)."""
    for item in items:
        path = str(item.fspath)
        if "/unit/" in path:
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in path:
            item.add_marker(pytest.mark.integration)


@pytest.fixture
def scatter_events() -> EventTable:
    """1000 FSC.A/SSC.A events, exactly 412 with FSC.A in [200, 800]."""
    return make_scatter_events()


@pytest.fixture
def scatter_sample_set():
    """Three scatter samples of 1000 events, 412 in [200, 800] each."""
    return make_scatter_sample_set()


@pytest.fixture
def cluster_events() -> EventTable:
    """Two Gaussian clusters on CD3/CD4 (700 near (300, 300), 300 near (700, 700))."""
    return make_two_cluster_events()


@pytest.fixture
def singlet_events():
    """(EventTable with FSC.A/FSC.H, singlet truth mask)."""
    return make_singlet_events()


@pytest.fixture
def isolated_config(tmp_path, monkeypatch):
    """Point the user config at a temporary file."""
    config_path = tmp_path / "config.toml"
    monkeypatch.setenv("CYTOGATE_CONFIG", str(config_path))
    return config_path


@pytest.fixture
def temp_db(tmp_path):
    """Temporary results database path."""
    return tmp_path / "results.db"

