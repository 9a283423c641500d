"""Shared fixtures for visc tests."""

import pytest


def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "smoke: mark test as smoke test (fast, critical path - included in CI)"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every VISC_ variable so settings fall back to defaults."""
    import os

    for name in list(os.environ):
        if name.startswith("VISC_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def mock_env_vars(clean_env, monkeypatch):
    """Set up test environment variables."""
    monkeypatch.setenv("VISC_GROUPING_THRESHOLD", "25")
    monkeypatch.setenv("VISC_STRICTNESS", "high")
    monkeypatch.setenv("VISC_MATCH_UNPAIRED", "true")
    monkeypatch.setenv("VISC_LOG_LEVEL", "DEBUG")
