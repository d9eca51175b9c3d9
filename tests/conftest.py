"""Pytest configuration and shared fixtures."""

import pytest

# The togglesync testing plugin is registered via a ``pytest11`` entry
# point for external consumers.  Our own suite disables it
# (``-p no:togglesync``) and loads it here instead, so the import chain
# happens after ``pytest-cov`` starts tracing.
pytest_plugins = ["togglesync.testing._plugin"]


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (wire several components together)"
    )
