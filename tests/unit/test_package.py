"""Smoke tests for togglesync package structure.

Test Techniques Used:
- Specification-based: Verify package imports and version metadata exist.
"""

import togglesync
import togglesync.testing


class TestPackageStructure:
    def test_version_is_string(self) -> None:
        assert isinstance(togglesync.__version__, str)
        assert len(togglesync.__version__) > 0

    def test_all_names_resolve(self) -> None:
        """Every name in ``__all__`` is a real attribute."""
        for name in togglesync.__all__:
            assert getattr(togglesync, name) is not None, name

    def test_testing_exports(self) -> None:
        assert set(togglesync.testing.__all__) == {
            "FakeClock",
            "MockMqttClient",
            "make_engine",
            "make_settings",
        }

    def test_pytest_asyncio_understands_loop_scope_option(self) -> None:
        """``asyncio_default_fixture_loop_scope`` needs pytest-asyncio 0.24+."""
        from importlib.metadata import version

        major, minor = (int(part) for part in version("pytest-asyncio").split(".")[:2])
        assert (major, minor) >= (0, 24)
