"""Tests for lazy import system in nostrpapers.__init__."""

from __future__ import annotations

import importlib
import sys

import pytest


class TestLazyImports:
    """Test PEP 562 lazy loading in nostrpapers.__init__."""

    def test_lazy_import_does_not_eagerly_load(self) -> None:
        """Importing nostrpapers alone does not load its subpackages."""
        saved = {name: mod for name, mod in sys.modules.items() if name.startswith("nostrpapers")}
        for name in saved:
            del sys.modules[name]
        try:
            importlib.import_module("nostrpapers")

            assert "nostrpapers.core" not in sys.modules
            assert "nostrpapers.models" not in sys.modules
            assert "nostrpapers.client" not in sys.modules
            assert "nostrpapers.nips" not in sys.modules
        finally:
            for name in [n for n in sys.modules if n.startswith("nostrpapers")]:
                del sys.modules[name]
            sys.modules.update(saved)

    def test_lazy_import_resolves_on_access(self) -> None:
        from nostrpapers import RelayPool, SignedEvent
        from nostrpapers.client.pool import RelayPool as DirectPool
        from nostrpapers.models.event import SignedEvent as DirectEvent

        assert RelayPool is DirectPool
        assert SignedEvent is DirectEvent

    def test_lazy_import_caches_after_first_access(self) -> None:
        import nostrpapers

        _ = nostrpapers.Session

        assert "Session" in vars(nostrpapers)

    def test_lazy_import_invalid_attribute(self) -> None:
        import nostrpapers

        with pytest.raises(AttributeError, match="no_such_thing"):
            _ = getattr(nostrpapers, "no_such_thing")  # noqa: B009

    def test_all_exports_are_in_lazy_imports(self) -> None:
        """__all__ and _LAZY_IMPORTS stay in sync."""
        import nostrpapers

        assert set(nostrpapers.__all__) == set(nostrpapers._LAZY_IMPORTS)
        assert dir(nostrpapers) == nostrpapers.__all__
