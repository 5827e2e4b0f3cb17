"""Tests for perch.cli — argument parsing, app resolution, and listings."""

import sys
import types
from pathlib import Path

import pytest

from perch.app import App
from perch.cli import main
from perch.cli._resolve import resolve_app
from perch.config import AppConfig


@pytest.fixture
def fake_module(monkeypatch: pytest.MonkeyPatch, tmp_path: Path, make_collection) -> types.ModuleType:
    """Register ``_fake_perch_app`` with an app over a widgets collection."""
    make_collection("widgets")
    mod = types.ModuleType("_fake_perch_app")
    mod.app = App(AppConfig(root=tmp_path, routes={"widgets": "/api/widgets"}))  # type: ignore[attr-defined]
    mod.create_app = lambda: App(AppConfig(root=tmp_path))  # type: ignore[attr-defined]
    mod.not_an_app = "just a string"  # type: ignore[attr-defined]
    mod.broken_factory = lambda: 1 / 0  # type: ignore[attr-defined]
    monkeypatch.setitem(sys.modules, "_fake_perch_app", mod)
    return mod


class TestResolveApp:
    def test_explicit_attribute(self, fake_module: types.ModuleType) -> None:
        assert resolve_app("_fake_perch_app:app") is fake_module.app

    def test_default_attribute(self, fake_module: types.ModuleType) -> None:
        assert resolve_app("_fake_perch_app") is fake_module.app

    def test_factory(self, fake_module: types.ModuleType) -> None:
        assert isinstance(resolve_app("_fake_perch_app:create_app"), App)

    def test_not_an_app(self, fake_module: types.ModuleType) -> None:
        with pytest.raises(TypeError, match="not a perch.App"):
            resolve_app("_fake_perch_app:not_an_app")

    def test_broken_factory(self, fake_module: types.ModuleType) -> None:
        with pytest.raises(TypeError, match="raised an error"):
            resolve_app("_fake_perch_app:broken_factory")

    def test_missing_module(self) -> None:
        with pytest.raises(ModuleNotFoundError):
            resolve_app("nonexistent_module_xyz:app")

    def test_missing_attribute(self, fake_module: types.ModuleType) -> None:
        with pytest.raises(AttributeError):
            resolve_app("_fake_perch_app:does_not_exist")


class TestMain:
    def test_no_command_prints_help(self, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as info:
            main([])
        assert info.value.code == 0
        assert "usage: perch" in capsys.readouterr().out

    def test_routes(self, fake_module: types.ModuleType, capsys: pytest.CaptureFixture[str]) -> None:
        main(["routes", "_fake_perch_app:app"])
        lines = capsys.readouterr().out.splitlines()
        assert lines[0].split() == ["METHOD", "PATH", "HANDLER"]
        assert lines[2].split() == ["GET", "/api/widgets", "widgets.list"]
        assert len(lines) == 2 + 5

    def test_routes_unresolvable(self, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as info:
            main(["routes", "nonexistent_module_xyz:app"])
        assert info.value.code == 1
        assert "Error:" in capsys.readouterr().err

    def test_routes_empty(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        mod = types.ModuleType("_empty_perch_app")
        mod.app = App(AppConfig(root=tmp_path))  # type: ignore[attr-defined]
        monkeypatch.setitem(sys.modules, "_empty_perch_app", mod)
        main(["routes", "_empty_perch_app"])
        assert capsys.readouterr().out.strip() == "No routes registered."

    def test_collections(
        self, tmp_path: Path, make_collection, capsys: pytest.CaptureFixture[str]
    ) -> None:
        make_collection("widgets")
        make_collection("shop/orders", manifest={"logic": "orders.py"})
        main(["collections", "--root", str(tmp_path)])
        lines = capsys.readouterr().out.splitlines()
        assert lines[0].split() == ["NAME", "MANIFEST", "LOGIC"]
        assert lines[2].split() == ["orders", "collections/shop/orders/collection.json", "orders.py"]
        assert lines[3].split() == ["widgets", "collections/widgets/collection.json", "logic.py"]

    def test_collections_custom_glob(
        self, tmp_path: Path, make_collection, capsys: pytest.CaptureFixture[str]
    ) -> None:
        make_collection("widgets")
        main(["collections", "--root", str(tmp_path), "--glob", "elsewhere/*/collection.json"])
        assert capsys.readouterr().out.strip() == "No collections found."

    def test_run_applies_overrides(
        self, fake_module: types.ModuleType, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        seen: list[tuple[AppConfig, str | None, int | None]] = []

        def fake_run(self: App, host: str | None = None, port: int | None = None) -> None:
            seen.append((self.config, host, port))

        monkeypatch.setattr(App, "run", fake_run)
        main(["run", "_fake_perch_app:app", "--watch", "--workers", "3", "--port", "9001"])
        config, host, port = seen[0]
        assert config.watch is True
        assert config.workers == 3
        assert (host, port) == (None, 9001)
