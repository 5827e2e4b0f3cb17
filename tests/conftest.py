"""Shared fixtures — collection trees written to ``tmp_path``.

``make_collection`` writes one collection directory::

    make_collection("widgets", logic=WIDGETS_LOGIC, manifest={"endpoints": {...}})
    # -> <tmp>/collections/widgets/collection.json + logic.py
"""

import json
import textwrap
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from perch.events import Diagnostic, EventBus

WIDGETS_LOGIC = """
class Collection:
    def __init__(self, context):
        self.context = context

    def list(self):
        return [{"id": "1"}, {"id": "2"}]

    def one(self):
        return {"id": self.context.params["id"]}

    async def create(self):
        self.context.response.status = 201
        return await self.context.request.json()

    def update(self):
        return {"updated": self.context.params["id"]}

    def delete(self):
        return self.context.suppress()
"""

type MakeCollection = Callable[..., Path]


@pytest.fixture
def collections_root(tmp_path: Path) -> Path:
    root = tmp_path / "collections"
    root.mkdir()
    return root


@pytest.fixture
def make_collection(collections_root: Path) -> MakeCollection:
    """Write ``<root>/<dirname>/collection.json`` and its logic file."""

    def make(
        dirname: str,
        *,
        logic: str | None = WIDGETS_LOGIC,
        manifest: dict[str, Any] | str | None = None,
        logic_filename: str = "logic.py",
    ) -> Path:
        directory = collections_root / dirname
        directory.mkdir(parents=True, exist_ok=True)
        manifest_path = directory / "collection.json"
        if isinstance(manifest, str):
            manifest_path.write_text(manifest, encoding="utf-8")
        else:
            manifest_path.write_text(json.dumps(manifest or {}), encoding="utf-8")
        if logic is not None:
            (directory / logic_filename).write_text(textwrap.dedent(logic), encoding="utf-8")
        return manifest_path

    return make


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def diagnostics(events: EventBus) -> list[Diagnostic]:
    """Every ``Diagnostic`` published on ``events``."""
    captured: list[Diagnostic] = []
    events.subscribe(Diagnostic, captured.append)
    return captured
