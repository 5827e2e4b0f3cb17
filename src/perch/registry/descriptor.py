"""Collection descriptors — parsed, validated manifest data.

A collection directory holds a ``collection.json`` manifest and a logic
module::

    collections/widgets/collection.json
    collections/widgets/logic.py

The manifest is a JSON object; every field is optional::

    {
        "name": "widgets",
        "logic": "logic.py",
        "factory": "Collection",
        "endpointsDefault": true,
        "endpoints": {"get /search": "search", "delete /:id": false}
    }
"""

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any

from perch.errors import InvalidCollectionName, ManifestError

COLLECTION_NAME_RE = re.compile(r"^[\w-]+$")


@dataclass(frozen=True, slots=True)
class Descriptor:
    """A parsed collection manifest.

    Replaced wholesale when the manifest changes; never mutated.
    """

    name: str
    manifest_path: Path
    properties: Mapping[str, Any]

    @property
    def directory(self) -> Path:
        return self.manifest_path.parent

    @property
    def logic_path(self) -> Path:
        """Absolute path of the logic module, relative to the manifest."""
        return (self.directory / self.properties["logic"]).resolve()

    @property
    def factory_name(self) -> str:
        return self.properties["factory"]

    @property
    def endpoints(self) -> Mapping[str, str | bool]:
        return self.properties.get("endpoints") or {}

    @property
    def endpoints_default(self) -> bool:
        return self.properties.get("endpointsDefault") is not False


def read_manifest(path: Path) -> dict[str, Any]:
    """Read and parse a manifest file.

    Raises:
        ManifestError: If the file cannot be read, is not valid JSON,
            or does not contain a JSON object.
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"Cannot read collection manifest {path}: {exc}"
        raise ManifestError(msg) from exc
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        msg = f"Malformed collection manifest {path}: {exc}"
        raise ManifestError(msg) from exc
    if not isinstance(data, dict):
        msg = f"Collection manifest {path} must contain a JSON object, got {type(data).__name__}"
        raise ManifestError(msg)
    endpoints = data.get("endpoints")
    if endpoints is not None and not isinstance(endpoints, dict):
        msg = f"Collection manifest {path}: 'endpoints' must be an object"
        raise ManifestError(msg)
    return data


def derive_name(path: Path, properties: Mapping[str, Any]) -> str:
    """Explicit ``name`` field, else the manifest's directory name; lowercased."""
    name = properties.get("name")
    if not isinstance(name, str) or not name:
        name = path.resolve().parent.name
    return name.lower()


def build_descriptor(
    path: Path,
    *,
    logic_filename: str = "logic.py",
    factory_name: str = "Collection",
) -> Descriptor:
    """Parse *path* into a ``Descriptor``, filling in defaults.

    Raises:
        ManifestError: If the manifest is unreadable or malformed.
        InvalidCollectionName: If the derived name does not match
            ``COLLECTION_NAME_RE``.
    """
    properties = read_manifest(path)
    name = derive_name(path, properties)
    if not COLLECTION_NAME_RE.match(name):
        msg = (
            f'Collection name "{name}" is incorrect ({COLLECTION_NAME_RE.pattern}), '
            f"skipping {path}..."
        )
        raise InvalidCollectionName(msg)

    if not isinstance(properties.get("logic"), str):
        properties["logic"] = logic_filename
    if not isinstance(properties.get("factory"), str):
        properties["factory"] = factory_name

    return Descriptor(
        name=name,
        manifest_path=path.resolve(),
        properties=MappingProxyType(properties),
    )
