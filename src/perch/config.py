"""Application configuration.

AppConfig is a frozen dataclass — immutable after creation, IDE-autocompletable,
no string-key dict lookups.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_COLLECTIONS_GLOB: tuple[str, ...] = (
    "collections/**/collection.json",
)


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Application configuration. Immutable after creation.

    All fields have sensible defaults. Override what you need::

        config = AppConfig(
            debug=True,
            routes={"widgets": "/api/widgets"},
            watch=True,
        )
    """

    # Server
    host: str = "127.0.0.1"
    port: int = 8000
    debug: bool = False
    workers: int = 1

    # Discovery: glob patterns are resolved relative to ``root``
    root: str | Path = "."
    collections_glob: tuple[str, ...] = DEFAULT_COLLECTIONS_GLOB
    logic_filename: str = "logic.py"  # Used when a manifest has no "logic" entry
    factory_name: str = "Collection"  # Attribute of the logic module to instantiate

    # Routing table: collection name -> mount path prefix
    routes: Mapping[str, str] = field(default_factory=dict)
    auto_mount: bool = True  # Mount unlisted collections at "/<name>"

    # Hot reload of collection directories
    watch: bool = False

    # Dispatch
    max_forwards: int = 32  # Hop limit for in-process forwards

    # Responses
    charset: str = "utf-8"

    def __post_init__(self) -> None:
        if isinstance(self.collections_glob, str):
            object.__setattr__(self, "collections_glob", (self.collections_glob,))

    @property
    def root_path(self) -> Path:
        """``root`` as an absolute path."""
        return Path(self.root).resolve()
