"""
Directory layout of a game instance and the atomic file operations on it.

    <root>/versions/<id>/<id>.json   version descriptors
    <root>/versions/<id>/<id>.jar    client jars
    <root>/versions/<id>/natives/    extracted natives
    <root>/libraries/                maven-style library tree
    <root>/assets/indexes|objects/   asset indexes and content-addressed objects
"""

import asyncio
import json
import logging
import os
import shutil
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Optional

log = logging.getLogger(__name__)


def write_json_atomic(path: Path, data: Any) -> None:
    """Writes JSON to a temporary sibling and renames it over `path`."""
    path.parent.mkdir(parents=True, exist_ok=True)
    temp = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.tmp")
    try:
        with open(temp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(temp, path)
    finally:
        if temp.exists():
            temp.unlink()


class StagingArea:
    """
    A private scratch directory for an installation. Files are moved into the
    instance only by `commit_libraries`.
    """

    def __init__(self, root: Path):
        self.root = root
        self.libraries_dir = root / "libraries"
        self.work_dir = root / "work"

    def commit_libraries(self, destination: Path) -> int:
        """Moves every staged library into `destination`, returning the count."""
        moved = 0
        if not self.libraries_dir.is_dir():
            return moved
        for source in sorted(self.libraries_dir.rglob("*")):
            if not source.is_file():
                continue
            target = destination / source.relative_to(self.libraries_dir)
            target.parent.mkdir(parents=True, exist_ok=True)
            os.replace(source, target)
            moved += 1
        return moved


class InstanceLayout:
    """Paths and descriptor storage for one instance root."""

    def __init__(self, root: Path):
        self.root = Path(root)
        self._staging_lock = asyncio.Lock()

    @property
    def versions_dir(self) -> Path:
        return self.root / "versions"

    @property
    def libraries_dir(self) -> Path:
        return self.root / "libraries"

    @property
    def assets_dir(self) -> Path:
        return self.root / "assets"

    @property
    def agents_dir(self) -> Path:
        return self.root / "agents"

    @property
    def mods_dir(self) -> Path:
        return self.root / "mods"

    def version_dir(self, version_id: str) -> Path:
        return self.versions_dir / version_id

    def descriptor_path(self, version_id: str) -> Path:
        return self.version_dir(version_id) / f"{version_id}.json"

    def client_jar(self, version_id: str) -> Path:
        return self.version_dir(version_id) / f"{version_id}.jar"

    def natives_dir(self, version_id: str) -> Path:
        return self.version_dir(version_id) / "natives"

    def asset_index_path(self, index_id: str) -> Path:
        return self.assets_dir / "indexes" / f"{index_id}.json"

    def asset_object_path(self, digest: str) -> Path:
        return self.assets_dir / "objects" / digest[:2] / digest

    def virtual_assets_dir(self, index_id: str) -> Path:
        return self.assets_dir / "virtual" / index_id

    def library_path(self, relative: str) -> Path:
        return self.libraries_dir / relative

    def read_descriptor(self, version_id: str) -> Optional[dict[str, Any]]:
        """Returns the raw descriptor JSON, or None when it is not installed."""
        path = self.descriptor_path(version_id)
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None

    def write_descriptor(self, version_id: str, data: dict[str, Any]) -> Path:
        path = self.descriptor_path(version_id)
        write_json_atomic(path, data)
        log.debug(f"Wrote descriptor {path}")
        return path

    def installed_versions(self) -> list[str]:
        if not self.versions_dir.is_dir():
            return []
        return sorted(
            entry.name
            for entry in self.versions_dir.iterdir()
            if (entry / f"{entry.name}.json").is_file()
        )

    @asynccontextmanager
    async def staging(self) -> AsyncIterator[StagingArea]:
        """
        Exclusive staging area for this instance. The directory is removed on
        exit whether or not its contents were committed.
        """
        async with self._staging_lock:
            root = self.root / ".staging" / uuid.uuid4().hex
            root.mkdir(parents=True)
            try:
                yield StagingArea(root)
            finally:
                await asyncio.to_thread(shutil.rmtree, root, True)
