"""
Resolves a version id into a fully merged descriptor by walking its
`inheritsFrom` chain, and the sources descriptors are fetched from.
"""

import json
import logging
from typing import Any, Optional, Protocol

from pydantic import ValidationError

from craftkit.api.client import MetaClient
from craftkit.artifacts.integrity import HashVerifier
from craftkit.constants import VERSION_MANIFEST_URL
from craftkit.exceptions import (
    CycleDetected,
    ManifestError,
    MissingField,
    VersionNotFound,
)
from craftkit.models.version import Arguments, VersionDescriptor, VersionList
from craftkit.storage.instance import InstanceLayout, write_json_atomic

log = logging.getLogger(__name__)


class ManifestSource(Protocol):
    """Anything that can produce the raw JSON of a single descriptor."""

    async def fetch(self, version_id: str) -> dict[str, Any]:
        """Returns the raw descriptor or raises `VersionNotFound`."""
        ...


class LocalManifestSource:
    """Reads descriptors installed under `versions/<id>/<id>.json`."""

    def __init__(self, layout: InstanceLayout):
        self.layout = layout

    async def fetch(self, version_id: str) -> dict[str, Any]:
        try:
            data = self.layout.read_descriptor(version_id)
        except (OSError, json.JSONDecodeError) as e:
            raise ManifestError(
                f"Descriptor for '{version_id}' is unreadable: {e}", version_id
            ) from e
        if data is None:
            raise VersionNotFound(
                f"Version '{version_id}' is not installed.", version_id
            )
        return data


class RemoteManifestSource(LocalManifestSource):
    """
    Reads installed descriptors first and falls back to the official version
    list, saving what it downloads. `release` and `snapshot` name the latest
    published versions of each kind.
    """

    LIST_TTL = 600

    def __init__(
        self,
        layout: InstanceLayout,
        client: MetaClient,
        manifest_url: str = VERSION_MANIFEST_URL,
    ):
        super().__init__(layout)
        self.client = client
        self.manifest_url = manifest_url

    async def version_list(self) -> VersionList:
        data = await self.client.get_json(self.manifest_url, cache_ttl=self.LIST_TTL)
        return VersionList.model_validate(data)

    async def fetch(self, version_id: str) -> dict[str, Any]:
        if version_id not in ("release", "snapshot"):
            try:
                return await super().fetch(version_id)
            except VersionNotFound:
                pass

        entry = (await self.version_list()).find(version_id)
        if entry is None:
            raise VersionNotFound(f"Unknown version '{version_id}'.", version_id)
        if entry.id != version_id:
            log.info(f"Resolved '{version_id}' to [cyan]{entry.id}[/cyan]")
            try:
                return await super().fetch(entry.id)
            except VersionNotFound:
                pass

        payload = await self.client.get_bytes(entry.url)
        verifier = HashVerifier("sha1")
        verifier.update(payload)
        if not verifier.matches(entry.sha1):
            raise ManifestError(
                f"Descriptor for '{entry.id}' does not match its published digest.",
                entry.id,
            )
        try:
            data = json.loads(payload)
        except ValueError as e:
            raise ManifestError(f"Descriptor for '{entry.id}' is not JSON: {e}") from e
        write_json_atomic(self.layout.descriptor_path(entry.id), data)
        log.debug(f"Saved descriptor for {entry.id}")
        return data


def merge_descriptors(
    child: VersionDescriptor, parent: VersionDescriptor
) -> VersionDescriptor:
    """
    Layers `child` over `parent`.

    Scalars come from the child when present. Libraries are the child's,
    followed by the parent's whose coordinate key the child does not define.
    Argument lists are concatenated parent first; a legacy argument string on
    the child replaces the parent's.
    """
    child_keys = {library.key for library in child.libraries}
    libraries = [*child.libraries]
    libraries.extend(lib for lib in parent.libraries if lib.key not in child_keys)

    arguments: Optional[Arguments] = None
    if child.arguments is not None or parent.arguments is not None:
        above = child.arguments or Arguments()
        below = parent.arguments or Arguments()
        arguments = Arguments(
            game=[*below.game, *above.game], jvm=[*below.jvm, *above.jvm]
        )

    return child.model_copy(
        update={
            "inherits_from": parent.inherits_from,
            "main_class": child.main_class or parent.main_class,
            "arguments": arguments,
            "minecraft_arguments": child.minecraft_arguments
            or parent.minecraft_arguments,
            "libraries": libraries,
            "asset_index": child.asset_index or parent.asset_index,
            "assets": child.assets or parent.assets,
            "java_version": child.java_version or parent.java_version,
            "downloads": child.downloads or parent.downloads,
            "jar": child.jar or parent.jar,
            "type": child.type or parent.type,
            "release_time": child.release_time or parent.release_time,
            "hierarchy": [*child.hierarchy, *parent.hierarchy],
        }
    )


def require_launchable(descriptor: VersionDescriptor) -> None:
    """Raises `MissingField` unless the descriptor has what launching needs."""
    if not descriptor.main_class:
        raise MissingField("mainClass", descriptor.id)
    if descriptor.asset_index is None:
        raise MissingField("assetIndex", descriptor.id)
    if descriptor.arguments is None and descriptor.minecraft_arguments is None:
        raise MissingField("arguments", descriptor.id)


class VersionManifestResolver:
    """Turns a version id into a merged, acyclic descriptor."""

    def __init__(self, source: ManifestSource):
        self.source = source

    async def _load(self, version_id: str) -> VersionDescriptor:
        raw = await self.source.fetch(version_id)
        try:
            descriptor = VersionDescriptor.model_validate(raw)
        except ValidationError as e:
            raise ManifestError(
                f"Descriptor for '{version_id}' is invalid:\n{e}", version_id
            ) from e
        return descriptor.model_copy(update={"hierarchy": [descriptor.id]})

    async def resolve(self, version_id: str) -> VersionDescriptor:
        """
        Fetches every layer of the chain (iteratively, child first) and merges
        them from the root down.

        Raises:
            VersionNotFound: If any layer is unknown to the source.
            CycleDetected: If a layer is reached twice.
            MissingField: If the merged result is not launchable.
        """
        chain: list[str] = []
        layers: list[VersionDescriptor] = []
        current: Optional[str] = version_id
        while current is not None:
            if current in chain:
                raise CycleDetected([*chain, current])
            chain.append(current)
            layer = await self._load(current)
            layers.append(layer)
            current = layer.inherits_from

        merged = layers[-1]
        for layer in reversed(layers[:-1]):
            merged = merge_descriptors(layer, merged)
        merged = merged.model_copy(update={"inherits_from": None})

        require_launchable(merged)
        log.debug(f"Resolved {version_id} through {' -> '.join(merged.hierarchy)}")
        return merged
