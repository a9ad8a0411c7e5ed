"""
Loaders whose meta service hands out a ready-made descriptor fragment
(Fabric and Quilt). Installing them is a download and a merge, no processors.
"""

import logging
from typing import Any, Optional

from craftkit.api.client import MetaClient
from craftkit.constants import FABRIC_META_URL, QUILT_META_URL
from craftkit.core.download_manager import DownloadOrchestrator
from craftkit.exceptions import NetworkError, UnsupportedVersionCombination
from craftkit.models.loader import LoaderProfile, LoaderVersion
from craftkit.models.version import VersionDescriptor
from craftkit.storage.instance import StagingArea

from .base import library_version, pick_version

log = logging.getLogger(__name__)


class MetadataMergeVariant:
    """A loader served by a Fabric-style meta API."""

    LIST_TTL = 600

    def __init__(
        self, tag: str, meta_url: str, loader_artifact: str, client: MetaClient
    ):
        self.tag = tag
        self.meta_url = meta_url.rstrip("/")
        self.loader_artifact = loader_artifact
        self.client = client

    @classmethod
    def fabric(cls, client: MetaClient) -> "MetadataMergeVariant":
        return cls("fabric", FABRIC_META_URL, "net.fabricmc:fabric-loader", client)

    @classmethod
    def quilt(cls, client: MetaClient) -> "MetadataMergeVariant":
        return cls("quilt", QUILT_META_URL, "org.quiltmc:quilt-loader", client)

    def _unsupported(self, game_version: str, detail: str = "") -> Exception:
        message = f"{self.tag} does not support {game_version}"
        return UnsupportedVersionCombination(
            f"{message} ({detail})." if detail else f"{message}.", self.tag
        )

    async def list_versions(self, game_version: str) -> list[LoaderVersion]:
        try:
            entries: list[dict[str, Any]] = await self.client.get_json(
                f"{self.meta_url}/versions/loader/{game_version}",
                cache_ttl=self.LIST_TTL,
            )
        except NetworkError as e:
            if e.status in (400, 404):
                return []
            raise
        versions = []
        for entry in entries or []:
            loader = entry.get("loader", {})
            version = loader.get("version")
            if not version:
                continue
            # Quilt does not flag stability; its pre-releases carry a suffix.
            stable = loader.get("stable", "-" not in version)
            versions.append(LoaderVersion(version=version, stable=stable))
        return versions

    async def resolve_version(self, game_version: str, requested: str) -> str:
        versions = await self.list_versions(game_version)
        if not versions:
            raise self._unsupported(game_version, "no loader versions published")
        version = pick_version(versions, requested)
        if version is None:
            raise self._unsupported(game_version, f"no loader version '{requested}'")
        return version

    async def prepare_profile(
        self,
        game_version: str,
        loader_version: str,
        staging: StagingArea,
        orchestrator: DownloadOrchestrator,
    ) -> LoaderProfile:
        url = (
            f"{self.meta_url}/versions/loader/{game_version}/{loader_version}"
            f"/profile/json"
        )
        try:
            fragment = await self.client.get_json(url)
        except NetworkError as e:
            if e.status in (400, 404):
                raise self._unsupported(game_version, loader_version) from e
            raise
        log.debug(f"Fetched {self.tag} profile {fragment.get('id')}")
        return LoaderProfile(
            variant=self.tag,
            game_version=game_version,
            loader_version=loader_version,
            version_id=fragment["id"],
            fragment=fragment,
        )

    def find_in(self, descriptor: VersionDescriptor) -> Optional[str]:
        return library_version(descriptor, self.loader_artifact)
