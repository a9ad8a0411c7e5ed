"""
Loaders distributed as installer jars (Forge and NeoForge).

Modern installers ship an `install_profile.json` describing processors that
patch the client jar, plus a `version.json` fragment. Legacy Forge installers
embed the fragment as `versionInfo` next to a universal jar that only needs to
be copied into the library tree.
"""

import asyncio
import json
import logging
import shutil
import xml.etree.ElementTree as ET
import zipfile
from pathlib import Path
from typing import Any, Optional

from craftkit.api.client import MetaClient
from craftkit.constants import (
    FORGE_MAVEN_URL,
    FORGE_PROMOTIONS_URL,
    NEOFORGE_MAVEN_URL,
)
from craftkit.core.download_manager import (
    DownloadOrchestrator,
    DownloadTask,
    download_all,
)
from craftkit.exceptions import (
    LoaderInstallError,
    NetworkError,
    UnsupportedVersionCombination,
)
from craftkit.models.loader import InstallProfile, LoaderProfile, LoaderVersion
from craftkit.models.version import VersionDescriptor
from craftkit.storage.instance import StagingArea
from craftkit.utils.maven import MavenCoordinate

from .base import LATEST_MARKERS, library_version, pick_version

log = logging.getLogger(__name__)


def parse_maven_versions(xml_text: str) -> list[str]:
    """Versions listed in a `maven-metadata.xml`, in file order."""
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise LoaderInstallError(f"Malformed maven metadata: {e}") from e
    return [
        v.text.strip()
        for v in root.iterfind("./versioning/versions/version")
        if v.text
    ]


def _safe_target(base: Path, relative: str) -> Path:
    target = (base / relative).resolve()
    if not target.is_relative_to(base.resolve()):
        raise LoaderInstallError(f"Installer entry escapes its directory: {relative}")
    return target


def _extract_entry(zf: zipfile.ZipFile, name: str, target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    with zf.open(name) as src, open(target, "wb") as out:
        shutil.copyfileobj(src, out)


def read_installer(
    installer: Path,
    staging: StagingArea,
    variant: str,
    game_version: str,
    loader_version: str,
) -> LoaderProfile:
    """
    Unpacks what an installer jar carries into `staging` and describes it.

    Embedded maven artifacts go to the staged library tree, data files to the
    work directory. Installer-relative data values become absolute paths.
    """
    try:
        with zipfile.ZipFile(installer) as zf:
            raw: dict[str, Any] = json.loads(zf.read("install_profile.json"))
            if "versionInfo" in raw:
                return _read_legacy(
                    zf, raw, staging, variant, game_version, loader_version
                )

            profile = InstallProfile.model_validate(raw)
            fragment = json.loads(
                zf.read((profile.version_json or "/version.json").lstrip("/"))
            )

            for name in zf.namelist():
                if name.startswith("maven/") and not name.endswith("/"):
                    relative = name[len("maven/"):]
                    _extract_entry(
                        zf, name, _safe_target(staging.libraries_dir, relative)
                    )

            data = {"INSTALLER": str(installer)}
            for key, entry in profile.data.items():
                value = entry.client
                if value.startswith("/"):
                    target = _safe_target(staging.work_dir, value.lstrip("/"))
                    _extract_entry(zf, value.lstrip("/"), target)
                    value = str(target)
                data[key] = value
    except (zipfile.BadZipFile, KeyError, OSError, ValueError) as e:
        raise LoaderInstallError(
            f"Could not read installer '{installer.name}': {e}", variant
        ) from e

    steps = [step for step in profile.processors if step.runs_on_client]
    log.debug(
        f"Installer {installer.name}: {len(steps)} client steps, "
        f"{len(profile.libraries)} libraries"
    )
    return LoaderProfile(
        variant=variant,
        game_version=game_version,
        loader_version=loader_version,
        version_id=fragment["id"],
        fragment=fragment,
        libraries=profile.libraries,
        steps=steps,
        data=data,
    )


def _read_legacy(
    zf: zipfile.ZipFile,
    raw: dict[str, Any],
    staging: StagingArea,
    variant: str,
    game_version: str,
    loader_version: str,
) -> LoaderProfile:
    install = raw.get("install", {})
    fragment = dict(raw["versionInfo"])
    universal = MavenCoordinate.parse(install["path"])
    _extract_entry(
        zf,
        install["filePath"],
        _safe_target(staging.libraries_dir, universal.path),
    )
    # Server-only entries are flagged with clientreq=false.
    fragment["libraries"] = [
        library
        for library in fragment.get("libraries", [])
        if library.get("clientreq", True)
    ]
    log.debug(f"Legacy installer: extracted {universal}")
    return LoaderProfile(
        variant=variant,
        game_version=game_version,
        loader_version=loader_version,
        version_id=fragment["id"],
        fragment=fragment,
    )


class ProcessorChainVariant:
    """A loader installed by running its installer's processor chain."""

    LIST_TTL = 600

    def __init__(
        self,
        tag: str,
        maven_url: str,
        client: MetaClient,
        promotions_url: Optional[str] = None,
    ):
        self.tag = tag
        self.maven_url = maven_url.rstrip("/")
        self.client = client
        self.promotions_url = promotions_url

    @classmethod
    def forge(cls, client: MetaClient) -> "ProcessorChainVariant":
        return cls("forge", FORGE_MAVEN_URL, client, FORGE_PROMOTIONS_URL)

    @classmethod
    def neoforge(cls, client: MetaClient) -> "ProcessorChainVariant":
        return cls("neoforge", NEOFORGE_MAVEN_URL, client)

    def archive_name(self, game_version: str) -> str:
        if self.tag == "neoforge" and game_version != "1.20.1":
            return "neoforge"
        return "forge"

    def matches(self, loader_version: str, game_version: str) -> bool:
        """Whether a maven version of this loader targets `game_version`."""
        if self.tag == "forge" or game_version == "1.20.1":
            return loader_version.startswith(f"{game_version}-")
        if "-" in game_version or "w" in game_version:
            return False
        # NeoForge drops the leading "1." of the game version: 1.21.1 -> 21.1.x
        release = game_version[2:].split(".")
        prefix = ".".join(release if len(release) > 1 else [*release, "0"])
        return loader_version.startswith(f"{prefix}.")

    def _unsupported(self, game_version: str, detail: str) -> Exception:
        return UnsupportedVersionCombination(
            f"{self.tag} does not support {game_version} ({detail}).", self.tag
        )

    async def list_versions(self, game_version: str) -> list[LoaderVersion]:
        name = self.archive_name(game_version)
        try:
            text = await self.client.get_text(
                f"{self.maven_url}/{name}/maven-metadata.xml", cache_ttl=self.LIST_TTL
            )
        except NetworkError as e:
            if e.status == 404:
                return []
            raise
        versions = [
            v for v in parse_maven_versions(text) if self.matches(v, game_version)
        ]
        return [
            LoaderVersion(version=v, stable="beta" not in v and "alpha" not in v)
            for v in reversed(versions)
        ]

    async def _promoted(self, game_version: str, requested: str) -> Optional[str]:
        if self.promotions_url is None:
            return None
        data = await self.client.get_json(
            self.promotions_url, cache_ttl=self.LIST_TTL
        )
        promos = data.get("promos", {})
        keys = [f"{game_version}-latest"]
        if requested == "recommended":
            keys.insert(0, f"{game_version}-recommended")
        for key in keys:
            if key in promos:
                return f"{game_version}-{promos[key]}"
        return None

    async def resolve_version(self, game_version: str, requested: str) -> str:
        if requested in LATEST_MARKERS:
            promoted = await self._promoted(game_version, requested)
            if promoted is not None:
                return promoted
        versions = await self.list_versions(game_version)
        if not versions:
            raise self._unsupported(game_version, "no loader versions published")
        version = pick_version(versions, requested)
        if version is None and self.tag == "forge":
            version = pick_version(versions, f"{game_version}-{requested}")
        if version is None:
            raise self._unsupported(game_version, f"no loader version '{requested}'")
        return version

    def installer_url(self, game_version: str, loader_version: str) -> str:
        name = self.archive_name(game_version)
        return (
            f"{self.maven_url}/{name}/{loader_version}/"
            f"{name}-{loader_version}-installer.jar"
        )

    async def prepare_profile(
        self,
        game_version: str,
        loader_version: str,
        staging: StagingArea,
        orchestrator: DownloadOrchestrator,
    ) -> LoaderProfile:
        installer = staging.work_dir / f"{self.tag}-{loader_version}-installer.jar"
        url = self.installer_url(game_version, loader_version)
        try:
            await download_all(orchestrator, [DownloadTask(url, installer)])
        except NetworkError as e:
            if e.status == 404:
                raise self._unsupported(game_version, loader_version) from e
            raise
        return await asyncio.to_thread(
            read_installer, installer, staging, self.tag, game_version, loader_version
        )

    def find_in(self, descriptor: VersionDescriptor) -> Optional[str]:
        flag = "--fml.neoForgeVersion"
        if self.tag == "forge":
            flag = "--fml.forgeVersion"
        if descriptor.arguments is not None:
            game = descriptor.arguments.game
            for current, following in zip(game, game[1:]):
                if current == flag and isinstance(following, str):
                    return following
        if self.tag == "forge":
            version = library_version(
                descriptor, "net.minecraftforge:forge", "net.minecraftforge:fmlloader"
            )
            if version is not None:
                return version.split("-", 1)[-1]
        return None

