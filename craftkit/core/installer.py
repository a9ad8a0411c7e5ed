"""
Installs a resolved version: client jar, libraries, assets and natives.
"""

import asyncio
import json
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from pydantic import ValidationError

from craftkit.artifacts.natives import ExtractionReport, NativesExtractor
from craftkit.constants import RESOURCES_URL
from craftkit.exceptions import ManifestError
from craftkit.models.events import EventKind, ProgressEvent
from craftkit.models.stats import InstallStats
from craftkit.models.version import AssetIndex, VersionDescriptor
from craftkit.storage.instance import InstanceLayout
from craftkit.utils.platform import Platform
from craftkit.utils.tasks import gather_cancelling

from .download_manager import (
    DownloadOrchestrator,
    DownloadReport,
    DownloadTask,
    download_all,
)

log = logging.getLogger(__name__)


@dataclass
class InstallOptions:
    platform: Optional[Platform] = None
    features: Mapping[str, bool] = field(default_factory=dict)
    include_assets: bool = True
    extract_natives: bool = True


@dataclass
class InstallResult:
    descriptor: VersionDescriptor
    downloads: DownloadReport
    natives: ExtractionReport
    stats: InstallStats

    @property
    def ok(self) -> bool:
        return self.downloads.ok and self.natives.ok


class GameInstaller:
    """
    Makes every file a resolved descriptor needs present and verified.

    Natives jars are fetched and extracted alongside the main downloads; asset
    objects follow their index. Nothing is re-fetched when it already verifies.
    """

    def __init__(
        self,
        layout: InstanceLayout,
        orchestrator: DownloadOrchestrator,
        extractor: Optional[NativesExtractor] = None,
        resources_url: str = RESOURCES_URL,
    ):
        self.layout = layout
        self.orchestrator = orchestrator
        self.extractor = extractor or NativesExtractor()
        self.resources_url = resources_url.rstrip("/")

    def client_task(self, descriptor: VersionDescriptor) -> Optional[DownloadTask]:
        client = descriptor.downloads.get("client")
        if client is None or not client.url:
            return None
        return DownloadTask(
            url=client.url,
            destination=self.layout.client_jar(descriptor.jar_version),
            digest=client.sha1,
            size=client.size,
        )

    def library_tasks(
        self,
        descriptor: VersionDescriptor,
        platform: Platform,
        features: Optional[Mapping[str, bool]] = None,
    ) -> tuple[list[DownloadTask], list[DownloadTask]]:
        """
        Splits the applicable libraries into (regular, natives) download tasks.
        Entries without a URL are expected to be present already.
        """
        regular: dict[Path, DownloadTask] = {}
        natives: dict[Path, DownloadTask] = {}
        for library in descriptor.libraries:
            if not library.wanted_on(platform, features):
                continue
            bucket = natives if library.is_native else regular
            pairs = [(library.main_artifact(), bucket)]
            if library.natives:
                # Legacy entries may carry a jar next to their natives classifier.
                pairs = [
                    (library.main_artifact(), regular),
                    (library.native_artifact(platform), natives),
                ]
            for artifact, bucket in pairs:
                if artifact is None or not artifact.url or not artifact.path:
                    continue
                destination = self.layout.library_path(artifact.path)
                bucket.setdefault(
                    destination,
                    DownloadTask(
                        url=artifact.url,
                        destination=destination,
                        digest=artifact.sha1,
                        size=artifact.size,
                    ),
                )
        return list(regular.values()), list(natives.values())

    async def load_asset_index(self, descriptor: VersionDescriptor) -> AssetIndex:
        """Fetches the asset index (if not already verified) and parses it."""
        ref = descriptor.asset_index
        if ref is None:
            raise ManifestError("Descriptor has no asset index.", descriptor.id)
        path = self.layout.asset_index_path(ref.id)
        if ref.url:
            await download_all(
                self.orchestrator,
                [DownloadTask(ref.url, path, ref.sha1, size=ref.size)],
            )
        try:
            raw = await asyncio.to_thread(path.read_text, encoding="utf-8")
            return AssetIndex.model_validate(json.loads(raw))
        except FileNotFoundError as e:
            raise ManifestError(
                f"Asset index '{ref.id}' is not available.", descriptor.id
            ) from e
        except (ValueError, ValidationError) as e:
            raise ManifestError(
                f"Asset index '{ref.id}' is invalid: {e}", descriptor.id
            ) from e

    def asset_tasks(self, index: AssetIndex) -> list[DownloadTask]:
        seen: set[str] = set()
        tasks = []
        for entry in index.objects.values():
            if entry.hash in seen:
                continue
            seen.add(entry.hash)
            tasks.append(
                DownloadTask(
                    url=f"{self.resources_url}/{entry.object_path}",
                    destination=self.layout.asset_object_path(entry.hash),
                    digest=entry.hash,
                    size=entry.size,
                )
            )
        return tasks

    def _materialize_legacy_assets(self, index: AssetIndex, index_id: str) -> int:
        """Copies objects to their named paths for `virtual`/`map_to_resources`."""
        targets = []
        if index.virtual:
            targets.append(self.layout.virtual_assets_dir(index_id))
        if index.map_to_resources:
            targets.append(self.layout.root / "resources")
        copied = 0
        for base in targets:
            for name, entry in index.objects.items():
                destination = base / name
                if destination.is_file() and destination.stat().st_size == entry.size:
                    continue
                destination.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(self.layout.asset_object_path(entry.hash), destination)
                copied += 1
        return copied

    async def _install_assets(self, descriptor: VersionDescriptor) -> DownloadReport:
        index = await self.load_asset_index(descriptor)
        report = await self.orchestrator.run(self.asset_tasks(index))
        if report.ok and (index.virtual or index.map_to_resources):
            copied = await asyncio.to_thread(
                self._materialize_legacy_assets, index, descriptor.assets_id or ""
            )
            log.debug(f"Copied {copied} legacy asset files.")
        return report

    async def _install_natives(
        self,
        descriptor: VersionDescriptor,
        tasks: list[DownloadTask],
        platform: Platform,
        features: Mapping[str, bool],
    ) -> tuple[DownloadReport, ExtractionReport]:
        report = await self.orchestrator.run(tasks)
        if not report.ok:
            return report, ExtractionReport()
        extraction = await self.extractor.extract(
            descriptor.libraries,
            self.layout.natives_dir(descriptor.id),
            platform,
            self.layout.libraries_dir,
            features,
        )
        if self.orchestrator.on_event:
            self.orchestrator.on_event(
                ProgressEvent(
                    stage="natives",
                    kind=EventKind.COMPLETED if extraction.ok else EventKind.FAILED,
                    key=descriptor.id,
                    detail=f"{extraction.extracted} files",
                )
            )
        return report, extraction

    async def install(
        self, descriptor: VersionDescriptor, options: Optional[InstallOptions] = None
    ) -> InstallResult:
        """
        Installs everything `descriptor` needs on this platform.

        Download failures are collected in the result rather than raised; call
        `result.downloads.raise_for_failures()` to treat them as fatal.
        """
        options = options or InstallOptions()
        platform = options.platform or Platform.current()
        stats = InstallStats()

        regular, natives = self.library_tasks(descriptor, platform, options.features)
        client = self.client_task(descriptor)
        if client is not None:
            regular.insert(0, client)
        elif not self.layout.client_jar(descriptor.jar_version).is_file():
            log.warning(
                f"[yellow]No client download for {descriptor.jar_version} and no "
                f"local jar present.[/yellow]"
            )
        log.info(
            f"Installing [cyan]{descriptor.id}[/cyan]: {len(regular)} files, "
            f"{len(natives)} natives"
        )

        async def no_assets() -> DownloadReport:
            return DownloadReport()

        async def natives_step() -> tuple[DownloadReport, ExtractionReport]:
            if not options.extract_natives:
                return await self.orchestrator.run(natives), ExtractionReport()
            return await self._install_natives(
                descriptor, natives, platform, options.features
            )

        main, (native_downloads, extraction), assets = await gather_cancelling(
            self.orchestrator.run(regular),
            natives_step(),
            self._install_assets(descriptor)
            if options.include_assets and descriptor.asset_index is not None
            else no_assets(),
        )

        report = main.merge(native_downloads).merge(assets)
        stats.downloaded = len(report.downloaded)
        stats.satisfied = len(report.satisfied)
        stats.failed = len(report.failed)
        stats.bytes_downloaded = report.bytes_downloaded
        stats.natives_extracted = extraction.extracted
        log.debug(
            f"Install of {descriptor.id} finished: {stats.downloaded} downloaded, "
            f"{stats.satisfied} already present, {stats.failed} failed."
        )
        return InstallResult(descriptor, report, extraction, stats)
