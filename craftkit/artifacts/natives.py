"""
Unpacks platform-specific native libraries into an instance-local directory.
"""

import asyncio
import fnmatch
import logging
import os
import shutil
import uuid
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Mapping, Optional

from craftkit.exceptions import ExtractionError
from craftkit.models.version import LibrarySpec
from craftkit.utils.platform import Platform

log = logging.getLogger(__name__)

DEFAULT_EXCLUDES = ("META-INF/",)


@dataclass(frozen=True)
class NativeArchive:
    """A natives jar on disk together with its extraction filters."""

    library: str
    path: Path
    include: tuple[str, ...] = ()
    exclude: tuple[str, ...] = DEFAULT_EXCLUDES

    def wants(self, entry: str) -> bool:
        if self.include and not any(_matches(entry, p) for p in self.include):
            return False
        return not any(_matches(entry, p) for p in self.exclude)


@dataclass
class ExtractionReport:
    extracted: int = 0
    skipped: int = 0
    failures: list[ExtractionError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def raise_for_failures(self) -> None:
        if self.failures:
            raise self.failures[0]


def _matches(entry: str, pattern: str) -> bool:
    """Patterns ending in '/' are directory prefixes, anything else is a glob."""
    if pattern.endswith("/"):
        return entry.startswith(pattern)
    return entry.startswith(pattern) or fnmatch.fnmatchcase(entry, pattern)


def select_native_archives(
    libraries: Iterable[LibrarySpec],
    libraries_dir: Path,
    platform: Platform,
    features: Optional[Mapping[str, bool]] = None,
) -> list[NativeArchive]:
    """
    Picks the natives jars applicable to `platform`.

    Handles both the legacy shape (a `natives` map naming a classifier, with
    `${arch}` substitution) and modern `natives-<os>[-<arch>]` classifier
    libraries.
    """
    accepted = set(platform.native_classifiers())
    archives = []
    for library in libraries:
        if not library.is_native or not library.applies_to(platform, features):
            continue
        if library.natives:
            artifact = library.native_artifact(platform)
        elif library.coordinate.classifier in accepted:
            artifact = library.main_artifact()
        else:
            artifact = None
        if artifact is None or not artifact.path:
            continue
        include: tuple[str, ...] = ()
        exclude = DEFAULT_EXCLUDES
        if library.extract is not None:
            include = tuple(library.extract.include)
            exclude = tuple(library.extract.exclude) or DEFAULT_EXCLUDES
        archives.append(
            NativeArchive(
                library=library.name,
                path=libraries_dir / artifact.path,
                include=include,
                exclude=exclude,
            )
        )
    return archives


class NativesExtractor:
    """Extracts natives jars; each archive succeeds or fails on its own."""

    async def extract(
        self,
        libraries: Iterable[LibrarySpec],
        target_dir: Path,
        platform: Platform,
        libraries_dir: Path,
        features: Optional[Mapping[str, bool]] = None,
    ) -> ExtractionReport:
        archives = select_native_archives(libraries, libraries_dir, platform, features)
        return await self.extract_archives(archives, target_dir)

    async def extract_archives(
        self, archives: Iterable[NativeArchive], target_dir: Path
    ) -> ExtractionReport:
        report = ExtractionReport()
        target_dir.mkdir(parents=True, exist_ok=True)
        for archive in archives:
            try:
                extracted, skipped = await asyncio.to_thread(
                    self._extract_one, archive, target_dir
                )
            except ExtractionError as e:
                log.warning(f"[yellow]{e}[/yellow]")
                report.failures.append(e)
                continue
            report.extracted += extracted
            report.skipped += skipped
        log.debug(
            f"Natives: {report.extracted} extracted, {report.skipped} already present, "
            f"{len(report.failures)} failed."
        )
        return report

    @staticmethod
    def _extract_one(archive: NativeArchive, target_dir: Path) -> tuple[int, int]:
        root = target_dir.resolve()
        extracted = skipped = 0
        try:
            with zipfile.ZipFile(archive.path) as zf:
                for info in zf.infolist():
                    if info.is_dir() or not archive.wants(info.filename):
                        continue
                    destination = (root / info.filename).resolve()
                    if not destination.is_relative_to(root):
                        log.warning(
                            f"Skipping entry escaping the natives directory: "
                            f"{info.filename}"
                        )
                        continue
                    if (
                        destination.is_file()
                        and destination.stat().st_size == info.file_size
                    ):
                        skipped += 1
                        continue
                    destination.parent.mkdir(parents=True, exist_ok=True)
                    temp = destination.with_name(
                        f".{destination.name}.{uuid.uuid4().hex[:8]}.part"
                    )
                    try:
                        with zf.open(info) as src, open(temp, "wb") as out:
                            shutil.copyfileobj(src, out)
                        os.replace(temp, destination)
                    finally:
                        if temp.exists():
                            temp.unlink()
                    extracted += 1
        except (zipfile.BadZipFile, OSError) as e:
            raise ExtractionError(
                f"Could not extract natives from '{archive.path.name}': {e}",
                library=archive.library,
            ) from e
        return extracted, skipped
