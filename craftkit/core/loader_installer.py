"""
Layers a mod loader onto an installed base version.

Everything happens inside a staging area first: installer files, loader
libraries and processor outputs. Only when every step succeeded are the
staged libraries moved into the instance and the layered descriptor written.
"""

import asyncio
import logging
import shutil
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional

from pydantic import ValidationError

from craftkit.artifacts.integrity import HashVerifier
from craftkit.exceptions import LoaderInstallError, ProcessorFailed
from craftkit.loaders.base import LoaderVariant
from craftkit.models.events import EventKind, ProgressCallback, ProgressEvent
from craftkit.models.loader import InstallStep, LoaderProfile
from craftkit.models.version import LibrarySpec, VersionDescriptor
from craftkit.storage.instance import InstanceLayout, StagingArea
from craftkit.utils.maven import MavenCoordinate
from craftkit.utils.platform import Platform

from .download_manager import DownloadOrchestrator, DownloadTask, download_all
from .resolver import merge_descriptors

log = logging.getLogger(__name__)

ProcessRunner = Callable[[list[str], Path], Awaitable[tuple[int, str]]]


async def run_process(argv: list[str], cwd: Path) -> tuple[int, str]:
    """Runs a process to completion, returning its exit code and output."""
    proc = await asyncio.create_subprocess_exec(
        *argv,
        cwd=cwd,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )
    try:
        output, _ = await proc.communicate()
    except asyncio.CancelledError:
        proc.kill()
        await proc.wait()
        raise
    return proc.returncode or 0, output.decode(errors="replace")


def read_main_class(jar: Path) -> Optional[str]:
    """The `Main-Class` of a jar's manifest, if it declares one."""
    with zipfile.ZipFile(jar) as zf:
        manifest = zf.read("META-INF/MANIFEST.MF").decode("utf-8", errors="replace")
    for line in manifest.splitlines():
        if line.startswith("Main-Class:"):
            return line.split(":", 1)[1].strip()
    return None


@dataclass
class LoaderInstallResult:
    profile: LoaderProfile
    descriptor: VersionDescriptor


class _StepContext:
    """Resolves step arguments against staged and installed files."""

    def __init__(
        self,
        layout: InstanceLayout,
        staging: StagingArea,
        profile: LoaderProfile,
        base: VersionDescriptor,
    ):
        self.layout = layout
        self.staging = staging
        self.variables = {
            "SIDE": "client",
            "MINECRAFT_JAR": str(layout.client_jar(base.jar_version)),
            "MINECRAFT_VERSION": profile.game_version,
            "ROOT": str(layout.root),
            "LIBRARY_DIR": str(staging.libraries_dir),
            **profile.data,
        }

    def library(self, coordinate: str, writable: bool = False) -> Path:
        """
        The staged copy if there is one, else the installed one, else where to
        stage it. A `writable` path is always inside staging: an installed file
        is copied there first so a failed install leaves the instance untouched.
        """
        relative = MavenCoordinate.parse(coordinate).path
        staged = self.staging.libraries_dir / relative
        installed = self.layout.library_path(relative)
        if staged.exists() or not installed.exists():
            return staged
        if not writable:
            return installed
        staged.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(installed, staged)
        return staged

    def resolve(self, token: str, step_index: int, writable: bool = False) -> str:
        if len(token) > 1 and token[0] == "{" and token[-1] == "}":
            key = token[1:-1]
            if key not in self.variables:
                raise ProcessorFailed(step_index, None, f"unknown variable {token}")
            return self.resolve(self.variables[key], step_index, writable)
        if len(token) > 1 and token[0] == "[" and token[-1] == "]":
            return str(self.library(token[1:-1], writable))
        if len(token) > 1 and token[0] == "'" and token[-1] == "'":
            return token[1:-1]
        return token


class LoaderInstaller:
    """Installs loader variants into one instance."""

    def __init__(
        self,
        layout: InstanceLayout,
        orchestrator: DownloadOrchestrator,
        java_path: str = "java",
        runner: ProcessRunner = run_process,
        platform: Optional[Platform] = None,
        on_event: Optional[ProgressCallback] = None,
    ):
        self.layout = layout
        self.orchestrator = orchestrator
        self.java_path = java_path
        self.runner = runner
        self.platform = platform or Platform.current()
        self.on_event = on_event

    def _emit(self, kind: EventKind, key: str, detail: str = "") -> None:
        if self.on_event:
            self.on_event(
                ProgressEvent(stage="step", kind=kind, key=key, detail=detail)
            )

    async def install(
        self,
        base: VersionDescriptor,
        variant: LoaderVariant,
        requested: str = "recommended",
    ) -> LoaderInstallResult:
        """
        Installs `variant` on top of the resolved `base` descriptor.

        Raises:
            UnsupportedVersionCombination: No loader version matches.
            ProcessorFailed: A step exited abnormally or missed its outputs.
            NetworkError, IntegrityError: A required file could not be fetched.
        """
        game_version = base.jar_version
        loader_version = await variant.resolve_version(game_version, requested)
        log.info(
            f"Installing [cyan]{variant.tag} {loader_version}[/cyan] "
            f"for {game_version}"
        )

        async with self.layout.staging() as staging:
            profile = await variant.prepare_profile(
                game_version, loader_version, staging, self.orchestrator
            )
            try:
                fragment = profile.descriptor
            except ValidationError as e:
                raise LoaderInstallError(
                    f"{variant.tag} {loader_version} ships an invalid descriptor:\n{e}",
                    variant.tag,
                ) from e
            await self._stage_libraries(
                [*profile.libraries, *fragment.libraries], staging
            )

            context = _StepContext(self.layout, staging, profile, base)
            if "MOJMAPS" in profile.data:
                await self._stage_mappings(base, context)
            for index, step in enumerate(profile.steps):
                await self._run_step(index, step, context, variant.tag)

            moved = await asyncio.to_thread(
                staging.commit_libraries, self.layout.libraries_dir
            )
            data = dict(profile.fragment)
            data["inheritsFrom"] = base.id
            await asyncio.to_thread(
                self.layout.write_descriptor, profile.version_id, data
            )
            log.debug(f"Committed {moved} libraries for {profile.version_id}")

        layered = fragment.model_copy(
            update={"inherits_from": None, "hierarchy": [profile.version_id]}
        )
        return LoaderInstallResult(profile, merge_descriptors(layered, base))

    async def _stage_libraries(
        self, libraries: list[LibrarySpec], staging: StagingArea
    ) -> None:
        """Downloads into staging whatever is neither staged nor installed yet."""
        tasks: dict[Path, DownloadTask] = {}
        for library in libraries:
            if not library.wanted_on(self.platform):
                continue
            artifact = library.main_artifact()
            if artifact is None or not artifact.path:
                continue
            staged = staging.libraries_dir / artifact.path
            if staged.exists():
                continue
            if await HashVerifier.verify_file(
                self.layout.library_path(artifact.path),
                artifact.sha1,
                size=artifact.size,
            ):
                continue
            if not artifact.url:
                log.debug(f"{library.name} has no download; a step builds it.")
                continue
            tasks.setdefault(
                staged,
                DownloadTask(artifact.url, staged, artifact.sha1, size=artifact.size),
            )
        if tasks:
            log.debug(f"Staging {len(tasks)} loader libraries")
            await download_all(self.orchestrator, tasks.values())

    async def _stage_mappings(
        self, base: VersionDescriptor, context: _StepContext
    ) -> None:
        """Fetches the client mappings the official installer would download."""
        mappings = base.downloads.get("client_mappings")
        if mappings is None or not mappings.url:
            raise LoaderInstallError(
                f"{base.id} publishes no client mappings, which this loader needs."
            )
        target = Path(
            await asyncio.to_thread(context.resolve, "{MOJMAPS}", -1, True)
        )
        await download_all(
            self.orchestrator,
            [DownloadTask(mappings.url, target, mappings.sha1, size=mappings.size)],
        )

    async def _outputs_verified(
        self, step: InstallStep, context: _StepContext, index: int
    ) -> bool:
        for path, digest in step.outputs.items():
            if not await HashVerifier.verify_file(
                Path(context.resolve(path, index)),
                context.resolve(digest, index) or None,
            ):
                return False
        return True

    async def _run_step(
        self, index: int, step: InstallStep, context: _StepContext, variant: str
    ) -> None:
        key = str(index)
        if "DOWNLOAD_MOJMAPS" in step.args:
            self._emit(EventKind.SKIPPED, key, "mappings already staged")
            return
        if step.outputs and await self._outputs_verified(step, context, index):
            log.debug(f"Step {index} outputs already present, skipping")
            self._emit(EventKind.SKIPPED, key, step.jar)
            return

        self._emit(EventKind.STARTED, key, step.jar)
        jar = context.library(step.jar)
        try:
            main_class = await asyncio.to_thread(read_main_class, jar)
        except (OSError, KeyError, zipfile.BadZipFile) as e:
            raise ProcessorFailed(
                index, None, f"unreadable jar {jar.name}: {e}", variant
            ) from e
        if not main_class:
            raise ProcessorFailed(index, None, f"{jar.name} has no Main-Class", variant)

        classpath = [str(context.library(c)) for c in step.classpath] + [str(jar)]
        # Steps may write any library they name; they only ever see staged copies.
        args = await asyncio.to_thread(
            lambda: [context.resolve(arg, index, writable=True) for arg in step.args]
        )
        argv = [
            self.java_path,
            "-cp",
            self.platform.classpath_separator.join(classpath),
            main_class,
            *args,
        ]
        context.staging.work_dir.mkdir(parents=True, exist_ok=True)
        log.debug(f"Step {index}: {main_class}")
        exit_code, output = await self.runner(argv, context.staging.work_dir)
        if exit_code != 0:
            log.debug(f"Step {index} output:\n{output}")
            last_line = output.strip().splitlines()[-1] if output.strip() else ""
            self._emit(EventKind.FAILED, key, last_line)
            raise ProcessorFailed(index, exit_code, last_line, variant)
        if not await self._outputs_verified(step, context, index):
            self._emit(EventKind.FAILED, key, "outputs missing or mismatched")
            raise ProcessorFailed(
                index, exit_code, "declared outputs missing or mismatched", variant
            )
        self._emit(EventKind.COMPLETED, key, main_class)
