"""
The library entry point: one `Launcher` per instance root, used as an async
context manager so network sessions are closed deterministically.
"""

import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

import aiohttp

from craftkit.api.auth import IdentityClient
from craftkit.api.client import MetaClient
from craftkit.api.yggdrasil import AuthlibInjector, agent_arguments
from craftkit.artifacts.downloader import create_download_session
from craftkit.exceptions import CraftkitError
from craftkit.loaders import VARIANT_FACTORIES, get_variant
from craftkit.models.config import LauncherConfig
from craftkit.models.events import ProgressCallback
from craftkit.models.session import AuthSession
from craftkit.models.loader import LoaderVersion
from craftkit.models.stats import InstallStats
from craftkit.models.version import VersionDescriptor, VersionList
from craftkit.mods import ModReport, inspect_mods
from craftkit.storage.cache import CacheManager
from craftkit.storage.instance import InstanceLayout
from craftkit.storage.session_store import SessionStore
from craftkit.utils.platform import Platform
from craftkit.utils.tasks import gather_cancelling

from .auth_manager import AuthenticationManager, ChallengeCallback
from .download_manager import DownloadOrchestrator, DownloadTask
from .installer import GameInstaller, InstallOptions, InstallResult
from .launch import LaunchCommandBuilder, LaunchPaths, LaunchSpec, RuntimeOptions
from .loader_installer import (
    LoaderInstaller,
    LoaderInstallResult,
    ProcessRunner,
    run_process,
)
from .resolver import (
    LocalManifestSource,
    RemoteManifestSource,
    VersionManifestResolver,
)

log = logging.getLogger(__name__)


@dataclass
class PreparedLaunch:
    descriptor: VersionDescriptor
    session: AuthSession
    command: LaunchSpec
    stats: InstallStats


class Launcher:
    """
    Ties resolution, installation, loaders, sign-in and command synthesis to
    one instance directory. Every operation reports `ProgressEvent`s to
    `on_event`.
    """

    def __init__(
        self,
        config: LauncherConfig,
        on_event: Optional[ProgressCallback] = None,
        platform: Optional[Platform] = None,
        runner: ProcessRunner = run_process,
    ):
        self.config = config
        self.on_event = on_event
        self.platform = platform or Platform.current()
        self.runner = runner
        self.layout = InstanceLayout(config.root_path)
        self.cache = CacheManager(config.root_path / ".cache")
        self.client = MetaClient(
            cache=self.cache,
            retry_policy=config.retry_policy(),
            timeouts=config.timeout_policy(),
            user_agent=config.user_agent,
            max_connections=config.max_workers,
        )
        self.source = RemoteManifestSource(self.layout, self.client)
        self.resolver = VersionManifestResolver(self.source)
        self.auth = AuthenticationManager(
            IdentityClient(self.client, config.client_id),
            SessionStore(config.root_path / "session.json"),
            retry_policy=config.retry_policy(),
        )
        self.builder = LaunchCommandBuilder(self.platform)
        self.authlib_injector = AuthlibInjector(self.client)
        self._download_session: Optional[aiohttp.ClientSession] = None
        self._orchestrator: Optional[DownloadOrchestrator] = None

    async def __aenter__(self) -> "Launcher":
        self._download_session = create_download_session(
            self.config.max_workers,
            self.config.timeout_policy(),
            self.config.user_agent,
        )
        self._orchestrator = DownloadOrchestrator(
            self._download_session,
            max_workers=self.config.max_workers,
            retry_policy=self.config.retry_policy(),
            on_event=self.on_event,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._download_session and not self._download_session.closed:
            await self._download_session.close()
        await self.client.close()

    @property
    def orchestrator(self) -> DownloadOrchestrator:
        if self._orchestrator is None:
            raise CraftkitError("Launcher must be used as 'async with Launcher(...)'.")
        return self._orchestrator

    async def resolve_version(self, version_id: str) -> VersionDescriptor:
        return await self.resolver.resolve(version_id)

    async def version_list(self) -> VersionList:
        return await self.source.version_list()

    async def loader_versions(
        self, variant: str, game_version: str
    ) -> list[LoaderVersion]:
        return await get_variant(variant, self.client).list_versions(game_version)

    async def install(
        self, descriptor: VersionDescriptor, options: Optional[InstallOptions] = None
    ) -> InstallResult:
        options = options or InstallOptions(platform=self.platform)
        installer = GameInstaller(self.layout, self.orchestrator)
        return await installer.install(descriptor, options)

    async def authenticate(
        self, on_challenge: Optional[ChallengeCallback] = None
    ) -> AuthSession:
        return await self.auth.authenticate(on_challenge)

    async def sign_in_yggdrasil(
        self,
        api_url: str,
        username: str,
        password: str,
        profile_name: Optional[str] = None,
    ) -> AuthSession:
        return await self.auth.sign_in_yggdrasil(
            api_url, username, password, profile_name
        )

    async def yggdrasil_jvm_args(self, session: AuthSession) -> list[str]:
        """
        JVM arguments that make the game trust the session's Yggdrasil server,
        installing the authlib-injector agent first. Empty for other sessions.
        """
        if not session.is_yggdrasil:
            return []
        release = await self.authlib_injector.latest()
        jar = self.layout.agents_dir / release.file_name
        report = await self.orchestrator.run(
            [DownloadTask(release.download_url, jar, release.sha256, "sha256")]
        )
        report.raise_for_failures()
        metadata, _ = await self.auth.yggdrasil_client(session.api_url).metadata()
        return agent_arguments(str(jar), session.api_url, metadata)

    async def install_loader(
        self,
        descriptor: VersionDescriptor,
        variant: str,
        version: str = "recommended",
    ) -> LoaderInstallResult:
        installer = LoaderInstaller(
            self.layout,
            self.orchestrator,
            java_path=self.config.java_path,
            runner=self.runner,
            platform=self.platform,
            on_event=self.on_event,
        )
        return await installer.install(
            descriptor, get_variant(variant, self.client), version
        )

    def detect_loader(
        self, descriptor: VersionDescriptor
    ) -> tuple[Optional[str], Optional[str]]:
        """The (tag, version) of the loader a resolved descriptor carries."""
        for tag in VARIANT_FACTORIES:
            version = get_variant(tag, self.client).find_in(descriptor)
            if version is not None:
                return tag, version
        return None, None

    async def check_mods(
        self,
        version_id: str,
        game_dir: Optional[Path] = None,
        java_major: Optional[int] = None,
    ) -> ModReport:
        """
        Lists the mods in `<game_dir>/mods` and checks their dependencies
        against an installed version and the loader it carries.

        Raises:
            VersionNotFound: `version_id` is not installed.
        """
        resolver = VersionManifestResolver(LocalManifestSource(self.layout))
        descriptor = await resolver.resolve(version_id)
        loader, loader_version = self.detect_loader(descriptor)
        mods_dir = Path(game_dir) / "mods" if game_dir else self.layout.mods_dir
        return await inspect_mods(
            mods_dir,
            descriptor.jar_version,
            loader,
            loader_version,
            java_major,
        )

    def runtime_options(self) -> RuntimeOptions:
        return RuntimeOptions(
            java_path=self.config.java_path,
            min_memory_mb=self.config.min_memory_mb,
            max_memory_mb=self.config.max_memory_mb,
        )

    async def build_launch_command(
        self,
        descriptor: VersionDescriptor,
        session: AuthSession,
        options: Optional[RuntimeOptions] = None,
        game_dir: Optional[Path] = None,
    ) -> LaunchSpec:
        paths = LaunchPaths.from_layout(self.layout, descriptor, game_dir)
        options = options or self.runtime_options()
        agent = await self.yggdrasil_jvm_args(session)
        if agent:
            options = replace(
                options, extra_jvm_args=[*agent, *options.extra_jvm_args]
            )
        return self.builder.build(descriptor, paths, session, options)

    async def install_all(
        self,
        version_id: str,
        loader: Optional[str] = None,
        loader_version: str = "recommended",
    ) -> tuple[VersionDescriptor, InstallStats]:
        """
        Resolves and installs a version, then layers `loader` on it if given.
        Returns the launchable descriptor and the base installation stats.
        """
        descriptor = await self.resolve_version(version_id)
        result = await self.install(descriptor)
        result.downloads.raise_for_failures()
        result.natives.raise_for_failures()
        if loader is None:
            return descriptor, result.stats

        layered = await self.install_loader(descriptor, loader, loader_version)
        # Loader libraries already sit in the instance; this only verifies them.
        extra = await self.install(
            layered.descriptor,
            InstallOptions(platform=self.platform, include_assets=False),
        )
        extra.downloads.raise_for_failures()
        extra.natives.raise_for_failures()
        return layered.descriptor, result.stats

    async def prepare(
        self,
        version_id: str,
        loader: Optional[str] = None,
        loader_version: str = "recommended",
        on_challenge: Optional[ChallengeCallback] = None,
        offline_name: Optional[str] = None,
        options: Optional[RuntimeOptions] = None,
        game_dir: Optional[Path] = None,
    ) -> PreparedLaunch:
        """
        Resolves, installs and signs in (concurrently), then builds the launch
        command. Cancelling it cancels every outstanding download and poll.
        """

        async def account() -> AuthSession:
            if offline_name is not None:
                return AuthSession.offline(offline_name)
            return await self.authenticate(on_challenge)

        (descriptor, stats), session = await gather_cancelling(
            self.install_all(version_id, loader, loader_version), account()
        )
        command = await self.build_launch_command(
            descriptor, session, options, game_dir
        )
        log.info(f"[green]Ready to launch {descriptor.id}[/green]")
        return PreparedLaunch(descriptor, session, command, stats)
