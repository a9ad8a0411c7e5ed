"""
Builds the JVM invocation for a resolved, installed version.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Sequence

from craftkit import __version__
from craftkit.constants import LAUNCHER_NAME
from craftkit.exceptions import MissingField, RuntimeRequirementError
from craftkit.models.session import AuthSession
from craftkit.models.version import (
    ArgumentToken,
    ConditionalArgument,
    OsRule,
    Rule,
    VersionDescriptor,
    evaluate_rules,
)
from craftkit.storage.instance import InstanceLayout
from craftkit.utils.formatting import mask_secret
from craftkit.utils.platform import Platform

log = logging.getLogger(__name__)

PLACEHOLDER = re.compile(r"\$\{([^}]+)\}")

# Used when a descriptor only has the legacy `minecraftArguments` string.
LEGACY_JVM_ARGUMENTS: list[ArgumentToken] = [
    ConditionalArgument(
        rules=[Rule(action="allow", os=OsRule(name="osx"))],
        value=["-XstartOnFirstThread"],
    ),
    "-Djava.library.path=${natives_directory}",
    "-cp",
    "${classpath}",
]

QUICK_PLAY = {
    "singleplayer": ("is_quick_play_singleplayer", "quickPlaySingleplayer"),
    "multiplayer": ("is_quick_play_multiplayer", "quickPlayMultiplayer"),
    "realms": ("is_quick_play_realms", "quickPlayRealms"),
}


@dataclass(frozen=True)
class LaunchPaths:
    game_dir: Path
    assets_root: Path
    libraries_dir: Path
    natives_dir: Path
    client_jar: Path

    @classmethod
    def from_layout(
        cls,
        layout: InstanceLayout,
        descriptor: VersionDescriptor,
        game_dir: Optional[Path] = None,
    ) -> "LaunchPaths":
        return cls(
            game_dir=Path(game_dir) if game_dir else layout.root,
            assets_root=layout.assets_dir,
            libraries_dir=layout.libraries_dir,
            natives_dir=layout.natives_dir(descriptor.id),
            client_jar=layout.client_jar(descriptor.jar_version),
        )


@dataclass
class RuntimeOptions:
    """
    Everything about a launch that does not come from the descriptor.

    `java_major`, when known, is checked against the version's minimum.
    `quick_play` is a (mode, target) pair, mode being "singleplayer",
    "multiplayer" or "realms".
    """

    java_path: str = "java"
    java_major: Optional[int] = None
    min_memory_mb: int = 512
    max_memory_mb: int = 2048
    extra_jvm_args: list[str] = field(default_factory=list)
    extra_game_args: list[str] = field(default_factory=list)
    features: dict[str, bool] = field(default_factory=dict)
    resolution: Optional[tuple[int, int]] = None
    quick_play: Optional[tuple[str, str]] = None
    launcher_name: str = LAUNCHER_NAME
    launcher_version: str = __version__


@dataclass(frozen=True)
class LaunchSpec:
    """A ready-to-spawn process invocation."""

    executable: str
    args: list[str]
    cwd: Path
    secrets: tuple[str, ...] = field(default=(), repr=False)

    @property
    def argv(self) -> list[str]:
        return [self.executable, *self.args]

    def redacted(self) -> list[str]:
        """The argv with every token masked, safe for logs."""
        masked = []
        for arg in self.argv:
            for secret in self.secrets:
                if secret:
                    arg = arg.replace(secret, mask_secret(secret))
            masked.append(arg)
        return masked


class LaunchCommandBuilder:
    """Synthesizes launch commands; it never touches the network or spawns."""

    def __init__(self, platform: Optional[Platform] = None):
        self.platform = platform or Platform.current()

    def classpath(
        self,
        descriptor: VersionDescriptor,
        paths: LaunchPaths,
        features: Optional[Mapping[str, bool]] = None,
    ) -> list[str]:
        """
        Applicable libraries in descriptor order, each path once, followed by
        the client jar. Legacy natives-only entries are left out.
        """
        entries: list[str] = []
        seen: set[str] = set()
        for library in descriptor.libraries:
            if library.natives or not library.wanted_on(self.platform, features):
                continue
            artifact = library.main_artifact()
            if artifact is None or not artifact.path:
                continue
            path = str(paths.libraries_dir / artifact.path)
            if path not in seen:
                seen.add(path)
                entries.append(path)
        entries.append(str(paths.client_jar))
        return entries

    def _expand(
        self,
        tokens: Sequence[ArgumentToken],
        variables: Mapping[str, str],
        features: Mapping[str, bool],
        version_id: str,
    ) -> list[str]:
        def lookup(match: re.Match) -> str:
            name = match.group(1)
            if name not in variables:
                raise MissingField(name, version_id)
            return variables[name]

        args = []
        for token in tokens:
            if isinstance(token, ConditionalArgument):
                if not evaluate_rules(token.rules, self.platform, features):
                    continue
                values = token.value
            else:
                values = [token]
            args.extend(PLACEHOLDER.sub(lookup, value) for value in values)
        return args

    def _variables(
        self,
        descriptor: VersionDescriptor,
        paths: LaunchPaths,
        session: AuthSession,
        options: RuntimeOptions,
        classpath: list[str],
    ) -> dict[str, str]:
        assets_id = descriptor.assets_id or ""
        variables = {
            "version_name": descriptor.id,
            "version_type": descriptor.type or "release",
            "game_directory": str(paths.game_dir),
            "assets_root": str(paths.assets_root),
            "game_assets": str(paths.assets_root / "virtual" / assets_id),
            "assets_index_name": assets_id,
            "auth_player_name": session.profile.name,
            "auth_uuid": session.profile.id,
            "auth_access_token": session.access_token,
            "auth_session": f"token:{session.access_token}:{session.profile.id}",
            "auth_xuid": session.xuid or "0",
            "clientid": "0",
            "user_type": session.user_type,
            "user_properties": "{}",
            "natives_directory": str(paths.natives_dir),
            "launcher_name": options.launcher_name,
            "launcher_version": options.launcher_version,
            "library_directory": str(paths.libraries_dir),
            "classpath_separator": self.platform.classpath_separator,
            "classpath": self.platform.classpath_separator.join(classpath),
        }
        if options.resolution is not None:
            width, height = options.resolution
            variables["resolution_width"] = str(width)
            variables["resolution_height"] = str(height)
        if options.quick_play is not None:
            mode, target = options.quick_play
            variables[QUICK_PLAY[mode][1]] = target
        return variables

    def _features(self, options: RuntimeOptions) -> dict[str, bool]:
        features = dict(options.features)
        if options.resolution is not None:
            features["has_custom_resolution"] = True
        if options.quick_play is not None:
            mode = options.quick_play[0]
            if mode not in QUICK_PLAY:
                raise ValueError(f"Unknown quick play mode '{mode}'")
            features[QUICK_PLAY[mode][0]] = True
        return features

    def build(
        self,
        descriptor: VersionDescriptor,
        paths: LaunchPaths,
        session: AuthSession,
        options: Optional[RuntimeOptions] = None,
    ) -> LaunchSpec:
        """
        Builds the command for a resolved descriptor.

        Raises:
            MissingField: An included token names an unknown placeholder, or the
                descriptor lacks its main class or arguments.
            RuntimeRequirementError: The runtime is older than the version needs.
        """
        options = options or RuntimeOptions()
        if not descriptor.main_class:
            raise MissingField("mainClass", descriptor.id)
        required = descriptor.java_version
        if (
            required is not None
            and options.java_major is not None
            and options.java_major < required.major_version
        ):
            raise RuntimeRequirementError(
                f"{descriptor.id} needs Java {required.major_version}, "
                f"but the configured runtime is Java {options.java_major}."
            )

        features = self._features(options)
        classpath = self.classpath(descriptor, paths, features)
        variables = self._variables(descriptor, paths, session, options, classpath)

        if descriptor.arguments is not None:
            jvm_tokens = descriptor.arguments.jvm
            game_tokens: Sequence[ArgumentToken] = descriptor.arguments.game
        elif descriptor.minecraft_arguments is not None:
            jvm_tokens = LEGACY_JVM_ARGUMENTS
            game_tokens = descriptor.minecraft_arguments.split()
        else:
            raise MissingField("arguments", descriptor.id)

        args = [f"-Xms{options.min_memory_mb}M", f"-Xmx{options.max_memory_mb}M"]
        args += options.extra_jvm_args
        args += self._expand(jvm_tokens, variables, features, descriptor.id)
        args.append(descriptor.main_class)
        args += self._expand(game_tokens, variables, features, descriptor.id)
        args += options.extra_game_args

        spec = LaunchSpec(
            executable=options.java_path,
            args=args,
            cwd=paths.game_dir,
            secrets=tuple(
                secret
                for secret in (session.access_token, session.client_token)
                if secret
            ),
        )
        log.debug(f"Launch command: {' '.join(spec.redacted())}")
        return spec
