"""
Tests for loader installation: staging, installation steps, installer
archives and the loader variants.
"""

from pathlib import Path

import pytest

from craftkit.core.loader_installer import LoaderInstaller, read_main_class
from craftkit.exceptions import (
    LoaderInstallError,
    ProcessorFailed,
    UnsupportedVersionCombination,
)
from craftkit.loaders import (
    MetadataMergeVariant,
    ProcessorChainVariant,
    get_variant,
    read_installer,
)
from craftkit.loaders.forge_like import parse_maven_versions
from craftkit.models.events import EventKind
from craftkit.models.loader import InstallStep, LoaderProfile, LoaderVersion
from craftkit.models.version import LibrarySpec, VersionDescriptor
from craftkit.storage.instance import StagingArea

from .helpers import make_jar, make_zip, sha1

LOADER_ID = "1.20.1-fake-47.2.0"
LOADER_JAR = b"loader library"
LOADER_PATH = "net/test/loader/47.2.0/loader-47.2.0.jar"
STEP_PATH = "net/test/step/1.0/step-1.0.jar"


def base_descriptor(file_server) -> VersionDescriptor:
    mappings = b"mappings"
    return VersionDescriptor.model_validate(
        {
            "id": "1.20.1",
            "mainClass": "net.minecraft.client.main.Main",
            "assetIndex": {"id": "5"},
            "arguments": {"game": ["--version", "${version_name}"], "jvm": []},
            "downloads": {
                "client_mappings": {
                    "url": file_server.add("/mappings.txt", mappings),
                    "sha1": sha1(mappings),
                    "size": len(mappings),
                }
            },
            "libraries": [{"name": "com.mojang:brigadier:1.1.8"}],
            "hierarchy": ["1.20.1"],
        }
    )


class FakeVariant:
    """A processor-style loader whose installer is produced locally."""

    tag = "fake"

    def __init__(self, loader_url: str, steps: list[InstallStep], data=None):
        self.loader_url = loader_url
        self.steps = steps
        self.data = data or {}

    async def list_versions(self, game_version):
        return [LoaderVersion(version="47.2.0")]

    async def resolve_version(self, game_version, requested):
        return "47.2.0"

    async def prepare_profile(self, game_version, loader_version, staging, orch):
        make_jar(staging.libraries_dir / STEP_PATH, main_class="net.test.Step")
        data = {"PATCHED": str(staging.work_dir / "patched.jar")}
        for key, value in self.data.items():
            data[key] = value.format(work=staging.work_dir)
        return LoaderProfile(
            variant=self.tag,
            game_version=game_version,
            loader_version=loader_version,
            version_id=LOADER_ID,
            fragment={
                "id": LOADER_ID,
                "inheritsFrom": game_version,
                "mainClass": "cpw.mods.bootstraplauncher.BootstrapLauncher",
                "arguments": {"game": ["--fml.forgeVersion", loader_version]},
                "libraries": [
                    {
                        "name": "net.test:loader:47.2.0",
                        "downloads": {
                            "artifact": {
                                "path": LOADER_PATH,
                                "url": self.loader_url,
                                "sha1": sha1(LOADER_JAR),
                            }
                        },
                    }
                ],
            },
            steps=self.steps,
            data=data,
        )

    def find_in(self, descriptor):
        return None


class FakeRunner:
    """Records every step invocation and fails the one at `fail_at`."""

    def __init__(self, fail_at=None, write_output=None):
        self.calls = []
        self.fail_at = fail_at
        self.write_output = write_output

    async def __call__(self, argv, cwd):
        self.calls.append((argv, cwd))
        if len(self.calls) - 1 == self.fail_at:
            return 1, "starting\nFatal: cannot patch"
        if self.write_output is not None:
            Path(argv[argv.index("--out") + 1]).write_bytes(self.write_output)
        return 0, "done"


def step(*args, **kwargs) -> InstallStep:
    return InstallStep(jar="net.test:step:1.0", args=list(args), **kwargs)


@pytest.fixture
def step_events():
    return []


@pytest.fixture
def make_installer(layout, orchestrator, linux, step_events):
    def factory(runner):
        return LoaderInstaller(
            layout,
            orchestrator,
            java_path="java-bin",
            runner=runner,
            platform=linux,
            on_event=step_events.append,
        )

    return factory


class TestLoaderInstaller:
    """Tests for layering a loader onto an installed base version."""

    @pytest.mark.asyncio
    async def test_successful_install(
        self, file_server, layout, make_installer, step_events
    ):
        variant = FakeVariant(
            file_server.add("/loader.jar", LOADER_JAR),
            [
                step(
                    "--side",
                    "{SIDE}",
                    "--out",
                    "{PATCHED}",
                    "--lib",
                    "[net.test:loader:47.2.0]",
                    "--name",
                    "'quoted'",
                )
            ],
        )
        runner = FakeRunner()

        result = await make_installer(runner).install(
            base_descriptor(file_server), variant
        )

        written = layout.read_descriptor(LOADER_ID)
        assert written["inheritsFrom"] == "1.20.1"
        assert layout.library_path(LOADER_PATH).read_bytes() == LOADER_JAR
        assert layout.library_path(STEP_PATH).is_file()
        assert list((layout.root / ".staging").iterdir()) == []

        merged = result.descriptor
        assert merged.hierarchy == [LOADER_ID, "1.20.1"]
        assert merged.jar_version == "1.20.1"
        assert merged.main_class == "cpw.mods.bootstraplauncher.BootstrapLauncher"
        assert [lib.key for lib in merged.libraries] == [
            "net.test:loader",
            "com.mojang:brigadier",
        ]
        assert merged.arguments.game == [
            "--version",
            "${version_name}",
            "--fml.forgeVersion",
            "47.2.0",
        ]

        (argv, cwd), = runner.calls
        assert argv[:2] == ["java-bin", "-cp"]
        assert argv[2].endswith(STEP_PATH)
        assert argv[3] == "net.test.Step"
        assert argv[argv.index("--side") + 1] == "client"
        assert argv[argv.index("--out") + 1].endswith("patched.jar")
        assert argv[argv.index("--lib") + 1].endswith(LOADER_PATH)
        assert argv[argv.index("--name") + 1] == "quoted"
        assert cwd.name == "work"
        assert [(e.kind, e.key) for e in step_events] == [
            (EventKind.STARTED, "0"),
            (EventKind.COMPLETED, "0"),
        ]

    @pytest.mark.asyncio
    async def test_failed_step_commits_nothing(
        self, file_server, layout, make_installer, step_events
    ):
        variant = FakeVariant(
            file_server.add("/loader.jar", LOADER_JAR),
            [step("--task", "one"), step("--task", "two"), step("--task", "three")],
        )
        runner = FakeRunner(fail_at=1)

        with pytest.raises(ProcessorFailed) as exc_info:
            await make_installer(runner).install(base_descriptor(file_server), variant)

        error = exc_info.value
        assert error.step_index == 1
        assert error.exit_code == 1
        assert error.reason == "Fatal: cannot patch"
        assert len(runner.calls) == 2
        assert layout.read_descriptor(LOADER_ID) is None
        assert not layout.library_path(LOADER_PATH).exists()
        assert not layout.library_path(STEP_PATH).exists()
        assert list((layout.root / ".staging").iterdir()) == []
        assert (step_events[-1].kind, step_events[-1].key) == (EventKind.FAILED, "1")

    @pytest.mark.asyncio
    async def test_failed_install_leaves_installed_libraries_untouched(
        self, file_server, layout, make_installer
    ):
        installed = layout.library_path("net/test/out/1.0/out-1.0.jar")
        installed.parent.mkdir(parents=True)
        installed.write_bytes(b"original")
        variant = FakeVariant(
            file_server.add("/loader.jar", LOADER_JAR),
            [step("--out", "[net.test:out:1.0]"), step("--task", "two")],
        )
        runner = FakeRunner(fail_at=1, write_output=b"patched")

        with pytest.raises(ProcessorFailed):
            await make_installer(runner).install(base_descriptor(file_server), variant)

        written_to = runner.calls[0][0][-1]
        assert ".staging" in written_to
        assert installed.read_bytes() == b"original"

    @pytest.mark.asyncio
    async def test_patched_library_is_committed(
        self, file_server, layout, make_installer
    ):
        installed = layout.library_path("net/test/out/1.0/out-1.0.jar")
        installed.parent.mkdir(parents=True)
        installed.write_bytes(b"original")
        variant = FakeVariant(
            file_server.add("/loader.jar", LOADER_JAR),
            [step("--out", "[net.test:out:1.0]")],
        )

        await make_installer(FakeRunner(write_output=b"patched")).install(
            base_descriptor(file_server), variant
        )

        assert installed.read_bytes() == b"patched"

    @pytest.mark.asyncio
    async def test_invalid_fragment_names_the_variant(
        self, file_server, layout, make_installer
    ):
        class BrokenVariant(FakeVariant):
            async def prepare_profile(self, *args):
                profile = await super().prepare_profile(*args)
                fragment = {**profile.fragment, "libraries": "not a list"}
                return profile.model_copy(update={"fragment": fragment})

        variant = BrokenVariant(file_server.add("/loader.jar", LOADER_JAR), [])

        with pytest.raises(LoaderInstallError) as exc_info:
            await make_installer(FakeRunner()).install(
                base_descriptor(file_server), variant
            )
        assert exc_info.value.variant == "fake"
        assert layout.read_descriptor(LOADER_ID) is None

    @pytest.mark.asyncio
    async def test_declared_outputs_are_checked(
        self, file_server, layout, make_installer
    ):
        outputs = {"{PATCHED}": f"'{sha1(b'patched')}'"}
        variant = FakeVariant(
            file_server.add("/loader.jar", LOADER_JAR),
            [step("--out", "{PATCHED}", outputs=outputs)],
        )

        with pytest.raises(ProcessorFailed, match="outputs"):
            await make_installer(FakeRunner()).install(
                base_descriptor(file_server), variant
            )
        assert layout.read_descriptor(LOADER_ID) is None

        runner = FakeRunner(write_output=b"patched")
        await make_installer(runner).install(base_descriptor(file_server), variant)
        assert layout.read_descriptor(LOADER_ID) is not None

    @pytest.mark.asyncio
    async def test_unknown_variable(self, file_server, make_installer):
        variant = FakeVariant(
            file_server.add("/loader.jar", LOADER_JAR), [step("{NOT_DEFINED}")]
        )
        runner = FakeRunner()

        with pytest.raises(ProcessorFailed, match="NOT_DEFINED"):
            await make_installer(runner).install(base_descriptor(file_server), variant)
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_mappings_are_fetched_instead_of_downloaded_by_a_step(
        self, file_server, make_installer, step_events
    ):
        variant = FakeVariant(
            file_server.add("/loader.jar", LOADER_JAR),
            [step("--task", "DOWNLOAD_MOJMAPS", "--output", "{MOJMAPS}")],
            data={"MOJMAPS": "{work}/mappings.txt"},
        )
        runner = FakeRunner()

        await make_installer(runner).install(base_descriptor(file_server), variant)

        assert file_server.hits["/mappings.txt"] == 1
        assert runner.calls == []
        assert step_events[0].kind == EventKind.SKIPPED

    @pytest.mark.asyncio
    async def test_installed_libraries_are_not_downloaded_again(
        self, file_server, layout, make_installer
    ):
        layout.library_path(LOADER_PATH).parent.mkdir(parents=True)
        layout.library_path(LOADER_PATH).write_bytes(LOADER_JAR)
        variant = FakeVariant(file_server.add("/loader.jar", LOADER_JAR), [])

        await make_installer(FakeRunner()).install(
            base_descriptor(file_server), variant
        )

        assert file_server.hits["/loader.jar"] == 0
        assert layout.library_path(LOADER_PATH).read_bytes() == LOADER_JAR

    def test_read_main_class(self, tmp_path):
        assert read_main_class(make_jar(tmp_path / "a.jar", "a.Main")) == "a.Main"
        assert read_main_class(make_jar(tmp_path / "b.jar")) is None


MODERN_PROFILE = {
    "spec": 1,
    "version": "1.20.1-forge-47.2.0",
    "json": "/version.json",
    "minecraft": "1.20.1",
    "data": {
        "MAPPINGS": {
            "client": "[de.oceanlabs.mcp:mcp_config:1.20.1@zip]",
            "server": "[de.oceanlabs.mcp:mcp_config:1.20.1@zip]",
        },
        "BINPATCH": {"client": "/data/client.lzma", "server": "/data/server.lzma"},
    },
    "processors": [
        {"jar": "net.minecraftforge:installertools:1.3.0", "args": ["--task", "A"]},
        {"sides": ["server"], "jar": "net.minecraftforge:jarsplitter:1.1.4"},
    ],
    "libraries": [
        {
            "name": "net.minecraftforge:installertools:1.3.0",
            "downloads": {
                "artifact": {
                    "path": (
                        "net/minecraftforge/installertools/1.3.0/"
                        "installertools-1.3.0.jar"
                    ),
                    "url": "https://maven.example.org/installertools-1.3.0.jar",
                }
            },
        }
    ],
}

UNIVERSAL = (
    "net/minecraftforge/forge/1.20.1-47.2.0/forge-1.20.1-47.2.0-universal.jar"
)


class TestInstallerArchives:
    """Tests for unpacking installer jars."""

    @pytest.fixture
    def staging(self, tmp_path) -> StagingArea:
        return StagingArea(tmp_path / "stage")

    def test_modern_installer(self, tmp_path, staging):
        installer = make_zip(
            tmp_path / "installer.jar",
            {
                "install_profile.json": MODERN_PROFILE,
                "version.json": {
                    "id": "1.20.1-forge-47.2.0",
                    "inheritsFrom": "1.20.1",
                    "mainClass": "cpw.mods.bootstraplauncher.BootstrapLauncher",
                },
                f"maven/{UNIVERSAL}": "universal",
                "data/client.lzma": "client patch",
                "data/server.lzma": "server patch",
            },
        )

        profile = read_installer(installer, staging, "forge", "1.20.1", "47.2.0")

        assert profile.version_id == "1.20.1-forge-47.2.0"
        assert profile.fragment["inheritsFrom"] == "1.20.1"
        assert [s.jar for s in profile.steps] == [
            "net.minecraftforge:installertools:1.3.0"
        ]
        assert len(profile.libraries) == 1
        assert (staging.libraries_dir / UNIVERSAL).read_bytes() == b"universal"
        binpatch = Path(profile.data["BINPATCH"])
        assert binpatch.read_bytes() == b"client patch"
        assert binpatch.is_relative_to(staging.work_dir.resolve())
        assert profile.data["MAPPINGS"] == "[de.oceanlabs.mcp:mcp_config:1.20.1@zip]"
        assert profile.data["INSTALLER"] == str(installer)

    def test_legacy_installer(self, tmp_path, staging):
        forge = "net.minecraftforge:forge:1.7.10-10.13.4.1614-1.7.10"
        installer = make_zip(
            tmp_path / "installer.jar",
            {
                "install_profile.json": {
                    "install": {
                        "path": forge,
                        "filePath": "forge-1.7.10-universal.jar",
                    },
                    "versionInfo": {
                        "id": "1.7.10-Forge10.13.4.1614-1.7.10",
                        "inheritsFrom": "1.7.10",
                        "mainClass": "net.minecraft.launchwrapper.Launch",
                        "libraries": [
                            {"name": forge},
                            {"name": "net.minecraft:launchwrapper:1.12"},
                            {"name": "server:only:1.0", "clientreq": False},
                        ],
                    },
                },
                "forge-1.7.10-universal.jar": "universal",
            },
        )

        profile = read_installer(
            installer, staging, "forge", "1.7.10", "10.13.4.1614-1.7.10"
        )

        assert profile.version_id == "1.7.10-Forge10.13.4.1614-1.7.10"
        assert profile.steps == []
        assert [lib["name"] for lib in profile.fragment["libraries"]] == [
            forge,
            "net.minecraft:launchwrapper:1.12",
        ]
        universal = (
            staging.libraries_dir
            / "net/minecraftforge/forge/1.7.10-10.13.4.1614-1.7.10"
            / "forge-1.7.10-10.13.4.1614-1.7.10.jar"
        )
        assert universal.read_bytes() == b"universal"

    def test_corrupt_installer(self, tmp_path, staging):
        installer = tmp_path / "installer.jar"
        installer.write_bytes(b"not a zip")
        with pytest.raises(LoaderInstallError):
            read_installer(installer, staging, "forge", "1.20.1", "47.2.0")

    def test_entries_outside_the_staging_area(self, tmp_path, staging):
        installer = make_zip(
            tmp_path / "installer.jar",
            {
                "install_profile.json": MODERN_PROFILE,
                "version.json": {"id": "x"},
                "maven/../../escape.jar": "evil",
            },
        )
        with pytest.raises(LoaderInstallError):
            read_installer(installer, staging, "forge", "1.20.1", "47.2.0")
        assert not (tmp_path / "escape.jar").exists()


MAVEN_METADATA = """<?xml version="1.0" encoding="UTF-8"?>
<metadata>
  <groupId>net.minecraftforge</groupId>
  <artifactId>forge</artifactId>
  <versioning>
    <versions>
      <version>1.19.2-43.2.0</version>
      <version>1.20.1-47.1.0</version>
      <version>1.20.1-47.2.0</version>
      <version>1.20.1-47.3.0-beta</version>
    </versions>
  </versioning>
</metadata>
"""


class TestProcessorChainVariant:
    """Tests for Forge and NeoForge version discovery."""

    @pytest.fixture
    def forge(self, file_server, meta_client) -> ProcessorChainVariant:
        file_server.add("/maven/forge/maven-metadata.xml", MAVEN_METADATA)
        file_server.add(
            "/promotions.json",
            {
                "promos": {
                    "1.20.1-recommended": "47.1.0",
                    "1.20.1-latest": "47.2.0",
                }
            },
        )
        return ProcessorChainVariant(
            "forge",
            file_server.url("/maven"),
            meta_client,
            promotions_url=file_server.url("/promotions.json"),
        )

    def test_parse_maven_versions(self):
        assert parse_maven_versions(MAVEN_METADATA)[0] == "1.19.2-43.2.0"
        with pytest.raises(LoaderInstallError):
            parse_maven_versions("<metadata>")

    @pytest.mark.asyncio
    async def test_list_versions(self, forge):
        versions = await forge.list_versions("1.20.1")
        assert versions == [
            LoaderVersion(version="1.20.1-47.3.0-beta", stable=False),
            LoaderVersion(version="1.20.1-47.2.0"),
            LoaderVersion(version="1.20.1-47.1.0"),
        ]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "game_version, requested, expected",
        [
            ("1.20.1", "recommended", "1.20.1-47.1.0"),
            ("1.20.1", "latest", "1.20.1-47.2.0"),
            ("1.20.1", "47.2.0", "1.20.1-47.2.0"),
            ("1.20.1", "1.20.1-47.1.0", "1.20.1-47.1.0"),
            ("1.19.2", "recommended", "1.19.2-43.2.0"),
        ],
    )
    async def test_resolve_version(self, forge, game_version, requested, expected):
        assert await forge.resolve_version(game_version, requested) == expected

    @pytest.mark.asyncio
    async def test_unsupported_combinations(self, forge):
        with pytest.raises(UnsupportedVersionCombination):
            await forge.resolve_version("1.20.1", "99.0.0")
        with pytest.raises(UnsupportedVersionCombination):
            await forge.resolve_version("1.5.2", "recommended")

    def test_neoforge_version_matching(self, meta_client):
        neoforge = ProcessorChainVariant.neoforge(meta_client)
        assert neoforge.matches("21.1.77", "1.21.1")
        assert neoforge.matches("21.0.10-beta", "1.21")
        assert not neoforge.matches("20.4.237", "1.21.1")
        assert not neoforge.matches("21.0.1", "24w14a")
        assert neoforge.matches("1.20.1-47.1.100", "1.20.1")
        assert neoforge.archive_name("1.20.1") == "forge"
        assert neoforge.archive_name("1.21.1") == "neoforge"

    def test_installer_url(self, forge):
        url = forge.installer_url("1.20.1", "1.20.1-47.2.0")
        assert url.endswith(
            "/maven/forge/1.20.1-47.2.0/forge-1.20.1-47.2.0-installer.jar"
        )

    def test_find_in(self, forge):
        modern = VersionDescriptor(
            id="1.20.1-forge-47.2.0",
            arguments={"game": ["--fml.forgeVersion", "47.2.0"]},
        )
        legacy = VersionDescriptor(
            id="1.7.10-Forge",
            libraries=[
                LibrarySpec(name="net.minecraftforge:forge:1.7.10-10.13.4.1614-1.7.10")
            ],
        )
        assert forge.find_in(modern) == "47.2.0"
        assert forge.find_in(legacy) == "10.13.4.1614-1.7.10"
        assert forge.find_in(VersionDescriptor(id="1.20.1")) is None


class TestMetadataMergeVariant:
    """Tests for Fabric-style loaders."""

    @pytest.fixture
    def fabric(self, file_server, meta_client) -> MetadataMergeVariant:
        file_server.add(
            "/fabric/versions/loader/1.20.1",
            [
                {"loader": {"version": "0.16.0-beta.1", "stable": False}},
                {"loader": {"version": "0.15.11", "stable": True}},
            ],
        )
        file_server.add(
            "/fabric/versions/loader/1.20.1/0.15.11/profile/json",
            {
                "id": "fabric-loader-0.15.11-1.20.1",
                "inheritsFrom": "1.20.1",
                "mainClass": "net.fabricmc.loader.impl.launch.knot.KnotClient",
                "libraries": [
                    {
                        "name": "net.fabricmc:fabric-loader:0.15.11",
                        "url": "https://maven.fabricmc.net/",
                    }
                ],
            },
        )
        return MetadataMergeVariant(
            "fabric",
            file_server.url("/fabric"),
            "net.fabricmc:fabric-loader",
            meta_client,
        )

    @pytest.mark.asyncio
    async def test_resolve_version(self, fabric):
        assert await fabric.resolve_version("1.20.1", "recommended") == "0.15.11"
        assert await fabric.resolve_version("1.20.1", "latest") == "0.15.11"
        exact = await fabric.resolve_version("1.20.1", "0.16.0-beta.1")
        assert exact == "0.16.0-beta.1"

    @pytest.mark.asyncio
    async def test_unknown_game_version(self, fabric):
        assert await fabric.list_versions("0.0.1") == []
        with pytest.raises(UnsupportedVersionCombination):
            await fabric.resolve_version("0.0.1", "recommended")
        with pytest.raises(UnsupportedVersionCombination):
            await fabric.resolve_version("1.20.1", "9.9.9")

    @pytest.mark.asyncio
    async def test_prepare_profile(self, fabric):
        profile = await fabric.prepare_profile("1.20.1", "0.15.11", None, None)

        assert profile.version_id == "fabric-loader-0.15.11-1.20.1"
        assert profile.steps == []
        assert fabric.find_in(profile.descriptor) == "0.15.11"

    @pytest.mark.asyncio
    async def test_unpublished_profile(self, fabric):
        with pytest.raises(UnsupportedVersionCombination):
            await fabric.prepare_profile("1.20.1", "0.1.0", None, None)

    @pytest.mark.asyncio
    async def test_quilt_stability_from_version_suffix(self, file_server, meta_client):
        file_server.add(
            "/quilt/versions/loader/1.20.1",
            [
                {"loader": {"version": "0.20.0-beta.5"}},
                {"loader": {"version": "0.19.2"}},
            ],
        )
        quilt = MetadataMergeVariant(
            "quilt", file_server.url("/quilt"), "org.quiltmc:quilt-loader", meta_client
        )

        versions = await quilt.list_versions("1.20.1")

        assert [v.stable for v in versions] == [False, True]


class TestVariantRegistry:
    def test_known_tags(self, meta_client):
        assert get_variant("Fabric", meta_client).tag == "fabric"
        assert get_variant("neoforge", meta_client).tag == "neoforge"

    def test_unknown_tag(self, meta_client):
        with pytest.raises(UnsupportedVersionCombination, match="Known loaders"):
            get_variant("rift", meta_client)
