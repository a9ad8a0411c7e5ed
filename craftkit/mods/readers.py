"""
Reads mod metadata out of jar files: `fabric.mod.json`, `quilt.mod.json`,
`META-INF/mods.toml` (`neoforge.mods.toml`) and the legacy `mcmod.info`.
Jars nested inside a mod are read as well.
"""

import io
import json
import logging
import tomllib
import zipfile
from typing import Any, Callable, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field

from craftkit.exceptions import ModMetadataError
from craftkit.models.mods import DependencyRequirement, ModInfo
from craftkit.utils.versions import VersionRange, parse_version

log = logging.getLogger(__name__)

DEFAULT_LICENSE = "All Rights Reserved"
JAR_VERSION = "${file.jarVersion}"

VersionSpec = Union[str, list[str]]


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")


# fabric.mod.json


class FabricNestedJar(_Model):
    file: str


class FabricModJson(_Model):
    id: str
    version: str
    name: Optional[str] = None
    description: Optional[str] = None
    license: Union[str, list[str], None] = None
    provides: list[str] = Field(default_factory=list)
    jars: list[FabricNestedJar] = Field(default_factory=list)
    depends: dict[str, VersionSpec] = Field(default_factory=dict)
    recommends: dict[str, VersionSpec] = Field(default_factory=dict)
    suggests: dict[str, VersionSpec] = Field(default_factory=dict)
    conflicts: dict[str, VersionSpec] = Field(default_factory=dict)
    breaks: dict[str, VersionSpec] = Field(default_factory=dict)


# quilt.mod.json


class QuiltDependency(_Model):
    id: str
    versions: Optional[VersionSpec] = None
    version: Optional[VersionSpec] = None
    reason: Optional[str] = None
    optional: bool = False
    unless: Optional["QuiltDependencies"] = None


QuiltDependencies = Union[str, QuiltDependency, list[Union[str, QuiltDependency]]]
QuiltDependency.model_rebuild()


class QuiltProvided(_Model):
    id: str
    version: Optional[str] = None


class QuiltLicense(_Model):
    name: str


class QuiltMetadata(_Model):
    name: Optional[str] = None
    description: Optional[str] = None
    license: Union[str, QuiltLicense, list[Union[str, QuiltLicense]], None] = None


class QuiltLoader(_Model):
    id: str
    version: str
    provides: list[Union[str, QuiltProvided]] = Field(default_factory=list)
    jars: list[str] = Field(default_factory=list)
    depends: QuiltDependencies = Field(default_factory=list)
    breaks: QuiltDependencies = Field(default_factory=list)
    metadata: QuiltMetadata = Field(default_factory=QuiltMetadata)


class QuiltModJson(_Model):
    quilt_loader: QuiltLoader


# mods.toml


class ForgeMod(_Model):
    mod_id: str = Field(alias="modId")
    version: str = "1"
    display_name: Optional[str] = Field(default=None, alias="displayName")
    description: Optional[str] = None


class ForgeDependency(_Model):
    mod_id: str = Field(alias="modId")
    type: Optional[str] = None
    mandatory: Optional[bool] = None
    version_range: str = Field(default="", alias="versionRange")
    side: str = "BOTH"
    reason: Optional[str] = None


class ModsToml(_Model):
    license: str = DEFAULT_LICENSE
    mods: list[ForgeMod] = Field(default_factory=list)
    dependencies: dict[str, list[ForgeDependency]] = Field(default_factory=dict)


class JarJarEntry(_Model):
    path: str


class JarJarMetadata(_Model):
    jars: list[JarJarEntry] = Field(default_factory=list)


# mcmod.info


class McmodInfoItem(_Model):
    modid: str
    name: Optional[str] = None
    description: Optional[str] = None
    version: Optional[str] = None
    mcversion: Optional[str] = None
    use_dependency_information: bool = Field(
        default=False, alias="useDependencyInformation"
    )
    required_mods: list[str] = Field(default_factory=list, alias="requiredMods")


def _fabric_requirements(table: dict[str, VersionSpec]) -> tuple:
    return tuple(
        DependencyRequirement(mod_id, (VersionRange.fabric(spec),))
        for mod_id, spec in table.items()
    )


def _nested(archive: zipfile.ZipFile, path: str) -> zipfile.ZipFile:
    return zipfile.ZipFile(io.BytesIO(archive.read(path)))


def read_fabric(archive: zipfile.ZipFile, recurse: "Reader") -> list[ModInfo]:
    raw = json.loads(archive.read("fabric.mod.json").decode("utf-8"), strict=False)
    meta = FabricModJson.model_validate(raw)
    license = meta.license
    if isinstance(license, list):
        license = ", ".join(license)
    license = license or DEFAULT_LICENSE
    mods = [
        ModInfo(
            mod_id=meta.id,
            version=parse_version(meta.version),
            name=meta.name,
            description=meta.description,
            license=license,
            source="fabric",
            depends=_fabric_requirements(meta.depends),
            recommends=_fabric_requirements(meta.recommends),
            suggests=_fabric_requirements(meta.suggests),
            conflicts=_fabric_requirements(meta.conflicts),
            breaks=_fabric_requirements(meta.breaks),
        )
    ]
    mods += [
        ModInfo(mod_id=alias, version=None, source="fabric", provided_by=meta.id)
        for alias in meta.provides
    ]
    for jar in meta.jars:
        mods += recurse(_nested(archive, jar.file))
    return mods


def _quilt_list(value: QuiltDependencies) -> list[QuiltDependency]:
    items = value if isinstance(value, list) else [value]
    return [QuiltDependency(id=i) if isinstance(i, str) else i for i in items]


def _quilt_requirement(dep: QuiltDependency) -> DependencyRequirement:
    spec = dep.versions if dep.versions is not None else dep.version
    versions = () if spec is None else (VersionRange.fabric(spec),)
    unless = dep.unless if dep.unless is not None else []
    return DependencyRequirement(
        # "group:id" references only the id part
        dep.id.rsplit(":", 1)[-1],
        versions,
        dep.reason,
        tuple(_quilt_requirement(u) for u in _quilt_list(unless)),
    )


def _quilt_license(value: Any) -> Optional[str]:
    if value is None:
        return None
    items = value if isinstance(value, list) else [value]
    return ", ".join(i if isinstance(i, str) else i.name for i in items)


def read_quilt(archive: zipfile.ZipFile, recurse: "Reader") -> list[ModInfo]:
    raw = json.loads(archive.read("quilt.mod.json").decode("utf-8"), strict=False)
    loader = QuiltModJson.model_validate(raw).quilt_loader
    depends = _quilt_list(loader.depends)
    breaks = _quilt_list(loader.breaks)
    mods = [
        ModInfo(
            mod_id=loader.id,
            version=parse_version(loader.version),
            name=loader.metadata.name,
            description=loader.metadata.description,
            license=_quilt_license(loader.metadata.license) or DEFAULT_LICENSE,
            source="quilt",
            depends=tuple(_quilt_requirement(d) for d in depends if not d.optional),
            recommends=tuple(_quilt_requirement(d) for d in depends if d.optional),
            breaks=tuple(_quilt_requirement(d) for d in breaks if not d.optional),
            conflicts=tuple(_quilt_requirement(d) for d in breaks if d.optional),
        )
    ]
    for provided in loader.provides:
        if isinstance(provided, str):
            provided = QuiltProvided(id=provided)
        mods.append(
            ModInfo(
                mod_id=provided.id,
                version=parse_version(provided.version),
                source="quilt",
                provided_by=loader.id,
            )
        )
    for jar in loader.jars:
        mods += recurse(_nested(archive, jar))
    return mods


def _implementation_version(archive: zipfile.ZipFile) -> Optional[str]:
    try:
        manifest = archive.read("META-INF/MANIFEST.MF").decode("utf-8", "replace")
    except KeyError:
        return None
    for line in manifest.splitlines():
        if line.startswith("Implementation-Version:"):
            return line.split(":", 1)[1].strip()
    return None


def _forge_relations(deps: Sequence[ForgeDependency]) -> dict[str, tuple]:
    relations: dict[str, list[DependencyRequirement]] = {
        "depends": [],
        "recommends": [],
        "conflicts": [],
        "breaks": [],
    }
    for dep in deps:
        if dep.side.upper() == "SERVER":
            continue
        kind = (dep.type or "").lower()
        if not kind:
            kind = "required" if dep.mandatory else "optional"
        relation = {
            "required": "depends",
            "optional": "recommends",
            "discouraged": "conflicts",
            "incompatible": "breaks",
        }.get(kind)
        if relation is None:
            log.debug(f"Ignoring dependency on {dep.mod_id} of unknown type '{kind}'")
            continue
        relations[relation].append(
            DependencyRequirement(
                dep.mod_id, (VersionRange.maven(dep.version_range),), dep.reason
            )
        )
    return {name: tuple(reqs) for name, reqs in relations.items()}


def _forge_reader(toml_name: str, source: str) -> "FormatReader":
    def read(archive: zipfile.ZipFile, recurse: Reader) -> list[ModInfo]:
        raw = tomllib.loads(archive.read(f"META-INF/{toml_name}").decode("utf-8"))
        meta = ModsToml.model_validate(raw)
        mods = []
        for mod in meta.mods:
            version = mod.version
            if version == JAR_VERSION:
                version = _implementation_version(archive) or version
            mods.append(
                ModInfo(
                    mod_id=mod.mod_id,
                    version=parse_version(version),
                    name=mod.display_name,
                    description=mod.description,
                    license=meta.license,
                    source=source,
                    **_forge_relations(meta.dependencies.get(mod.mod_id, [])),
                )
            )
        if "META-INF/jarjar/metadata.json" in archive.namelist():
            nested = JarJarMetadata.model_validate_json(
                archive.read("META-INF/jarjar/metadata.json")
            )
            for jar in nested.jars:
                mods += recurse(_nested(archive, jar.path))
        return mods

    return read


def read_mcmod_info(archive: zipfile.ZipFile, recurse: "Reader") -> list[ModInfo]:
    raw = json.loads(archive.read("mcmod.info").decode("utf-8"), strict=False)
    if isinstance(raw, dict):
        raw = raw.get("modList") or raw.get("modlist") or []
    mods = []
    for item in (McmodInfoItem.model_validate(entry) for entry in raw):
        depends = []
        if item.use_dependency_information:
            for required in item.required_mods:
                mod_id, _, spec = required.partition("@")
                versions = (VersionRange.maven(spec),) if spec else ()
                depends.append(DependencyRequirement(mod_id, versions))
        if item.mcversion:
            depends.append(
                DependencyRequirement(
                    "minecraft", (VersionRange.maven(f"[{item.mcversion}]"),)
                )
            )
        mods.append(
            ModInfo(
                mod_id=item.modid,
                version=parse_version(item.version),
                name=item.name,
                description=item.description,
                source="mcmod",
                depends=tuple(depends),
            )
        )
    return mods


Reader = Callable[[zipfile.ZipFile], list[ModInfo]]
FormatReader = Callable[[zipfile.ZipFile, Reader], list[ModInfo]]

# Metadata file each format is recognised by, and how to read it
FORMATS: dict[str, tuple[str, FormatReader]] = {
    "quilt": ("quilt.mod.json", read_quilt),
    "fabric": ("fabric.mod.json", read_fabric),
    "neoforge": (
        "META-INF/neoforge.mods.toml",
        _forge_reader("neoforge.mods.toml", "neoforge"),
    ),
    "forge": ("META-INF/mods.toml", _forge_reader("mods.toml", "forge")),
    "mcmod": ("mcmod.info", read_mcmod_info),
}

# Formats each loader understands, in the order it looks for them
LOADER_FORMATS = {
    "fabric": ("fabric",),
    "quilt": ("quilt", "fabric"),
    "forge": ("forge", "mcmod"),
    "neoforge": ("neoforge", "forge"),
}


def read_archive(
    archive: zipfile.ZipFile, formats: Sequence[str] = tuple(FORMATS)
) -> list[ModInfo]:
    """
    Reads the first metadata format present in `archive`. Returns an empty
    list for jars that are not mods.
    """
    names = set(archive.namelist())
    for fmt in formats:
        marker, reader = FORMATS[fmt]
        if marker in names:
            return reader(archive, lambda nested: read_archive(nested, formats))
    return []


def read_mod_file(path, loader: Optional[str] = None) -> list[ModInfo]:
    """
    Reads the mods in one jar. `loader` restricts the metadata formats to
    those that loader understands.

    Raises:
        ModMetadataError: The jar or its metadata is unreadable.
    """
    formats = LOADER_FORMATS.get(loader, tuple(FORMATS)) if loader else tuple(FORMATS)
    try:
        with zipfile.ZipFile(path) as archive:
            return read_archive(archive, formats)
    except (OSError, KeyError, ValueError, zipfile.BadZipFile) as e:
        # Decoding, TOML and validation errors are all ValueErrors
        raise ModMetadataError(f"Cannot read mod metadata: {e}", str(path)) from e
