"""
Pydantic models for version descriptors, libraries, rules and asset indexes.

The JSON format uses camelCase keys; models accept both the JSON aliases and
the Python field names, and serialize back using the aliases.
"""

import re
from typing import Any, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from craftkit.constants import LIBRARIES_URL
from craftkit.utils.maven import MavenCoordinate
from craftkit.utils.platform import Platform


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")


class OsRule(_Model):
    name: Optional[str] = None
    arch: Optional[str] = None
    version: Optional[str] = None


class Rule(_Model):
    """A single allow/disallow rule with optional OS and feature conditions."""

    action: Literal["allow", "disallow"] = "allow"
    os: Optional[OsRule] = None
    features: dict[str, bool] = Field(default_factory=dict)

    def matches(self, platform: Platform, features: Mapping[str, bool]) -> bool:
        if self.os is not None:
            if self.os.name and self.os.name != platform.os_name:
                return False
            if self.os.arch and not platform.matches_arch(self.os.arch):
                return False
            if self.os.version and not re.search(self.os.version, platform.os_version):
                return False
        return all(
            bool(features.get(name, False)) == expected
            for name, expected in self.features.items()
        )


def evaluate_rules(
    rules: list[Rule],
    platform: Platform,
    features: Optional[Mapping[str, bool]] = None,
) -> bool:
    """
    Evaluates a rule list: no rules means allowed, otherwise the action of the
    last matching rule wins and nothing matching means disallowed.
    """
    if not rules:
        return True
    features = features or {}
    allowed = False
    for rule in rules:
        if rule.matches(platform, features):
            allowed = rule.action == "allow"
    return allowed


class Artifact(_Model):
    """A downloadable file with its optional digest and size."""

    url: Optional[str] = None
    path: Optional[str] = None
    sha1: Optional[str] = None
    size: Optional[int] = None


class LibraryDownloads(_Model):
    artifact: Optional[Artifact] = None
    classifiers: dict[str, Artifact] = Field(default_factory=dict)


class ExtractRules(_Model):
    include: list[str] = Field(default_factory=list)
    exclude: list[str] = Field(default_factory=list)


class LibrarySpec(_Model):
    """
    A library entry. Three shapes are supported: Mojang style (`downloads`),
    repository style (`url` + maven name, optional `sha1`/`size`), and bare
    maven names resolved against the default library repository.
    """

    name: str
    downloads: Optional[LibraryDownloads] = None
    natives: dict[str, str] = Field(default_factory=dict)
    extract: Optional[ExtractRules] = None
    rules: list[Rule] = Field(default_factory=list)
    url: Optional[str] = None
    sha1: Optional[str] = None
    size: Optional[int] = None

    @property
    def coordinate(self) -> MavenCoordinate:
        return MavenCoordinate.parse(self.name)

    @property
    def key(self) -> str:
        """Deduplication key: group, artifact and classifier, without the version."""
        return self.coordinate.key

    @property
    def is_native(self) -> bool:
        """True when the library only carries native binaries."""
        classifier = self.coordinate.classifier or ""
        return bool(self.natives) or classifier.startswith("natives-")

    def applies_to(
        self, platform: Platform, features: Optional[Mapping[str, bool]] = None
    ) -> bool:
        return evaluate_rules(self.rules, platform, features)

    def wanted_on(
        self, platform: Platform, features: Optional[Mapping[str, bool]] = None
    ) -> bool:
        """
        Rules allow the library and, for `natives-<os>[-<arch>]` classifier
        libraries, the classifier targets this architecture.
        """
        if not self.applies_to(platform, features):
            return False
        classifier = self.coordinate.classifier or ""
        if classifier.startswith("natives-") and not self.natives:
            return classifier in platform.native_classifiers()
        return True

    def main_artifact(self) -> Optional[Artifact]:
        """
        The primary jar with a resolved path and URL, or None for legacy
        natives-only entries that ship no primary artifact.
        """
        coordinate = self.coordinate
        if self.downloads is not None:
            artifact = self.downloads.artifact
            if artifact is None:
                return None
            return artifact.model_copy(
                update={"path": artifact.path or coordinate.path}
            )
        if self.natives:
            return None
        repository = self.url if self.url is not None else LIBRARIES_URL
        return Artifact(
            url=coordinate.url(repository) if repository else "",
            path=coordinate.path,
            sha1=self.sha1,
            size=self.size,
        )

    def native_artifact(self, platform: Platform) -> Optional[Artifact]:
        """The classifier artifact carrying natives for `platform`, if any."""
        classifier = self.natives.get(platform.os_name)
        if classifier is None:
            return None
        classifier = classifier.replace("${arch}", platform.bits)
        coordinate = self.coordinate.with_classifier(classifier)
        artifact = None
        if self.downloads is not None:
            artifact = self.downloads.classifiers.get(classifier)
        if artifact is None:
            repository = self.url if self.url is not None else LIBRARIES_URL
            return Artifact(url=coordinate.url(repository), path=coordinate.path)
        return artifact.model_copy(update={"path": artifact.path or coordinate.path})


class ConditionalArgument(_Model):
    """An argument token that only applies when its rules allow it."""

    rules: list[Rule] = Field(default_factory=list)
    value: list[str]

    @field_validator("value", mode="before")
    @classmethod
    def normalize_value(cls, v: Any) -> list[str]:
        """A single string value is shorthand for a one-element list."""
        if isinstance(v, str):
            return [v]
        return v


ArgumentToken = Union[str, ConditionalArgument]


class Arguments(_Model):
    game: list[ArgumentToken] = Field(default_factory=list)
    jvm: list[ArgumentToken] = Field(default_factory=list)


class AssetIndexRef(_Model):
    id: str
    url: Optional[str] = None
    sha1: Optional[str] = None
    size: Optional[int] = None
    total_size: Optional[int] = Field(default=None, alias="totalSize")


class JavaVersion(_Model):
    component: Optional[str] = None
    major_version: int = Field(alias="majorVersion")


class VersionDescriptor(_Model):
    """
    A version manifest. A resolved descriptor has no `inherits_from` and
    records the ids it was merged from in `hierarchy` (child first).
    """

    id: str
    inherits_from: Optional[str] = Field(default=None, alias="inheritsFrom")
    main_class: Optional[str] = Field(default=None, alias="mainClass")
    arguments: Optional[Arguments] = None
    minecraft_arguments: Optional[str] = Field(
        default=None, alias="minecraftArguments"
    )
    libraries: list[LibrarySpec] = Field(default_factory=list)
    asset_index: Optional[AssetIndexRef] = Field(default=None, alias="assetIndex")
    assets: Optional[str] = None
    java_version: Optional[JavaVersion] = Field(default=None, alias="javaVersion")
    downloads: dict[str, Artifact] = Field(default_factory=dict)
    jar: Optional[str] = None
    type: Optional[str] = None
    release_time: Optional[str] = Field(default=None, alias="releaseTime")
    hierarchy: list[str] = Field(default_factory=list, exclude=True)

    @property
    def jar_version(self) -> str:
        """Id of the version whose client jar this descriptor runs."""
        if self.jar:
            return self.jar
        return self.hierarchy[-1] if self.hierarchy else self.id

    @property
    def assets_id(self) -> Optional[str]:
        if self.asset_index is not None:
            return self.asset_index.id
        return self.assets

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class AssetIndexEntry(_Model):
    hash: str
    size: int

    @property
    def object_path(self) -> str:
        return f"{self.hash[:2]}/{self.hash}"


class AssetIndex(_Model):
    objects: dict[str, AssetIndexEntry] = Field(default_factory=dict)
    virtual: bool = False
    map_to_resources: bool = False


class VersionListEntry(_Model):
    id: str
    type: str = "release"
    url: str
    sha1: Optional[str] = None
    release_time: Optional[str] = Field(default=None, alias="releaseTime")


class VersionList(_Model):
    """The official list of published versions."""

    latest: dict[str, str] = Field(default_factory=dict)
    versions: list[VersionListEntry] = Field(default_factory=list)

    def find(self, version_id: str) -> Optional[VersionListEntry]:
        version_id = self.latest.get(version_id, version_id)
        return next((v for v in self.versions if v.id == version_id), None)
