"""
Models describing loader installers and the profiles they produce.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from .version import LibrarySpec, VersionDescriptor


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")


class DataEntry(_Model):
    client: str = ""
    server: str = ""


class InstallStep(_Model):
    """One processor invocation: `java -cp <jar;classpath> <Main-Class> <args>`."""

    jar: str
    classpath: list[str] = Field(default_factory=list)
    args: list[str] = Field(default_factory=list)
    outputs: dict[str, str] = Field(default_factory=dict)
    sides: list[str] = Field(default_factory=list)

    @property
    def runs_on_client(self) -> bool:
        return not self.sides or "client" in self.sides


class InstallProfile(_Model):
    """`install_profile.json` as shipped inside processor-based installers."""

    spec: int = 0
    version: Optional[str] = None
    minecraft: Optional[str] = None
    version_json: Optional[str] = Field(default=None, alias="json")
    path: Optional[str] = None
    data: dict[str, DataEntry] = Field(default_factory=dict)
    processors: list[InstallStep] = Field(default_factory=list)
    libraries: list[LibrarySpec] = Field(default_factory=list)


class LoaderVersion(_Model):
    version: str
    stable: bool = True


class LoaderProfile(_Model):
    """
    Everything needed to layer a loader onto a base version.

    `fragment` is the raw descriptor written to `versions/<version_id>`;
    `libraries` are installer-only dependencies needed by `steps`; `data`
    holds the resolved client-side step variables.
    """

    variant: str
    game_version: str
    loader_version: str
    version_id: str
    fragment: dict[str, Any]
    libraries: list[LibrarySpec] = Field(default_factory=list)
    steps: list[InstallStep] = Field(default_factory=list)
    data: dict[str, str] = Field(default_factory=dict)

    @property
    def descriptor(self) -> VersionDescriptor:
        return VersionDescriptor.model_validate(self.fragment)
