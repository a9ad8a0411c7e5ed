"""
Value objects describing installed mods and the problems between them.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from craftkit.utils.versions import ModVersion, VersionRange


@dataclass(frozen=True)
class DependencyRequirement:
    """
    A relation to another mod. It holds when the mod is present in one of
    `versions` (any version if empty). It is waived when one of the
    `unless` requirements holds.
    """

    mod_id: str
    versions: tuple[VersionRange, ...] = ()
    reason: Optional[str] = None
    unless: tuple["DependencyRequirement", ...] = ()

    def accepts(self, version: Optional[ModVersion]) -> bool:
        # Provided ids carry no version of their own.
        if not self.versions or version is None:
            return True
        return any(r.matches(version) for r in self.versions)

    def __str__(self) -> str:
        text = self.mod_id
        if self.versions:
            text += " " + " or ".join(str(r) for r in self.versions)
        if self.unless:
            text += ", unless " + " or ".join(str(u) for u in self.unless)
        if self.reason:
            text += f" ({self.reason})"
        return text


class IssueLevel(str, Enum):
    """How bad a dependency problem is."""

    HARD = "hard"  # the game will not start
    SOFT = "soft"  # starts, may misbehave
    SUGGESTIVE = "suggestive"


class Relation(str, Enum):
    DEPENDS = "depends"
    RECOMMENDS = "recommends"
    SUGGESTS = "suggests"
    CONFLICTS = "conflicts"
    BREAKS = "breaks"

    @property
    def level(self) -> IssueLevel:
        if self in (Relation.DEPENDS, Relation.BREAKS):
            return IssueLevel.HARD
        if self in (Relation.RECOMMENDS, Relation.CONFLICTS):
            return IssueLevel.SOFT
        return IssueLevel.SUGGESTIVE

    @property
    def forbids(self) -> bool:
        return self in (Relation.CONFLICTS, Relation.BREAKS)


@dataclass(frozen=True)
class ModInfo:
    """
    One mod id found in a jar, or built into the game or loader. Ids a mod
    declares it provides are listed as separate entries with `provided_by`
    set.
    """

    mod_id: str
    version: Optional[ModVersion]
    name: Optional[str] = None
    description: Optional[str] = None
    license: Optional[str] = None
    source: str = "builtin"
    provided_by: Optional[str] = None
    depends: tuple[DependencyRequirement, ...] = ()
    recommends: tuple[DependencyRequirement, ...] = ()
    suggests: tuple[DependencyRequirement, ...] = ()
    conflicts: tuple[DependencyRequirement, ...] = ()
    breaks: tuple[DependencyRequirement, ...] = ()

    @property
    def display_name(self) -> str:
        return self.name or self.mod_id

    def relations(self) -> list[tuple[Relation, DependencyRequirement]]:
        return [
            (relation, requirement)
            for relation in Relation
            for requirement in getattr(self, relation.value)
        ]


@dataclass(frozen=True)
class ModIssue:
    level: IssueLevel
    mod_id: str
    mod_name: str
    relation: Relation
    requirement: DependencyRequirement

    @property
    def message(self) -> str:
        if self.relation.forbids:
            return (
                f"{self.mod_name} {self.relation.value} {self.requirement}, "
                f"which is installed"
            )
        return (
            f"{self.mod_name} {self.relation.value} {self.requirement}, "
            f"which is missing or the wrong version"
        )

    def __str__(self) -> str:
        return f"({self.level.value}) {self.message}"
