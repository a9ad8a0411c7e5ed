"""
Checks the relations declared between installed mods.
"""

from typing import Mapping, Optional

from craftkit.models.mods import (
    DependencyRequirement,
    IssueLevel,
    ModInfo,
    ModIssue,
)
from craftkit.utils.versions import parse_version

# Ids under which each loader presents itself to mods
LOADER_IDS = {
    "fabric": ("fabricloader",),
    "quilt": ("quilt_loader", "fabricloader"),
    "forge": ("forge", "Forge", "fml"),
    "neoforge": ("neoforge", "fml"),
}


def builtin_mods(
    game_version: str,
    loader: Optional[str] = None,
    loader_version: Optional[str] = None,
    java_major: Optional[int] = None,
) -> list[ModInfo]:
    """The ids mods may depend on without a jar: the game, loader and Java."""
    mods = [ModInfo("minecraft", parse_version(game_version), name="Minecraft")]
    if loader is not None:
        mods += [
            ModInfo(mod_id, parse_version(loader_version), name=loader)
            for mod_id in LOADER_IDS.get(loader, (loader,))
        ]
    if java_major is not None:
        mods.append(ModInfo("java", parse_version(str(java_major)), name="Java"))
    return mods


def is_satisfied(
    mods: Mapping[str, ModInfo], requirement: DependencyRequirement
) -> bool:
    """True when a mod matching `requirement` is installed."""
    installed = mods.get(requirement.mod_id)
    return installed is not None and requirement.accepts(installed.version)


def is_waived(mods: Mapping[str, ModInfo], requirement: DependencyRequirement) -> bool:
    return any(is_satisfied(mods, u) for u in requirement.unless)


def check_dependencies(mods: Mapping[str, ModInfo]) -> list[ModIssue]:
    """
    Reports every unmet dependency and every installed conflict, keyed by
    mod id. Issues are ordered by severity, then by mod.
    """
    issues = []
    for mod in mods.values():
        for relation, requirement in mod.relations():
            if is_waived(mods, requirement):
                continue
            if is_satisfied(mods, requirement) != relation.forbids:
                continue
            issues.append(
                ModIssue(
                    relation.level,
                    mod.mod_id,
                    mod.display_name,
                    relation,
                    requirement,
                )
            )
    order = list(IssueLevel)
    issues.sort(key=lambda i: (order.index(i.level), i.mod_id, i.requirement.mod_id))
    return issues
