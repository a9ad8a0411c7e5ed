"""
Lists the mods installed in a game directory and checks them against each
other, the game version and the loader.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from craftkit.exceptions import ModMetadataError
from craftkit.models.mods import IssueLevel, ModInfo, ModIssue

from .dependencies import builtin_mods, check_dependencies
from .readers import read_mod_file

log = logging.getLogger(__name__)

MOD_SUFFIXES = (".jar", ".zip")


@dataclass
class ModReport:
    """
    What a mods directory holds. `files` maps each jar name to the mod ids
    it declares (nested jars included); jars whose metadata could not be
    read are listed in `unreadable` with the reason.
    """

    files: dict[str, list[ModInfo]] = field(default_factory=dict)
    unreadable: dict[str, str] = field(default_factory=dict)
    builtins: list[ModInfo] = field(default_factory=list)
    issues: list[ModIssue] = field(default_factory=list)

    @property
    def installed(self) -> dict[str, ModInfo]:
        """
        Every known id. Builtins win over jars, and a mod declared by a jar
        wins over an id another mod only provides.
        """
        mods: dict[str, ModInfo] = {}
        for infos in self.files.values():
            for info in infos:
                current = mods.get(info.mod_id)
                if current is None or current.provided_by and not info.provided_by:
                    mods[info.mod_id] = info
        mods.update((m.mod_id, m) for m in self.builtins)
        return mods

    @property
    def duplicates(self) -> dict[str, list[str]]:
        """Mod ids declared at the top level of more than one jar."""
        owners: dict[str, list[str]] = {}
        for name, infos in self.files.items():
            if infos and not infos[0].provided_by:
                owners.setdefault(infos[0].mod_id, []).append(name)
        return {mod_id: names for mod_id, names in owners.items() if len(names) > 1}

    @property
    def ok(self) -> bool:
        return not self.duplicates and not any(
            i.level == IssueLevel.HARD for i in self.issues
        )


def _scan(mods_dir: Path, loader: Optional[str]) -> ModReport:
    report = ModReport()
    if not mods_dir.is_dir():
        return report
    for path in sorted(mods_dir.iterdir()):
        if not path.is_file() or path.suffix.lower() not in MOD_SUFFIXES:
            continue
        try:
            report.files[path.name] = read_mod_file(path, loader)
        except ModMetadataError as e:
            log.warning(f"[yellow]Skipping {path.name}:[/yellow] {e}")
            report.unreadable[path.name] = str(e)
    return report


async def scan_mods(mods_dir: Path, loader: Optional[str] = None) -> ModReport:
    """Reads every jar in `mods_dir`; a missing directory holds no mods."""
    return await asyncio.to_thread(_scan, Path(mods_dir), loader)


async def inspect_mods(
    mods_dir: Path,
    game_version: str,
    loader: Optional[str] = None,
    loader_version: Optional[str] = None,
    java_major: Optional[int] = None,
) -> ModReport:
    """
    Scans `mods_dir` and checks every declared relation against the
    installed mods plus the game, loader and Java builtins.
    """
    report = await scan_mods(mods_dir, loader)
    report.builtins = builtin_mods(game_version, loader, loader_version, java_major)
    report.issues = check_dependencies(report.installed)
    mod_count = sum(len(infos) for infos in report.files.values())
    log.debug(
        f"Checked {mod_count} mod ids in {len(report.files)} files: "
        f"{len(report.issues)} issues"
    )
    return report
