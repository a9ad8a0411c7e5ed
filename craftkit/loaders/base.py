"""
The capability protocol every loader variant implements, and helpers shared by
the concrete variants.
"""

from typing import Optional, Protocol, Sequence

from craftkit.core.download_manager import DownloadOrchestrator
from craftkit.models.loader import LoaderProfile, LoaderVersion
from craftkit.models.version import VersionDescriptor
from craftkit.storage.instance import StagingArea

LATEST_MARKERS = ("latest", "recommended")


class LoaderVariant(Protocol):
    """
    A mod loader that can be layered onto a base game version.

    `prepare_profile` may download into the staging area but must never touch
    the instance itself.
    """

    tag: str

    async def list_versions(self, game_version: str) -> list[LoaderVersion]:
        """Loader versions available for `game_version`, newest first."""
        ...

    async def resolve_version(self, game_version: str, requested: str) -> str:
        """
        Turns an exact version or a latest/recommended marker into a concrete
        loader version.

        Raises:
            UnsupportedVersionCombination: Nothing matches.
        """
        ...

    async def prepare_profile(
        self,
        game_version: str,
        loader_version: str,
        staging: StagingArea,
        orchestrator: DownloadOrchestrator,
    ) -> LoaderProfile:
        ...

    def find_in(self, descriptor: VersionDescriptor) -> Optional[str]:
        """The loader version a resolved descriptor carries, if any."""
        ...


def pick_version(versions: Sequence[LoaderVersion], requested: str) -> Optional[str]:
    """
    Chooses from a newest-first list: markers pick the newest stable version
    (or the newest at all when none is stable), anything else must match.
    """
    if requested in LATEST_MARKERS:
        stable = next((v.version for v in versions if v.stable), None)
        return stable or (versions[0].version if versions else None)
    return next((v.version for v in versions if v.version == requested), None)


def library_version(descriptor: VersionDescriptor, *keys: str) -> Optional[str]:
    """Version of the first library whose `group:artifact` is one of `keys`."""
    for library in descriptor.libraries:
        coordinate = library.coordinate
        if f"{coordinate.group}:{coordinate.artifact}" in keys:
            return coordinate.version
    return None
