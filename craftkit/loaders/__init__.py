"""
Mod loader variants, selected by tag.

Variants share no base class; they implement the `LoaderVariant` protocol.
"""

from craftkit.api.client import MetaClient
from craftkit.exceptions import UnsupportedVersionCombination

from .base import LoaderVariant, pick_version
from .fabric_like import MetadataMergeVariant
from .forge_like import ProcessorChainVariant, read_installer

VARIANT_FACTORIES = {
    "fabric": MetadataMergeVariant.fabric,
    "quilt": MetadataMergeVariant.quilt,
    "forge": ProcessorChainVariant.forge,
    "neoforge": ProcessorChainVariant.neoforge,
}


def get_variant(tag: str, client: MetaClient) -> LoaderVariant:
    """
    Returns the variant registered under `tag`.

    Raises:
        UnsupportedVersionCombination: If no variant has that tag.
    """
    factory = VARIANT_FACTORIES.get(tag.lower())
    if factory is None:
        known = ", ".join(sorted(VARIANT_FACTORIES))
        raise UnsupportedVersionCombination(
            f"Unknown loader '{tag}'. Known loaders: {known}.", tag
        )
    return factory(client)


__all__ = [
    "VARIANT_FACTORIES",
    "LoaderVariant",
    "MetadataMergeVariant",
    "ProcessorChainVariant",
    "get_variant",
    "pick_version",
    "read_installer",
]
