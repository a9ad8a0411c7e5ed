"""
Installed mods: metadata readers and dependency checking.
"""

from .dependencies import builtin_mods, check_dependencies
from .inventory import ModReport, inspect_mods, scan_mods
from .readers import LOADER_FORMATS, read_mod_file

__all__ = [
    "LOADER_FORMATS",
    "ModReport",
    "builtin_mods",
    "check_dependencies",
    "inspect_mods",
    "read_mod_file",
    "scan_mods",
]
