"""
Describes the host platform in the vocabulary used by version descriptors.
"""

import platform as _platform
import sys
from dataclasses import dataclass

_ARCH_ALIASES = {
    "amd64": "x86_64",
    "x86_64": "x86_64",
    "x64": "x86_64",
    "i386": "x86",
    "i686": "x86",
    "x86": "x86",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "arm32",
    "armv8l": "arm32",
    "arm": "arm32",
}


@dataclass(frozen=True)
class Platform:
    """
    Operating system, architecture and OS version as rules see them.

    `os_name` is one of "windows", "osx" or "linux"; `arch` is normalized to
    "x86_64", "x86", "arm64" or "arm32".
    """

    os_name: str
    arch: str
    os_version: str = ""

    @classmethod
    def current(cls) -> "Platform":
        """Detects the platform of the running interpreter."""
        if sys.platform.startswith("win"):
            os_name = "windows"
        elif sys.platform == "darwin":
            os_name = "osx"
        else:
            os_name = "linux"
        machine = _platform.machine().lower()
        return cls(
            os_name=os_name,
            arch=_ARCH_ALIASES.get(machine, machine),
            os_version=_platform.release(),
        )

    @property
    def bits(self) -> str:
        """Pointer width used for `${arch}` in legacy natives classifiers."""
        return "64" if self.arch in ("x86_64", "arm64") else "32"

    @property
    def classpath_separator(self) -> str:
        return ";" if self.os_name == "windows" else ":"

    def matches_arch(self, rule_arch: str) -> bool:
        """Rules name 32-bit Intel as "x86"; anything else is compared verbatim."""
        return _ARCH_ALIASES.get(rule_arch.lower(), rule_arch.lower()) == self.arch

    def native_classifiers(self) -> list[str]:
        """
        Classifier names of modern (LWJGL 3 style) natives libraries that apply
        to this platform, most specific first.
        """
        os_part = {"windows": "windows", "osx": "macos", "linux": "linux"}[
            self.os_name
        ]
        if self.arch == "arm64":
            arch_parts = ["arm64", "aarch_64"]
        elif self.arch == "x86":
            arch_parts = ["x86"]
        elif self.arch == "arm32":
            arch_parts = ["arm32"]
        else:
            arch_parts = []
        names = [f"natives-{os_part}-{part}" for part in arch_parts]
        if self.arch == "x86_64":
            names.append(f"natives-{os_part}")
        return names
