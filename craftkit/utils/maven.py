"""
Parsing of maven coordinates (`group:artifact:version[:classifier][@ext]`).
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class MavenCoordinate:
    """A parsed maven coordinate and the repository path it maps to."""

    group: str
    artifact: str
    version: str
    classifier: Optional[str] = None
    extension: str = "jar"

    @classmethod
    def parse(cls, name: str) -> "MavenCoordinate":
        """
        Parses a coordinate string.

        Raises:
            ValueError: If the string has fewer than three components.
        """
        extension = "jar"
        if "@" in name:
            name, extension = name.rsplit("@", 1)
        parts = name.split(":")
        if len(parts) < 3 or not all(parts[:3]):
            raise ValueError(f"Invalid maven coordinate: '{name}'")
        classifier = parts[3] if len(parts) > 3 and parts[3] else None
        return cls(parts[0], parts[1], parts[2], classifier, extension)

    @property
    def key(self) -> str:
        """Identity of the library regardless of its version."""
        key = f"{self.group}:{self.artifact}"
        return f"{key}:{self.classifier}" if self.classifier else key

    @property
    def file_name(self) -> str:
        suffix = f"-{self.classifier}" if self.classifier else ""
        return f"{self.artifact}-{self.version}{suffix}.{self.extension}"

    @property
    def path(self) -> str:
        """Repository-relative path, always with forward slashes."""
        return "/".join(
            [*self.group.split("."), self.artifact, self.version, self.file_name]
        )

    def with_classifier(self, classifier: Optional[str]) -> "MavenCoordinate":
        return MavenCoordinate(
            self.group, self.artifact, self.version, classifier, self.extension
        )

    def url(self, repository: str) -> str:
        return repository.rstrip("/") + "/" + self.path

    def __str__(self) -> str:
        text = f"{self.group}:{self.artifact}:{self.version}"
        if self.classifier:
            text += f":{self.classifier}"
        if self.extension != "jar":
            text += f"@{self.extension}"
        return text
