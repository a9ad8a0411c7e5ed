"""
Artifact Layer.

This package is responsible for all file-level work on artifacts:
streamed downloading, digest verification and natives extraction.
"""

from .downloader import Downloader, create_download_session
from .integrity import SUPPORTED_ALGORITHMS, HashVerifier
from .natives import ExtractionReport, NativesExtractor, select_native_archives

__all__ = [
    "SUPPORTED_ALGORITHMS",
    "Downloader",
    "ExtractionReport",
    "HashVerifier",
    "NativesExtractor",
    "create_download_session",
    "select_native_archives",
]
