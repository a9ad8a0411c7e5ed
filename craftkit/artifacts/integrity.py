"""
Streaming digest computation and verification of downloaded artifacts.
"""

import asyncio
import hashlib
import logging
import os
import zlib
from typing import Callable, Optional

log = logging.getLogger(__name__)


class _ChecksumHasher:
    """Adapts zlib's running checksums to the hashlib update/hexdigest shape."""

    def __init__(self, func: Callable[[bytes, int], int], initial: int):
        self._func = func
        self._value = initial

    def update(self, data: bytes) -> None:
        self._value = self._func(data, self._value)

    def hexdigest(self) -> str:
        return f"{self._value & 0xFFFFFFFF:08x}"


_FACTORIES: dict[str, Callable[[], object]] = {
    "sha1": hashlib.sha1,
    "sha256": hashlib.sha256,
    "sha512": hashlib.sha512,
    "md5": hashlib.md5,
    "crc32": lambda: _ChecksumHasher(zlib.crc32, 0),
    "adler32": lambda: _ChecksumHasher(zlib.adler32, 1),
}

SUPPORTED_ALGORITHMS = tuple(_FACTORIES)


class HashVerifier:
    """
    Incremental digest over a byte stream; the data is never buffered whole.

    Usage:
        verifier = HashVerifier("sha1")
        for chunk in chunks:
            verifier.update(chunk)
        verifier.matches(expected)
    """

    CHUNK_SIZE = 1024 * 1024

    def __init__(self, algorithm: str = "sha1"):
        algorithm = algorithm.lower()
        if algorithm not in _FACTORIES:
            raise ValueError(
                f"Unsupported digest algorithm '{algorithm}'. "
                f"Expected one of: {', '.join(SUPPORTED_ALGORITHMS)}"
            )
        self.algorithm = algorithm
        self.size = 0
        self._hasher = _FACTORIES[algorithm]()

    def update(self, chunk: bytes) -> None:
        self._hasher.update(chunk)
        self.size += len(chunk)

    def hexdigest(self) -> str:
        return self._hasher.hexdigest()

    def matches(self, expected: Optional[str]) -> bool:
        """True when no digest is expected or the computed one equals it."""
        return expected is None or self.hexdigest() == expected.lower()

    @classmethod
    def file_digest(cls, path: str | os.PathLike, algorithm: str = "sha1") -> str:
        """Computes the digest of a file, reading it in fixed-size chunks."""
        verifier = cls(algorithm)
        with open(path, "rb") as f:
            while chunk := f.read(cls.CHUNK_SIZE):
                verifier.update(chunk)
        return verifier.hexdigest()

    @classmethod
    def check_file(
        cls,
        path: str | os.PathLike,
        expected: Optional[str],
        algorithm: str = "sha1",
        size: Optional[int] = None,
    ) -> bool:
        """
        Checks that a file exists and matches the expected size and digest.
        With neither a digest nor a size, existence alone is enough.
        """
        try:
            actual_size = os.path.getsize(path)
        except OSError:
            return False
        if size is not None and actual_size != size:
            log.debug(f"Size mismatch for {path}: {actual_size} != {size}")
            return False
        if expected is None:
            return True
        actual = cls.file_digest(path, algorithm)
        if actual != expected.lower():
            log.debug(f"Digest mismatch for {path}: {actual} != {expected}")
            return False
        return True

    @classmethod
    async def verify_file(
        cls,
        path: str | os.PathLike,
        expected: Optional[str],
        algorithm: str = "sha1",
        size: Optional[int] = None,
    ) -> bool:
        """Async wrapper around `check_file` that hashes in a worker thread."""
        return await asyncio.to_thread(cls.check_file, path, expected, algorithm, size)
