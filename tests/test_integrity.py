"""
Tests for streaming digest verification.
"""

import hashlib
import zlib

import pytest

from craftkit.artifacts.integrity import SUPPORTED_ALGORITHMS, HashVerifier

PAYLOAD = b"The quick brown fox jumps over the lazy dog" * 1000


class TestHashVerifier:
    """Tests for incremental digests."""

    @pytest.mark.parametrize("algorithm", ["sha1", "sha256", "sha512", "md5"])
    def test_matches_hashlib(self, algorithm):
        verifier = HashVerifier(algorithm)
        for start in range(0, len(PAYLOAD), 4096):
            verifier.update(PAYLOAD[start : start + 4096])
        assert verifier.hexdigest() == hashlib.new(algorithm, PAYLOAD).hexdigest()
        assert verifier.size == len(PAYLOAD)

    def test_crc32_and_adler32(self):
        crc = HashVerifier("crc32")
        adler = HashVerifier("adler32")
        crc.update(PAYLOAD[:10])
        crc.update(PAYLOAD[10:])
        adler.update(PAYLOAD)
        assert crc.hexdigest() == f"{zlib.crc32(PAYLOAD):08x}"
        assert adler.hexdigest() == f"{zlib.adler32(PAYLOAD):08x}"

    def test_empty_stream(self):
        expected = hashlib.sha1(b"").hexdigest()  # noqa: S324
        assert HashVerifier("sha1").hexdigest() == expected

    def test_algorithm_names_are_case_insensitive(self):
        assert HashVerifier("SHA256").algorithm == "sha256"

    def test_unsupported_algorithm(self):
        with pytest.raises(ValueError, match="Unsupported digest algorithm"):
            HashVerifier("whirlpool")

    def test_matches_ignores_case_and_accepts_no_expectation(self):
        verifier = HashVerifier("sha1")
        verifier.update(b"abc")
        assert verifier.matches(verifier.hexdigest().upper())
        assert verifier.matches(None)
        assert not verifier.matches("0" * 40)

    def test_supported_algorithms(self):
        assert set(SUPPORTED_ALGORITHMS) == {
            "sha1",
            "sha256",
            "sha512",
            "md5",
            "crc32",
            "adler32",
        }


class TestFileVerification:
    """Tests for on-disk verification."""

    @pytest.fixture
    def artifact(self, tmp_path):
        path = tmp_path / "artifact.jar"
        path.write_bytes(PAYLOAD)
        return path

    def test_file_digest(self, artifact):
        expected = hashlib.sha1(PAYLOAD).hexdigest()  # noqa: S324
        assert HashVerifier.file_digest(artifact) == expected

    def test_missing_file_never_verifies(self, tmp_path):
        assert not HashVerifier.check_file(tmp_path / "missing.jar", None)

    def test_existence_is_enough_without_digest_or_size(self, artifact):
        assert HashVerifier.check_file(artifact, None)

    def test_size_mismatch(self, artifact):
        digest = hashlib.sha1(PAYLOAD).hexdigest()  # noqa: S324
        assert not HashVerifier.check_file(artifact, digest, size=len(PAYLOAD) + 1)

    def test_digest_mismatch(self, artifact):
        assert not HashVerifier.check_file(artifact, "0" * 40, size=len(PAYLOAD))

    @pytest.mark.asyncio
    async def test_verify_file_with_other_algorithm(self, artifact):
        digest = hashlib.sha256(PAYLOAD).hexdigest()
        assert await HashVerifier.verify_file(artifact, digest, "sha256", len(PAYLOAD))
