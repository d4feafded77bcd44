"""Tests for ContentFingerprinter."""

import hashlib
import os
import tempfile
from pathlib import Path

import pytest
from hypothesis import given, settings, HealthCheck
from hypothesis import strategies as st

from treebackup.fingerprint import ContentFingerprinter, UnreadableError


class TestFingerprint:

    def test_matches_hashlib_md5_by_default(self, tmp_path):
        path = tmp_path / "a.txt"
        path.write_bytes(b"hello world")

        digest = ContentFingerprinter().fingerprint(path)

        assert digest == hashlib.md5(b"hello world").hexdigest()
        assert len(digest) == 32

    def test_configurable_algorithm(self, tmp_path):
        path = tmp_path / "a.txt"
        path.write_bytes(b"hello world")

        fingerprinter = ContentFingerprinter(algorithm="sha256")

        assert fingerprinter.fingerprint(path) == hashlib.sha256(b"hello world").hexdigest()
        assert fingerprinter.digest_size == 64

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty"
        path.write_bytes(b"")

        assert ContentFingerprinter().fingerprint(path) == hashlib.md5(b"").hexdigest()

    def test_streams_in_chunks(self, tmp_path):
        """Content larger than one chunk hashes the same as a single update."""
        data = os.urandom(10_000)
        path = tmp_path / "big.bin"
        path.write_bytes(data)

        fingerprinter = ContentFingerprinter(chunk_size=7)

        assert fingerprinter.fingerprint(path) == hashlib.md5(data).hexdigest()

    def test_ignores_name_and_mtime(self, tmp_path):
        first = tmp_path / "one.txt"
        second = tmp_path / "nested" / "two.dat"
        second.parent.mkdir()
        first.write_text("same")
        second.write_text("same")
        os.utime(second, (0, 0))

        fingerprinter = ContentFingerprinter()

        assert fingerprinter.fingerprint(first) == fingerprinter.fingerprint(second)

    def test_missing_file_raises_unreadable(self, tmp_path):
        missing = tmp_path / "nope.txt"

        with pytest.raises(UnreadableError) as exc_info:
            ContentFingerprinter().fingerprint(missing)

        assert exc_info.value.path == missing
        assert exc_info.value.reason

    def test_directory_raises_unreadable(self, tmp_path):
        with pytest.raises(UnreadableError):
            ContentFingerprinter().fingerprint(tmp_path)

    def test_unknown_algorithm_rejected(self):
        with pytest.raises(ValueError):
            ContentFingerprinter(algorithm="not-a-hash")

    @pytest.mark.parametrize("algorithm", ["shake_128", "shake_256"])
    def test_variable_length_algorithm_rejected(self, algorithm):
        with pytest.raises(ValueError, match="variable-length"):
            ContentFingerprinter(algorithm=algorithm)

    def test_non_positive_chunk_size_rejected(self):
        with pytest.raises(ValueError):
            ContentFingerprinter(chunk_size=0)


class TestFingerprintProperties:
    """Fingerprints depend on content only."""

    @given(
        content=st.binary(max_size=4096),
        name_a=st.text(alphabet="abcdefghij", min_size=1, max_size=8),
        name_b=st.text(alphabet="klmnopqrst", min_size=1, max_size=8),
        chunk_size=st.integers(min_value=1, max_value=512),
    )
    @settings(deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_identical_content_identical_digest(self, content, name_a, name_b, chunk_size):
        with tempfile.TemporaryDirectory() as tmp:
            a = Path(tmp) / name_a
            b = Path(tmp) / name_b
            a.write_bytes(content)
            b.write_bytes(content)

            fingerprinter = ContentFingerprinter(chunk_size=chunk_size)

            assert fingerprinter.fingerprint(a) == fingerprinter.fingerprint(b)
            assert fingerprinter.fingerprint(a) == hashlib.md5(content).hexdigest()

    @given(
        first=st.binary(max_size=256),
        second=st.binary(max_size=256),
    )
    @settings(deadline=None)
    def test_different_content_different_digest(self, first, second):
        if first == second:
            second = second + b"\x00"
        with tempfile.TemporaryDirectory() as tmp:
            a = Path(tmp) / "a"
            b = Path(tmp) / "b"
            a.write_bytes(first)
            b.write_bytes(second)

            fingerprinter = ContentFingerprinter()

            assert fingerprinter.fingerprint(a) != fingerprinter.fingerprint(b)
