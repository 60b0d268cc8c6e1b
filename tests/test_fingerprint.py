"""Tests for content fingerprints."""

import hashlib

import pytest

from smart_copier.fingerprint import fingerprint_file, sha256_file


class TestFingerprint:
    def test_fingerprint_is_size_and_sha256(self, tmp_path) -> None:
        path = tmp_path / "f.bin"
        path.write_bytes(b"hello world")
        fingerprint, size = fingerprint_file(path)
        assert size == 11
        assert fingerprint == f"11-{hashlib.sha256(b'hello world').hexdigest()}"

    def test_identical_content_gives_identical_fingerprint(self, tmp_path) -> None:
        (tmp_path / "a.txt").write_bytes(b"same")
        (tmp_path / "nested").mkdir()
        (tmp_path / "nested" / "b.dat").write_bytes(b"same")
        assert fingerprint_file(tmp_path / "a.txt") == fingerprint_file(tmp_path / "nested" / "b.dat")

    def test_empty_file(self, tmp_path) -> None:
        path = tmp_path / "empty"
        path.write_bytes(b"")
        fingerprint, size = fingerprint_file(path)
        assert size == 0
        assert fingerprint == f"0-{hashlib.sha256(b'').hexdigest()}"

    def test_large_file_is_hashed_in_chunks(self, tmp_path) -> None:
        data = bytes(range(256)) * 4096  # 1 MiB, several hash chunks
        path = tmp_path / "big"
        path.write_bytes(data)
        assert sha256_file(path) == hashlib.sha256(data).hexdigest()

    def test_missing_file_raises(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            fingerprint_file(tmp_path / "missing")
