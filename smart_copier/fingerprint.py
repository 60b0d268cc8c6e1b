"""Content identity for files: ``"<size>-<sha256 hex>"``."""

import hashlib
import os
from pathlib import Path

_HASH_CHUNK = 256 * 1024  # 256 KiB read chunks for hashing


def sha256_file(filepath: str | Path) -> str:
    """Return the hex SHA-256 digest of *filepath*."""
    h = hashlib.sha256()
    with open(filepath, "rb") as fh:
        while chunk := fh.read(_HASH_CHUNK):
            h.update(chunk)
    return h.hexdigest()


def fingerprint_file(filepath: str | Path) -> tuple[str, int]:
    """
    Return ``(fingerprint, size)`` for *filepath*.

    The size is taken before hashing, so a file that keeps growing while it
    is read yields a fingerprint that will not match once it settles.
    Raises ``FileNotFoundError`` if the file vanished.
    """
    size = os.stat(filepath).st_size
    return f"{size}-{sha256_file(filepath)}", size
