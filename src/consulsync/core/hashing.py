"""Content fingerprints for consulsync.

This module provides:
- SHA-256 hashing of in-memory payloads
- SHA-256 hashing of files on disk
"""

import hashlib
from pathlib import Path

READ_BLOCK_SIZE = 8192


def compute_hash(data: bytes) -> str:
    """Compute SHA-256 hash of a payload.

    Args:
        data: Raw bytes to hash.

    Returns:
        Hexadecimal SHA-256 hash string.
    """
    return hashlib.sha256(data).hexdigest()


def compute_file_hash(path: Path) -> str:
    """Compute SHA-256 hash of a file.

    Reads the file in blocks to handle large files efficiently.

    Args:
        path: Path to the file to hash.

    Returns:
        Hexadecimal SHA-256 hash string.

    Raises:
        OSError: If the file cannot be read.
    """
    hasher = hashlib.sha256()
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(READ_BLOCK_SIZE), b""):
            hasher.update(block)
    return hasher.hexdigest()
