"""Routing helpers for mapping identifiers onto backend instances.

The assignment is recomputed for every request as ``fnv1a32(id) % count``
and never stored. Changing the number of instances therefore moves most
identifiers to a different backend; existing data is not migrated.
"""

from __future__ import annotations

from .constants import FNV32_MASK, FNV32_OFFSET_BASIS, FNV32_PRIME, MAX_ID_LENGTH


def fnv1a_32(data: bytes) -> int:
    """Return the 32-bit FNV-1a hash of ``data`` as an unsigned integer.

    Args:
        data: Raw bytes to hash.

    Returns:
        int: Hash value in ``[0, 2**32)``.
    """
    value = FNV32_OFFSET_BASIS
    for byte in data:
        value ^= byte
        value = (value * FNV32_PRIME) & FNV32_MASK
    return value


def select_index(identifier: str, instance_count: int) -> int:
    """Pick the backend index responsible for ``identifier``.

    Args:
        identifier: Bucket name or object id used as routing key.
        instance_count: Number of available backend instances.

    Returns:
        int: Index in ``[0, instance_count)``.

    Raises:
        ValueError: If ``instance_count`` is not positive.
    """
    if instance_count <= 0:
        raise ValueError("instance_count must be positive")
    if instance_count == 1:
        return 0
    return fnv1a_32(identifier.encode("utf-8")) % instance_count


def is_valid_id(identifier: str) -> bool:
    """Return True when ``identifier`` is at most 32 ASCII letters or digits."""
    if len(identifier) > MAX_ID_LENGTH:
        return False
    return all(ch.isascii() and ch.isalnum() for ch in identifier)


def validate_id(identifier: str) -> None:
    """Raise ``ValueError`` with a caller-facing reason for a malformed object id."""
    if len(identifier) > MAX_ID_LENGTH:
        raise ValueError(
            f"ID must not exceed {MAX_ID_LENGTH} characters (current length: {len(identifier)})"
        )
    if not is_valid_id(identifier):
        raise ValueError("ID must contain only alphanumeric characters")


__all__ = ["fnv1a_32", "select_index", "is_valid_id", "validate_id"]
