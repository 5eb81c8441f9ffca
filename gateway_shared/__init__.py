"""Shared exports for the shard gateway server and tests."""

from .constants import (  # noqa: F401
    DEFAULT_BACKEND_PORT,
    DEFAULT_CONTAINER_FILTER,
    DEFAULT_DOCKER_HOST,
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEFAULT_RATE_LIMIT_BURST,
    DEFAULT_RATE_LIMIT_RPS,
    MAX_ID_LENGTH,
    STREAM_CHUNK_SIZE,
)
from .routing import fnv1a_32, is_valid_id, select_index, validate_id  # noqa: F401

__all__ = [
    "DEFAULT_BACKEND_PORT",
    "DEFAULT_CONTAINER_FILTER",
    "DEFAULT_DOCKER_HOST",
    "DEFAULT_HOST",
    "DEFAULT_PORT",
    "DEFAULT_RATE_LIMIT_BURST",
    "DEFAULT_RATE_LIMIT_RPS",
    "MAX_ID_LENGTH",
    "STREAM_CHUNK_SIZE",
    "fnv1a_32",
    "is_valid_id",
    "select_index",
    "validate_id",
]
