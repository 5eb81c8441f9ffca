"""Shared gateway constants used by the server and its tests."""

# Object identifiers
MAX_ID_LENGTH = 32

# FNV-1a, 32-bit variant
FNV32_OFFSET_BASIS = 0x811C9DC5
FNV32_PRIME = 0x01000193
FNV32_MASK = 0xFFFFFFFF

# Server defaults
DEFAULT_PORT = 3000
DEFAULT_HOST = "0.0.0.0"
DEFAULT_RATE_LIMIT_RPS = 100.0
DEFAULT_RATE_LIMIT_BURST = 50

# Discovery defaults
DEFAULT_DOCKER_HOST = "unix:///var/run/docker.sock"
DEFAULT_CONTAINER_FILTER = "amazin-object-storage-node"
DEFAULT_BACKEND_PORT = 9000

# Streaming
STREAM_CHUNK_SIZE = 64 * 1024
