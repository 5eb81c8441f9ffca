"""Sharded object-storage HTTP gateway package."""

__all__ = [
    "main",
    "http_gateway",
    "handlers",
    "backends",
    "discovery",
    "instance_registry",
    "ratelimit",
    "storage_s3",
]
