"""Backend client interfaces used by the gateway handlers.

Handlers depend only on these protocols. The production implementation lives
in :mod:`shard_gateway.storage_s3`; :mod:`shard_gateway.mock` provides an
in-memory double for tests and local runs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator, Protocol

from .instance_registry import BackendInstance, InstanceRegistry
from .logging_config import log


@dataclass(frozen=True)
class ObjectStat:
    """Metadata copied onto GetObject responses."""

    content_type: str
    size: int


class BackendObject(Protocol):
    """Readable handle returned by ``BackendClient.get_object``."""

    async def stat(self) -> ObjectStat:
        ...

    def iter_chunks(self) -> AsyncIterator[bytes]:
        ...

    async def close(self) -> None:
        ...


class BackendClient(Protocol):
    """Bucket/object primitives of one backend instance.

    Every method raises :class:`shard_gateway.errors.BackendError` on failure.
    """

    async def make_bucket(self, bucket: str) -> None:
        ...

    async def bucket_exists(self, bucket: str) -> bool:
        ...

    async def remove_bucket(self, bucket: str) -> None:
        ...

    async def put_object(self, bucket: str, key: str, stream: AsyncIterator[bytes]) -> None:
        ...

    async def get_object(self, bucket: str, key: str) -> BackendObject:
        ...

    async def remove_object(self, bucket: str, key: str) -> None:
        ...


class BackendClientFactory(Protocol):
    """Builds a client bound to a single instance."""

    def build(self, instance: BackendInstance) -> BackendClient:
        ...


@dataclass(frozen=True)
class Backends:
    """Registry plus client factory, shared by all requests."""

    registry: InstanceRegistry
    factory: BackendClientFactory

    def client_for(self, routing_key: str) -> BackendClient:
        """Build a fresh client for the instance that owns ``routing_key``.

        Args:
            routing_key: Bucket name or object id, depending on the operation.

        Returns:
            BackendClient: Client used for the current request only.

        Raises:
            BackendError: If the client cannot be constructed.
        """
        index = self.registry.select(routing_key)
        log.debug("Routing key=%s to instance=%d", routing_key, index)
        return self.factory.build(self.registry[index])
