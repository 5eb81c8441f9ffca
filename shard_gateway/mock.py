"""In-memory backend used by tests and local development runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, Set

from .backends import ObjectStat
from .errors import (
    BUCKET_ALREADY_EXISTS,
    BUCKET_ALREADY_OWNED,
    BUCKET_NOT_EMPTY,
    INVALID_CREDENTIALS,
    NO_SUCH_BUCKET,
    NO_SUCH_KEY,
    BackendError,
)
from .instance_registry import BackendInstance

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass
class MemoryStore:
    """Bucket and object state of one fake instance.

    ``foreign_buckets`` are names owned by some other account; creating them
    fails with ``BucketAlreadyExists``. ``failures`` maps a primitive name
    (e.g. ``"put_object"``) to the error it should raise.
    """

    buckets: Dict[str, Dict[str, bytes]] = field(default_factory=dict)
    foreign_buckets: Set[str] = field(default_factory=set)
    failures: Dict[str, BackendError] = field(default_factory=dict)

    def check(self, op: str) -> None:
        if op in self.failures:
            raise self.failures[op]


class MemoryObject:
    def __init__(self, store: MemoryStore, data: bytes, chunk_size: int, fail_after: int | None = None):
        self._store = store
        self._data = data
        self._chunk_size = chunk_size
        self._fail_after = fail_after
        self.closed = False

    async def stat(self) -> ObjectStat:
        self._store.check("stat")
        return ObjectStat(content_type=DEFAULT_CONTENT_TYPE, size=len(self._data))

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        for sent, offset in enumerate(range(0, len(self._data), self._chunk_size)):
            if self._fail_after is not None and sent >= self._fail_after:
                raise BackendError("ReadError", "connection reset by backend")
            yield self._data[offset : offset + self._chunk_size]

    async def close(self) -> None:
        self.closed = True


class MemoryBackendClient:
    """Implements the backend primitives with S3 error codes.

    Unlike real S3, removing a missing key raises ``NoSuchKey``.
    """

    def __init__(self, store: MemoryStore, chunk_size: int = 4, fail_stream_after: int | None = None):
        self._store = store
        self._chunk_size = chunk_size
        self._fail_stream_after = fail_stream_after

    async def make_bucket(self, bucket: str) -> None:
        self._store.check("make_bucket")
        if bucket in self._store.foreign_buckets:
            raise BackendError(BUCKET_ALREADY_EXISTS, "The requested bucket name is not available.")
        if bucket in self._store.buckets:
            raise BackendError(
                BUCKET_ALREADY_OWNED, "Your previous request to create the named bucket succeeded."
            )
        self._store.buckets[bucket] = {}

    async def bucket_exists(self, bucket: str) -> bool:
        self._store.check("bucket_exists")
        return bucket in self._store.buckets

    async def remove_bucket(self, bucket: str) -> None:
        self._store.check("remove_bucket")
        if bucket not in self._store.buckets:
            raise BackendError(NO_SUCH_BUCKET, "The specified bucket does not exist")
        if self._store.buckets[bucket]:
            raise BackendError(BUCKET_NOT_EMPTY, "The bucket you tried to delete is not empty")
        del self._store.buckets[bucket]

    async def put_object(self, bucket: str, key: str, stream: AsyncIterator[bytes]) -> None:
        self._store.check("put_object")
        if bucket not in self._store.buckets:
            raise BackendError(NO_SUCH_BUCKET, "The specified bucket does not exist")
        data = bytearray()
        async for chunk in stream:
            data.extend(chunk)
        self._store.buckets[bucket][key] = bytes(data)

    async def get_object(self, bucket: str, key: str) -> MemoryObject:
        self._store.check("get_object")
        objects = self._store.buckets.get(bucket)
        if objects is None:
            raise BackendError(NO_SUCH_BUCKET, "The specified bucket does not exist")
        if key not in objects:
            raise BackendError(NO_SUCH_KEY, "The specified key does not exist.")
        return MemoryObject(self._store, objects[key], self._chunk_size, self._fail_stream_after)

    async def remove_object(self, bucket: str, key: str) -> None:
        self._store.check("remove_object")
        objects = self._store.buckets.get(bucket)
        if objects is None:
            raise BackendError(NO_SUCH_BUCKET, "The specified bucket does not exist")
        if key not in objects:
            raise BackendError(NO_SUCH_KEY, "The specified key does not exist.")
        del objects[key]


class MemoryClientFactory:
    """Hands out clients sharing one ``MemoryStore`` per instance address."""

    def __init__(self, chunk_size: int = 4, fail_stream_after: int | None = None):
        self.stores: Dict[str, MemoryStore] = {}
        self.builds = 0
        self.chunk_size = chunk_size
        self.fail_stream_after = fail_stream_after

    def store_for(self, instance: BackendInstance) -> MemoryStore:
        return self.stores.setdefault(instance.address, MemoryStore())

    def build(self, instance: BackendInstance) -> MemoryBackendClient:
        if not instance.access_key or not instance.secret_key:
            raise BackendError(INVALID_CREDENTIALS, f"missing credentials for {instance.address}")
        self.builds += 1
        return MemoryBackendClient(self.store_for(instance), self.chunk_size, self.fail_stream_after)
