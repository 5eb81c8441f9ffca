"""S3/MinIO backend client built on boto3.

boto3 is blocking, so every call is pushed to a worker thread with
``asyncio.to_thread`` to keep the event loop free.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator

import boto3
import httpx
from boto3.exceptions import S3UploadFailedError
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from gateway_shared.constants import STREAM_CHUNK_SIZE

from .backends import ObjectStat
from .errors import INVALID_CREDENTIALS, NO_SUCH_BUCKET, TRANSPORT_ERROR, BackendError
from .instance_registry import BackendInstance
from .logging_config import log

_MISSING_BUCKET_CODES = ("404", NO_SUCH_BUCKET, "NotFound")


def _translate(exc: Exception) -> BackendError:
    """Convert a botocore exception into a ``BackendError`` carrying the S3 code.

    Args:
        exc: Exception raised by boto3/botocore.

    Returns:
        BackendError: Error with ``code`` set to the S3 error code.
    """
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        code = str(error.get("Code") or "Unknown")
        return BackendError(code, str(error.get("Message") or ""))
    if isinstance(exc, BotoCoreError):
        return BackendError(TRANSPORT_ERROR, str(exc))
    if isinstance(exc, S3UploadFailedError):
        return BackendError("UploadFailed", str(exc))
    return BackendError(type(exc).__name__, str(exc))


def _endpoint_url(address: str, use_ssl: bool) -> str:
    """Return an endpoint URL for ``host:port``, keeping an explicit scheme."""
    if address.startswith(("http://", "https://")):
        return address
    scheme = "https" if use_ssl else "http"
    return f"{scheme}://{address}"


class _StreamReader:
    """Blocking file-like view over an async byte stream.

    boto3 reads from a worker thread; each ``read`` schedules the next chunk on
    the event loop and waits for it, so at most one multipart chunk is held in
    memory.
    """

    def __init__(self, stream: AsyncIterator[bytes], loop: asyncio.AbstractEventLoop):
        self._iter = stream.__aiter__()
        self._loop = loop
        self._buffer = bytearray()
        self._eof = False

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return False

    def read(self, size: int = -1) -> bytes:
        while not self._eof and (size is None or size < 0 or len(self._buffer) < size):
            chunk = asyncio.run_coroutine_threadsafe(self._next_chunk(), self._loop).result()
            if chunk is None:
                self._eof = True
            else:
                self._buffer.extend(chunk)
        if size is None or size < 0:
            size = len(self._buffer)
        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data

    async def _next_chunk(self) -> bytes | None:
        try:
            return await self._iter.__anext__()
        except StopAsyncIteration:
            return None


class S3Object:
    """Open GetObject response."""

    def __init__(self, response: dict):
        self._response = response
        self._body = response["Body"]

    async def stat(self) -> ObjectStat:
        """Return content type and size reported by the backend.

        Raises:
            BackendError: If the response carries no content length.
        """
        size = self._response.get("ContentLength")
        if size is None:
            raise BackendError("MissingMetadata", "backend response has no Content-Length")
        content_type = self._response.get("ContentType") or "application/octet-stream"
        return ObjectStat(content_type=content_type, size=int(size))

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        while True:
            try:
                chunk = await asyncio.to_thread(self._body.read, STREAM_CHUNK_SIZE)
            except (BotoCoreError, OSError) as exc:
                raise _translate(exc) from exc
            if not chunk:
                return
            yield chunk

    async def close(self) -> None:
        await asyncio.to_thread(self._body.close)


class S3BackendClient:
    """Bucket/object primitives of one S3-compatible instance."""

    def __init__(self, client):
        self._client = client

    async def _call(self, method: str, **kwargs):
        try:
            return await asyncio.to_thread(getattr(self._client, method), **kwargs)
        except (ClientError, BotoCoreError, S3UploadFailedError) as exc:
            raise _translate(exc) from exc

    async def make_bucket(self, bucket: str) -> None:
        await self._call("create_bucket", Bucket=bucket)

    async def bucket_exists(self, bucket: str) -> bool:
        try:
            await self._call("head_bucket", Bucket=bucket)
        except BackendError as exc:
            if exc.code in _MISSING_BUCKET_CODES:
                return False
            raise
        return True

    async def remove_bucket(self, bucket: str) -> None:
        await self._call("delete_bucket", Bucket=bucket)

    async def put_object(self, bucket: str, key: str, stream: AsyncIterator[bytes]) -> None:
        """Upload ``stream`` without knowing its size in advance.

        ``upload_fileobj`` switches to multipart uploads for large bodies, so
        the payload is never fully buffered.
        """
        reader = _StreamReader(stream, asyncio.get_running_loop())
        await self._call("upload_fileobj", Fileobj=reader, Bucket=bucket, Key=key)

    async def get_object(self, bucket: str, key: str) -> S3Object:
        response = await self._call("get_object", Bucket=bucket, Key=key)
        return S3Object(response)

    async def remove_object(self, bucket: str, key: str) -> None:
        await self._call("delete_object", Bucket=bucket, Key=key)


class S3ClientFactory:
    """Builds a boto3-backed client per request; clients are never pooled."""

    def __init__(
        self,
        use_ssl: bool = False,
        region: str = "us-east-1",
        signature_version: str = "s3v4",
    ):
        self.use_ssl = use_ssl
        self.region = region
        self.signature_version = signature_version

    def build(self, instance: BackendInstance) -> S3BackendClient:
        """Create a client for ``instance``; no network round trip is made.

        Args:
            instance: Selected backend instance.

        Returns:
            S3BackendClient: Client bound to the instance credentials.

        Raises:
            BackendError: If the address or credentials are empty.
        """
        if not instance.address:
            raise BackendError(INVALID_CREDENTIALS, "backend address is empty")
        if not instance.access_key or not instance.secret_key:
            raise BackendError(INVALID_CREDENTIALS, f"missing credentials for {instance.address}")

        # Sessions are not thread-safe; one per client.
        session = boto3.session.Session()
        client = session.client(
            "s3",
            endpoint_url=_endpoint_url(instance.address, self.use_ssl),
            aws_access_key_id=instance.access_key,
            aws_secret_access_key=instance.secret_key,
            region_name=self.region,
            config=Config(
                signature_version=self.signature_version,
                s3={"addressing_style": "path"},
            ),
        )
        return S3BackendClient(client)


async def probe_instance(instance: BackendInstance, use_ssl: bool = False) -> bool:
    """Check whether a MinIO instance answers its liveness endpoint.

    Args:
        instance: Backend to probe.
        use_ssl: Whether to use https.

    Returns:
        bool: True if the instance responded successfully, False otherwise.
    """
    url = f"{_endpoint_url(instance.address, use_ssl)}/minio/health/live"
    log.debug("Probing backend @: %s", url)
    try:
        async with httpx.AsyncClient(timeout=3.0, verify=False) as client:
            resp = await client.get(url)
            resp.raise_for_status()
        return True
    except httpx.HTTPError:
        return False
