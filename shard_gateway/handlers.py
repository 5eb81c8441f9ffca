from __future__ import annotations

from typing import Any, AsyncIterator

import anyio
from fastapi.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse

from gateway_shared.routing import validate_id

from .backends import BackendClient, BackendObject, Backends
from .errors import (
    BUCKET_ALREADY_EXISTS,
    BUCKET_ALREADY_OWNED,
    BUCKET_NOT_EMPTY,
    NO_SUCH_BUCKET,
    NO_SUCH_KEY,
    BackendError,
    Conflict,
    InternalError,
    InvalidIdentifier,
    InvalidRequestBody,
    NotFound,
)
from .logging_config import log


async def handle_health_check() -> PlainTextResponse:
    return PlainTextResponse("OK")


async def handle_create_bucket(backends: Backends, payload: Any) -> JSONResponse:
    """Create a bucket on the instance selected by the bucket name.

    Args:
        backends: Registry and client factory.
        payload: Decoded JSON request body, expected to hold ``bucketName``.

    Returns:
        JSONResponse: 201 with a confirmation message.

    Raises:
        InvalidRequestBody: When ``bucketName`` is missing or not a string.
        Conflict: When the bucket already exists or its name is taken.
        InternalError: For any other backend failure.
    """
    bucket = payload.get("bucketName") if isinstance(payload, dict) else None
    if not isinstance(bucket, str) or not bucket:
        log.warning("Invalid create bucket payload")
        raise InvalidRequestBody()

    client = _client_for(backends, bucket)
    try:
        await client.make_bucket(bucket)
    except BackendError as exc:
        if exc.code == BUCKET_ALREADY_OWNED:
            log.info("Bucket already exists", extra={"bucket": bucket})
            raise Conflict("Bucket already exists") from exc
        if exc.code == BUCKET_ALREADY_EXISTS:
            log.info("Bucket name already taken", extra={"bucket": bucket})
            raise Conflict("Bucket name already taken") from exc
        log.error("Failed to create bucket", extra={"bucket": bucket, "error_code": exc.code, "error": str(exc)})
        raise InternalError("Failed to create bucket") from exc

    log.info("Bucket created", extra={"bucket": bucket})
    return JSONResponse(status_code=201, content={"message": "Bucket created successfully"})


async def handle_delete_bucket(backends: Backends, bucket: str) -> Response:
    """Delete a bucket on the instance selected by the bucket name."""
    client = _client_for(backends, bucket)
    try:
        await client.remove_bucket(bucket)
    except BackendError as exc:
        if exc.code == BUCKET_NOT_EMPTY:
            log.info("Attempted to delete non-empty bucket", extra={"bucket": bucket})
            raise Conflict("The bucket you tried to delete is not empty") from exc
        if exc.code == NO_SUCH_BUCKET:
            log.info("Attempted to delete non-existent bucket", extra={"bucket": bucket})
            raise NotFound("The specified bucket does not exist") from exc
        log.error("Failed to delete bucket", extra={"bucket": bucket, "error_code": exc.code, "error": str(exc)})
        raise InternalError("Failed to delete bucket") from exc

    return Response(status_code=204)


async def handle_put_object(
    backends: Backends, bucket: str, object_id: str, body: AsyncIterator[bytes]
) -> Response:
    """Stream ``body`` into ``bucket/object_id`` on the instance owning ``object_id``.

    The payload size is not known up front and the body is never fully
    buffered by the gateway.
    """
    _validate_object_id(bucket, object_id)
    client = _client_for(backends, object_id)
    await _ensure_bucket(client, bucket)

    try:
        await client.put_object(bucket, object_id, body)
    except BackendError as exc:
        log.error(
            "Failed to put object",
            extra={"bucket": bucket, "id": object_id, "error_code": exc.code, "error": str(exc)},
        )
        raise InternalError("Failed to store object") from exc

    log.info("Object stored", extra={"bucket": bucket, "id": object_id})
    return Response(status_code=200)


async def handle_get_object(backends: Backends, bucket: str, object_id: str) -> StreamingResponse:
    """Stream an object back with ``Content-Type``/``Content-Length`` from backend metadata.

    Once headers are sent the status can no longer change: a failure while
    copying the body is logged and the connection is aborted.

    Raises:
        InvalidIdentifier: When ``object_id`` is malformed.
        NotFound: When the bucket or key does not exist.
        InternalError: When the backend fails before streaming starts.
    """
    log.info("Received GetObject request", extra={"bucket": bucket, "id": object_id})
    _validate_object_id(bucket, object_id)
    client = _client_for(backends, object_id)
    await _ensure_bucket(client, bucket)

    try:
        obj = await client.get_object(bucket, object_id)
    except BackendError as exc:
        log.error(
            "Failed to get object",
            extra={"bucket": bucket, "id": object_id, "error_code": exc.code, "error": exc.message},
        )
        if exc.code == NO_SUCH_KEY:
            raise NotFound("Object not found") from exc
        raise InternalError() from exc

    try:
        stat = await obj.stat()
    except BackendError as exc:
        log.error("Failed to get object stats", extra={"bucket": bucket, "id": object_id, "error": str(exc)})
        await obj.close()
        raise InternalError("Failed to get object stats") from exc

    log.info(
        "Retrieved object stats",
        extra={"bucket": bucket, "id": object_id, "content_type": stat.content_type, "size": stat.size},
    )
    return StreamingResponse(
        _stream_object(obj, bucket, object_id),
        headers={"Content-Type": stat.content_type, "Content-Length": str(stat.size)},
    )


async def handle_delete_object(backends: Backends, bucket: str, object_id: str) -> Response:
    """Delete ``bucket/object_id`` on the instance owning ``object_id``."""
    _validate_object_id(bucket, object_id)
    client = _client_for(backends, object_id)
    await _ensure_bucket(client, bucket)

    try:
        await client.remove_object(bucket, object_id)
    except BackendError as exc:
        if exc.code == NO_SUCH_KEY:
            log.info("Object not found", extra={"bucket": bucket, "id": object_id})
            raise NotFound("Object not found") from exc
        log.error(
            "Failed to delete object",
            extra={"bucket": bucket, "id": object_id, "error_code": exc.code, "error": str(exc)},
        )
        raise InternalError("Failed to delete object") from exc

    return Response(status_code=204)


def _validate_object_id(bucket: str, object_id: str) -> None:
    try:
        validate_id(object_id)
    except ValueError as exc:
        log.warning("Invalid ID", extra={"bucket": bucket, "id": object_id, "error": str(exc)})
        raise InvalidIdentifier(str(exc)) from exc


def _client_for(backends: Backends, routing_key: str) -> BackendClient:
    try:
        return backends.client_for(routing_key)
    except BackendError as exc:
        log.error("Failed to build backend client", extra={"error_code": exc.code, "error": str(exc)})
        raise InternalError() from exc


async def _ensure_bucket(client: BackendClient, bucket: str) -> None:
    """Confirm ``bucket`` exists on the routed instance.

    Raises:
        NotFound: If the bucket is absent.
        InternalError: If the existence check itself fails.
    """
    try:
        exists = await client.bucket_exists(bucket)
    except BackendError as exc:
        log.error("Failed to check bucket existence", extra={"bucket": bucket, "error": str(exc)})
        raise InternalError() from exc
    if not exists:
        log.warning("Bucket does not exist", extra={"bucket": bucket})
        raise NotFound("Bucket not found")


async def _stream_object(obj: BackendObject, bucket: str, object_id: str) -> AsyncIterator[bytes]:
    try:
        async for chunk in obj.iter_chunks():
            yield chunk
    except Exception:
        log.exception("Failed to stream object", extra={"bucket": bucket, "id": object_id})
        raise
    else:
        log.info("Successfully streamed object", extra={"bucket": bucket, "id": object_id})
    finally:
        with anyio.CancelScope(shield=True):
            await obj.close()
