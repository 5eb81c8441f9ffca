import logging

import anyio
import httpx
import pytest

from gateway_shared.routing import select_index
from shard_gateway import handlers
from shard_gateway.backends import Backends
from shard_gateway.errors import BackendError
from shard_gateway.http_gateway import create_app
from shard_gateway.instance_registry import BackendInstance, InstanceRegistry
from shard_gateway.mock import MemoryClientFactory
from shard_gateway.ratelimit import TokenBucket


def _only_store(factory, backends):
    return factory.store_for(backends.registry[0])


async def _create_bucket(client, name="b1"):
    resp = await client.post("/buckets", json={"bucketName": name})
    assert resp.status_code == 201
    return resp


@pytest.mark.asyncio
async def test_health_check_returns_ok(client):
    resp = await client.get("/healthz")

    assert resp.status_code == 200
    assert resp.text == "OK"


@pytest.mark.asyncio
async def test_create_bucket_then_repeat_conflicts(client):
    first = await client.post("/buckets", json={"bucketName": "b1"})
    assert first.status_code == 201
    assert first.json() == {"message": "Bucket created successfully"}

    second = await client.post("/buckets", json={"bucketName": "b1"})
    assert second.status_code == 409
    assert second.json()["detail"] == "Bucket already exists"


@pytest.mark.asyncio
async def test_create_bucket_owned_by_someone_else(client, factory, backends):
    _only_store(factory, backends).foreign_buckets.add("taken")

    resp = await client.post("/buckets", json={"bucketName": "taken"})

    assert resp.status_code == 409
    assert resp.json()["detail"] == "Bucket name already taken"


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [b"not json", b"[]", b'{"bucketName": 12}', b"{}"])
async def test_create_bucket_rejects_malformed_body(client, body):
    resp = await client.post("/buckets", content=body, headers={"Content-Type": "application/json"})

    assert resp.status_code == 400
    assert resp.json()["detail"] == "Invalid request body"


@pytest.mark.asyncio
async def test_create_bucket_backend_failure_is_generic_500(client, factory, backends):
    _only_store(factory, backends).failures["make_bucket"] = BackendError("AccessDenied", "secret detail")

    resp = await client.post("/buckets", json={"bucketName": "b1"})

    assert resp.status_code == 500
    assert resp.json()["detail"] == "Failed to create bucket"
    assert "secret detail" not in resp.text


@pytest.mark.asyncio
async def test_delete_bucket_outcomes(client, factory, backends):
    await _create_bucket(client, "empty")
    await _create_bucket(client, "full")
    _only_store(factory, backends).buckets["full"]["obj1"] = b"x"

    assert (await client.delete("/buckets/empty")).status_code == 204
    assert (await client.delete("/buckets/empty")).status_code == 404
    assert (await client.delete("/buckets/full")).status_code == 409

    _only_store(factory, backends).failures["remove_bucket"] = BackendError("InternalError")
    assert (await client.delete("/buckets/full")).status_code == 500


@pytest.mark.asyncio
async def test_put_then_get_round_trips_body_and_headers(client):
    await _create_bucket(client)

    put = await client.put("/buckets/b1/objects/obj123", content=b"hello")
    assert put.status_code == 200
    assert put.content == b""

    get = await client.get("/buckets/b1/objects/obj123")
    assert get.status_code == 200
    assert get.content == b"hello"
    assert get.headers["content-length"] == "5"
    assert get.headers["content-type"] == "application/octet-stream"


@pytest.mark.asyncio
async def test_put_streams_chunked_body(client, factory, backends):
    await _create_bucket(client)

    async def body():
        for part in (b"abc", b"def", b"ghi"):
            yield part

    resp = await client.put("/buckets/b1/objects/chunky", content=body())

    assert resp.status_code == 200
    assert _only_store(factory, backends).buckets["b1"]["chunky"] == b"abcdefghi"


@pytest.mark.asyncio
async def test_put_overwrites_existing_object(client):
    await _create_bucket(client)
    await client.put("/buckets/b1/objects/obj1", content=b"first")
    await client.put("/buckets/b1/objects/obj1", content=b"second")

    resp = await client.get("/buckets/b1/objects/obj1")
    assert resp.content == b"second"


@pytest.mark.asyncio
async def test_get_missing_object_is_404(client):
    await _create_bucket(client)

    resp = await client.get("/buckets/b1/objects/nope999")

    assert resp.status_code == 404
    assert resp.json()["detail"] == "Object not found"


@pytest.mark.asyncio
@pytest.mark.parametrize("method", ["PUT", "GET", "DELETE"])
@pytest.mark.parametrize("object_id", ["bad!id", "a" * 33])
async def test_invalid_id_is_400_before_any_backend_access(client, factory, method, object_id):
    resp = await client.request(method, f"/buckets/missing/objects/{object_id}", content=b"hi")

    assert resp.status_code == 400
    assert factory.builds == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("method", ["PUT", "GET", "DELETE"])
async def test_object_operations_on_missing_bucket_are_404(client, method):
    resp = await client.request(method, "/buckets/ghost/objects/obj1", content=b"hi")

    assert resp.status_code == 404
    assert resp.json()["detail"] == "Bucket not found"


@pytest.mark.asyncio
async def test_existence_check_failure_is_500(client, factory, backends):
    await _create_bucket(client)
    _only_store(factory, backends).failures["bucket_exists"] = BackendError("SlowDown")

    resp = await client.get("/buckets/b1/objects/obj1")

    assert resp.status_code == 500


@pytest.mark.asyncio
async def test_put_failure_is_500(client, factory, backends):
    await _create_bucket(client)
    _only_store(factory, backends).failures["put_object"] = BackendError("InternalError")

    resp = await client.put("/buckets/b1/objects/obj1", content=b"data")

    assert resp.status_code == 500
    assert resp.json()["detail"] == "Failed to store object"


@pytest.mark.asyncio
async def test_metadata_failure_is_500(client, factory, backends):
    await _create_bucket(client)
    await client.put("/buckets/b1/objects/obj1", content=b"data")
    _only_store(factory, backends).failures["stat"] = BackendError("MissingMetadata")

    resp = await client.get("/buckets/b1/objects/obj1")

    assert resp.status_code == 500
    assert resp.json()["detail"] == "Failed to get object stats"


@pytest.mark.asyncio
async def test_delete_object_then_get_and_delete_again(client):
    await _create_bucket(client)
    await client.put("/buckets/b1/objects/obj1", content=b"data")

    assert (await client.delete("/buckets/b1/objects/obj1")).status_code == 204
    assert (await client.get("/buckets/b1/objects/obj1")).status_code == 404

    again = await client.delete("/buckets/b1/objects/obj1")
    assert again.status_code == 404
    assert again.json()["detail"] == "Object not found"


@pytest.mark.asyncio
async def test_delete_object_backend_failure_is_500(client, factory, backends):
    await _create_bucket(client)
    _only_store(factory, backends).failures["remove_object"] = BackendError("InternalError")

    resp = await client.delete("/buckets/b1/objects/obj1")

    assert resp.status_code == 500
    assert resp.json()["detail"] == "Failed to delete object"


@pytest.mark.asyncio
async def test_invalid_credentials_are_500():
    registry = InstanceRegistry([BackendInstance("10.0.0.1:9000", "", "")])
    app = create_app(Backends(registry=registry, factory=MemoryClientFactory()), TokenBucket(10, 10))
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://gateway") as http:
        resp = await http.post("/buckets", json={"bucketName": "b1"})

    assert resp.status_code == 500
    assert resp.json()["detail"] == "Internal server error"


@pytest.mark.asyncio
async def test_mid_stream_failure_aborts_response(instances, caplog):
    factory = MemoryClientFactory(chunk_size=4, fail_stream_after=1)
    backends = Backends(registry=InstanceRegistry(instances(1)), factory=factory)
    store = factory.store_for(backends.registry[0])
    store.buckets["b1"] = {"obj1": b"hello world"}
    app = create_app(backends, TokenBucket(10, 10))

    caplog.set_level(logging.ERROR, logger="shard_gateway")
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://gateway") as http:
        with pytest.raises(Exception):
            await http.get("/buckets/b1/objects/obj1")

    assert "Failed to stream object" in caplog.text


@pytest.mark.asyncio
async def test_bucket_and_object_operations_route_by_different_keys(instances):
    """Buckets are placed by bucket name while objects are placed by object id."""
    factory = MemoryClientFactory()
    registry = InstanceRegistry(instances(3))
    app = create_app(Backends(registry=registry, factory=factory), TokenBucket(100, 100))

    bucket_home = select_index("b1", 3)
    same = next(f"obj{i}" for i in range(1000) if select_index(f"obj{i}", 3) == bucket_home)
    other = next(f"obj{i}" for i in range(1000) if select_index(f"obj{i}", 3) != bucket_home)

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://gateway") as http:
        assert (await http.post("/buckets", json={"bucketName": "b1"})).status_code == 201
        assert (await http.put(f"/buckets/b1/objects/{same}", content=b"x")).status_code == 200
        assert (await http.put(f"/buckets/b1/objects/{other}", content=b"x")).status_code == 404

    assert "b1" in factory.store_for(registry[bucket_home]).buckets


class _StallingObject:
    """Backend object that sends one chunk and then never produces another."""

    def __init__(self):
        self.closed = False

    async def iter_chunks(self):
        yield b"head"
        await anyio.sleep_forever()

    async def close(self):
        await anyio.sleep(0)
        self.closed = True


@pytest.mark.asyncio
async def test_cancelled_stream_still_closes_backend_object():
    obj = _StallingObject()
    received = []

    with anyio.CancelScope() as scope:
        async for chunk in handlers._stream_object(obj, "b1", "obj1"):
            received.append(chunk)
            scope.cancel()

    assert received == [b"head"]
    assert obj.closed is True
