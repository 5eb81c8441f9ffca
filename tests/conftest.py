"""Test configuration that ensures project modules are importable and async tests run."""

import sys
from pathlib import Path

import httpx
import pytest
import pytest_asyncio

pytest_plugins = ("pytest_asyncio",)

# Add project root to sys.path so `shard_gateway` and `gateway_shared` can be imported in tests.
ROOT = Path(__file__).resolve().parent.parent
ROOT_STR = str(ROOT)
if ROOT_STR not in sys.path:
    sys.path.insert(0, ROOT_STR)

from shard_gateway.backends import Backends  # noqa: E402
from shard_gateway.http_gateway import create_app  # noqa: E402
from shard_gateway.instance_registry import BackendInstance, InstanceRegistry  # noqa: E402
from shard_gateway.mock import MemoryClientFactory  # noqa: E402
from shard_gateway.ratelimit import TokenBucket  # noqa: E402


def make_instances(count):
    return [
        BackendInstance(address=f"10.0.0.{i + 1}:9000", access_key=f"access{i}", secret_key=f"secret{i}")
        for i in range(count)
    ]


@pytest.fixture
def factory():
    return MemoryClientFactory()


@pytest.fixture
def instances():
    return make_instances


@pytest.fixture
def backends(factory):
    return Backends(registry=InstanceRegistry(make_instances(1)), factory=factory)


@pytest.fixture
def app(backends):
    return create_app(backends, TokenBucket(rate=1000, burst=1000))


@pytest_asyncio.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://gateway") as http:
        yield http
