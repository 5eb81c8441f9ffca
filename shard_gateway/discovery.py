"""Backend discovery: Docker Engine API lookup or static configuration.

Discovery runs once at startup. Any failure, or finding no backends at all,
raises ``DiscoveryError`` and the gateway refuses to start.
"""

from __future__ import annotations

from typing import Dict, List, Optional
from urllib.parse import urlparse

import httpx

from gateway_shared.constants import (
    DEFAULT_BACKEND_PORT,
    DEFAULT_CONTAINER_FILTER,
    DEFAULT_DOCKER_HOST,
)

from .errors import DiscoveryError
from .instance_registry import BackendInstance
from .logging_config import log

_ACCESS_KEY_VARS = ("MINIO_ACCESS_KEY", "MINIO_ROOT_USER")
_SECRET_KEY_VARS = ("MINIO_SECRET_KEY", "MINIO_ROOT_PASSWORD")


def _docker_client(docker_host: str, transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    """Create an httpx client speaking to the Docker Engine API.

    Args:
        docker_host: ``unix:///path/to/docker.sock`` or ``tcp://host:port``.
        transport: Optional transport override (tests use ``httpx.MockTransport``).

    Returns:
        httpx.AsyncClient: Client with ``base_url`` pointing at the engine.
    """
    parsed = urlparse(docker_host)
    if parsed.scheme == "unix":
        transport = transport or httpx.AsyncHTTPTransport(uds=parsed.path)
        base_url = "http://docker"
    elif parsed.scheme in ("tcp", "http", "https"):
        scheme = "https" if parsed.scheme == "https" else "http"
        base_url = f"{scheme}://{parsed.netloc}"
    else:
        raise DiscoveryError(f"unsupported docker host: {docker_host}")
    return httpx.AsyncClient(base_url=base_url, transport=transport, timeout=10.0)


def _env_map(env: Optional[List[str]]) -> Dict[str, str]:
    result: Dict[str, str] = {}
    for entry in env or []:
        name, sep, value = entry.partition("=")
        if sep:
            result[name] = value
    return result


def _first(env: Dict[str, str], names) -> str:
    for name in names:
        if env.get(name):
            return env[name]
    return ""


def instance_from_inspect(inspect: dict, backend_port: int = DEFAULT_BACKEND_PORT) -> BackendInstance:
    """Build a ``BackendInstance`` from a container inspect document.

    Args:
        inspect: JSON payload of ``GET /containers/{id}/json``.
        backend_port: S3 port exposed inside the container network.

    Returns:
        BackendInstance: Address and credentials of the container.

    Raises:
        DiscoveryError: If the container has no IP address or no credentials.
    """
    networks = (inspect.get("NetworkSettings") or {}).get("Networks") or {}
    ip = ""
    for network in networks.values():
        ip = (network or {}).get("IPAddress") or ""
        break
    if not ip:
        raise DiscoveryError(f"failed to get container IP for {inspect.get('Id', '?')}")

    env = _env_map((inspect.get("Config") or {}).get("Env"))
    access_key = _first(env, _ACCESS_KEY_VARS)
    secret_key = _first(env, _SECRET_KEY_VARS)
    if not access_key or not secret_key:
        raise DiscoveryError(f"failed to get MinIO credentials for {inspect.get('Id', '?')}")

    return BackendInstance(address=f"{ip}:{backend_port}", access_key=access_key, secret_key=secret_key)


async def discover_docker(
    docker_host: str = DEFAULT_DOCKER_HOST,
    container_filter: str = DEFAULT_CONTAINER_FILTER,
    backend_port: int = DEFAULT_BACKEND_PORT,
    transport: httpx.AsyncBaseTransport | None = None,
) -> List[BackendInstance]:
    """Discover MinIO containers through the Docker Engine API.

    Containers are matched when any of their names contains
    ``container_filter``. Order follows the engine's listing.

    Args:
        docker_host: Docker endpoint.
        container_filter: Substring matched against container names.
        backend_port: S3 port inside each container.
        transport: Optional httpx transport override.

    Returns:
        List[BackendInstance]: Non-empty list of backends.

    Raises:
        DiscoveryError: On API errors, incomplete containers, or no matches.
    """
    log.info("Discovering backends via Docker @ %s (filter=%s)", docker_host, container_filter)
    instances: List[BackendInstance] = []
    try:
        async with _docker_client(docker_host, transport) as client:
            resp = await client.get("/containers/json")
            resp.raise_for_status()
            for container in resp.json():
                names = " ".join(container.get("Names") or [])
                if container_filter not in names:
                    continue
                detail = await client.get(f"/containers/{container['Id']}/json")
                detail.raise_for_status()
                instances.append(instance_from_inspect(detail.json(), backend_port))
    except (httpx.HTTPError, ValueError, KeyError) as exc:
        raise DiscoveryError(f"failed to query Docker API: {exc}") from exc

    if not instances:
        raise DiscoveryError("no backend instances found")
    log.info("Discovered %d backend instances", len(instances))
    return instances


def discover_static(backends: Optional[List[dict]]) -> List[BackendInstance]:
    """Build instances from the ``backends`` config list.

    Args:
        backends: Entries with ``address``, ``access_key`` and ``secret_key``.

    Returns:
        List[BackendInstance]: Non-empty list of backends.

    Raises:
        DiscoveryError: If the list is empty or an entry is incomplete.
    """
    instances: List[BackendInstance] = []
    for index, entry in enumerate(backends or []):
        if not isinstance(entry, dict):
            raise DiscoveryError(f"backend entry {index} is not a mapping")
        address = entry.get("address") or ""
        access_key = entry.get("access_key") or ""
        secret_key = entry.get("secret_key") or ""
        if not address or not access_key or not secret_key:
            raise DiscoveryError(f"backend entry {index} needs address, access_key and secret_key")
        instances.append(BackendInstance(address=address, access_key=access_key, secret_key=secret_key))

    if not instances:
        raise DiscoveryError("no backend instances found")
    log.info("Loaded %d static backend instances", len(instances))
    return instances


async def discover(cfg: dict, transport: httpx.AsyncBaseTransport | None = None) -> List[BackendInstance]:
    """Run the discovery mode selected in ``cfg['discovery']['mode']``."""
    discovery_cfg = cfg.get("discovery") or {}
    mode = discovery_cfg.get("mode") or "docker"
    if mode == "static":
        return discover_static(cfg.get("backends"))
    if mode == "docker":
        return await discover_docker(
            docker_host=discovery_cfg.get("docker_host") or DEFAULT_DOCKER_HOST,
            container_filter=discovery_cfg.get("container_filter") or DEFAULT_CONTAINER_FILTER,
            backend_port=int(discovery_cfg.get("backend_port") or DEFAULT_BACKEND_PORT),
            transport=transport,
        )
    raise DiscoveryError(f"unknown discovery mode: {mode}")
