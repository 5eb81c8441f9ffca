import asyncio
import copy
import os
from argparse import ArgumentParser
from pathlib import Path
from typing import Mapping, Optional

import uvicorn
import yaml

from gateway_shared.constants import (
    DEFAULT_BACKEND_PORT,
    DEFAULT_CONTAINER_FILTER,
    DEFAULT_DOCKER_HOST,
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEFAULT_RATE_LIMIT_BURST,
    DEFAULT_RATE_LIMIT_RPS,
)

from .backends import BackendClientFactory, Backends
from .discovery import discover
from .errors import ConfigError, DiscoveryError
from .http_gateway import create_app
from .instance_registry import InstanceRegistry
from .logging_config import configure_logging, log
from .ratelimit import TokenBucket
from .storage_s3 import S3ClientFactory, probe_instance

DEFAULT_CONFIG: dict = {
    "host": DEFAULT_HOST,
    "port": DEFAULT_PORT,
    "log_level": "INFO",
    "rate_limit": {"rate": DEFAULT_RATE_LIMIT_RPS, "burst": DEFAULT_RATE_LIMIT_BURST},
    "discovery": {
        "mode": "docker",
        "docker_host": DEFAULT_DOCKER_HOST,
        "container_filter": DEFAULT_CONTAINER_FILTER,
        "backend_port": DEFAULT_BACKEND_PORT,
    },
    "backends": [],
    "s3": {"use_ssl": False, "region": "us-east-1", "signature_version": "s3v4"},
}


def set_config(path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> dict:
    """Build configuration from defaults, ``config.yaml`` and environment variables.

    Args:
        path: Config file location; defaults to ``config.yaml`` in the working directory.
        environ: Environment mapping; defaults to ``os.environ``.

    Returns:
        dict: Configuration map with every key of ``DEFAULT_CONFIG`` present.

    Raises:
        ConfigError: If a numeric or boolean value cannot be parsed.
    """
    path = path or Path("config.yaml")
    env = os.environ if environ is None else environ
    cfg = copy.deepcopy(DEFAULT_CONFIG)

    # First, load config from config.yaml if it exists
    try:
        if path.exists():
            with path.open("r", encoding="utf-8") as fh:
                data = yaml.safe_load(fh) or {}
            if not isinstance(data, dict):
                log.warning("Config file %s does not contain a mapping", path)
            else:
                _merge(cfg, data)
    except (OSError, yaml.YAMLError) as exc:
        log.warning("Failed to load config from %s: %s", path, exc)

    # Environment variables override config.yaml values
    if env.get("HOST"):
        cfg["host"] = env["HOST"]
    if env.get("PORT"):
        cfg["port"] = env["PORT"]
    if env.get("LOG_LEVEL"):
        cfg["log_level"] = env["LOG_LEVEL"]
    if env.get("RATE_LIMIT_RPS"):
        cfg["rate_limit"]["rate"] = env["RATE_LIMIT_RPS"]
    if env.get("RATE_LIMIT_BURST"):
        cfg["rate_limit"]["burst"] = env["RATE_LIMIT_BURST"]
    if env.get("DISCOVERY_MODE"):
        cfg["discovery"]["mode"] = env["DISCOVERY_MODE"]
    if env.get("DOCKER_HOST"):
        cfg["discovery"]["docker_host"] = env["DOCKER_HOST"]
    if env.get("DISCOVERY_CONTAINER_FILTER"):
        cfg["discovery"]["container_filter"] = env["DISCOVERY_CONTAINER_FILTER"]
    if env.get("DISCOVERY_BACKEND_PORT"):
        cfg["discovery"]["backend_port"] = env["DISCOVERY_BACKEND_PORT"]
    if env.get("MINIO_USE_SSL"):
        cfg["s3"]["use_ssl"] = env["MINIO_USE_SSL"]
    if env.get("S3_REGION"):
        cfg["s3"]["region"] = env["S3_REGION"]

    # A single backend can be declared entirely through the environment
    if env.get("MINIO_ENDPOINT"):
        cfg["backends"] = list(cfg.get("backends") or []) + [
            {
                "address": env["MINIO_ENDPOINT"],
                "access_key": env.get("MINIO_ACCESS_KEY", ""),
                "secret_key": env.get("MINIO_SECRET_KEY", ""),
            }
        ]

    cfg["port"] = _as_int("port", cfg["port"])
    cfg["rate_limit"]["rate"] = _as_float("rate_limit.rate", cfg["rate_limit"]["rate"])
    cfg["rate_limit"]["burst"] = _as_int("rate_limit.burst", cfg["rate_limit"]["burst"])
    cfg["discovery"]["backend_port"] = _as_int("discovery.backend_port", cfg["discovery"]["backend_port"])
    cfg["s3"]["use_ssl"] = _as_bool("s3.use_ssl", cfg["s3"]["use_ssl"])

    log.info("Configuration loaded: %s", _mask_sensitive(cfg))
    return cfg


def _merge(base: dict, override: dict) -> None:
    """Recursively merge ``override`` into ``base`` in place."""
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value


def _as_int(name: str, value) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from exc


def _as_float(name: str, value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be a number, got {value!r}") from exc


def _as_bool(name: str, value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off", ""):
            return False
    raise ConfigError(f"{name} must be a boolean, got {value!r}")


def _mask_sensitive(data):
    """Return a copy of config data with sensitive values masked."""
    if isinstance(data, dict):
        return {k: _mask_sensitive_value(k, v) for k, v in data.items()}
    if isinstance(data, list):
        return [_mask_sensitive(item) for item in data]
    return data


def _mask_sensitive_value(key: str, value):
    """Mask secret values; leave others unchanged."""
    if isinstance(value, dict):
        return _mask_sensitive(value)
    if isinstance(value, list):
        return [_mask_sensitive_value(key, item) for item in value]
    if isinstance(value, str) and _is_sensitive_key(key):
        if len(value) <= 6:
            return f"{value[:1]}***{value[-1:]}"
        return f"{value[:3]}***{value[-3:]}"
    return value


def _is_sensitive_key(key: str) -> bool:
    """Return True if the key name indicates sensitive content."""
    key_lower = key.lower()
    return any(token in key_lower for token in ("password", "secret", "token", "key"))


def build_limiter(cfg: dict) -> TokenBucket:
    rate_cfg = cfg["rate_limit"]
    return TokenBucket(rate=rate_cfg["rate"], burst=rate_cfg["burst"])


def build_client_factory(cfg: dict) -> S3ClientFactory:
    s3_cfg = cfg["s3"]
    return S3ClientFactory(
        use_ssl=s3_cfg["use_ssl"],
        region=s3_cfg.get("region") or "us-east-1",
        signature_version=s3_cfg.get("signature_version") or "s3v4",
    )


async def build_backends(cfg: dict, factory: Optional[BackendClientFactory] = None, transport=None) -> Backends:
    """Discover backend instances and pair them with a client factory.

    Args:
        cfg: Configuration from :func:`set_config`.
        factory: Client factory; the boto3 factory is used when omitted.
        transport: Optional httpx transport for Docker discovery.

    Returns:
        Backends: Registry plus factory.

    Raises:
        DiscoveryError: If no backend instance can be discovered.
    """
    instances = await discover(cfg, transport=transport)
    registry = InstanceRegistry(instances)
    return Backends(registry=registry, factory=factory or build_client_factory(cfg))


async def _log_unreachable(backends: Backends, use_ssl: bool) -> None:
    results = await asyncio.gather(*(probe_instance(inst, use_ssl) for inst in backends.registry))
    for index, (instance, ok) in enumerate(zip(backends.registry, results)):
        if not ok:
            log.warning("Backend instance %d at %s is not answering", index, instance.address)


async def main(argv: list[str] | None = None):
    """Entrypoint: discover backends and serve the HTTP gateway.

    Args:
        argv: Command line arguments; ``sys.argv`` when omitted.

    Returns:
        None

    Raises:
        SystemExit: With status 1 when the configuration is invalid or discovery
            fails; nothing is listening then.
    """
    parser = ArgumentParser(description="Sharded object-storage gateway")
    parser.add_argument("--config", default="config.yaml", help="Path to config.yaml")
    parser.add_argument("--host", default=None, help="Listen address")
    parser.add_argument("--port", default=None, help="Listen port")
    parser.add_argument("--discovery", choices=("docker", "static"), default=None, help="Backend discovery mode")
    args = parser.parse_args(argv)

    # LOG_LEVEL from the environment until the config file has been read.
    configure_logging()

    try:
        cfg = set_config(Path(args.config))
        if args.host:
            cfg["host"] = args.host
        if args.port:
            cfg["port"] = _as_int("port", args.port)
    except ConfigError as exc:
        log.error("Invalid configuration: %s", exc)
        raise SystemExit(1) from exc
    if args.discovery:
        cfg["discovery"]["mode"] = args.discovery

    configure_logging(cfg["log_level"])

    try:
        backends = await build_backends(cfg)
    except DiscoveryError as exc:
        log.error("Failed to discover backend instances: %s", exc)
        raise SystemExit(1) from exc

    await _log_unreachable(backends, cfg["s3"]["use_ssl"])

    app = create_app(backends, build_limiter(cfg))
    server = uvicorn.Server(uvicorn.Config(app, host=cfg["host"], port=cfg["port"], log_config=None))
    log.info("Starting server on %s:%s", cfg["host"], cfg["port"])
    await server.serve()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        log.info("Server stopped by user")
