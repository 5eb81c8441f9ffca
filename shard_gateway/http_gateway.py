"""HTTP surface of the shard gateway.

``create_app`` is the composition point: it receives the backends and the
rate limiter from the caller, so each app (and each test) owns its own
instances.
"""

from __future__ import annotations

from fastapi import Depends, FastAPI, Request

from . import handlers
from .backends import Backends
from .errors import InvalidRequestBody
from .logging_config import log
from .ratelimit import RateLimitMiddleware, TokenBucket


def _backends(request: Request) -> Backends:
    return request.app.state.backends


def create_app(backends: Backends, limiter: TokenBucket) -> FastAPI:
    """Build the FastAPI application.

    Args:
        backends: Registry and client factory used by every handler.
        limiter: Shared admission gate applied before routing.

    Returns:
        FastAPI: Configured application.
    """
    app = FastAPI(title="Shard Gateway")
    app.state.backends = backends
    app.add_middleware(RateLimitMiddleware, limiter=limiter)

    @app.on_event("startup")
    async def on_startup():
        log.info(
            "HTTP gateway started",
            extra={"instances": len(backends.registry), "rate": limiter.rate, "burst": limiter.burst},
        )

    @app.get("/healthz")
    async def health_check():
        return await handlers.handle_health_check()

    @app.post("/buckets")
    async def create_bucket(request: Request, backends: Backends = Depends(_backends)):
        try:
            payload = await request.json()
        except ValueError as exc:
            log.warning("Failed to decode request", extra={"error": str(exc)})
            raise InvalidRequestBody() from exc
        return await handlers.handle_create_bucket(backends, payload)

    @app.delete("/buckets/{bucket_name}")
    async def delete_bucket(bucket_name: str, backends: Backends = Depends(_backends)):
        return await handlers.handle_delete_bucket(backends, bucket_name)

    @app.put("/buckets/{bucket_name}/objects/{object_id}")
    async def put_object(
        bucket_name: str, object_id: str, request: Request, backends: Backends = Depends(_backends)
    ):
        return await handlers.handle_put_object(backends, bucket_name, object_id, request.stream())

    @app.get("/buckets/{bucket_name}/objects/{object_id}")
    async def get_object(bucket_name: str, object_id: str, backends: Backends = Depends(_backends)):
        return await handlers.handle_get_object(backends, bucket_name, object_id)

    @app.delete("/buckets/{bucket_name}/objects/{object_id}")
    async def delete_object(bucket_name: str, object_id: str, backends: Backends = Depends(_backends)):
        return await handlers.handle_delete_object(backends, bucket_name, object_id)

    return app
