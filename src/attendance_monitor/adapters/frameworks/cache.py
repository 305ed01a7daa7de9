"""Response caching and cache invalidation for FastAPI endpoints.

``cached`` wraps a read endpoint: a hit short-circuits with the stored
JSON body, a miss runs the endpoint and stores its body when it reports
success. ``invalidates`` wraps a write endpoint and deletes the glob
patterns its rules produce once the write succeeded.

Wrapped endpoints must declare a ``request: Request`` parameter.
"""

import functools
import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from attendance_monitor.adapters.cache.keys import (
    CacheRequest,
    CacheTTL,
    InvalidationRule,
    expand_rules,
)
from attendance_monitor.adapters.cache.tiered import TieredCache

logger = logging.getLogger(__name__)

Endpoint = Callable[..., Awaitable[Any]]
KeyFunction = Callable[[CacheRequest], str]
Condition = Callable[[CacheRequest], bool]


def _request_parameter(func: Endpoint) -> str:
    for name, parameter in inspect.signature(func).parameters.items():
        if parameter.annotation is Request:
            return name
    raise TypeError(f"{func.__name__} must declare a 'request: Request' parameter")


async def build_cache_request(request: Request) -> CacheRequest:
    """Snapshot the request fields used by key functions and rules."""
    body: Any = None
    if request.method in ("POST", "PUT", "PATCH", "DELETE"):
        raw = await request.body()
        if raw:
            try:
                body = json.loads(raw)
            except ValueError:
                body = None
        request.state.json_body = body
    actor = getattr(request.state, "actor", None)
    return CacheRequest(
        method=request.method,
        path_params=dict(request.path_params),
        query_params=dict(request.query_params),
        body=body,
        user_id=actor.id if actor is not None else request.headers.get("X-User-Id"),
        school_id=(
            actor.school_id if actor is not None else request.headers.get("X-School-Id")
        ),
    )


def _payload(result: Any) -> tuple[int, Any]:
    """Status code and JSON payload of an endpoint result."""
    if isinstance(result, Response):
        if result.media_type != "application/json":
            return result.status_code, None
        return result.status_code, json.loads(bytes(result.body))
    return 200, jsonable_encoder(result)


def _is_success(status: int, payload: Any) -> bool:
    return status == 200 and isinstance(payload, dict) and bool(payload.get("success"))


def _to_response(result: Any, payload: Any, headers: dict[str, str]) -> Response:
    response = result if isinstance(result, Response) else JSONResponse(content=payload)
    for name, value in headers.items():
        response.headers[name] = value
    return response


def cached(
    cache: TieredCache,
    key: KeyFunction,
    ttl: int = CacheTTL.MEDIUM,
    condition: Condition | None = None,
) -> Callable[[Endpoint], Endpoint]:
    """Cache the JSON body of a read endpoint.

    Args:
        cache: Cache the bodies are stored in.
        key: Builds the cache key from the request.
        ttl: Lifetime of stored bodies in seconds.
        condition: When given and false for a request, caching is skipped.
    """

    def decorator(func: Endpoint) -> Endpoint:
        request_param = _request_parameter(func)

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            request: Request = kwargs[request_param]
            cache_request = await build_cache_request(request)
            if condition is not None and not condition(cache_request):
                return await func(*args, **kwargs)

            cache_key = key(cache_request)
            headers = {
                "X-Cache-Key": cache_key,
                "Cache-Control": f"public, max-age={int(ttl)}",
            }
            hit = await cache.get(cache_key)
            if hit is not None:
                logger.debug("Cache hit", extra={"cache_key": cache_key})
                return JSONResponse(
                    content={**hit, "cached": True}, headers={"X-Cache": "HIT", **headers}
                )

            result = await func(*args, **kwargs)
            status, payload = _payload(result)
            if _is_success(status, payload):
                await cache.set(cache_key, payload, int(ttl))
            if payload is None:
                return result
            return _to_response(result, payload, {"X-Cache": "MISS", **headers})

        return wrapper

    return decorator


def invalidates(
    cache: TieredCache, *rules: InvalidationRule
) -> Callable[[Endpoint], Endpoint]:
    """Delete cache patterns after a successful write.

    Args:
        cache: Cache to invalidate.
        rules: Literal glob patterns or callables producing patterns from
            the request.
    """

    def decorator(func: Endpoint) -> Endpoint:
        request_param = _request_parameter(func)

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            request: Request = kwargs[request_param]
            cache_request = await build_cache_request(request)
            result = await func(*args, **kwargs)
            status, payload = _payload(result)
            if _is_success(status, payload):
                try:
                    for pattern in expand_rules(rules, cache_request):
                        deleted = await cache.delete_pattern(pattern)
                        logger.debug(
                            "Cache invalidated",
                            extra={"pattern": pattern, "deleted": deleted},
                        )
                except Exception:
                    logger.exception("Cache invalidation failed")
            return result

        return wrapper

    return decorator
