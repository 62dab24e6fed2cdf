"""Redis client used to forward gamification events.

Redis is optional. With no URL configured the client stays ``None`` and
events are only delivered to in-process listeners.
"""

import redis.asyncio as redis

_client: redis.Redis | None = None


async def init_redis(url: str, max_connections: int = 20) -> redis.Redis | None:
    """Create the event forwarding client. An empty URL leaves forwarding disabled."""
    global _client  # noqa: PLW0603
    if not url:
        return None
    _client = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=max_connections,
    )
    return _client


async def close_redis() -> None:
    global _client  # noqa: PLW0603
    if _client is not None:
        await _client.aclose()
        _client = None


async def redis_status() -> str:
    """Readiness of the forwarding client: ``disabled``, ``ok`` or ``error: ...``."""
    if _client is None:
        return "disabled"
    try:
        await _client.ping()
    except Exception as exc:
        return f"error: {exc}"
    return "ok"
