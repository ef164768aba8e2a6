import json

PENDING = "__pending__"


def _key(scope: str, idem_key: str) -> str:
    return f"idem:{scope}:{idem_key}"


async def claim(redis, scope: str, idem_key: str, ttl_seconds: int = 300) -> bool:
    """Reserve ``idem_key`` for one in-flight request. False if someone holds it."""
    return bool(await redis.set(_key(scope, idem_key), PENDING, nx=True, ex=ttl_seconds))


async def release(redis, scope: str, idem_key: str) -> None:
    # only drop our own pending marker, never a stored response
    raw = await redis.get(_key(scope, idem_key))
    if raw == PENDING:
        await redis.delete(_key(scope, idem_key))


async def get_cached_response(redis, scope: str, idem_key: str):
    raw = await redis.get(_key(scope, idem_key))
    if not raw or raw == PENDING:
        return None
    return json.loads(raw)


async def set_cached_response(redis, scope: str, idem_key: str, response: dict, ttl_seconds: int = 300):
    await redis.setex(_key(scope, idem_key), ttl_seconds, json.dumps(response))
