import time

from redis.exceptions import WatchError


async def token_bucket(redis, key: str, capacity: int, refill_per_sec: float) -> bool:
    """Take one token from the bucket ``rl:<key>``; False when it is empty.

    The read and the write happen under WATCH/MULTI, so concurrent callers
    never spend the same token twice.
    """
    bucket_key = f"rl:{key}"

    async with redis.pipeline(transaction=True) as pipe:
        while True:
            try:
                await pipe.watch(bucket_key)
                now = time.time()
                data = await pipe.hgetall(bucket_key)
                tokens = float(data.get("tokens", capacity))
                last = float(data.get("last", now))

                tokens = min(capacity, tokens + (now - last) * refill_per_sec)
                allowed = tokens >= 1.0
                if allowed:
                    tokens -= 1.0

                pipe.multi()
                pipe.hset(bucket_key, mapping={"tokens": tokens, "last": now})
                pipe.expire(bucket_key, 3600)
                await pipe.execute()
                return allowed
            except WatchError:
                # another request touched the bucket; recompute from its state
                continue
