from typing import NamedTuple

import redis


class RateLimitDecision(NamedTuple):
    # False if the request should be rejected
    process: bool
    # True only for the request that reaches the limit
    alert: bool


def limiter(
    redis_client: redis.Redis,
    key: str,
    limit: int,
    window: int,
) -> RateLimitDecision:
    """
    Simple fixed window rate limiter. `key` should be an ip address or a user id.

    Counters are stored in Redis under `rate_limit:<key>` and expire after `window` seconds.
    """
    # Fixed window: see https://konghq.com/blog/how-to-design-a-scalable-rate-limiting-algorithm.
    redis_key = f"rate_limit:{key}"
    nb = redis_client.incr(redis_key)
    if nb == 1:
        redis_client.expire(redis_key, window)
    elif nb == limit:
        # We want to issue an alert the first time the limit is reached
        return RateLimitDecision(process=False, alert=True)
    elif nb > limit:
        return RateLimitDecision(process=False, alert=False)
    return RateLimitDecision(process=True, alert=False)
