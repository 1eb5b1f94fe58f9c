from typing import Optional
import redis.asyncio as redis

from ...config import INTERACTION_BACKEND as BACKEND  # 'sql' | 'redis'
from ...infra.sql import Gated

if BACKEND == "redis":
    from ._redis import InteractionStore as _InteractionStore
else:
    from ._sql import InteractionStore as _InteractionStore


# Factory keeps server.py backend-agnostic:
def new_store(*, sessions=None, gated: Optional[Gated] = None,
              r: Optional[redis.Redis] = None,
              ttl_seconds: int = 24 * 3600):
    if BACKEND == "redis":
        if r is None:
            raise RuntimeError(
                "InteractionStore(redis) requires r=redis.Redis"
            )
        return _InteractionStore(r=r, ttl_seconds=ttl_seconds)
    if sessions is None or gated is None:
        raise RuntimeError(
            "InteractionStore(sql) requires sessions= and gated="
        )
    return _InteractionStore(sessions=sessions, gated=gated)


InteractionStore = _InteractionStore
__all__ = ["InteractionStore", "new_store", "BACKEND"]
