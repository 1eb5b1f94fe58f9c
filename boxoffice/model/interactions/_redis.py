from __future__ import annotations
from typing import Optional
import redis.asyncio as redis


def k_seen(interaction_id: str) -> str:
    return f"interaction:{interaction_id}"


class InteractionStore:
    def __init__(self, r: redis.Redis, ttl_seconds: int) -> None:
        self.r = r
        self.ttl = ttl_seconds

    async def mark_seen(self, interaction_id: Optional[str]) -> bool:
        if not interaction_id:
            return True
        ok = await self.r.set(
            k_seen(interaction_id), "1", nx=True, ex=self.ttl
        )
        return bool(ok)
