from __future__ import annotations
from typing import Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ...helpers import now_ts
from ...infra.sql import Gated


class InteractionStore:
    """Remembers which Telegram callback ids were already handled."""

    def __init__(
        self, *, sessions: async_sessionmaker[AsyncSession], gated: Gated
    ) -> None:
        self.sessions = sessions
        self.gated = gated

    async def mark_seen(self, interaction_id: Optional[str]) -> bool:
        """True the first time an id is seen, False on every redelivery."""
        if not interaction_id:
            return True
        async with self.gated():
            async with self.sessions() as db:
                async with db.begin():
                    row = (await db.execute(text("""
                      INSERT INTO seen_interactions(interaction_id, created_at)
                      VALUES(:k, :ts)
                      ON CONFLICT (interaction_id) DO NOTHING
                      RETURNING interaction_id
                    """), {"k": interaction_id, "ts": now_ts()})).first()
        return row is not None
