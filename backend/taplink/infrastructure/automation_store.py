"""SQL Automation Store — AutomationStore Protocol over the async SQLAlchemy session.

Invariants:
    - Returns plain records (dict), never ORM instances: core stays SQLAlchemy-free
    - None for no match, a dict for one, a list only when the table breaks id uniqueness
    - SQLAlchemy failures surface as DatabaseError (mapped by DatabaseSessionManager)

Design Decisions:
    - Manager looked up per call when not injected: db_manager is created in lifespan,
      after this store may already have been constructed
"""

import logging
import uuid

from sqlalchemy import select

from taplink.infrastructure import database
from taplink.infrastructure.database import DatabaseSessionManager
from taplink.models.automation import Automation

logger = logging.getLogger(__name__)


class SqlAutomationStore:
    """Reads automations by id."""

    def __init__(self, manager: DatabaseSessionManager | None = None):
        self._manager = manager

    def _sessions(self) -> DatabaseSessionManager:
        manager = self._manager or database.db_manager
        if manager is None:
            raise RuntimeError("Database not initialized")
        return manager

    async def get_by_id(self, automation_id: str) -> dict | list[dict] | None:
        try:
            key = uuid.UUID(automation_id)
        except (TypeError, ValueError):
            return None
        async with self._sessions().session() as db:
            result = await db.execute(
                select(Automation).where(Automation.id == key),
            )
            rows = result.scalars().all()
        if not rows:
            return None
        if len(rows) == 1:
            return rows[0].to_record()
        logger.warning(
            f"{len(rows)} rows share automation id",
            extra={"automation_id": automation_id},
        )
        return [r.to_record() for r in rows]
