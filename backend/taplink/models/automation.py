"""Automation ORM — persisted automation definitions looked up by link id.

Invariants:
    - id is UUID primary key; links carry it in canonical string form
    - steps stored as a JSON list of {id, type, title, config, enabled}, in declared order
    - to_record() is the only shape that leaves the persistence layer

Design Decisions:
    - JSON column for steps: step configs vary per kind and the store never queries into them
    - No ForeignKey to a users table: created_by is an opaque owner reference
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Text, Boolean, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID

from taplink.db.base import Base


class Automation(Base):
    """Automation definition — the target of every automation link."""
    __tablename__ = "automations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    steps: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    is_public: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )
    category: Mapped[str] = mapped_column(
        String(50), nullable=False, default="",
    )
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    created_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_record(self) -> dict:
        return {
            "id": str(self.id),
            "title": self.title,
            "description": self.description or "",
            "steps": list(self.steps or []),
            "is_public": self.is_public,
            "category": self.category or "",
            "tags": list(self.tags or []),
            "created_by": self.created_by,
        }
