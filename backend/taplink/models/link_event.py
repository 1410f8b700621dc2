"""LinkEvent ORM — one row per link classified or served by the HTTP surface.

Invariants:
    - Written after the outcome is known; never updated
    - automation_id is nullable: unrecognized links still get a row

Design Decisions:
    - Logging table, not enforcement: no dispatch decision reads it
    - automation_id kept as plain string, not a ForeignKey: malformed and unknown ids
      are exactly what this table needs to record
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Text, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID

from taplink.db.base import Base


class LinkEvent(Base):
    """LinkEvent log entry — observability for link traffic."""
    __tablename__ = "link_events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    url: Mapped[str] = mapped_column(Text, nullable=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False)
    intent_kind: Mapped[str | None] = mapped_column(String(20), nullable=True)
    automation_id: Mapped[str | None] = mapped_column(
        String(100), nullable=True, index=True,
    )
    outcome: Mapped[str] = mapped_column(String(20), nullable=False)
    error_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
