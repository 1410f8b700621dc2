"""ORM Models — SQLAlchemy declarative models for persisted automations and link traffic.

Invariants:
    - All models inherit from Base (db/base.py)
    - Automation is the only entity links resolve to; LinkEvent is append-only

Design Decisions:
    - One file per entity for locality
    - All models imported here so Base.metadata is complete before create_all or alembic runs
"""

from taplink.models.automation import Automation  # noqa: F401
from taplink.models.link_event import LinkEvent  # noqa: F401
