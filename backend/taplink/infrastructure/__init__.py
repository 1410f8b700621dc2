"""Infrastructure Layer — database access, persistence adapters and logging.

Invariants:
    - Infrastructure imports core/ only for errors, records and Protocols
    - All database failures mapped to DatabaseError before leaving this package

Design Decisions:
    - Adapters implement core Protocols structurally: core never learns about SQLAlchemy
"""
