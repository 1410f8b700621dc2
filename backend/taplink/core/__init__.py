"""Core Layer — pure link-dispatch logic, no IO, no async, no DB.

Invariants:
    - No module in core/ imports from services/, api/, infrastructure/, or db/
    - All functions are pure and deterministic (the dispatch state machine mutates only its cycle)

Design Decisions:
    - Functional core separated from imperative shell: codec, payload projection and
      state transitions are testable without event loops or mocks
"""
