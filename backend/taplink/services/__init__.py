"""Services Layer — resolver, fallback interpreter, link generator and dispatcher.

Invariants:
    - Services orchestrate IO around the pure core; all decisions live in core/
    - Collaborators arrive through core Protocols (store, engine, host, tag, prompt)

Design Decisions:
    - One file per pipeline stage for locality
"""
