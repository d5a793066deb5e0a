"""Services Layer - store, catalog oracle, readiness gate, negotiator, coordinator.

Invariants:
    - SessionStore is the only writer of session, round and chat rows
    - Services raise typed SnakeOilErrors; the coordinator turns them into results

Design Decisions:
    - One file per collaborator, wired by constructor injection (no globals)
"""
