"""Core Layer - pure game rules and reconciliation, no IO, no async, no DB.

Invariants:
    - No module in core/ imports from services/, api/, infrastructure/, or db/
    - All functions are pure and deterministic

Design Decisions:
    - Functional core separated from imperative shell: the store and the feed
      are driven from services/, the decisions they act on live here
"""
