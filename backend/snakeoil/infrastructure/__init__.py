"""Infrastructure Layer - database sessions, change-feed transports, logging.

Invariants:
    - Infrastructure never imports from services/
    - Transport and driver failures mapped to typed errors (core/errors.py)
"""
