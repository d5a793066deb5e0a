"""ORM Models - SQLAlchemy declarative models for all domain entities.

Invariants:
    - All models inherit from Base (db/base.py)
    - GameSession is the aggregate root; rounds and messages scoped by session_id

Design Decisions:
    - One file per entity for locality
    - All models imported here so every table is registered on Base.metadata
      before migrations or create_all run
"""

from snakeoil.models.game_session import GameSession  # noqa: F401
from snakeoil.models.round import Round  # noqa: F401
from snakeoil.models.catalog import Role, Word  # noqa: F401
from snakeoil.models.chat_message import ChatMessage  # noqa: F401
