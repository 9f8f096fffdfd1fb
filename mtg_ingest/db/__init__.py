"""
Database module containing session management and base models.
"""
from mtg_ingest.db.base import Base
from mtg_ingest.db.session import (
    async_session_maker,
    create_engine,
    create_session_maker,
    engine,
    init_models,
)

__all__ = [
    "Base",
    "async_session_maker",
    "create_engine",
    "create_session_maker",
    "engine",
    "init_models",
]
