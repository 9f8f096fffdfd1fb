"""
Repository layer for data access.

Repositories keep query building out of the migration services.
"""
from mtg_ingest.repositories.base import BaseRepository
from mtg_ingest.repositories.card_repo import CardRepository
from mtg_ingest.repositories.import_log_repo import ImportLogRepository
from mtg_ingest.repositories.price_repo import PriceRepository

__all__ = [
    "BaseRepository",
    "CardRepository",
    "ImportLogRepository",
    "PriceRepository",
]
