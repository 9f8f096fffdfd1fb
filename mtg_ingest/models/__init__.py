"""
SQLAlchemy models for the card catalog store.
"""
from mtg_ingest.models.card import Card
from mtg_ingest.models.card_set import CardSet
from mtg_ingest.models.price_record import PRICE_KEY_COLUMNS, PriceRecord
from mtg_ingest.models.import_log import ImportLog

__all__ = [
    "Card",
    "CardSet",
    "PriceRecord",
    "PRICE_KEY_COLUMNS",
    "ImportLog",
]
