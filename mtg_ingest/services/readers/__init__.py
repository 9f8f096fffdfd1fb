"""
Source readers: turn raw files into typed candidate records.
"""
from mtg_ingest.services.readers.csv_reader import (
    CardsphereCsvParser,
    CsvParseResult,
    RowError,
    StagingRow,
)
from mtg_ingest.services.readers.mtgjson import (
    MtgjsonPriceReader,
    build_card_candidate,
    extract_mtgjson_prices,
)
from mtg_ingest.services.readers.price_history import PriceHistoryReader
from mtg_ingest.services.readers.records import CardCandidate, PricePoint

__all__ = [
    "CardCandidate",
    "CardsphereCsvParser",
    "CsvParseResult",
    "MtgjsonPriceReader",
    "PriceHistoryReader",
    "PricePoint",
    "RowError",
    "StagingRow",
    "build_card_candidate",
    "extract_mtgjson_prices",
]
