"""
Core constants and enums for price ingestion.

Standardizes the price sources, printing variants and job states used
across the importers, along with the placeholder values applied when a
price-only source carries no card descriptors.
"""
from enum import Enum


class PriceSource(str, Enum):
    """Marketplaces that quote card prices."""
    TCGPLAYER = "tcgplayer"
    CARDKINGDOM = "cardkingdom"
    MTGO = "mtgo"
    CARDSPHERE = "cardsphere"


class PriceVariant(str, Enum):
    """Printing finish of a price observation."""
    NORMAL = "normal"
    FOIL = "foil"


class ImportType(str, Enum):
    """Job types recorded in the import log."""
    MTGJSON = "mtgjson"
    CARDSPHERE_CSV = "cardsphere_csv"
    PRICE_HISTORY = "price_history_migration"


class ImportLogStatus(str, Enum):
    """Durable job status."""
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


class MigrationPhase(str, Enum):
    """
    Job state machine.

    initializing -> validating_source -> parsing -> preparing_data ->
    {importing_cards | importing_prices | matching_cards} -> completed,
    with failed reachable from any phase.
    """
    INITIALIZING = "initializing"
    VALIDATING_SOURCE = "validating_source"
    PARSING = "parsing"
    PREPARING_DATA = "preparing_data"
    IMPORTING_CARDS = "importing_cards"
    IMPORTING_PRICES = "importing_prices"
    MATCHING_CARDS = "matching_cards"
    COMPLETED = "completed"
    FAILED = "failed"


class StagingStatus(str, Enum):
    """Lifecycle of a staged CSV row."""
    PENDING = "pending"
    MATCHED = "matched"
    UNMATCHED = "unmatched"
    ERROR = "error"


class ConflictResolution(str, Enum):
    """What to do when a matched CSV row already has a price for today."""
    SKIP = "skip"
    UPDATE = "update"
    ERROR = "error"


# Fallbacks for price-only MTGJSON entries without descriptors
PLACEHOLDER_NAME_PREFIX = "Card-"
PLACEHOLDER_SET_CODE = "UNK"
PLACEHOLDER_SET_NAME = "Unknown Set"

# Column limits shared by validation and the models
MAX_CARD_NAME_LENGTH = 255
MAX_SET_CODE_LENGTH = 10

CANCELLED_MESSAGE = "Cancelled by request"
