"""
Core module containing configuration and shared utilities.
"""
from mtg_ingest.core.config import settings
from mtg_ingest.core.constants import (
    ConflictResolution,
    ImportLogStatus,
    ImportType,
    MigrationPhase,
    PriceSource,
    PriceVariant,
    StagingStatus,
)

__all__ = [
    "settings",
    "ConflictResolution",
    "ImportLogStatus",
    "ImportType",
    "MigrationPhase",
    "PriceSource",
    "PriceVariant",
    "StagingStatus",
]
