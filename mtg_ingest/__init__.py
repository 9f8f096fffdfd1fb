"""MTG price ingestion: streaming importers and the migration runtime."""

__version__ = "0.1.0"
