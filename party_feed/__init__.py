"""Party content aggregation: feed ingestion and per-user timeline fan-out."""

__version__ = "0.1.0"
