"""Storage module."""

from party_feed.storage.database import (
    Database,
    StoreFailure,
    close_database,
    get_database,
)

__all__ = ["Database", "StoreFailure", "close_database", "get_database"]
