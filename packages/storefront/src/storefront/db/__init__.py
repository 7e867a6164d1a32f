"""Database access."""

from storefront.db.session import Database, get_database, init_database, reset_database

__all__ = [
    "Database",
    "get_database",
    "init_database",
    "reset_database",
]
