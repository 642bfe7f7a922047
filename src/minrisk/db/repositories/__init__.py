"""Database repositories for clean data access."""

from .appetite import SqlAppetiteStore, as_single, create_sql_store

__all__ = [
    "SqlAppetiteStore",
    "as_single",
    "create_sql_store",
]
