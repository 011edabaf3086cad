"""Database layer for Payout Ledger."""

from .connection import PostgresConnector, SQLiteConnector, create_connector
from .repository import Repository

__all__ = ["PostgresConnector", "SQLiteConnector", "create_connector", "Repository"]
