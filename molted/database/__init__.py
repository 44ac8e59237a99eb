"""
Database integration layer for Molted
"""

from molted.database.client import DatabaseClient, get_db_client
from molted.database.memory import InMemoryDatabase

__all__ = ["DatabaseClient", "InMemoryDatabase", "get_db_client"]
