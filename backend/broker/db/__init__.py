"""Database module."""

from broker.db.session import get_db, init_db

__all__ = ["get_db", "init_db"]
