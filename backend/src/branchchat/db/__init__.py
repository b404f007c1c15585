"""Database access."""

from branchchat.db.postgres import Database, DuplicateRequestError, db

__all__ = ["Database", "DuplicateRequestError", "db"]
