"""Relational storage for teams, members and invite tokens."""

from teamsync.storage.db import Base, Database, db

__all__ = ["Base", "Database", "db"]
