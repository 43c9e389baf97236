"""Issue persistence: the store port and its in-memory implementation.

The PostGIS implementation lives in `app.store.sql` and is imported
explicitly where a database is available.
"""

from app.store.base import IssueStore
from app.store.memory import InMemoryIssueStore

__all__ = ["InMemoryIssueStore", "IssueStore"]
