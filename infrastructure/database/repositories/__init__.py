"""Repository facades over the low-level ops mixins.

Each store satisfies a protocol from ``app.services.protocols``::

    from infrastructure.database.repositories.automation import SQLiteRuleStore
"""

from infrastructure.database.repositories.automation import (
    InMemoryConfigStore,
    InMemoryRuleStore,
    SQLiteConfigStore,
    SQLiteRuleStore,
)

__all__ = [
    "InMemoryConfigStore",
    "InMemoryRuleStore",
    "SQLiteConfigStore",
    "SQLiteRuleStore",
]
