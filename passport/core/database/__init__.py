"""
Database infrastructure: async engine, sessions and the declarative base.

```python
from passport.core.database import DatabaseService

async with DatabaseService.get_transaction() as session:
    ...
```
"""

from passport.core.database.base import Base, IdMixin, TimestampMixin
from passport.core.database.service import (
    DatabaseInitializationError,
    DatabaseNotInitializedError,
    DatabaseService,
)

__all__ = [
    "Base",
    "IdMixin",
    "TimestampMixin",
    "DatabaseService",
    "DatabaseInitializationError",
    "DatabaseNotInitializedError",
]
