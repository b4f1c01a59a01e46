"""
# Database Package

Persistence layer built on **Motor**. `DatabaseManager` is constructed explicitly by the
application factory or a CLI command and passed to services; there is no module-level singleton.

```python
from agentbuy.database import DatabaseManager

db = DatabaseManager()
await db.connect()
users = db.get_collection(collections.USERS)
await db.disconnect()
```
"""

from agentbuy.database import collections
from agentbuy.database.manager import DatabaseManager

__all__ = ["DatabaseManager", "collections"]
