"""
# Database Management Module

This module provides the **MongoDB infrastructure** for the AgentBuy API. `DatabaseManager`
wraps the **Motor** async driver and owns connection lifecycle, health checks, transactions and
index creation.

## Lifecycle

The manager is constructed explicitly and handed to whoever needs it:

- the FastAPI app stores it on `app.state.db` and connects it in the lifespan handler;
- each admin CLI command builds its own, connects, and disconnects in `finally`;
- tests pass a `MagicMock` with `get_collection` stubbed.

There is no lazy connect on first use. `get_collection()` before `connect()` is a programming
error and raises `ConnectionError`. A failed `connect()` leaves the manager in its initial state
so the next call starts clean.

## Transactions

All card ledger writes go through `transaction()`:

```python
async with db.transaction() as session:
    await users.update_one(..., session=session)
    await ledger.insert_one(..., session=session)
```

On a replica set or mongos the block runs inside a multi-document transaction. On a standalone
server `session` is `None` and callers fall back to guarded single-document updates.

## Configuration

- `MONGODB_URI` (or `DATABASE_URL`): connection string; missing raises `ConfigurationError`
- `MONGODB_DATABASE`: target database name
- `MONGODB_SERVER_SELECTION_TIMEOUT` / `MONGODB_CONNECTION_TIMEOUT`: driver timeouts in ms
"""

import asyncio
from contextlib import asynccontextmanager
import time
from typing import Any, AsyncIterator, Dict, Optional

from motor.motor_asyncio import (
    AsyncIOMotorClient,
    AsyncIOMotorClientSession,
    AsyncIOMotorCollection,
    AsyncIOMotorDatabase,
)
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import ConnectionFailure, OperationFailure, PyMongoError, ServerSelectionTimeoutError

from agentbuy.config import Settings, settings as default_settings
from agentbuy.database import collections
from agentbuy.errors import ConfigurationError
from agentbuy.managers.logging_manager import get_logger

db_logger = get_logger(prefix="[DATABASE]")
perf_logger = get_logger(prefix="[DB_PERFORMANCE]")
health_logger = get_logger(prefix="[DB_HEALTH]")


def redact_uri(uri: str) -> str:
    """Strip credentials from a connection string before it is logged."""
    if "@" not in uri:
        return uri
    scheme, _, rest = uri.partition("://")
    return f"{scheme}://***@{rest.split('@', 1)[-1]}"


class DatabaseManager:
    """
    Manages the MongoDB client, database handle and index set for one process.

    Attributes:
        client: Motor client, `None` until `connect()` succeeds.
        database: Selected database, `None` until `connect()` succeeds.
        transactions_supported: Whether the deployment accepts multi-document transactions.
    """

    def __init__(self, config: Optional[Settings] = None):
        self.settings: Settings = config or default_settings
        self.client: Optional[AsyncIOMotorClient] = None
        self.database: Optional[AsyncIOMotorDatabase] = None
        self._connection_retries = 3
        # Set by connect(); True for replica sets and mongos
        self.transactions_supported: Optional[bool] = None

    @property
    def is_connected(self) -> bool:
        return self.database is not None

    async def connect(self):
        """
        Connect to MongoDB with exponential backoff (1s, 2s) between attempts.

        Raises:
            ConfigurationError: If neither `MONGODB_URI` nor `DATABASE_URL` is set.
            ServerSelectionTimeoutError / ConnectionFailure: After the last failed attempt.
            PyMongoError: Any other driver error (e.g. authentication), without retrying.
        """
        if self.is_connected:
            db_logger.debug("connect() called on an already connected manager")
            return

        uri = self.settings.mongodb_uri
        if not uri:
            db_logger.error("MONGODB_URI (or DATABASE_URL) is not configured")
            raise ConfigurationError("MONGODB_URI or DATABASE_URL environment variable must be set")

        start_time = time.time()
        db_logger.info("Starting MongoDB connection process")

        for attempt in range(self._connection_retries):
            client = None
            attempt_start = time.time()
            try:
                db_logger.info("Connection attempt %d/%d to MongoDB", attempt + 1, self._connection_retries)
                db_logger.info(
                    "MongoDB connection config - URL: %s, Database: %s, ServerTimeout: %dms, ConnTimeout: %dms",
                    redact_uri(uri),
                    self.settings.MONGODB_DATABASE,
                    self.settings.MONGODB_SERVER_SELECTION_TIMEOUT,
                    self.settings.MONGODB_CONNECTION_TIMEOUT,
                )

                client = AsyncIOMotorClient(
                    uri,
                    serverSelectionTimeoutMS=self.settings.MONGODB_SERVER_SELECTION_TIMEOUT,
                    connectTimeoutMS=self.settings.MONGODB_CONNECTION_TIMEOUT,
                    maxPoolSize=50,
                    minPoolSize=5,
                    tz_aware=True,
                )

                ping_start = time.time()
                await client.admin.command("ping")
                ping_duration = time.time() - ping_start

                self.transactions_supported = await self._detect_transaction_support(client)
                self.client = client
                self.database = client[self.settings.MONGODB_DATABASE]

                total_duration = time.time() - start_time
                perf_logger.info(
                    "MongoDB connection established successfully in %.3fs (ping: %.3fs)", total_duration, ping_duration
                )
                db_logger.info(
                    "Connected to MongoDB database: %s (transactions supported: %s)",
                    self.settings.MONGODB_DATABASE,
                    self.transactions_supported,
                )
                return

            except (ServerSelectionTimeoutError, ConnectionFailure) as e:
                attempt_duration = time.time() - attempt_start
                perf_logger.warning("Connection attempt %d failed after %.3fs", attempt + 1, attempt_duration)
                db_logger.warning(
                    "Failed to connect to MongoDB (attempt %d/%d): %s", attempt + 1, self._connection_retries, e
                )
                if client is not None:
                    client.close()
                self._reset()
                if attempt == self._connection_retries - 1:
                    db_logger.error("All connection attempts failed after %.3fs", time.time() - start_time)
                    raise

                backoff_time = 2**attempt
                db_logger.info("Waiting %.1fs before retry (exponential backoff)", backoff_time)
                await asyncio.sleep(backoff_time)

            except PyMongoError as e:
                # Not retryable (bad credentials, unauthorized ping)
                db_logger.error("MongoDB rejected the connection: %s", e)
                if client is not None:
                    client.close()
                self._reset()
                raise

    async def _detect_transaction_support(self, client: AsyncIOMotorClient) -> bool:
        try:
            try:
                hello = await client.admin.command({"hello": 1})
            except OperationFailure:
                hello = await client.admin.command({"isMaster": 1})
            # setName: replica set member; msg == 'isdbgrid': mongos
            return bool(hello.get("setName") or hello.get("msg") == "isdbgrid")
        except PyMongoError as e:
            db_logger.warning("Could not detect transaction support, assuming none: %s", e)
            return False

    def _reset(self):
        self.client = None
        self.database = None
        self.transactions_supported = None

    async def disconnect(self):
        """Close the client. Safe to call when not connected."""
        start_time = time.time()
        if self.client is None:
            db_logger.warning("Disconnect called but no active MongoDB connection found")
            return

        self.client.close()
        self._reset()
        perf_logger.info("MongoDB disconnection completed in %.3fs", time.time() - start_time)
        db_logger.info("Successfully disconnected from MongoDB")

    async def health_check(self) -> bool:
        """Ping the server. Returns `False` instead of raising on any driver error."""
        if self.client is None:
            health_logger.warning("Health check failed: No database client available")
            return False
        start_time = time.time()
        try:
            await self.client.admin.command("ping")
            perf_logger.debug("Database health check completed in %.3fs", time.time() - start_time)
            return True
        except (PyMongoError, ConnectionError, TimeoutError) as e:
            health_logger.error("Database health check failed after %.3fs: %s", time.time() - start_time, e)
            return False

    def get_collection(self, collection_name: str) -> AsyncIOMotorCollection:
        """
        Return a collection handle from the connected database.

        Raises:
            ConnectionError: If `connect()` has not completed.
        """
        if self.database is None:
            raise ConnectionError("Database not connected")
        return self.database[collection_name]

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Optional[AsyncIOMotorClientSession]]:
        """
        Yield a session with an open transaction, or `None` when unsupported.

        The transaction commits when the block exits normally and aborts on exception.
        """
        if self.client is None or not self.transactions_supported:
            yield None
            return

        async with await self.client.start_session() as session:
            async with session.start_transaction():
                yield session

    async def create_indexes(self):
        """Create the indexes every collection relies on, unique ones included."""
        start_time = time.time()
        db_logger.info("Starting database index creation process")

        index_plan: Dict[str, list] = {
            collections.USERS: [
                ("email", {"unique": True}),
                ("role", {}),
                ([("role", ASCENDING), ("is_approved", ASCENDING)], {}),
            ],
            collections.PROFILES: [
                ("user_id", {"unique": True}),
                ("phone", {}),
            ],
            collections.CARGOS: [("name", {"unique": True})],
            collections.CARD_TRANSACTIONS: [
                ([("to_user_id", ASCENDING), ("created_at", DESCENDING)], {}),
                ([("from_user_id", ASCENDING), ("created_at", DESCENDING)], {}),
                ("type", {}),
            ],
            collections.AGENT_REVIEWS: [
                ("order_id", {"unique": True}),
                ([("agent_id", ASCENDING), ("created_at", DESCENDING)], {}),
                ("user_id", {}),
            ],
            collections.AGENT_SPECIALTIES: [("name", {"unique": True})],
            collections.CHAT_NOTIFICATIONS: [
                ([("order_id", ASCENDING), ("recipient_id", ASCENDING)], {"unique": True}),
                ("recipient_id", {}),
            ],
            collections.BANNERS: [([("is_active", ASCENDING), ("order", ASCENDING)], {})],
            collections.PRODUCT_SHOWCASES: [([("is_active", ASCENDING), ("order", ASCENDING)], {})],
        }

        for collection_name, indexes in index_plan.items():
            db_logger.info("Creating indexes for '%s' collection", collection_name)
            collection = self.get_collection(collection_name)
            for field_spec, options in indexes:
                await self._create_index_if_not_exists(collection, field_spec, options)

        perf_logger.info("Database index creation completed in %.3fs", time.time() - start_time)
        db_logger.info("Database indexes created successfully")

    async def _create_index_if_not_exists(
        self, collection: AsyncIOMotorCollection, field_spec: Any, options: Dict[str, Any]
    ):
        """Create an index; conflicts with an existing definition are logged, not raised."""
        start_time = time.time()
        try:
            await collection.create_index(field_spec, **options)
            perf_logger.debug("Created/ensured index '%s' in %.3fs", field_spec, time.time() - start_time)
        except OperationFailure as e:
            db_logger.warning("Could not create/ensure index '%s' on '%s': %s", field_spec, collection.name, e)
