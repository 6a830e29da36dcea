"""
Key-value backends — opaque string values under string keys.

MongoKeyValueStore keeps one document per key in a single collection:
    {"_id": <key>, "value": <json text>}

Requires:
  - MONGODB_URI in .env (default: mongodb://localhost:27017)
  - MONGODB_DB in .env (default: whiterabbit)

MemoryKeyValueStore is the in-process fallback used when MongoDB is
unreachable, and by the test suite.
"""

import os
import logging
from typing import Any, Dict, Optional

from motor.motor_asyncio import AsyncIOMotorClient

logger = logging.getLogger("KeyValueStore")


class MemoryKeyValueStore:
    """Dict-backed store. Data lives until the process exits."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    @property
    def is_connected(self) -> bool:
        return True

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)


class MongoKeyValueStore:
    """Async MongoDB-backed key-value store."""

    def __init__(
        self,
        uri: Optional[str] = None,
        db_name: Optional[str] = None,
        collection: str = "kv",
    ):
        self.uri = uri or os.getenv("MONGODB_URI", "mongodb://localhost:27017")
        self.db_name = db_name or os.getenv("MONGODB_DB", "whiterabbit")
        self.collection_name = collection
        self._client: Any = None
        self._collection: Any = None

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def connect(self) -> bool:
        """Connect to MongoDB. Returns True on success."""
        try:
            self._client = AsyncIOMotorClient(self.uri)
            # Verify connectivity
            await self._client.admin.command("ping")
            self._collection = self._client[self.db_name][self.collection_name]
            logger.info(f"KeyValueStore connected to MongoDB: {self.db_name}.{self.collection_name}")
            return True
        except Exception as e:
            logger.error(f"MongoDB connection failed: {e}")
            self._client = None
            self._collection = None
            return False

    async def close(self):
        """Close the MongoDB connection."""
        if self._client:
            self._client.close()
            self._client = None
            self._collection = None

    @property
    def is_connected(self) -> bool:
        return self._collection is not None

    def _require_connection(self):
        if not self.is_connected:
            raise RuntimeError("KeyValueStore is not connected to MongoDB.")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Optional[str]:
        self._require_connection()
        doc = await self._collection.find_one({"_id": key})
        if not doc:
            return None
        return doc.get("value")

    async def set(self, key: str, value: str) -> None:
        self._require_connection()
        await self._collection.update_one(
            {"_id": key},
            {"$set": {"value": value}},
            upsert=True,
        )

    async def delete(self, key: str) -> None:
        self._require_connection()
        await self._collection.delete_one({"_id": key})
