"""
Trend record stores.

`append` keeps history (one row per run); `upsert_current` keeps one snapshot
per (entity_type, entity_id). The aggregator chooses between them per entity
type.
"""
import os
from typing import Dict, List, Optional, Tuple

import motor.motor_asyncio
from dotenv import load_dotenv
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

from skillmatch.models.models import EntityType, TrendRecord
from skillmatch.utils.exceptions import PersistenceError
from skillmatch.utils.logging_config import get_logger, log_function_call

logger = get_logger(__name__)

HISTORY_COLLECTION = "trend_history"
CURRENT_COLLECTION = "trend_current"


class InMemoryTrendStore:
    """Process-local store, for tests and single-process hosts"""

    def __init__(self):
        self.history: List[TrendRecord] = []
        self.current: Dict[Tuple[EntityType, str], TrendRecord] = {}

    async def append(self, record: TrendRecord) -> None:
        self.history.append(record)

    async def upsert_current(self, record: TrendRecord) -> None:
        self.current[(record.entity_type, record.entity_id)] = record

    async def latest(self, entity_type: Optional[EntityType] = None) -> List[TrendRecord]:
        """Current snapshots plus the newest history row of each appended entity."""
        newest: Dict[Tuple[EntityType, str], TrendRecord] = {}
        for record in self.history:
            key = (record.entity_type, record.entity_id)
            if key not in newest or record.calculated_at >= newest[key].calculated_at:
                newest[key] = record
        newest.update(self.current)
        return [r for r in newest.values() if entity_type is None or r.entity_type == entity_type]


def _to_doc(record: TrendRecord) -> dict:
    doc = record.model_dump()
    doc["entity_type"] = record.entity_type.value
    return doc


def _from_doc(doc: dict) -> TrendRecord:
    doc = {k: v for k, v in doc.items() if k != "_id"}
    return TrendRecord(**doc)


class MongoTrendStore:
    """MongoDB-backed store using motor collections"""

    def __init__(self, history_coll, current_coll):
        self.history_coll = history_coll
        self.current_coll = current_coll

    @classmethod
    def from_env(cls) -> "MongoTrendStore":
        """Connect using MONGO_DETAILS / DB_NAME from the environment (or .env)."""
        load_dotenv()
        mongo_details = os.getenv("MONGO_DETAILS", "mongodb://localhost:27017")
        db_name = os.getenv("DB_NAME", "skillmatch")

        logger.info(f"Initializing MongoDB connection to database: {db_name}")
        client = motor.motor_asyncio.AsyncIOMotorClient(mongo_details)
        db = client[db_name]
        return cls(db[HISTORY_COLLECTION], db[CURRENT_COLLECTION])

    @log_function_call
    async def init_indexes(self) -> None:
        """Index initialization for the trend collections."""
        logger.info("Starting trend index initialization")
        try:
            await self.current_coll.create_index(
                [("entity_type", ASCENDING), ("entity_id", ASCENDING)], unique=True
            )
            await self.current_coll.create_index([("trend_score", DESCENDING)])
            await self.history_coll.create_index(
                [("entity_type", ASCENDING), ("entity_id", ASCENDING), ("calculated_at", DESCENDING)]
            )
            logger.debug("Created indexes on trend collections")
        except PyMongoError as e:
            logger.warning(f"Could not create trend indexes: {e}")

    async def append(self, record: TrendRecord) -> None:
        try:
            await self.history_coll.insert_one(_to_doc(record))
        except PyMongoError as e:
            raise PersistenceError(
                f"Could not append trend record for {record.entity_id}: {e}",
                operation="insert_one", collection=HISTORY_COLLECTION, cause=e
            ) from e

    async def upsert_current(self, record: TrendRecord) -> None:
        try:
            await self.current_coll.replace_one(
                {"entity_type": record.entity_type.value, "entity_id": record.entity_id},
                _to_doc(record),
                upsert=True,
            )
        except PyMongoError as e:
            raise PersistenceError(
                f"Could not upsert trend record for {record.entity_id}: {e}",
                operation="replace_one", collection=CURRENT_COLLECTION, cause=e
            ) from e

    async def latest(self, entity_type: EntityType, limit: int = 10) -> List[TrendRecord]:
        """Top current snapshots for one entity type."""
        try:
            cursor = self.current_coll.find({"entity_type": entity_type.value}).sort("trend_score", DESCENDING).limit(limit)
            docs = await cursor.to_list(length=limit)
        except PyMongoError as e:
            raise PersistenceError(
                f"Could not read trend records: {e}", operation="find", collection=CURRENT_COLLECTION, cause=e
            ) from e
        return [_from_doc(doc) for doc in docs]
