# record_store.py - Storage for anomalies, workflow definitions and executions
# This file contains the record store contract plus Redis and in-memory backends.

import redis
import copy
import json
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any

from .config import settings

logger = logging.getLogger(__name__)

ANOMALIES = "anomalies"
WORKFLOWS = "workflows"
EXECUTIONS = "executions"


def _matches(record: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
    if not filters:
        return True
    return all(record.get(key) == value for key, value in filters.items())


def _sort_and_page(records: List[Dict[str, Any]], sort_by: Optional[str], descending: bool,
                   limit: Optional[int], offset: int) -> List[Dict[str, Any]]:
    if sort_by:
        # Missing values always sort last
        present = [r for r in records if r.get(sort_by) is not None]
        missing = [r for r in records if r.get(sort_by) is None]
        present.sort(key=lambda r: r[sort_by], reverse=descending)
        records = present + missing
    records = records[offset:]
    if limit is not None:
        records = records[:limit]
    return records


class RecordStore(ABC):
    """Document store keyed by collection and record id.

    Records are plain JSON-compatible dicts carrying an ``id`` field.
    """

    @abstractmethod
    async def create(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def find_by_id(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def find_all(self, collection: str, filters: Optional[Dict[str, Any]] = None,
                       sort_by: Optional[str] = None, descending: bool = False,
                       limit: Optional[int] = None, offset: int = 0) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def update(self, collection: str, record_id: str,
                     changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Merge ``changes`` into the stored record. Returns None if it does not exist."""

    @abstractmethod
    async def delete(self, collection: str, record_id: str) -> bool:
        """Remove a record. Returns False if it did not exist."""

    async def find_one(self, collection: str, filters: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        records = await self.find_all(collection, filters, limit=1)
        return records[0] if records else None

    async def count(self, collection: str, filters: Optional[Dict[str, Any]] = None) -> int:
        return len(await self.find_all(collection, filters))

    async def ping(self) -> bool:
        return True


class RedisRecordStore(RecordStore):
    def __init__(self, redis_client: Optional[redis.Redis] = None):
        self.redis_client = redis_client or redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            db=settings.redis_db,
            password=settings.redis_password,
            decode_responses=True
        )

    def _key(self, collection: str, record_id: str) -> str:
        return f"{collection}:{record_id}"

    async def create(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        record_id = record["id"]
        self.redis_client.set(self._key(collection, record_id), json.dumps(record))
        self.redis_client.sadd(f"{collection}:all", record_id)
        logger.debug(f"Stored {collection} record {record_id}")
        return record

    async def find_by_id(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        data = self.redis_client.get(self._key(collection, record_id))
        if not data:
            return None
        return json.loads(data)

    async def find_all(self, collection: str, filters: Optional[Dict[str, Any]] = None,
                       sort_by: Optional[str] = None, descending: bool = False,
                       limit: Optional[int] = None, offset: int = 0) -> List[Dict[str, Any]]:
        records = []
        for record_id in self.redis_client.smembers(f"{collection}:all"):
            record = await self.find_by_id(collection, record_id)
            if record is None:
                # Index entry outlived its document
                self.redis_client.srem(f"{collection}:all", record_id)
                continue
            if _matches(record, filters):
                records.append(record)
        return _sort_and_page(records, sort_by, descending, limit, offset)

    async def update(self, collection: str, record_id: str,
                     changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        record = await self.find_by_id(collection, record_id)
        if record is None:
            logger.warning(f"Cannot update missing {collection} record {record_id}")
            return None
        record.update(changes)
        self.redis_client.set(self._key(collection, record_id), json.dumps(record))
        return record

    async def delete(self, collection: str, record_id: str) -> bool:
        removed = self.redis_client.delete(self._key(collection, record_id))
        self.redis_client.srem(f"{collection}:all", record_id)
        return bool(removed)

    async def ping(self) -> bool:
        try:
            return bool(self.redis_client.ping())
        except redis.RedisError as e:
            logger.error(f"Redis ping failed: {str(e)}")
            return False


class InMemoryRecordStore(RecordStore):
    """Keep records in local memory.

    Useful for tests or when no Redis is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}

    async def create(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        self._collections.setdefault(collection, {})[record["id"]] = copy.deepcopy(record)
        return copy.deepcopy(record)

    async def find_by_id(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        record = self._collections.get(collection, {}).get(record_id)
        return copy.deepcopy(record) if record is not None else None

    async def find_all(self, collection: str, filters: Optional[Dict[str, Any]] = None,
                       sort_by: Optional[str] = None, descending: bool = False,
                       limit: Optional[int] = None, offset: int = 0) -> List[Dict[str, Any]]:
        records = [
            copy.deepcopy(r) for r in self._collections.get(collection, {}).values()
            if _matches(r, filters)
        ]
        return _sort_and_page(records, sort_by, descending, limit, offset)

    async def update(self, collection: str, record_id: str,
                     changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        record = self._collections.get(collection, {}).get(record_id)
        if record is None:
            return None
        record.update(copy.deepcopy(changes))
        return copy.deepcopy(record)

    async def delete(self, collection: str, record_id: str) -> bool:
        return self._collections.get(collection, {}).pop(record_id, None) is not None


def create_record_store() -> RecordStore:
    if settings.store_backend == "memory":
        logger.info("Using in-memory record store")
        return InMemoryRecordStore()
    return RedisRecordStore()
