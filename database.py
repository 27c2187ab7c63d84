"""
Record store for the resort booking API

A thin layer over a MongoDB database. One RecordStore is opened when the
process starts, shared by every request and closed on shutdown.

Collections:
- users        -> registered users
- allResorts   -> resort listings (free-form documents)
- allBookings  -> bookings
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from pymongo import ASCENDING, MongoClient
from pymongo.errors import PyMongoError
from pymongo.server_api import ServerApi

logger = logging.getLogger(__name__)

USERS = "users"
RESORTS = "allResorts"
BOOKINGS = "allBookings"


class RecordStoreError(Exception):
    pass


class RecordStore:
    def __init__(self, client: MongoClient, name: str):
        self.client = client
        self.db = client[name]

    @classmethod
    def connect(cls, url: str, name: str, timeout_ms: int = 5000) -> "RecordStore":
        client = MongoClient(url, server_api=ServerApi("1"), serverSelectionTimeoutMS=timeout_ms)
        store = cls(client, name)
        try:
            client.admin.command("ping")
            store.ensure_indexes()
        except PyMongoError as e:
            client.close()
            raise RecordStoreError(f"Could not connect to MongoDB: {e}") from e
        logger.info("Connected to MongoDB database %s", name)
        return store

    def close(self):
        self.client.close()
        logger.info("MongoDB connection closed")

    def ping(self) -> bool:
        try:
            self.client.admin.command("ping")
            return True
        except Exception:
            logger.warning("MongoDB ping failed", exc_info=True)
            return False

    def collection_names(self) -> List[str]:
        return self.db.list_collection_names()

    def ensure_indexes(self):
        self.db[BOOKINGS].create_index([("bookingId", ASCENDING)], unique=True)

    def create_document(self, collection: str, data: Dict[str, Any]):
        """Insert ``data`` and return the new ``_id``. ``data`` gains the ``_id`` key."""
        result = self.db[collection].insert_one(data)
        data["_id"] = result.inserted_id
        return result.inserted_id

    def get_documents(
        self,
        collection: str,
        filter_dict: Optional[Dict[str, Any]] = None,
        sort: Optional[List[Tuple[str, int]]] = None,
        projection: Optional[Dict[str, int]] = None,
        limit: int = 0,
    ) -> List[Dict[str, Any]]:
        cursor = self.db[collection].find(filter_dict or {}, projection)
        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(limit)
        return list(cursor)

    def find_one(self, collection: str, filter_dict: Dict[str, Any], projection=None):
        return self.db[collection].find_one(filter_dict, projection)

    def update_one(self, collection: str, filter_dict: Dict[str, Any], values: Dict[str, Any]):
        return self.db[collection].update_one(filter_dict, {"$set": values})


def serialize_document(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    if "_id" in doc:
        doc["_id"] = str(doc["_id"])
    return doc
