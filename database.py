"""
MongoDB access for the Marketplace API.

The client is built once at startup and handed to the app explicitly; request
handlers reach it through the ``get_db`` dependency.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import Request
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value) -> Optional[ObjectId]:
    try:
        return ObjectId(str(value))
    except Exception:
        return None


def to_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def serialize(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    doc["id"] = str(_id) if isinstance(_id, ObjectId) else _id
    return doc


class Database:
    def __init__(self, handle, client: Optional[MongoClient] = None):
        self.handle = handle
        self.client = client

    @classmethod
    def connect(cls, url: str, name: str) -> "Database":
        client = MongoClient(url, serverSelectionTimeoutMS=5000)
        return cls(client[name], client)

    def __getitem__(self, name: str):
        return self.handle[name]

    @property
    def name(self) -> str:
        return self.handle.name

    def close(self):
        if self.client is not None:
            self.client.close()

    def ensure_indexes(self):
        self["user"].create_index([("email", ASCENDING)], unique=True)
        self["product"].create_index([("slug", ASCENDING)], unique=True, sparse=True)
        self["order"].create_index([("order_number", ASCENDING)], unique=True)
        self["order"].create_index([("user_id", ASCENDING)])
        self["review"].create_index([("product_id", ASCENDING)])

    def next_sequence(self, name: str) -> int:
        doc = self["counter"].find_one_and_update(
            {"_id": name},
            {"$inc": {"value": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return int(doc["value"])

    def create_document(self, collection: str, data: Any, _id=None):
        if hasattr(data, "model_dump"):
            data = data.model_dump()
        doc = dict(data)
        now = utcnow()
        if doc.get("created_at") is None:
            doc["created_at"] = now
        doc["updated_at"] = now
        if _id is not None:
            doc["_id"] = _id
        return self[collection].insert_one(doc).inserted_id

    def get_documents(
        self,
        collection: str,
        filter_dict: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None,
        sort_field: str = "created_at",
    ) -> List[dict]:
        cursor = self[collection].find(filter_dict or {}).sort(sort_field, DESCENDING)
        if limit:
            cursor = cursor.limit(limit)
        return list(cursor)

    def find_user(self, user_id) -> Optional[dict]:
        oid = to_object_id(user_id)
        if oid is None:
            return None
        return self["user"].find_one({"_id": oid})

    def find_user_by_email(self, email: str) -> Optional[dict]:
        return self["user"].find_one({"email": email})

    def find_product(self, slug_or_id) -> Optional[dict]:
        """Products are addressed by slug first, then by integer id."""
        product = self["product"].find_one({"slug": str(slug_or_id)})
        if product is None:
            pid = to_int(slug_or_id)
            if pid is not None:
                product = self["product"].find_one({"_id": pid})
        return product

    def find_order(self, order_id) -> Optional[dict]:
        oid = to_object_id(order_id)
        if oid is None:
            return None
        return self["order"].find_one({"_id": oid})


def get_db(request: Request) -> Database:
    return request.app.state.db
