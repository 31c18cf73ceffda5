"""
Database Helper Functions

MongoDB helpers used by every endpoint. Collections are addressed by name;
documents come back with "_id" converted to a string.
"""
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument

import config
from errors import DatabaseUnavailable

logger = logging.getLogger(__name__)

_client = None
db = None

if config.DATABASE_URL and config.DATABASE_NAME:
    _client = MongoClient(config.DATABASE_URL)
    db = _client[config.DATABASE_NAME]


def _ensure_db():
    if db is None:
        raise DatabaseUnavailable()


def _to_dict(data: Union[BaseModel, dict]) -> dict:
    if isinstance(data, BaseModel):
        return data.model_dump()
    return dict(data)


def utcnow() -> datetime:
    # MongoDB stores naive UTC; keep queries and stored values comparable
    return datetime.now(timezone.utc).replace(tzinfo=None)


def object_id(_id: Any) -> Optional[ObjectId]:
    if isinstance(_id, ObjectId):
        return _id
    try:
        return ObjectId(str(_id))
    except (InvalidId, TypeError):
        return None


def collection(collection_name: str):
    _ensure_db()
    return db[collection_name]


def ensure_indexes():
    _ensure_db()
    db["user"].create_index([("email", ASCENDING)], unique=True)
    db["cart"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    db["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    db["setting"].create_index([("key", ASCENDING)], unique=True)
    db["activitylog"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    db["activitylog"].create_index([("resource", ASCENDING), ("created_at", DESCENDING)])
    db["activitylog"].create_index([("created_at", DESCENDING)])
    logger.info("Database indexes ensured")


# CRUD helpers

def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    _ensure_db()
    payload = _to_dict(data)
    now = utcnow()
    payload['created_at'] = now
    payload['updated_at'] = now
    result = db[collection_name].insert_one(payload)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None, sort: Optional[list] = None, skip: int = 0, projection: Optional[dict] = None) -> List[dict]:
    _ensure_db()
    cursor = db[collection_name].find(filter_dict or {}, projection)
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(int(skip))
    if limit:
        cursor = cursor.limit(int(limit))
    return [serialize_doc(doc) for doc in cursor]


def get_document(collection_name: str, filter_dict: dict, sort: Optional[list] = None) -> Optional[dict]:
    docs = get_documents(collection_name, filter_dict, limit=1, sort=sort)
    return docs[0] if docs else None


def get_document_by_id(collection_name: str, _id: str) -> Optional[dict]:
    _ensure_db()
    oid = object_id(_id)
    if oid is None:
        return None
    doc = db[collection_name].find_one({"_id": oid})
    return serialize_doc(doc) if doc else None


def get_page(collection_name: str, filter_dict: Optional[dict] = None, page: int = 1, limit: int = 20, sort: Optional[list] = None) -> Dict[str, Any]:
    page = max(int(page), 1)
    limit = max(int(limit), 1)
    total = count_documents(collection_name, filter_dict)
    items = get_documents(collection_name, filter_dict, limit=limit, sort=sort, skip=(page - 1) * limit)
    return {
        "items": items,
        "total_pages": math.ceil(total / limit),
        "current_page": page,
        "total": total,
    }


def update_document(collection_name: str, _id: str, update_data: Union[BaseModel, Dict[str, Any]]) -> bool:
    _ensure_db()
    oid = object_id(_id)
    if oid is None:
        return False
    update = {"$set": _to_dict(update_data)}
    update["$set"]["updated_at"] = utcnow()
    result = db[collection_name].update_one({"_id": oid}, update)
    return result.matched_count > 0


def find_and_update(collection_name: str, filter_dict: dict, update_data: Dict[str, Any], upsert: bool = False) -> Optional[dict]:
    """Apply a $set to the first matching document and return it post-update."""
    _ensure_db()
    update = {"$set": dict(update_data)}
    update["$set"]["updated_at"] = utcnow()
    if upsert:
        update["$setOnInsert"] = {"created_at": update["$set"]["updated_at"]}
    doc = db[collection_name].find_one_and_update(
        filter_dict, update, upsert=upsert, return_document=ReturnDocument.AFTER
    )
    return serialize_doc(doc)


def delete_document(collection_name: str, _id: str) -> bool:
    _ensure_db()
    oid = object_id(_id)
    if oid is None:
        return False
    result = db[collection_name].delete_one({"_id": oid})
    return result.deleted_count > 0


def delete_documents(collection_name: str, filter_dict: dict) -> int:
    _ensure_db()
    result = db[collection_name].delete_many(filter_dict)
    return result.deleted_count


def count_documents(collection_name: str, filter_dict: Optional[dict] = None) -> int:
    _ensure_db()
    return db[collection_name].count_documents(filter_dict or {})


def aggregate(collection_name: str, pipeline: List[dict]) -> List[dict]:
    _ensure_db()
    return list(db[collection_name].aggregate(pipeline))


# Utility

def serialize_doc(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return None
    d = dict(doc)
    if "_id" in d:
        d["_id"] = str(d["_id"])  # convert ObjectId to string
    return d
