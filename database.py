"""
MongoDB access for the storefront.

`db` is None when DATABASE_URL is not configured; handlers go through
`get_collection` so a missing database surfaces as a 503 instead of an
AttributeError deep inside a route.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import MongoClient

import config

logger = logging.getLogger(__name__)

db = None

if config.DATABASE_URL:
    try:
        _client = MongoClient(config.DATABASE_URL, serverSelectionTimeoutMS=5000)
        db = _client[config.DATABASE_NAME]
    except Exception as e:
        logger.error(f"MongoDB connection failed: {e}")
        db = None


def utcnow() -> datetime:
    # naive UTC, matching what pymongo hands back
    return datetime.now(timezone.utc).replace(tzinfo=None)


def set_database(database) -> None:
    global db
    db = database


def get_collection(name: str):
    if db is None:
        raise HTTPException(status_code=503, detail="Database not configured")
    return db[name]


def to_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if value is not None and ObjectId.is_valid(str(value)):
        return ObjectId(str(value))
    return None


def serialize_doc(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    for k, v in list(doc.items()):
        if isinstance(v, datetime):
            doc[k] = v.isoformat()
        elif isinstance(v, ObjectId):
            doc[k] = str(v)
    return doc


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    if isinstance(data, BaseModel):
        data = data.model_dump()
    doc = dict(data)
    now = utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    inserted = get_collection(collection_name).insert_one(doc)
    return str(inserted.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  limit: Optional[int] = None) -> List[dict]:
    cursor = get_collection(collection_name).find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def get_document(collection_name: str, doc_id: Any) -> Optional[dict]:
    oid = to_object_id(doc_id)
    if oid is None:
        return None
    return get_collection(collection_name).find_one({"_id": oid})
