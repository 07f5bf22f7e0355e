"""
MongoDB access helpers.

Collections are named after the lowercased schema class (see schemas.py).
The client connects lazily, so importing this module never touches the network.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

import config

client = MongoClient(config.DATABASE_URL, serverSelectionTimeoutMS=5000, tz_aware=True)
db = client[config.DATABASE_NAME]


def get_db() -> Database:
    return db


def ensure_indexes(database: Database) -> None:
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["cart"].create_index([("user_id", ASCENDING)], unique=True)
    database["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    database["token_blacklist"].create_index([("signature", ASCENDING)], unique=True)
    # expired entries are removed by the server once expired_at has passed
    database["token_blacklist"].create_index([("expired_at", ASCENDING)], expireAfterSeconds=0)


def now() -> datetime:
    return datetime.now(timezone.utc)


def create_document(database: Database, collection_name: str, data: Union[BaseModel, dict], session=None) -> ObjectId:
    """Insert a document stamped with created_at/updated_at and return its id."""
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    stamp = now()
    doc.setdefault("created_at", stamp)
    doc["updated_at"] = stamp
    result = database[collection_name].insert_one(doc, session=session)
    return result.inserted_id


def get_documents(database: Database, collection_name: str, filter_dict: Optional[dict] = None, sort=None) -> List[dict]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    return list(cursor)


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Return an ObjectId for ``value`` or None when it is not a valid id."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def serialize_doc(doc: Any) -> Any:
    """Make a Mongo document JSON friendly: ``_id`` becomes ``id`` and ids become strings."""
    if isinstance(doc, list):
        return [serialize_doc(v) for v in doc]
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, datetime):
        return doc.isoformat()
    if not isinstance(doc, dict):
        return doc
    out: Dict[str, Any] = {}
    for k, v in doc.items():
        if k == "_id":
            out["id"] = serialize_doc(v)
        else:
            out[k] = serialize_doc(v)
    return out
