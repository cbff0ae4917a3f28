"""
MongoDB access

One client per process. ``db`` is None when DATABASE_URL / DATABASE_NAME are
not set; handlers receive the handle through the ``get_db`` dependency so it
can be swapped in tests.
"""
from datetime import datetime, timezone
from typing import Optional, Union

import structlog
from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database

import config
from errors import ShopError, ValidationFailed

logger = structlog.get_logger(__name__)

_client = None
db = None

if config.DATABASE_URL and config.DATABASE_NAME:
    _client = MongoClient(config.DATABASE_URL)
    db = _client[config.DATABASE_NAME]


def get_db() -> Database:
    if db is None:
        raise ShopError("Database not configured")
    return db


def utcnow() -> datetime:
    # Mongo hands datetimes back naive (UTC); store them the same way
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_object_id(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise ValidationFailed("Invalid ID format")


def serialize_doc(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return doc
    doc = dict(doc)
    if isinstance(doc.get("_id"), ObjectId):
        doc["_id"] = str(doc["_id"])
    for k, v in list(doc.items()):
        if isinstance(v, datetime):
            doc[k] = v.isoformat()
    return doc


def create_document(database: Database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump(by_alias=True)
    else:
        data_dict = dict(data)
    now = utcnow()
    data_dict["createdAt"] = now
    data_dict["updatedAt"] = now
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(database: Database, collection_name: str, filter_dict: Optional[dict] = None,
                  limit: Optional[int] = None, sort: Optional[list] = None) -> list:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes(database: Database) -> None:
    database["user"].create_index("email", unique=True)
    database["order"].create_index("userId")
    logger.info("indexes_ensured", database=database.name)
