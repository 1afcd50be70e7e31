"""
Database access for HackMate

MongoDB via pymongo. Every write goes through DocumentStore so that standing
live queries on the written collection get redelivered.
"""
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from bson import ObjectId
from dotenv import load_dotenv
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.errors import PyMongoError

from errors import translate_store_error
from live import LiveQueryHub, Subscription

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

SortSpec = Optional[Sequence[Tuple[str, int]]]


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def id_candidates(doc_id: str) -> List[Union[ObjectId, str]]:
    """Values an id may be stored as: ObjectId for our own inserts, plain string for external ids."""
    if ObjectId.is_valid(doc_id):
        return [ObjectId(doc_id), doc_id]
    return [doc_id]


def id_filter(doc_id: str) -> Dict[str, Any]:
    return {"_id": {"$in": id_candidates(doc_id)}}


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    out = {k: v for k, v in doc.items() if k != "_id"}
    out["id"] = str(doc.get("_id"))
    return out


class DocumentStore:
    def __init__(self, database, hub: Optional[LiveQueryHub] = None):
        self.database = database
        self.hub = hub or LiveQueryHub()

    @property
    def name(self) -> str:
        return getattr(self.database, "name", "")

    def create_document(self, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
        doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
        now = now_utc()
        doc.setdefault("created_at", now)
        doc["updated_at"] = now
        try:
            inserted_id = self.database[collection_name].insert_one(doc).inserted_id
        except PyMongoError as e:
            logger.error("Insert into %s failed: %s", collection_name, e)
            raise translate_store_error(e) from e
        self.hub.notify(collection_name)
        return str(inserted_id)

    def get_documents(
        self,
        collection_name: str,
        filter_dict: Optional[Dict[str, Any]] = None,
        sort: SortSpec = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        cursor = self.database[collection_name].find(filter_dict or {})
        if sort:
            cursor = cursor.sort(list(sort))
        if limit:
            cursor = cursor.limit(limit)
        return [serialize(d) for d in cursor]

    def get_document(self, collection_name: str, doc_id: str) -> Optional[Dict[str, Any]]:
        if not doc_id:
            return None
        return serialize(self.database[collection_name].find_one(id_filter(doc_id)))

    def find_one(self, collection_name: str, filter_dict: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return serialize(self.database[collection_name].find_one(filter_dict))

    def exists(self, collection_name: str, filter_dict: Dict[str, Any]) -> bool:
        return self.database[collection_name].find_one(filter_dict) is not None

    def update_document(self, collection_name: str, doc_id: str, update: Dict[str, Any]) -> bool:
        update = {**update, "updated_at": now_utc()}
        try:
            res = self.database[collection_name].update_one(id_filter(doc_id), {"$set": update})
        except PyMongoError as e:
            logger.error("Update of %s/%s failed: %s", collection_name, doc_id, e)
            raise translate_store_error(e) from e
        if res.matched_count:
            self.hub.notify(collection_name)
        return res.matched_count > 0

    def subscribe(
        self,
        collection_name: str,
        filter_dict: Dict[str, Any],
        sort: SortSpec,
        on_snapshot,
        on_error=None,
    ) -> Subscription:
        return self.hub.subscribe(
            collection_name,
            lambda: self.get_documents(collection_name, filter_dict, sort),
            on_snapshot,
            on_error,
        )

    def ensure_indexes(self, enforce_unique_active: bool = False) -> None:
        self.database["user"].create_index([("email", ASCENDING)], unique=True, sparse=True)
        self.database["message"].create_index([("participants", ASCENDING), ("timestamp", ASCENDING)])
        self.database["message"].create_index(
            [("senderId", ASCENDING), ("receiverId", ASCENDING), ("timestamp", ASCENDING)]
        )
        self.database["teamconnection"].create_index(
            [("fromUserId", ASCENDING), ("toUserId", ASCENDING), ("status", ASCENDING)]
        )
        if enforce_unique_active:
            # one active request per ordered pair; terminal records carry active=False
            self.database["teamconnection"].create_index(
                [("fromUserId", ASCENDING), ("toUserId", ASCENDING)],
                unique=True,
                partialFilterExpression={"active": True},
                name="unique_active_connection",
            )


db = None
store: Optional[DocumentStore] = None

if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]
    store = DocumentStore(db)
