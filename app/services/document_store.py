"""Document store adapter: CRUD over achievement documents in MongoDB.

The adapter knows nothing about status or ownership rules. Driver failures
are logged with their original text and surfaced as ``StoreUnavailable``.
"""
import logging
from contextlib import contextmanager
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Iterator, Protocol

from bson import ObjectId
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from app.core.errors import StoreUnavailable
from app.schemas.achievement import AchievementDocument, Attachment

logger = logging.getLogger(__name__)


class DocumentStore(Protocol):
    def insert(self, document: AchievementDocument) -> str: ...

    def get(self, document_id: str, include_deleted: bool = False) -> AchievementDocument | None: ...

    def update(self, document_id: str, fields: dict[str, Any]) -> bool: ...

    def append_attachment(self, document_id: str, attachment: Attachment) -> bool: ...

    def soft_delete(self, document_id: str, deleted_at: datetime) -> bool: ...

    def delete(self, document_id: str) -> bool: ...

    def ping(self) -> bool: ...


def to_mongo(document: AchievementDocument) -> dict[str, Any]:
    data = document.model_dump(exclude={"document_id"})
    data["type"] = document.type.value
    # BSON has no date-only type.
    data["achieved_date"] = document.achieved_date.isoformat() if document.achieved_date else None
    return data


def from_mongo(data: dict[str, Any]) -> AchievementDocument:
    data = dict(data)
    data["document_id"] = str(data.pop("_id"))
    return AchievementDocument.model_validate(data)


def _encode_field(value: Any) -> Any:
    if hasattr(value, "model_dump"):
        return value.model_dump()
    if isinstance(value, date) and not isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, list):
        return [_encode_field(item) for item in value]
    if isinstance(value, Enum):
        return value.value
    return value


class MongoDocumentStore:
    def __init__(self, collection: Collection):
        self._collection = collection

    @contextmanager
    def _guard(self, operation: str, document_id: str | None = None) -> Iterator[None]:
        try:
            yield
        except PyMongoError:
            logger.exception("Document store %s failed (document_id=%s)", operation, document_id)
            raise StoreUnavailable("Achievement document store is unavailable") from None

    @staticmethod
    def _object_id(document_id: str) -> ObjectId | None:
        if not ObjectId.is_valid(document_id):
            return None
        return ObjectId(document_id)

    def insert(self, document: AchievementDocument) -> str:
        with self._guard("insert"):
            result = self._collection.insert_one(to_mongo(document))
        return str(result.inserted_id)

    def get(self, document_id: str, include_deleted: bool = False) -> AchievementDocument | None:
        oid = self._object_id(document_id)
        if oid is None:
            return None
        query: dict[str, Any] = {"_id": oid}
        if not include_deleted:
            query["soft_deleted"] = False
        with self._guard("get", document_id):
            data = self._collection.find_one(query)
        return from_mongo(data) if data else None

    def update(self, document_id: str, fields: dict[str, Any]) -> bool:
        oid = self._object_id(document_id)
        if oid is None:
            return False
        changes = {key: _encode_field(value) for key, value in fields.items()}
        changes["updated_at"] = datetime.now(timezone.utc)
        with self._guard("update", document_id):
            result = self._collection.update_one({"_id": oid, "soft_deleted": False}, {"$set": changes})
        return result.matched_count == 1

    def append_attachment(self, document_id: str, attachment: Attachment) -> bool:
        oid = self._object_id(document_id)
        if oid is None:
            return False
        with self._guard("append_attachment", document_id):
            result = self._collection.update_one(
                {"_id": oid, "soft_deleted": False},
                {
                    "$push": {"attachments": attachment.model_dump()},
                    "$set": {"updated_at": datetime.now(timezone.utc)},
                },
            )
        return result.matched_count == 1

    def soft_delete(self, document_id: str, deleted_at: datetime) -> bool:
        oid = self._object_id(document_id)
        if oid is None:
            return False
        with self._guard("soft_delete", document_id):
            result = self._collection.update_one(
                {"_id": oid},
                {"$set": {"soft_deleted": True, "deleted_at": deleted_at, "updated_at": deleted_at}},
            )
        return result.matched_count == 1

    def delete(self, document_id: str) -> bool:
        oid = self._object_id(document_id)
        if oid is None:
            return False
        with self._guard("delete", document_id):
            result = self._collection.delete_one({"_id": oid})
        return result.deleted_count == 1

    def ping(self) -> bool:
        with self._guard("ping"):
            self._collection.database.client.admin.command("ping")
        return True
