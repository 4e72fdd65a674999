from pymongo import MongoClient
from pymongo.collection import Collection

from app.core.config import settings


def create_mongo_client(uri: str | None = None) -> MongoClient:
    # MongoClient connects lazily; nothing is sent until the first operation.
    return MongoClient(
        uri or settings.MONGO_URI,
        serverSelectionTimeoutMS=settings.MONGO_TIMEOUT_MS,
        tz_aware=True,
    )


def get_achievements_collection(client: MongoClient) -> Collection:
    return client[settings.MONGO_DB_NAME][settings.MONGO_COLLECTION]
