"""
MongoDB connection helpers

`db` is None when DATABASE_URL / DATABASE_NAME are not set; callers are
expected to check before touching it.
"""
import os
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from dotenv import load_dotenv
from pymongo import MongoClient

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

client: Optional[MongoClient] = None
db = None

if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]
else:
    logger.warning("DATABASE_URL or DATABASE_NAME not set, running without a database")


def create_document(collection_name: str, data, session=None) -> str:
    """Insert a document (dict or pydantic model) and return its id as a string."""
    if db is None:
        raise RuntimeError("Database not configured")
    if hasattr(data, "model_dump"):
        data_dict = data.model_dump(mode="json")
    else:
        data_dict = dict(data)
    now = datetime.now(timezone.utc)
    data_dict.setdefault("created_at", now)
    data_dict.setdefault("updated_at", now)
    result = db[collection_name].insert_one(data_dict, session=session)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None):
    if db is None:
        raise RuntimeError("Database not configured")
    cursor = db[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


@contextmanager
def transaction():
    """Yield a session with an open transaction; commits on exit, aborts on error.

    Requires a replica set or sharded cluster, standalone servers reject
    multi-document transactions.
    """
    if client is None:
        raise RuntimeError("Database not configured")
    with client.start_session() as session:
        with session.start_transaction():
            yield session
