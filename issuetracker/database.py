"""
Storage client for the partitioned document store.

Opens (creating when needed) the database and its three collections, each
with a partition key declared up front as a unique ``(partitionKey, id)``
index. The declaration is fixed once the collection exists; changing it
means recreating the collection.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from pymongo import ASCENDING, MongoClient
from pymongo.errors import CollectionInvalid, PyMongoError

from .config import Settings, get_settings
from .errors import StoreUnavailableError
from .identity import (
    ISSUES_PARTITION_PATH,
    PROJECTS_PARTITION_PATH,
    USERS_PARTITION_PATH,
    field_for_path,
)

logger = logging.getLogger(__name__)

PARTITION_INDEX_NAME = "partition_id"


@dataclass(frozen=True)
class Container:
    """A live collection handle plus its declared partition-key path."""

    name: str
    partition_key_path: str
    collection: Any

    @property
    def partition_key_field(self) -> str:
        return field_for_path(self.partition_key_path)


@dataclass(frozen=True)
class Containers:
    database_name: str
    users: Container
    projects: Container
    issues: Container

    def describe(self) -> Dict[str, Any]:
        return {
            "database": self.database_name,
            "collections": [
                {"name": c.name, "partitionKey": c.partition_key_path}
                for c in (self.users, self.projects, self.issues)
            ],
        }


def ensure_container(database, name: str, partition_key_path: str) -> Container:
    """Create ``name`` if missing and declare its partition key."""
    if name not in database.list_collection_names():
        try:
            database.create_collection(name)
            logger.info("Created collection: %s", name)
        except CollectionInvalid:
            # Another process created it between the listing and the create.
            pass
    collection = database[name]
    field = field_for_path(partition_key_path)
    collection.create_index(
        [(field, ASCENDING), ("id", ASCENDING)],
        unique=True,
        name=PARTITION_INDEX_NAME,
    )
    return Container(name=name, partition_key_path=partition_key_path, collection=collection)


def build_containers(database, settings: Settings) -> Containers:
    return Containers(
        database_name=settings.database_name,
        users=ensure_container(database, settings.users_collection, USERS_PARTITION_PATH),
        projects=ensure_container(database, settings.projects_collection, PROJECTS_PARTITION_PATH),
        issues=ensure_container(database, settings.issues_collection, ISSUES_PARTITION_PATH),
    )


class StorageClient:
    """Connects to MongoDB and hands out collection handles."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._client: Optional[MongoClient] = None
        self._containers: Optional[Containers] = None

    def connect(self) -> Containers:
        """Idempotent; any failure is raised as ``StoreUnavailableError``."""
        if self._containers is not None:
            return self._containers
        s = self.settings
        try:
            client = MongoClient(
                s.database_url,
                tz_aware=True,
                timeoutMS=s.store_timeout_ms,
                serverSelectionTimeoutMS=s.store_connect_timeout_ms,
                connectTimeoutMS=s.store_connect_timeout_ms,
            )
            client.admin.command("ping")
            database = client[s.database_name]
            logger.info("Using database: %s", s.database_name)
            containers = build_containers(database, s)
        except PyMongoError as e:
            raise StoreUnavailableError(f"Could not open database {s.database_name}: {e}") from e
        self._client = client
        self._containers = containers
        return containers

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
        self._client = None
        self._containers = None
