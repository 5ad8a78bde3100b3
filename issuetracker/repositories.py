"""
Repository operations over a partitioned collection.

A ``Repository`` is bound to one ``Container`` and optionally to a document
kind. The Issues collection holds both Issue and Comment documents, so its
two repositories each inject their ``type`` into every filter instead of
trusting the collection boundary.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple

from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError

from .database import Container
from .errors import ConflictError, NotFoundError
from .identity import DocType

OrderBy = Sequence[Tuple[str, int]]

_NO_STORE_ID = {"_id": False}


class Repository:
    entity = "Item"

    def __init__(self, container: Container, kind: Optional[str] = None):
        self.container = container
        self.kind = kind

    @property
    def collection(self):
        return self.container.collection

    def _filter(self, **equals: Any) -> Dict[str, Any]:
        criteria = dict(equals)
        if self.kind is not None:
            criteria["type"] = self.kind
        return criteria

    def _point(self, id: str, partition_key: str) -> Dict[str, Any]:
        return self._filter(**{"id": id, self.container.partition_key_field: partition_key})

    def get_all(self, order_by: Optional[OrderBy] = None) -> List[Dict[str, Any]]:
        """Full scan of the collection (or of this kind). Unbounded."""
        return self.query(order_by=order_by)

    def query(self, order_by: Optional[OrderBy] = None, **equals: Any) -> List[Dict[str, Any]]:
        """Equality predicates combined with AND."""
        criteria = self._filter(**equals)
        cursor = self.collection.find(criteria, _NO_STORE_ID, sort=list(order_by) if order_by else None)
        return list(cursor)

    def get_by_id(self, id: str, partition_key: str) -> Optional[Dict[str, Any]]:
        return self.collection.find_one(self._point(id, partition_key), _NO_STORE_ID)

    def add(self, item: Dict[str, Any]) -> Dict[str, Any]:
        if self.kind is not None and item.get("type") != self.kind:
            raise ValueError(f"Expected a {self.kind} document, got type={item.get('type')!r}")
        try:
            # insert_one stamps _id onto the dict it is given
            self.collection.insert_one(dict(item))
        except DuplicateKeyError as e:
            raise ConflictError(f"{self.entity} already exists.", id=item.get("id")) from e
        return item

    def replace(self, id: str, partition_key: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """Overwrite the whole stored document with ``body``."""
        pk_field = self.container.partition_key_field
        if body.get("id") != id or body.get(pk_field) != partition_key:
            raise ValueError("Replacement body must keep the document's id and partition key")
        result = self.collection.replace_one(self._point(id, partition_key), dict(body))
        if result.matched_count == 0:
            raise NotFoundError(self.entity, id)
        return body

    def remove(self, id: str, partition_key: str) -> None:
        result = self.collection.delete_one(self._point(id, partition_key))
        if result.deleted_count == 0:
            raise NotFoundError(self.entity, id)


class UsersRepository(Repository):
    entity = "User"

    def __init__(self, container: Container):
        super().__init__(container, DocType.USER)

    def list(self) -> List[Dict[str, Any]]:
        return self.get_all(order_by=[("email", ASCENDING)])

    def get_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        """Exact match on the stored value; callers normalize."""
        matches = self.query(email=email)
        return matches[0] if matches else None


class ProjectsRepository(Repository):
    entity = "Project"

    def __init__(self, container: Container):
        super().__init__(container, DocType.PROJECT)

    def list(self) -> List[Dict[str, Any]]:
        return self.get_all(order_by=[("title", ASCENDING)])


class IssuesRepository(Repository):
    entity = "Issue"

    def __init__(self, container: Container):
        super().__init__(container, DocType.ISSUE)

    def list(self) -> List[Dict[str, Any]]:
        return self.get_all(order_by=[("createdOn", DESCENDING)])

    def list_for_project(self, project_id: str) -> List[Dict[str, Any]]:
        # Each issue has its own partition, so this is a cross-partition scan.
        return self.query(order_by=[("createdOn", DESCENDING)], projectId=project_id)


class CommentsRepository(Repository):
    entity = "Comment"

    def __init__(self, container: Container):
        super().__init__(container, DocType.COMMENT)

    def list(self) -> List[Dict[str, Any]]:
        return self.get_all(order_by=[("createdOn", ASCENDING)])

    def list_for_issue(self, project_id: str, issue_id: str) -> List[Dict[str, Any]]:
        return self.query(order_by=[("createdOn", ASCENDING)], projectId=project_id, issueId=issue_id)
