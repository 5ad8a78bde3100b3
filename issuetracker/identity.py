"""
Identity and partition scheme.

Every point read, write and delete is addressed by ``(id, partition_key)``.
Users and Projects are their own partitions. An Issue lives in the
composite partition ``projectId;issueId`` and its Comments share it, so an
issue and its discussion can be scanned from one partition while the
issues of one project spread across many.
"""
import secrets
from typing import NamedTuple, Tuple

PARTITION_SEPARATOR = ";"


class DocType:
    USER = "User"
    PROJECT = "Project"
    ISSUE = "Issue"
    COMMENT = "Comment"


# Partition-key paths declared when each collection is created.
USERS_PARTITION_PATH = "/userId"
PROJECTS_PARTITION_PATH = "/projectId"
ISSUES_PARTITION_PATH = "/_partitionKey"


class DocumentKey(NamedTuple):
    id: str
    partition_key: str


def new_id() -> str:
    return secrets.token_urlsafe(16)


def field_for_path(path: str) -> str:
    """``"/userId"`` -> ``"userId"``. Only top-level paths are supported."""
    field = path.lstrip("/")
    if not field or "/" in field:
        raise ValueError(f"Unsupported partition key path: {path!r}")
    return field


def issue_partition_key(project_id: str, issue_id: str) -> str:
    return f"{project_id}{PARTITION_SEPARATOR}{issue_id}"


def split_partition_key(partition_key: str) -> Tuple[str, str]:
    project_id, sep, issue_id = partition_key.partition(PARTITION_SEPARATOR)
    if not sep:
        raise ValueError(f"Not a composite partition key: {partition_key!r}")
    return project_id, issue_id


def user_key(user_id: str) -> DocumentKey:
    return DocumentKey(user_id, user_id)


def project_key(project_id: str) -> DocumentKey:
    return DocumentKey(project_id, project_id)


def issue_key(project_id: str, issue_id: str) -> DocumentKey:
    return DocumentKey(issue_id, issue_partition_key(project_id, issue_id))


def comment_key(project_id: str, issue_id: str, comment_id: str) -> DocumentKey:
    # Comments reuse the parent issue's partition.
    return DocumentKey(comment_id, issue_partition_key(project_id, issue_id))
