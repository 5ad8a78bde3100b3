"""
Domain services for users, projects, issues and comments.

Services own the domain rules that the store cannot enforce: email
uniqueness (checked before insert), parent existence before nested writes,
and audit stamping. Updates are read-modify-write: the stored document is
read, the caller's changes are merged over it, and the whole document is
written back with ``Repository.replace``.

Existence checks are not atomic with the write that follows them. A parent
deleted between the check and the write leaves an orphan; two registrations
racing on one email can both succeed. Concurrent updates are
last-writer-wins.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .config import Settings
from .database import Containers
from .errors import ConflictError, InvalidCredentialsError, NotFoundError
from .identity import issue_key, issue_partition_key, new_id, project_key, user_key
from .repositories import CommentsRepository, IssuesRepository, ProjectsRepository, UsersRepository
from .schemas import Actor, Comment, Issue, Project, User
from .security import create_token, hash_password, verify_password

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

# Fields a caller may change through an update.
PROJECT_FIELDS = ("title", "description", "priority")
ISSUE_FIELDS = ("title", "description", "priority")
USER_FIELDS = ("givenName", "familyName", "email", "password")


def now_utc() -> datetime:
    """Current UTC time at millisecond precision, the resolution the store keeps."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _merge(document: Dict[str, Any], changes: Mapping[str, Any], allowed: Tuple[str, ...]) -> Dict[str, Any]:
    merged = dict(document)
    for key, value in changes.items():
        if key in allowed and value is not None:
            merged[key] = value
    return merged


@dataclass
class AuthResult:
    user: Dict[str, Any]
    token: str


class UserService:
    def __init__(self, repo: UsersRepository, settings: Settings, clock: Clock = now_utc):
        self.repo = repo
        self.settings = settings
        self.clock = clock

    def list(self) -> List[Dict[str, Any]]:
        return self.repo.list()

    def get_by_id(self, user_id: str) -> Dict[str, Any]:
        user = self.repo.get_by_id(*user_key(user_id))
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    def get_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return self.repo.get_by_email(normalize_email(email))

    def _issue_token(self, user: Mapping[str, Any]) -> str:
        return create_token(user, self.settings)

    def register(self, given_name: str, family_name: str, email: str, password: str) -> AuthResult:
        email = normalize_email(email)
        if self.repo.get_by_email(email) is not None:
            raise ConflictError("Email already in use.", email=email)

        user_id = new_id()
        user = User(
            id=user_id,
            user_id=user_id,
            given_name=given_name,
            family_name=family_name,
            email=email,
            password_hash=hash_password(password, self.settings.password_hash_iterations),
            registered_on=self.clock(),
        ).to_document()
        self.repo.add(user)
        logger.info("User %s registered.", user_id)
        return AuthResult(user=user, token=self._issue_token(user))

    def login(self, email: str, password: str) -> AuthResult:
        email = normalize_email(email)
        user = self.repo.get_by_email(email)
        if user is None or not verify_password(password, user.get("passwordHash", "")):
            raise InvalidCredentialsError(email)

        user = dict(user, lastLoginOn=self.clock())
        self.repo.replace(*user_key(user["userId"]), user)
        logger.info("User %s logged in.", user["userId"])
        return AuthResult(user=user, token=self._issue_token(user))

    def update(self, user_id: str, changes: Mapping[str, Any]) -> AuthResult:
        user = self.get_by_id(user_id)
        changes = {k: v for k, v in changes.items() if v is not None}

        if "email" in changes:
            changes["email"] = normalize_email(changes["email"])
            other = self.repo.get_by_email(changes["email"])
            if other is not None and other["userId"] != user_id:
                raise ConflictError("Email already in use.", email=changes["email"])

        password = changes.pop("password", None)
        user = _merge(user, changes, USER_FIELDS)
        if password is not None:
            user["passwordHash"] = hash_password(password, self.settings.password_hash_iterations)

        self.repo.replace(*user_key(user_id), user)
        logger.info("User %s updated.", user_id)
        return AuthResult(user=user, token=self._issue_token(user))


class ProjectService:
    def __init__(self, repo: ProjectsRepository, clock: Clock = now_utc):
        self.repo = repo
        self.clock = clock

    def list(self) -> List[Dict[str, Any]]:
        return self.repo.list()

    def get(self, project_id: str) -> Dict[str, Any]:
        project = self.repo.get_by_id(*project_key(project_id))
        if project is None:
            raise NotFoundError("Project", project_id)
        return project

    def add(self, data: Mapping[str, Any], actor: Actor) -> Dict[str, Any]:
        project_id = new_id()
        project = Project(
            id=project_id,
            project_id=project_id,
            title=data["title"],
            description=data["description"],
            priority=data.get("priority") or "",
            created_on=self.clock(),
            created_by=actor.stamp(),
        ).to_document()
        self.repo.add(project)
        logger.info("Project %s created.", project_id)
        return project

    def update(self, project_id: str, changes: Mapping[str, Any], actor: Actor) -> Dict[str, Any]:
        project = _merge(self.get(project_id), changes, PROJECT_FIELDS)
        project["lastUpdatedOn"] = self.clock()
        project["lastUpdatedBy"] = actor.stamp()
        self.repo.replace(*project_key(project_id), project)
        logger.info("Project %s updated.", project_id)
        return project

    def remove(self, project_id: str) -> None:
        # Issues of the project are left in place.
        self.get(project_id)
        self.repo.remove(*project_key(project_id))
        logger.info("Project %s removed.", project_id)


class IssueService:
    def __init__(self, repo: IssuesRepository, projects: ProjectService, clock: Clock = now_utc):
        self.repo = repo
        self.projects = projects
        self.clock = clock

    def list_all(self) -> List[Dict[str, Any]]:
        return self.repo.list()

    def list_for_project(self, project_id: str) -> List[Dict[str, Any]]:
        self.projects.get(project_id)
        return self.repo.list_for_project(project_id)

    def get(self, project_id: str, issue_id: str) -> Dict[str, Any]:
        issue = self.repo.get_by_id(*issue_key(project_id, issue_id))
        if issue is None:
            raise NotFoundError("Issue", issue_id)
        return issue

    def add(self, project_id: str, data: Mapping[str, Any], actor: Actor) -> Dict[str, Any]:
        self.projects.get(project_id)

        issue_id = new_id()
        issue = Issue(
            id=issue_id,
            issue_id=issue_id,
            project_id=project_id,
            partition_key=issue_partition_key(project_id, issue_id),
            title=data["title"],
            description=data["description"],
            priority=data.get("priority") or "",
            created_on=self.clock(),
            created_by=actor.stamp(),
        ).to_document()
        self.repo.add(issue)
        logger.info("Issue %s created in project %s.", issue_id, project_id)
        return issue

    def update(self, project_id: str, issue_id: str, changes: Mapping[str, Any], actor: Actor) -> Dict[str, Any]:
        issue = _merge(self.get(project_id, issue_id), changes, ISSUE_FIELDS)
        issue["lastUpdatedOn"] = self.clock()
        issue["lastUpdatedBy"] = actor.stamp()
        self.repo.replace(*issue_key(project_id, issue_id), issue)
        logger.info("Issue %s updated.", issue_id)
        return issue

    def remove(self, project_id: str, issue_id: str) -> None:
        self.get(project_id, issue_id)
        self.repo.remove(*issue_key(project_id, issue_id))
        logger.info("Issue %s removed.", issue_id)


class CommentService:
    def __init__(self, repo: CommentsRepository, issues: IssueService, clock: Clock = now_utc):
        self.repo = repo
        self.issues = issues
        self.clock = clock

    def list_all(self) -> List[Dict[str, Any]]:
        return self.repo.list()

    def list_for_issue(self, project_id: str, issue_id: str) -> List[Dict[str, Any]]:
        return self.repo.list_for_issue(project_id, issue_id)

    def add(self, project_id: str, issue_id: str, text: str, actor: Actor) -> Dict[str, Any]:
        self.issues.get(project_id, issue_id)

        comment_id = new_id()
        comment = Comment(
            id=comment_id,
            issue_id=issue_id,
            project_id=project_id,
            partition_key=issue_partition_key(project_id, issue_id),
            text=text.strip(),
            created_on=self.clock(),
            created_by=actor.stamp(),
        ).to_document()
        self.repo.add(comment)
        logger.info("Comment %s created on issue %s.", comment_id, issue_id)
        return comment


class Services:
    """Every domain service, wired to one set of storage containers."""

    def __init__(self, containers: Containers, settings: Settings, clock: Clock = now_utc):
        self.containers = containers
        self.users = UserService(UsersRepository(containers.users), settings, clock)
        self.projects = ProjectService(ProjectsRepository(containers.projects), clock)
        self.issues = IssueService(IssuesRepository(containers.issues), self.projects, clock)
        self.comments = CommentService(CommentsRepository(containers.issues), self.issues, clock)
