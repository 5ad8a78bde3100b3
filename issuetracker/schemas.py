"""
Document and request schemas for the issue tracker.

The document models fix the persisted field names (camelCase, plus
``_partitionKey`` on the Issues collection). Build them with Python field
names and dump with ``to_document()`` to get what is stored.
"""
from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


class Document(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class Actor(BaseModel):
    """The user a change is stamped with."""
    user_id: str = Field(..., alias="userId")
    email: str

    model_config = ConfigDict(populate_by_name=True)

    def stamp(self) -> Dict[str, str]:
        return {"userId": self.user_id, "email": self.email}


# Users
class User(Document):
    user_id: str = Field(..., alias="userId")
    given_name: str = Field(..., alias="givenName")
    family_name: str = Field(..., alias="familyName")
    email: str
    password_hash: str = Field(..., alias="passwordHash")
    type: Literal["User"] = "User"
    registered_on: datetime = Field(..., alias="registeredOn")
    last_login_on: Optional[datetime] = Field(None, alias="lastLoginOn")

    def to_document(self) -> Dict[str, Any]:
        # lastLoginOn is stored as null until the first login
        return self.model_dump(by_alias=True)


# Projects
class Project(Document):
    project_id: str = Field(..., alias="projectId")
    type: Literal["Project"] = "Project"
    title: str
    description: str
    priority: str = ""
    created_on: datetime = Field(..., alias="createdOn")
    created_by: Dict[str, str] = Field(..., alias="createdBy")


# Issues share one collection with their comments
class Issue(Document):
    issue_id: str = Field(..., alias="issueId")
    project_id: str = Field(..., alias="projectId")
    type: Literal["Issue"] = "Issue"
    partition_key: str = Field(..., alias="_partitionKey")
    title: str
    description: str
    priority: str = ""
    created_on: datetime = Field(..., alias="createdOn")
    created_by: Dict[str, str] = Field(..., alias="createdBy")


class Comment(Document):
    issue_id: str = Field(..., alias="issueId")
    project_id: str = Field(..., alias="projectId")
    type: Literal["Comment"] = "Comment"
    partition_key: str = Field(..., alias="_partitionKey")
    text: str
    created_on: datetime = Field(..., alias="createdOn")
    created_by: Dict[str, str] = Field(..., alias="createdBy")


# -----------------------------
# Request bodies
# -----------------------------
class RegisterRequest(BaseModel):
    givenName: str = Field(..., min_length=1)
    familyName: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=8)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class UserUpdate(BaseModel):
    givenName: Optional[str] = Field(None, min_length=1)
    familyName: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=8)


class ProjectCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: str
    priority: str = ""


class ProjectUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    priority: Optional[str] = None


class IssueCreate(ProjectCreate):
    pass


class IssueUpdate(ProjectUpdate):
    pass


class CommentCreate(BaseModel):
    text: str

    @field_validator("text")
    @classmethod
    def _strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("text must not be blank")
        return v
