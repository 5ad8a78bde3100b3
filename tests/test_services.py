import pytest

from issuetracker.errors import ConflictError, InvalidCredentialsError, NotFoundError
from issuetracker.repositories import UsersRepository
from issuetracker.security import decode_token, verify_password
from issuetracker.services import normalize_email, now_utc

PROJECT = {"title": "A", "description": "d", "priority": ""}
ISSUE = {"title": "t", "description": "d", "priority": "low"}


def test_now_utc_has_millisecond_precision():
    assert now_utc().microsecond % 1000 == 0
    assert now_utc().tzinfo is not None


def test_normalize_email():
    assert normalize_email("  Alice@Example.COM ") == "alice@example.com"


# -----------------------------
# Users
# -----------------------------
def test_register_normalizes_email_and_hashes_password(services, settings):
    result = services.users.register("Alice", "Liddell", " Alice@Example.com ", "correct horse")
    user = result.user
    assert user["email"] == "alice@example.com"
    assert user["id"] == user["userId"]
    assert user["type"] == "User"
    assert user["lastLoginOn"] is None
    assert "password" not in user
    assert verify_password("correct horse", user["passwordHash"])
    assert decode_token(result.token, settings)["userId"] == user["userId"]
    assert services.users.get_by_id(user["userId"]) == user


def test_register_duplicate_email_conflicts(services, containers):
    services.users.register("Alice", "Liddell", "alice@example.com", "correct horse")
    with pytest.raises(ConflictError) as exc:
        services.users.register("Other", "Alice", "ALICE@example.com ", "another pass")
    assert exc.value.context == {"email": "alice@example.com"}
    assert len(UsersRepository(containers.users).query(email="alice@example.com")) == 1


def test_login_stamps_last_login(services, clock):
    registered = services.users.register("Alice", "Liddell", "alice@example.com", "correct horse").user
    result = services.users.login("ALICE@example.com", "correct horse")
    assert result.user["lastLoginOn"] > registered["registeredOn"]
    assert services.users.get_by_id(registered["userId"])["lastLoginOn"] == result.user["lastLoginOn"]


@pytest.mark.parametrize("email,password", [("alice@example.com", "wrong"), ("bob@example.com", "correct horse")])
def test_login_rejects_bad_credentials(services, email, password):
    services.users.register("Alice", "Liddell", "alice@example.com", "correct horse")
    with pytest.raises(InvalidCredentialsError):
        services.users.login(email, password)


def test_update_merges_and_rehashes_password(services):
    user = services.users.register("Alice", "Liddell", "alice@example.com", "correct horse").user
    updated = services.users.update(user["userId"], {"givenName": "Al", "password": "new password"}).user
    assert updated["givenName"] == "Al"
    assert updated["familyName"] == "Liddell"
    assert updated["registeredOn"] == user["registeredOn"]
    assert verify_password("new password", updated["passwordHash"])
    services.users.login("alice@example.com", "new password")


def test_update_email_checks_uniqueness_excluding_self(services):
    alice = services.users.register("Alice", "Liddell", "alice@example.com", "correct horse").user
    services.users.register("Bob", "Builder", "bob@example.com", "correct horse")

    same = services.users.update(alice["userId"], {"email": " ALICE@example.com"}).user
    assert same["email"] == "alice@example.com"

    with pytest.raises(ConflictError):
        services.users.update(alice["userId"], {"email": "Bob@example.com"})

    moved = services.users.update(alice["userId"], {"email": "alice@new.example.com"}).user
    assert services.users.get_by_email("ALICE@new.example.com")["userId"] == moved["userId"]


def test_update_cannot_touch_identity(services):
    user = services.users.register("Alice", "Liddell", "alice@example.com", "correct horse").user
    updated = services.users.update(user["userId"], {"userId": "x", "type": "Project"}).user
    assert updated["userId"] == user["userId"]
    assert updated["type"] == "User"


def test_update_unknown_user(services):
    with pytest.raises(NotFoundError):
        services.users.update("missing", {"givenName": "x"})


# -----------------------------
# Projects
# -----------------------------
def test_project_roundtrip(services, actor):
    project = services.projects.add(PROJECT, actor)
    assert project["type"] == "Project"
    assert project["id"] == project["projectId"]
    assert project["createdBy"] == {"userId": "user-1", "email": "owner@example.com"}
    assert "lastUpdatedOn" not in project
    assert services.projects.get(project["projectId"]) == project


def test_project_partial_update_keeps_other_fields(services, actor):
    project = services.projects.add(PROJECT, actor)
    updated = services.projects.update(project["projectId"], {"title": "B", "projectId": "hijack"}, actor)
    stored = services.projects.get(project["projectId"])
    assert stored == updated
    assert stored["title"] == "B"
    assert stored["description"] == "d"
    assert stored["createdOn"] == project["createdOn"]
    assert stored["projectId"] == project["projectId"]
    assert stored["lastUpdatedBy"] == actor.stamp()
    assert stored["lastUpdatedOn"] > stored["createdOn"]


def test_project_remove(services, actor):
    project = services.projects.add(PROJECT, actor)
    services.projects.remove(project["projectId"])
    with pytest.raises(NotFoundError):
        services.projects.get(project["projectId"])
    with pytest.raises(NotFoundError):
        services.projects.remove(project["projectId"])


# -----------------------------
# Issues
# -----------------------------
def test_issue_scenario(services, actor):
    project = services.projects.add(PROJECT, actor)
    pid = project["projectId"]
    issue = services.issues.add(pid, ISSUE, actor)

    assert issue["projectId"] == pid
    assert issue["type"] == "Issue"
    assert issue["id"] == issue["issueId"]
    assert issue["_partitionKey"] == f"{pid};{issue['issueId']}"
    assert services.issues.get(pid, issue["issueId"]) == issue

    services.issues.remove(pid, issue["issueId"])
    with pytest.raises(NotFoundError) as exc:
        services.issues.get(pid, issue["issueId"])
    assert exc.value.key == issue["issueId"]


def test_issue_requires_existing_project(services, actor):
    with pytest.raises(NotFoundError) as exc:
        services.issues.add("nope", ISSUE, actor)
    assert exc.value.entity == "Project"


def test_deleting_project_does_not_cascade(services, actor):
    pid = services.projects.add(PROJECT, actor)["projectId"]
    issue = services.issues.add(pid, ISSUE, actor)
    services.projects.remove(pid)

    assert services.issues.get(pid, issue["issueId"]) == issue
    with pytest.raises(NotFoundError):
        services.issues.add(pid, ISSUE, actor)


def test_issue_lookup_is_scoped_to_project(services, actor):
    p1 = services.projects.add(PROJECT, actor)["projectId"]
    p2 = services.projects.add(PROJECT, actor)["projectId"]
    issue = services.issues.add(p1, ISSUE, actor)
    with pytest.raises(NotFoundError):
        services.issues.get(p2, issue["issueId"])
    with pytest.raises(NotFoundError):
        services.issues.update(p2, issue["issueId"], {"title": "x"}, actor)
    with pytest.raises(NotFoundError):
        services.issues.remove(p2, issue["issueId"])


def test_issue_update_merges(services, actor):
    pid = services.projects.add(PROJECT, actor)["projectId"]
    issue = services.issues.add(pid, ISSUE, actor)
    updated = services.issues.update(pid, issue["issueId"], {"priority": "high", "_partitionKey": "x"}, actor)
    assert updated["priority"] == "high"
    assert updated["title"] == "t"
    assert updated["_partitionKey"] == issue["_partitionKey"]
    assert services.issues.get(pid, issue["issueId"]) == updated


def test_issue_lists(services, actor):
    p1 = services.projects.add(PROJECT, actor)["projectId"]
    p2 = services.projects.add(PROJECT, actor)["projectId"]
    first = services.issues.add(p1, ISSUE, actor)
    services.issues.add(p2, ISSUE, actor)
    last = services.issues.add(p1, ISSUE, actor)

    assert [i["issueId"] for i in services.issues.list_for_project(p1)] == [last["issueId"], first["issueId"]]
    assert len(services.issues.list_all()) == 3
    with pytest.raises(NotFoundError):
        services.issues.list_for_project("nope")


# -----------------------------
# Comments
# -----------------------------
def test_comments_are_scoped_and_chronological(services, actor):
    pid = services.projects.add(PROJECT, actor)["projectId"]
    issue = services.issues.add(pid, ISSUE, actor)
    other = services.issues.add(pid, ISSUE, actor)

    c1 = services.comments.add(pid, issue["issueId"], "  first ", actor)
    services.comments.add(pid, other["issueId"], "elsewhere", actor)
    c2 = services.comments.add(pid, issue["issueId"], "second", actor)

    assert c1["text"] == "first"
    assert c1["type"] == "Comment"
    assert c1["_partitionKey"] == issue["_partitionKey"]
    assert c1["createdBy"] == actor.stamp()

    listed = services.comments.list_for_issue(pid, issue["issueId"])
    assert listed == [c1, c2]
    assert all(c["type"] == "Comment" for c in services.comments.list_all())
    assert len(services.comments.list_all()) == 3
    # comments never show up as issues
    assert len(services.issues.list_for_project(pid)) == 2


def test_comment_requires_existing_issue(services, actor):
    pid = services.projects.add(PROJECT, actor)["projectId"]
    with pytest.raises(NotFoundError) as exc:
        services.comments.add(pid, "missing", "hello", actor)
    assert exc.value.entity == "Issue"
