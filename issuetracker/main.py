import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request, Response
from fastapi.exception_handlers import http_exception_handler
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import ConnectionFailure, ExecutionTimeout
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings, get_settings
from .database import StorageClient
from .errors import ConflictError, InvalidCredentialsError, NotFoundError
from .schemas import (
    Actor,
    CommentCreate,
    IssueCreate,
    IssueUpdate,
    LoginRequest,
    ProjectCreate,
    ProjectUpdate,
    RegisterRequest,
    UserUpdate,
)
from .security import InvalidTokenError, decode_token
from .services import AuthResult, Services, now_utc

logger = logging.getLogger(__name__)

# -----------------------------
# Helpers
# -----------------------------

_PRIVATE_FIELDS = ("passwordHash",)


def serialize(doc: Dict[str, Any]) -> Dict[str, Any]:
    if not doc:
        return doc
    d = {k: v for k, v in doc.items() if k not in _PRIVATE_FIELDS}
    for k, v in list(d.items()):
        if isinstance(v, datetime):
            d[k] = v.astimezone(timezone.utc).isoformat()
    return d


def serialize_all(docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [serialize(d) for d in docs]


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def no_store(response: Response):
    response.headers["Cache-Control"] = "no-store"


def cache_reads(request: Request, response: Response, settings: Settings = Depends(get_app_settings)):
    if request.method == "GET" and settings.cache_max_age > 0:
        response.headers["Cache-Control"] = f"max-age={settings.cache_max_age}"
    else:
        response.headers["Cache-Control"] = "no-store"


# -----------------------------
# Auth utilities
# -----------------------------
def get_current_user(
    authorization: Optional[str] = Header(default=None),
    services: Services = Depends(get_services),
    settings: Settings = Depends(get_app_settings),
) -> Dict[str, Any]:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        claims = decode_token(token, settings)
    except InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")
    try:
        return services.users.get_by_id(claims["userId"])
    except NotFoundError:
        raise HTTPException(status_code=401, detail="User not found")


def get_actor(user: Dict[str, Any] = Depends(get_current_user)) -> Actor:
    return Actor(user_id=user["userId"], email=user["email"])


def _auth_response(message: str, result: AuthResult, settings: Settings) -> Dict[str, Any]:
    return {
        "message": message,
        "userId": result.user["userId"],
        "email": result.user["email"],
        "token": result.token,
        "tokenExpiresIn": settings.token_expires_in,
    }


def _profile(user: Dict[str, Any]) -> Dict[str, Any]:
    return {k: user.get(k) for k in ("userId", "email", "givenName", "familyName")}


router = APIRouter(prefix="/api")
auth_router = APIRouter(prefix="/api/auth", dependencies=[Depends(no_store)])


# -----------------------------
# Auth endpoints
# -----------------------------
@auth_router.post("/register")
def register(
    body: RegisterRequest,
    services: Services = Depends(get_services),
    settings: Settings = Depends(get_app_settings),
):
    result = services.users.register(body.givenName, body.familyName, body.email, body.password)
    return _auth_response("User registered.", result, settings)


@auth_router.post("/login")
def login(
    body: LoginRequest,
    services: Services = Depends(get_services),
    settings: Settings = Depends(get_app_settings),
):
    result = services.users.login(body.email, body.password)
    return _auth_response("User logged in.", result, settings)


@auth_router.get("/me")
def me(user=Depends(get_current_user)):
    return _profile(user)


@auth_router.put("/me")
def update_me(
    body: UserUpdate,
    user=Depends(get_current_user),
    services: Services = Depends(get_services),
    settings: Settings = Depends(get_app_settings),
):
    result = services.users.update(user["userId"], body.model_dump(exclude_unset=True))
    return _auth_response("User updated.", result, settings)


# -----------------------------
# Project endpoints
# -----------------------------
@router.get("/projects", dependencies=[Depends(cache_reads)])
def list_projects(services: Services = Depends(get_services), _user=Depends(get_current_user)):
    return serialize_all(services.projects.list())


@router.post("/projects")
def create_project(body: ProjectCreate, services: Services = Depends(get_services), actor: Actor = Depends(get_actor)):
    project = services.projects.add(body.model_dump(), actor)
    return {"message": "Project created.", "id": project["projectId"], "resource": serialize(project)}


@router.get("/projects/{project_id}", dependencies=[Depends(cache_reads)])
def get_project(project_id: str, services: Services = Depends(get_services), _user=Depends(get_current_user)):
    return serialize(services.projects.get(project_id))


@router.put("/projects/{project_id}")
def update_project(
    project_id: str,
    body: ProjectUpdate,
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    project = services.projects.update(project_id, body.model_dump(exclude_unset=True), actor)
    return {"message": "Project updated.", "id": project_id, "resource": serialize(project)}


@router.delete("/projects/{project_id}")
def delete_project(project_id: str, services: Services = Depends(get_services), _actor: Actor = Depends(get_actor)):
    services.projects.remove(project_id)
    return {"message": "Project removed.", "id": project_id}


# -----------------------------
# Issue endpoints
# -----------------------------
@router.get("/issues", dependencies=[Depends(cache_reads)])
def list_all_issues(services: Services = Depends(get_services), _user=Depends(get_current_user)):
    return serialize_all(services.issues.list_all())


@router.get("/projects/{project_id}/issues", dependencies=[Depends(cache_reads)])
def list_issues(project_id: str, services: Services = Depends(get_services), _user=Depends(get_current_user)):
    return serialize_all(services.issues.list_for_project(project_id))


@router.post("/projects/{project_id}/issues")
def create_issue(
    project_id: str,
    body: IssueCreate,
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    issue = services.issues.add(project_id, body.model_dump(), actor)
    return {"message": "Issue created.", "id": issue["issueId"], "resource": serialize(issue)}


@router.get("/projects/{project_id}/issues/{issue_id}", dependencies=[Depends(cache_reads)])
def get_issue(project_id: str, issue_id: str, services: Services = Depends(get_services), _user=Depends(get_current_user)):
    return serialize(services.issues.get(project_id, issue_id))


@router.put("/projects/{project_id}/issues/{issue_id}")
def update_issue(
    project_id: str,
    issue_id: str,
    body: IssueUpdate,
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    issue = services.issues.update(project_id, issue_id, body.model_dump(exclude_unset=True), actor)
    return {"message": "Issue updated.", "id": issue_id, "resource": serialize(issue)}


@router.delete("/projects/{project_id}/issues/{issue_id}")
def delete_issue(
    project_id: str,
    issue_id: str,
    services: Services = Depends(get_services),
    _actor: Actor = Depends(get_actor),
):
    services.issues.remove(project_id, issue_id)
    return {"message": "Issue removed.", "id": issue_id}


# -----------------------------
# Comment endpoints
# -----------------------------
@router.get("/comments", dependencies=[Depends(cache_reads)])
def list_all_comments(services: Services = Depends(get_services), _user=Depends(get_current_user)):
    return serialize_all(services.comments.list_all())


@router.get("/projects/{project_id}/issues/{issue_id}/comments", dependencies=[Depends(cache_reads)])
def list_comments(
    project_id: str,
    issue_id: str,
    services: Services = Depends(get_services),
    _user=Depends(get_current_user),
):
    return serialize_all(services.comments.list_for_issue(project_id, issue_id))


@router.post("/projects/{project_id}/issues/{issue_id}/comments")
def add_comment(
    project_id: str,
    issue_id: str,
    body: CommentCreate,
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    comment = services.comments.add(project_id, issue_id, body.text, actor)
    return {"message": "Comment created.", "id": comment["id"], "resource": serialize(comment)}


# -----------------------------
# Error mapping
# -----------------------------
def _install_error_handlers(app: FastAPI):
    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"message": str(exc), "id": exc.key})

    @app.exception_handler(ConflictError)
    async def _conflict(request: Request, exc: ConflictError):
        return JSONResponse(status_code=400, content={"message": exc.message, **exc.context})

    @app.exception_handler(InvalidCredentialsError)
    async def _bad_credentials(request: Request, exc: InvalidCredentialsError):
        return JSONResponse(status_code=400, content={"message": str(exc), "email": exc.email})

    @app.exception_handler(ConnectionFailure)
    @app.exception_handler(ExecutionTimeout)
    async def _store_unavailable(request: Request, exc: Exception):
        logger.exception("Store call failed for %s %s", request.method, request.url.path)
        return JSONResponse(status_code=503, content={"message": "Store unavailable."})

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404 and exc.detail == "Not Found":
            return JSONResponse(status_code=404, content={"message": "Route not found."})
        return await http_exception_handler(request, exc)


# -----------------------------
# App factory
# -----------------------------
def create_app(storage=None, settings: Optional[Settings] = None) -> FastAPI:
    """Build the API. ``storage`` defaults to a MongoDB ``StorageClient``."""
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    storage = storage or StorageClient(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Raises StoreUnavailableError; the server must not start without handles.
        containers = storage.connect()
        app.state.containers = containers
        app.state.services = Services(containers, settings)
        logger.info("Connected to database %s", containers.database_name)
        yield
        storage.close()

    app = FastAPI(title="Issue Tracker API", lifespan=lifespan)
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _install_error_handlers(app)
    app.include_router(auth_router)
    app.include_router(router)

    # -----------------------------
    # Health
    # -----------------------------
    @app.get("/")
    def read_root():
        return {"message": "Issue Tracker API running"}

    @app.get("/ping")
    def ping():
        return {"message": "Ping.", "now": now_utc().isoformat()}

    @app.get("/health")
    def health(request: Request):
        response = {
            "backend": "running",
            "database": None,
            "connection_status": "not connected",
            "collections": [],
        }
        containers = getattr(request.app.state, "containers", None)
        if containers is not None:
            response.update(containers.describe())
            response["connection_status"] = "connected"
        return response

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=get_settings().port)
