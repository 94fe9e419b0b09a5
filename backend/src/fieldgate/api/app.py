"""FastAPI application."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from typing import Any

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from fieldgate.actions import register_builtin_actions
from fieldgate.auth import AuthMiddleware, JWTService, Principal, get_principal
from fieldgate.config import Settings
from fieldgate.errors import AccessDeniedError, FieldgateError
from fieldgate.persistence import create_store
from fieldgate.query.translator import DEFAULT_PAGE_SIZE, QueryRequest
from fieldgate.registry import RegistryHolder
from fieldgate.services import RecordService

logger = logging.getLogger(__name__)


# --- Request models ---


class QueryBody(BaseModel):
    """Request body for the query endpoint."""

    filter: dict[str, Any] | None = None
    search: str | None = None
    sort: list[dict[str, Any]] | None = None
    limit: int | None = None
    offset: int = 0
    page: int | None = None
    pageSize: int | None = None

    def to_request(self) -> QueryRequest:
        if self.page is not None:
            return QueryRequest.from_page(
                self.page,
                self.pageSize or self.limit or DEFAULT_PAGE_SIZE,
                filter=self.filter,
                search=self.search,
                sort=self.sort or [],
            )
        return QueryRequest(
            filter=self.filter,
            search=self.search,
            sort=self.sort or [],
            offset=self.offset,
            limit=self.limit,
        )


class RecordBody(BaseModel):
    """Request body for create and update."""

    data: dict[str, Any]


class ActionBody(BaseModel):
    input: dict[str, Any] = {}


# --- Dependencies ---


def get_service(request: Request) -> RecordService:
    return request.app.state.service


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def _parse_sort(value: str | None) -> list[dict[str, Any]]:
    """Parse "-year,name" into sort items."""
    items = []
    for part in (value or "").split(","):
        part = part.strip()
        if not part:
            continue
        if part.startswith("-"):
            items.append({"field": part[1:], "direction": "desc"})
        else:
            items.append({"field": part, "direction": "asc"})
    return items


@asynccontextmanager
async def watch_disconnect(request: Request, interval: float = 0.1) -> AsyncIterator[asyncio.Event]:
    """Yield an Event that is set if the client goes away mid-request."""
    cancel = asyncio.Event()

    async def _poll() -> None:
        while not await request.is_disconnected():
            await asyncio.sleep(interval)
        cancel.set()

    task = asyncio.create_task(_poll())
    try:
        yield cancel
    finally:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the API for the given settings (default: from the environment)."""
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Load definitions and open the store on startup, close it on shutdown."""
        register_builtin_actions()

        holder = RegistryHolder(projects_path=settings.projects_path)
        registry = holder.reload()
        if registry.errors:
            logger.warning(
                "Definition loading: %d error(s). "
                "Run 'fieldgate definitions validate' for details.",
                len(registry.errors),
            )

        store = create_store(settings.database)
        store.connect()

        app.state.settings = settings
        app.state.registry = holder
        app.state.store = store
        app.state.service = RecordService(holder, store, settings)

        yield

        store.close()

    app = FastAPI(title="fieldgate API", lifespan=lifespan)

    # CORS for frontend dev server
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(
        AuthMiddleware,
        jwt_service=None if settings.auth_disabled else JWTService(settings.secret_key),
    )

    @app.exception_handler(FieldgateError)
    async def fieldgate_error_handler(request: Request, exc: FieldgateError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})

    # --- Health ---

    @app.get("/api/health")
    async def health(request: Request) -> dict[str, Any]:
        holder: RegistryHolder = request.app.state.registry
        return {"status": "ok", "generation": holder.generation}

    # --- Collection metadata ---

    @app.get("/api/projects/{project}/collections")
    async def list_collections(
        project: str,
        principal: Principal | None = Depends(get_principal),
        service: RecordService = Depends(get_service),
    ) -> dict[str, Any]:
        """Collections the caller may read."""
        collections = await service.list_collections(project, principal)
        return {
            "collections": [
                {"name": c.name, "title": c.title, "singleton": c.singleton}
                for c in collections
            ]
        }

    @app.get("/api/projects/{project}/collections/{collection}")
    async def describe_collection(
        project: str,
        collection: str,
        principal: Principal | None = Depends(get_principal),
        service: RecordService = Depends(get_service),
    ) -> dict[str, Any]:
        return await service.describe_collection(project, collection, principal)

    # --- Query ---

    @app.post("/api/projects/{project}/query/{collection}")
    async def query_records(
        project: str,
        collection: str,
        body: QueryBody,
        principal: Principal | None = Depends(get_principal),
        service: RecordService = Depends(get_service),
    ) -> dict[str, Any]:
        """Query records with filtering, search, sorting, and pagination."""
        page = await service.list_records(project, collection, principal, body.to_request())
        return page.to_dict()

    # --- CRUD ---

    @app.get("/api/projects/{project}/records/{collection}")
    async def list_records(
        project: str,
        collection: str,
        search: str | None = None,
        sort: str | None = None,
        limit: int | None = None,
        offset: int = 0,
        principal: Principal | None = Depends(get_principal),
        service: RecordService = Depends(get_service),
    ) -> dict[str, Any]:
        request = QueryRequest(search=search, sort=_parse_sort(sort), offset=offset, limit=limit)
        page = await service.list_records(project, collection, principal, request)
        return page.to_dict()

    @app.post("/api/projects/{project}/records/{collection}", status_code=201)
    async def create_record(
        project: str,
        collection: str,
        body: RecordBody,
        http_request: Request,
        principal: Principal | None = Depends(get_principal),
        service: RecordService = Depends(get_service),
    ) -> dict[str, Any]:
        async with watch_disconnect(http_request) as cancel:
            result = await service.create_record(
                project, collection, principal, body.data, cancel=cancel
            )
        return result.to_dict()

    @app.put("/api/projects/{project}/records/{collection}")
    async def update_singleton(
        project: str,
        collection: str,
        body: RecordBody,
        http_request: Request,
        principal: Principal | None = Depends(get_principal),
        service: RecordService = Depends(get_service),
    ) -> dict[str, Any]:
        """Update the sole record of a singleton collection."""
        async with watch_disconnect(http_request) as cancel:
            result = await service.update_record(
                project, collection, principal, None, body.data, cancel=cancel
            )
        return result.to_dict()

    @app.get("/api/projects/{project}/records/{collection}/{record_id}")
    async def get_record(
        project: str,
        collection: str,
        record_id: int,
        principal: Principal | None = Depends(get_principal),
        service: RecordService = Depends(get_service),
    ) -> dict[str, Any]:
        return {"data": await service.get_record(project, collection, principal, record_id)}

    @app.put("/api/projects/{project}/records/{collection}/{record_id}")
    async def update_record(
        project: str,
        collection: str,
        record_id: int,
        body: RecordBody,
        http_request: Request,
        principal: Principal | None = Depends(get_principal),
        service: RecordService = Depends(get_service),
    ) -> dict[str, Any]:
        async with watch_disconnect(http_request) as cancel:
            result = await service.update_record(
                project, collection, principal, record_id, body.data, cancel=cancel
            )
        return result.to_dict()

    @app.delete("/api/projects/{project}/records/{collection}/{record_id}")
    async def delete_record(
        project: str,
        collection: str,
        record_id: int,
        http_request: Request,
        principal: Principal | None = Depends(get_principal),
        service: RecordService = Depends(get_service),
    ) -> dict[str, Any]:
        async with watch_disconnect(http_request) as cancel:
            result = await service.delete_record(
                project, collection, principal, record_id, cancel=cancel
            )
        return {"success": True, "warnings": result.warnings}

    @app.get("/api/projects/{project}/records/{collection}/{record_id}/context")
    async def record_context(
        project: str,
        collection: str,
        record_id: int,
        principal: Principal | None = Depends(get_principal),
        service: RecordService = Depends(get_service),
    ) -> dict[str, Any]:
        """Record plus resolved relation labels, for template rendering."""
        return await service.record_context(project, collection, principal, record_id)

    @app.get("/api/projects/{project}/records/{collection}/{record_id}/snapshots")
    async def list_snapshots(
        project: str,
        collection: str,
        record_id: int,
        principal: Principal | None = Depends(get_principal),
        service: RecordService = Depends(get_service),
    ) -> dict[str, Any]:
        return {"data": await service.list_snapshots(project, collection, principal, record_id)}

    # --- Actions ---

    @app.post("/api/projects/{project}/actions/{action}")
    async def run_action(
        project: str,
        action: str,
        body: ActionBody,
        principal: Principal | None = Depends(get_principal),
        service: RecordService = Depends(get_service),
    ) -> dict[str, Any]:
        result = await service.run_action(project, action, principal, body.input)
        return result.to_dict()

    # --- Registry ---

    @app.post("/api/registry/reload")
    async def reload_registry(
        request: Request,
        principal: Principal | None = Depends(get_principal),
        app_settings: Settings = Depends(get_settings),
    ) -> dict[str, Any]:
        """Re-read every definition unit and swap the registry in."""
        if principal is None or app_settings.admin_role not in principal.roles:
            raise AccessDeniedError("Reloading definitions requires the admin role")
        holder: RegistryHolder = request.app.state.registry
        registry = holder.reload()
        return {
            "generation": registry.generation,
            "projects": sorted(registry.projects),
            "errors": [e.to_dict() for e in registry.errors],
        }

    return app
