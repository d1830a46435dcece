"""FastAPI server exposing the query service over JSON-RPC.

Endpoints:
- GET /health
- POST /rpc (JSON-RPC 2.0)
"""

import inspect
import logging
from collections.abc import Callable
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pydantic import ValidationError as ModelValidationError

from querydesk.config import get_settings
from querydesk.errors import BackendError, PermissionDeniedError, ValidationError
from querydesk.service import QueryDeskService, create_service
from querydesk_models import ParameterValue, TableMeta

logger = logging.getLogger(__name__)

INVALID_PARAMS = -32602
METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603
PERMISSION_DENIED = -32001
BACKEND_ERROR = -32002


class JSONRPCRequest(BaseModel):
    """JSON-RPC 2.0 request."""

    jsonrpc: str = "2.0"
    method: str
    params: dict[str, Any] | list[Any] | None = None
    id: str | int | None = None


class JSONRPCError(BaseModel):
    """JSON-RPC 2.0 error."""

    code: int
    message: str
    data: Any | None = None


class JSONRPCResponse(BaseModel):
    """JSON-RPC 2.0 response."""

    jsonrpc: str = "2.0"
    result: Any | None = None
    error: JSONRPCError | None = None
    id: str | int | None = None


# ---------------------------------------------------------------------------
# Method handlers (parameter names follow the wire format)
# ---------------------------------------------------------------------------


def _run_query(service: QueryDeskService, query: str) -> dict:
    return service.run_query(query).to_dict()


def _run_template_query(
    service: QueryDeskService, templateQuery: str, parameters: list[dict] | None = None
) -> dict:
    values = [ParameterValue.model_validate(p) for p in parameters or []]
    return service.run_template_query(templateQuery, values).to_dict()


def _update_permission_mode(service: QueryDeskService, mode: str) -> bool:
    return service.update_permission_mode(mode)


def _invalidate_schema_cache(service: QueryDeskService) -> bool:
    return service.invalidate_schema_cache()


def _schema_version(service: QueryDeskService) -> dict:
    return service.schema_version().model_dump(mode="json", by_alias=True)


def _schema_with_data(
    service: QueryDeskService,
    tableSearch: str | None = None,
    columnSearch: str | None = None,
    limit: int | None = None,
) -> list[dict]:
    tables = service.schema_with_data(tableSearch, columnSearch, limit)
    return [t.model_dump(mode="json", by_alias=True) for t in tables]


def _generate_sql(
    service: QueryDeskService,
    naturalLanguage: str,
    schema: list[dict] | None = None,
    dialect: str | None = None,
) -> dict:
    tables = [TableMeta.model_validate(t) for t in schema] if schema is not None else None
    return service.generate_sql_from_natural_language(naturalLanguage, tables, dialect).model_dump()


def _complete(service: QueryDeskService, text: str, cursorOffset: int) -> list[dict]:
    return [s.model_dump(mode="json", by_alias=True) for s in service.complete(text, cursorOffset)]


METHODS: dict[str, Callable[..., Any]] = {
    "runQuery": _run_query,
    "runTemplateQuery": _run_template_query,
    "updatePermissionMode": _update_permission_mode,
    "invalidateSchemaCache": _invalidate_schema_cache,
    "schemaVersion": _schema_version,
    "schemaWithData": _schema_with_data,
    "generateSqlFromNaturalLanguage": _generate_sql,
    "complete": _complete,
}


def _error_response(
    request_id: str | int | None, code: int, message: str, status_code: int
) -> JSONResponse:
    return JSONResponse(
        content=JSONRPCResponse(
            error=JSONRPCError(code=code, message=message),
            id=request_id,
        ).model_dump(),
        status_code=status_code,
    )


def bind_params(
    service: QueryDeskService, method: str, params: dict | list | None
) -> inspect.BoundArguments:
    """Bind JSON-RPC params to a method handler.

    Raises:
        KeyError: Unknown method
        TypeError: Params don't fit the method's signature
    """
    handler = METHODS[method]
    args: list[Any] = params if isinstance(params, list) else []
    kwargs: dict[str, Any] = params if isinstance(params, dict) else {}
    return inspect.signature(handler).bind(service, *args, **kwargs)


def create_app(service: QueryDeskService | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        service: Service to expose. If None, one is created from settings at
            startup and closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = service is None
        app.state.service = service if service is not None else create_service()
        logger.info(
            "querydesk server ready (dialect=%s, mode=%s)",
            app.state.service.adapter.dialect,
            app.state.service.permission_mode().value,
        )
        yield
        if owned:
            logger.info("Shutting down querydesk server")
            app.state.service.close()

    app = FastAPI(
        title="querydesk",
        description="SQL completion, schema browsing and permission-gated execution",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_settings().cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health_check(request: Request) -> dict[str, str]:
        """Health check endpoint."""
        from importlib.metadata import version as pkg_version

        try:
            ver = pkg_version("querydesk")
        except Exception:
            ver = "dev"
        svc: QueryDeskService = request.app.state.service
        return {
            "status": "healthy",
            "service": "querydesk",
            "version": ver,
            "dialect": svc.adapter.dialect,
            "permissionMode": svc.permission_mode().value,
        }

    @app.post("/rpc")
    async def rpc_handler(rpc: JSONRPCRequest, request: Request) -> JSONResponse:
        """Handle JSON-RPC requests."""
        svc: QueryDeskService = request.app.state.service

        if rpc.method not in METHODS:
            return _error_response(rpc.id, METHOD_NOT_FOUND, f"Method not found: {rpc.method}", 404)

        try:
            bound = bind_params(svc, rpc.method, rpc.params)
        except TypeError as e:
            return _error_response(rpc.id, INVALID_PARAMS, f"Invalid params: {e}", 400)

        handler = METHODS[rpc.method]
        try:
            result = await run_in_threadpool(handler, *bound.args, **bound.kwargs)
        except (ValidationError, ModelValidationError) as e:
            return _error_response(rpc.id, INVALID_PARAMS, str(e), 400)
        except PermissionDeniedError as e:
            return _error_response(rpc.id, PERMISSION_DENIED, str(e), 403)
        except BackendError as e:
            return _error_response(rpc.id, BACKEND_ERROR, str(e), 502)
        except Exception as e:
            logger.exception("RPC handler error: %s", e)
            return _error_response(rpc.id, INTERNAL_ERROR, f"Internal error: {e}", 500)

        return JSONResponse(content=JSONRPCResponse(result=result, id=rpc.id).model_dump())

    return app


def start_server(host: str | None = None, port: int | None = None, log_level: str = "INFO") -> None:
    """Start the HTTP server.

    Args:
        host: Host to bind to (default: from settings)
        port: Port to listen on (default: from settings)
        log_level: Root logging level
    """
    import uvicorn

    settings = get_settings()
    host = host or settings.server_host
    port = port or settings.server_port

    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    logger.info("Starting querydesk server on %s:%s", host, port)
    uvicorn.run(
        "querydesk.server:create_app",
        host=host,
        port=port,
        factory=True,
        reload=False,
        workers=1,
    )


if __name__ == "__main__":
    start_server()
