"""
FastAPI web interface for GenBI.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .. import __version__, errors
from ..config import settings
from ..genbi import GenBI


logger = logging.getLogger(__name__)


# Pydantic models
class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConnectionTestRequest(CamelModel):
    name: Optional[str] = None
    type: Optional[str] = Field(default=None, description="sqlite, mysql or postgres")
    connection: Optional[Dict[str, Any]] = None
    connection_id: Optional[str] = Field(default=None, description="Re-test a registered connection")


class ConnectionCreateRequest(CamelModel):
    name: str = Field(..., min_length=1)
    type: str = Field(..., description="sqlite, mysql or postgres")
    connection: Dict[str, Any]


class ConnectionUpdateRequest(CamelModel):
    name: Optional[str] = None
    type: Optional[str] = None
    connection: Optional[Dict[str, Any]] = None


class QueryRequest(CamelModel):
    user_query: str = Field(..., description="Natural language question")
    connection_id: Optional[str] = None
    connection_string: Optional[str] = None


class SaveQueryRequest(CamelModel):
    name: str
    user_query: str
    sql_query: str
    connection_id: str
    results: List[Dict[str, Any]] = Field(default_factory=list)
    truncated: bool = False


class RenameQueryRequest(CamelModel):
    name: str


def success(data: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": True, "data": data})


def failure(status_code: int, error: Dict[str, Any]) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


def get_service(request: Request) -> GenBI:
    return request.app.state.service


def create_app(service: Optional[GenBI] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        service: GenBI instance to serve; one is created on startup when omitted
            and closed again on shutdown

    Returns:
        Configured FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.service is None
        if owned:
            app.state.service = GenBI()
        try:
            yield
        finally:
            if owned:
                app.state.service.close()
                app.state.service = None

    app = FastAPI(
        title="GenBI API",
        description="Natural language to SQL with chart recommendations",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(errors.GenBIError)
    async def genbi_error_handler(request: Request, exc: errors.GenBIError):
        logger.warning(f"{request.method} {request.url.path} failed: {exc.kind}: {exc.message}")
        return failure(exc.status_code, exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        fields = [".".join(str(part) for part in e.get("loc", ())) for e in exc.errors()]
        error = errors.ValidationError("Invalid request body", details={"fields": fields})
        return failure(error.status_code, error.to_dict())

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unexpected error in {request.method} {request.url.path}")
        return failure(500, {"kind": "InternalError", "message": "Internal server error", "retryable": False})

    @app.get("/")
    def root():
        """Root endpoint."""
        return {"message": "GenBI API", "version": __version__, "docs": "/docs"}

    @app.get("/health")
    def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "version": __version__,
        }

    @app.post("/connections/test")
    def test_connection(body: ConnectionTestRequest, service: GenBI = Depends(get_service)):
        if body.connection_id:
            return success(service.test_connection(connection_id=body.connection_id))
        return success(service.test_connection(engine=body.type, params=body.connection))

    @app.get("/connections")
    def list_connections(service: GenBI = Depends(get_service)):
        return success([d.to_dict() for d in service.list_connections()])

    @app.post("/connections")
    def create_connection(body: ConnectionCreateRequest, service: GenBI = Depends(get_service)):
        descriptor = service.register_connection(body.name, body.type, body.connection)
        return success(descriptor.to_dict(), status_code=201)

    @app.put("/connections/{connection_id}")
    def update_connection(
        connection_id: str,
        body: ConnectionUpdateRequest,
        service: GenBI = Depends(get_service),
    ):
        descriptor = service.update_connection(
            connection_id, name=body.name, engine=body.type, params=body.connection
        )
        return success(descriptor.to_dict())

    @app.delete("/connections/{connection_id}")
    def delete_connection(connection_id: str, force: bool = False, service: GenBI = Depends(get_service)):
        dangling = service.remove_connection(connection_id, force=force)
        return success({"id": connection_id, "deleted": True, "danglingQueries": dangling})

    @app.get("/connections/{connection_id}/schema")
    def get_schema(connection_id: str, refresh: bool = False, service: GenBI = Depends(get_service)):
        return success(service.get_schema(connection_id, refresh=refresh).to_dict())

    @app.post("/query")
    def run_query(body: QueryRequest, service: GenBI = Depends(get_service)):
        """Answer a natural language question."""
        outcome = service.ask(
            body.user_query,
            connection_id=body.connection_id,
            connection_string=body.connection_string,
        )
        return success(outcome.to_dict())

    @app.get("/queries")
    def list_queries(service: GenBI = Depends(get_service)):
        return success([q.to_dict() for q in service.list_queries()])

    @app.get("/queries/{query_id}")
    def get_query(query_id: str, service: GenBI = Depends(get_service)):
        return success(service.get_query(query_id).to_dict())

    @app.post("/queries")
    def save_query(body: SaveQueryRequest, service: GenBI = Depends(get_service)):
        saved = service.save_query(
            body.name,
            body.user_query,
            body.sql_query,
            body.connection_id,
            rows=body.results,
            truncated=body.truncated,
        )
        return success(saved.to_dict(), status_code=201)

    @app.patch("/queries/{query_id}")
    def rename_query(query_id: str, body: RenameQueryRequest, service: GenBI = Depends(get_service)):
        return success(service.rename_query(query_id, body.name).to_dict())

    @app.post("/queries/{query_id}/refresh")
    def refresh_query(query_id: str, policy: Optional[str] = None, service: GenBI = Depends(get_service)):
        saved = service.refresh_query(query_id, policy=policy)
        return success({"query": saved.to_dict(), "results": [dict(r) for r in saved.result.rows]})

    @app.delete("/queries/{query_id}")
    def delete_query(query_id: str, service: GenBI = Depends(get_service)):
        deleted = service.delete_query(query_id)
        return success({"id": query_id, "deleted": deleted})

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=settings.log_level, format=settings.log_format)
    uvicorn.run(
        "genbi.api.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.debug,
    )
