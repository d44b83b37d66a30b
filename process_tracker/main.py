import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from process_tracker.config import LOG_LEVEL
from process_tracker.database import init_db
from process_tracker.errors import WorkflowEngineError
from process_tracker.routers import api, dashboard, status_templates, templates, workflows

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    "not_found": status.HTTP_404_NOT_FOUND,
    "invalid_transition": status.HTTP_409_CONFLICT,
    "step_out_of_range": status.HTTP_409_CONFLICT,
    "conflict": status.HTTP_409_CONFLICT,
    "validation_error": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "unavailable": status.HTTP_503_SERVICE_UNAVAILABLE,
}


def generate_unique_id(route: APIRoute) -> str:
    return f"{route.name}"


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="Process Tracker",
    generate_unique_id_function=generate_unique_id,
    lifespan=lifespan,
)

app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")


@app.exception_handler(WorkflowEngineError)
async def workflow_engine_error_handler(request: Request, exc: WorkflowEngineError):
    status_code = ERROR_STATUS_CODES.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# Include routers
app.include_router(api.router)
app.include_router(templates.router)
app.include_router(status_templates.router)
app.include_router(workflows.router)
app.include_router(dashboard.router)
