import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from trackmystartup.api.router import api_router
from trackmystartup.config import settings
from trackmystartup.core.observability import (
    global_exception_handler,
    lifecycle_exception_handler,
    request_logging_middleware,
)
from trackmystartup.database import POOL_CONFIG
from trackmystartup.lifecycle.errors import LifecycleError
from trackmystartup.services.storage import storage_root

api_prefix = (
    settings.api_prefix
    if settings.api_prefix.startswith("/")
    else f"/{settings.api_prefix}"
    if settings.api_prefix
    else ""
)

logger = logging.getLogger("trackmystartup")
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")

app = FastAPI(
    title=settings.app_name,
    docs_url="/docs" if settings.enable_docs else None,
    redoc_url="/redoc" if settings.enable_docs else None,
    openapi_url=(f"{api_prefix}/openapi.json" if api_prefix else "/openapi.json")
    if settings.enable_docs
    else None,
)

# Expose logger for middleware without creating circular imports.
app.state.logger = logger

app.add_exception_handler(LifecycleError, lifecycle_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# Request-level logging + request correlation id.
app.middleware("http")(request_logging_middleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix=api_prefix)

# Uploaded agreements are served from the same public base the storage layer hands out.
app.mount(
    settings.public_storage_url.rstrip("/") or "/storage",
    StaticFiles(directory=str(storage_root()), check_dir=False),
    name="storage",
)


@app.on_event("startup")
def _log_runtime_config():
    logger.info(
        "runtime_config",
        extra={
            "pid": os.getpid(),
            "environment": settings.environment,
            "api_prefix": api_prefix,
            "db_pool": POOL_CONFIG,
        },
    )


@app.get("/", tags=["meta"])
def root():
    docs_path = (
        (f"{api_prefix}/openapi.json" if api_prefix else "/openapi.json")
        if settings.enable_docs
        else None
    )
    return {"message": settings.app_name, "docs": docs_path}
