import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from importlib.metadata import version as pkg_version

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from nftstatus.api import health_router, status_router
from nftstatus.config import settings
from nftstatus.models.failure import ApiResponse, KnownError
from nftstatus.services.runtime import close_service

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    yield
    await close_service()


app = FastAPI(
    title=settings.app_name,
    version=pkg_version("nftstatus"),
    lifespan=lifespan,
)

app.include_router(health_router)
app.include_router(status_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Tighten in production
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(KnownError)
async def known_error_handler(_request: Request, exc: KnownError) -> JSONResponse:
    """Render KnownError as the failure envelope with its own status code."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response().model_dump(mode="json"),
    )


@app.exception_handler(Exception)
async def unknown_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    """Anything unclassified becomes a generic 500; only the type name is exposed."""
    logger.exception("UNHANDLED_REQUEST_ERROR")
    return JSONResponse(
        status_code=500,
        content=ApiResponse.unknown_failure(exc).model_dump(mode="json"),
    )
