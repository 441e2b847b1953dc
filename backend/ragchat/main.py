"""FastAPI application."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.ragchat.api.routes.chat import router as chat_router
from backend.ragchat.api.routes.docs import router as docs_router
from backend.ragchat.api.routes.health import router as health_router
from backend.ragchat.api.routes.metrics import router as metrics_router
from backend.ragchat.api.routes.settings import router as settings_router
from backend.ragchat.api.routes.threads import router as threads_router
from backend.ragchat.config import get_settings
from backend.ragchat.db.engine import create_schema, get_async_engine
from backend.ragchat.errors import AuthorizationFailure, ChatServiceError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    await create_schema(get_async_engine())
    yield


app = FastAPI(
    title="RAG Chat API",
    version="0.1.0",
    lifespan=lifespan,
    # /docs belongs to the document routes
    docs_url="/api-docs",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[get_settings().ui_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Thread-Id", "X-RAG-Enabled"],
)

# Register routes
app.include_router(health_router, tags=["health"])
app.include_router(metrics_router, tags=["metrics"])
app.include_router(chat_router, tags=["chat"])
app.include_router(threads_router, tags=["threads"])
app.include_router(docs_router, tags=["docs"])
app.include_router(settings_router, tags=["settings"])


@app.exception_handler(ChatServiceError)
async def chat_service_error_handler(request: Request, exc: ChatServiceError) -> JSONResponse:
    """Map pipeline errors that escape a route to JSON responses."""
    if isinstance(exc, AuthorizationFailure):
        # Other owners' resources are indistinguishable from missing ones
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"error": exc.code, "detail": "Not found"},
        )

    logger.error(f"{request.method} {request.url.path} failed: {exc.code} ({exc.message})")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": exc.code, "detail": exc.message},
    )


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {"message": "RAG Chat API", "version": "0.1.0"}
