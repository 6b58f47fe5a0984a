"""FastAPI entry point for the guided writing assistant service."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config.settings import get_settings
from services.gemini_client import get_gemini_client
from services.middleware import RequestIdLogFilter, RequestIdMiddleware

settings = get_settings()


def configure_logging(level: str) -> None:
    """Root logger format with the request ID of the current request."""
    handler = logging.StreamHandler()
    handler.addFilter(RequestIdLogFilter())
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s [%(request_id)s] %(name)s: %(message)s"
    ))
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level.upper())
    # httpx logs every request at INFO, including the ?key= query string
    logging.getLogger("httpx").setLevel(logging.WARNING)


configure_logging(settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle — start/stop shared resources."""
    client = get_gemini_client()
    await client.start()
    logger.info("Writing assistant ready (default model %s)", settings.default_model)

    yield

    await client.close()


app = FastAPI(
    title="Guided Writing Assistant",
    description="Question-driven essay writing and quizzes on top of Gemini",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Middleware stack (outermost first) ─────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestIdMiddleware)

# ── Register routers ────────────────────────────────────────
from api.health import router as health_router  # noqa: E402
from api.sessions import router as sessions_router  # noqa: E402
from api.writing import router as writing_router  # noqa: E402

app.include_router(health_router)
app.include_router(writing_router)
app.include_router(sessions_router)


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.service_port,
        reload=settings.debug,
        timeout_keep_alive=120,
    )
