import inspect
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from openai import AsyncOpenAI

from routes.functions_route import router as functions_router
from routes.realtime_ws import router as realtime_router
from routes.session_route import router as session_router
from utils.database_init import AsyncDatabaseInitializer
from utils.settings import AppSettings

from dotenv import load_dotenv

load_dotenv()  # Load environment variables from .env file if present

LOGGER = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def _close_quietly(client) -> None:
    """Close a client exposing `aclose` or `close`, sync or async."""
    aclose = getattr(client, "aclose", None) or getattr(client, "close", None)
    if aclose is None:
        return
    try:
        result = aclose()
        if inspect.isawaitable(result):
            await result
    except Exception:
        LOGGER.warning("Error while closing %s", type(client).__name__, exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan manager to initialize:
      - the settings read from the environment
      - the SQLite database at DATABASE_DIR/app.db
      - the OpenAI async client (model function and dictation)
      - the shared httpx client used for the model and video functions
    and attach them to `app.state`.
    """
    settings = AppSettings.from_env()
    app.state.settings = settings

    db_initializer = AsyncDatabaseInitializer()
    await db_initializer.ensure_database()
    app.state.db_initializer = db_initializer

    if not settings.openai_api_key:
        raise RuntimeError("OPENAI_API_KEY environment variable is not set")
    try:
        openai_client = AsyncOpenAI(api_key=settings.openai_api_key)
    except Exception as exc:
        raise RuntimeError("Failed to initialize OpenAI Async client") from exc
    app.state.openai_client = openai_client

    app.state.http_client = httpx.AsyncClient(timeout=httpx.Timeout(settings.remote_timeout_seconds))
    LOGGER.info("Style advisor backend ready (database at %s)", db_initializer.db_path)

    try:
        yield
    finally:
        await _close_quietly(app.state.http_client)
        await _close_quietly(app.state.openai_client)


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application instance.
    """
    app = FastAPI(lifespan=lifespan)

    @app.get("/health")
    async def health(request: Request):
        """
        Simple health check that verifies DB initializer and OpenAI client presence.
        """
        has_db = hasattr(request.app.state, "db_initializer")
        has_openai = getattr(request.app.state, "openai_client", None) is not None
        has_http = getattr(request.app.state, "http_client", None) is not None
        return {"ok": True, "db_initialized": has_db, "openai_available": has_openai, "http_client": has_http}

    # Register application routers
    app.include_router(session_router)
    app.include_router(functions_router)
    app.include_router(realtime_router)

    return app


configure_logging(AppSettings.from_env().log_level)
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="127.0.0.1", port=8000)
