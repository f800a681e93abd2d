"""
pasteshare - FastAPI application.
"""
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

import db_sqlalchemy
from config import Settings
from engine import PasteEngine
from errors import PasteError, StorageUnavailable
from handlers import (
    create_paste_handler, get_paste_handler, edit_paste_handler, delete_paste_handler,
    list_pastes_handler, verify_password_handler, download_file_handler, health_handler
)
from rate_limit import RateLimiter

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    # ensure folder exists before any DB IO
    db_path = settings.sqlite_path()
    if db_path:
        os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
    if settings.auto_create_schema:
        await db_sqlalchemy.init_db(settings.db_url)
    database = db_sqlalchemy.make_database(settings.db_url)
    await database.connect()
    app.state.engine = PasteEngine(database, settings)
    logger.info("pasteshare starting...")
    try:
        await app.state.engine.purge_expired()
    except StorageUnavailable as exc:
        logger.warning(f"Startup purge of expired pastes failed: {exc.message}")
    yield
    logger.info("pasteshare shutting down...")
    await database.disconnect()


async def paste_error_handler(request: Request, exc: PasteError):
    headers = {"Retry-After": "1"} if isinstance(exc, StorageUnavailable) and exc.retryable else None
    return ORJSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return ORJSONResponse(status_code=500, content={"message": "Internal server error", "kind": "error"})


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings()

    app = FastAPI(title="pasteshare", lifespan=lifespan)
    app.state.settings = settings
    app.state.rate_limiter = RateLimiter(settings.create_per_min, enabled=settings.rate_limit_enabled)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(PasteError, paste_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)

    app.post("/pastes", status_code=201)(create_paste_handler)
    app.get("/pastes")(list_pastes_handler)
    app.get("/pastes/{ref}")(get_paste_handler)
    app.put("/pastes/{ref}")(edit_paste_handler)
    app.delete("/pastes/{ref}")(delete_paste_handler)
    app.post("/pastes/{ref}/verify-password")(verify_password_handler)
    app.get("/pastes/{ref}/files/{file_id}")(download_file_handler)
    app.get("/health")(health_handler)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
    )
