import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.exc import SQLAlchemyError

from neweyes.config import ensure_dev_database_schema, settings
from neweyes.db import session as db_session
from neweyes.modules.auth.router import router as auth_router
from neweyes.modules.dashboard.router import router as dashboard_router
from neweyes.modules.designer.router import router as designer_router
from neweyes.modules.episodes.router import router as episodes_router
from neweyes.modules.player.router import router as player_router
from neweyes.modules.session.router import router as session_router
from neweyes.modules.users.router import router as users_router

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(_app: FastAPI):
    if settings.env == "dev":
        ensure_dev_database_schema(str(db_session.engine.url))
    if settings.storage_backend == "local":
        Path(settings.storage_local_dir).mkdir(parents=True, exist_ok=True)
    logger.info("neweyes started env=%s storage=%s", settings.env, settings.storage_backend)
    yield


app = FastAPI(title="Neweyes Online", lifespan=_lifespan)
app.mount(
    settings.storage_public_base_url,
    StaticFiles(directory=settings.storage_local_dir, check_dir=False),
    name="storage",
)


@app.exception_handler(SQLAlchemyError)
async def _store_error(_request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("store error: %s", exc)
    return JSONResponse(status_code=500, content={"detail": {"code": "STORE_ERROR", "message": str(exc)}})


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(auth_router)
app.include_router(users_router)
app.include_router(episodes_router)
app.include_router(session_router)
app.include_router(player_router)
app.include_router(designer_router)
app.include_router(dashboard_router)
