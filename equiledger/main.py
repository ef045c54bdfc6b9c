import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api import api_router
from .api.whatsapp import close_whatsapp_client
from .config import get_settings
from .db import migrate_ledger_schema
from .telegram.bot import init_bot, shutdown_bot


@asynccontextmanager
async def lifespan(app: FastAPI):
    await migrate_ledger_schema()
    await init_bot()
    try:
        yield
    finally:
        await shutdown_bot()
        await close_whatsapp_client()


settings = get_settings()
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
_docs_enabled = settings.environment.lower() != "production"
app = FastAPI(
    title=settings.app_name,
    lifespan=lifespan,
    docs_url="/docs" if _docs_enabled else None,
    redoc_url="/redoc" if _docs_enabled else None,
)
app.include_router(api_router, prefix="/api")


@app.get("/health", tags=["system"])
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}
