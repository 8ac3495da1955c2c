"""FastAPI application entry point."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from servicehub.api.router import api_router
from servicehub.db.capabilities import detect_capabilities, set_capabilities
from servicehub.db.engine import engine
from servicehub.errors import install_error_handlers
from servicehub.models import Base


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # Columns added by later migrations are checked once; code branches on the flags
    set_capabilities(await detect_capabilities(engine))
    yield
    await engine.dispose()


app = FastAPI(
    title="ServiceHub",
    description="Service marketplace: provider assignment, proposals, payments, work orders and payouts.",
    version="0.1.0",
    lifespan=lifespan,
)

install_error_handlers(app)
app.include_router(api_router)


@app.get("/health")
async def health():
    return {"success": True, "status": "ok"}
