"""
Auctionhouse Enrichment API
FastAPI entry point: uvicorn main:app
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.admin_router import router as admin_router
from api.listing_router import router as listing_router
from api.user_router import router as user_router
from infrastructure.errors import register_exception_handlers
from sentry_config import init_sentry
from services.container import get_container

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("Main")

init_sentry()


@asynccontextmanager
async def lifespan(app: FastAPI):
    container = get_container()
    await container.startup()
    try:
        yield
    finally:
        await container.shutdown()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Auctionhouse Enrichment API",
        version="0.1.0",
        lifespan=lifespan,
    )
    register_exception_handlers(app)

    app.include_router(listing_router)
    app.include_router(user_router)
    app.include_router(admin_router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000)
