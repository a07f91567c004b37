"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from falvia.accounts.router import router as accounts_router
from falvia.badges.router import router as badges_router
from falvia.config import get_settings
from falvia.database import close_db, init_db
from falvia.health.router import router as health_router
from falvia.middleware import setup_middleware
from falvia.redis_client import close_redis, init_redis
from falvia.referrals.router import router as referrals_router
from falvia.rewards.router import router as rewards_router
from falvia.trials.router import router as trials_router


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Falvia Rewards API",
        description="Entitlements and rewards engine: daily rewards, trials, referrals and badges",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(accounts_router)
    app.include_router(rewards_router)
    app.include_router(trials_router)
    app.include_router(referrals_router)
    app.include_router(badges_router)

    return app


app = create_app()
