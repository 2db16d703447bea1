import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from api.routers import battles, boxes, collection, leaderboard
from config import Settings, get_settings
from database import base
from game.battle_system import BattleManager
from game.exceptions import PackAttackError
from game.pull_engine import PullEngine
from services.cache import build_cache
from services.events import build_event_bus
from services.notifier import build_notifier
from services.scheduler import AutoStartScheduler

# ===== LOGGING =====
logging.basicConfig(
    level=get_settings().LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ===== LIFESPAN =====
@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    db_engine: AsyncEngine = app.state.db_engine

    await base.create_all(db_engine)

    app.state.cache = build_cache(settings)
    app.state.events = build_event_bus(settings)
    app.state.notifier = build_notifier(settings)
    app.state.battle_manager = BattleManager(
        app.state.session_factory,
        engine=app.state.pull_engine,
        notifier=app.state.notifier,
        events=app.state.events,
        grace_period=timedelta(minutes=settings.AUTO_START_GRACE_MINUTES),
        lobby_expiry=timedelta(hours=settings.LOBBY_EXPIRY_HOURS),
        stall_timeout=timedelta(minutes=settings.AUTO_RESUME_MINUTES),
    )

    scheduler = None
    if settings.AUTO_START_ENABLED:
        scheduler = AutoStartScheduler(
            app.state.battle_manager,
            interval_seconds=settings.AUTO_START_INTERVAL_SECONDS,
        )
        scheduler.start()
    app.state.scheduler = scheduler

    logger.info("🚀 Pack Attack started")
    yield

    if scheduler:
        await scheduler.stop()
    await app.state.battle_manager.drain()
    await app.state.notifier.close()
    await app.state.events.close()
    await app.state.cache.close()
    await db_engine.dispose()
    logger.info("👋 Pack Attack stopped")


# ===== ERRORS =====
async def pack_attack_error_handler(request: Request, exc: PackAttackError):
    if exc.status_code >= 500:
        logger.error(f"❌ {request.method} {request.url.path}: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code} ({exc})")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "detail": str(exc)},
    )


# ===== APP =====
def create_app(
    settings: Optional[Settings] = None,
    db_engine: Optional[AsyncEngine] = None,
    pull_engine: Optional[PullEngine] = None,
) -> FastAPI:
    settings = settings or get_settings()
    db_engine = db_engine or base.engine

    app = FastAPI(
        title="Pack Attack",
        description="Card pack opening and pack battles",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.db_engine = db_engine
    app.state.session_factory = base.create_session_factory(db_engine)
    app.state.pull_engine = pull_engine or PullEngine()

    app.add_exception_handler(PackAttackError, pack_attack_error_handler)

    app.include_router(boxes.router, prefix="/api")
    app.include_router(collection.router, prefix="/api")
    app.include_router(battles.router, prefix="/api")
    app.include_router(leaderboard.router, prefix="/api")

    @app.get("/")
    async def root():
        return {
            "status": "online",
            "service": "Pack Attack",
            "version": "1.0.0",
            "docs": "/docs",
            "health": "/health",
        }

    @app.get("/health")
    async def health_check():
        """Database connectivity check"""
        try:
            async with app.state.session_factory() as session:
                await session.execute(text("SELECT 1"))
        except Exception as e:
            logger.error(f"❌ Health check failed: {e}")
            return JSONResponse(
                status_code=503,
                content={
                    "status": "unhealthy",
                    "database": "disconnected",
                    "error": str(e),
                    "timestamp": datetime.now().isoformat(),
                },
            )
        return {
            "status": "healthy",
            "database": "connected",
            "timestamp": datetime.now().isoformat(),
        }

    return app


app = create_app()
