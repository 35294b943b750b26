import asyncio
import os
from contextlib import asynccontextmanager

from alembic import command  # type: ignore
from alembic.config import Config
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from photo_attendance.config import settings
from photo_attendance.database import get_engine, shutdown_database
from photo_attendance.dependencies import get_sweeper, reset_sweeper
from photo_attendance.redis_config import init_cache, shutdown_cache
from photo_attendance.routers import admin_router, attendance_router, health_router
from photo_attendance.services.object_store import shutdown_object_store
from photo_attendance.services.scheduler import SweepScheduler
from photo_attendance.utils.logging import get_logger

logger = get_logger(__name__)

ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def run_migrations() -> None:
    alembic_cfg = Config(os.path.join(ROOT_DIR, "alembic.ini"))
    alembic_cfg.set_main_option("script_location", os.path.join(ROOT_DIR, "alembic"))
    command.upgrade(alembic_cfg, "head")


# Lifecycle Manager
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Server starting up... DB URL: %s", settings.DATABASE_URL.split("@")[-1])
    try:
        logger.info("Checking for database migrations...")
        # env.py calls asyncio.run, so it needs a thread without a running loop
        await asyncio.to_thread(run_migrations)
        logger.info("Database is up to date.")
    except Exception as e:
        logger.warning("Migration Warning: %s", e)
    try:
        async with get_engine().begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("Database connection established.")
    except Exception as e:
        logger.critical("Database connection failed! %s", e)

    await init_cache()

    scheduler = None
    if settings.SWEEP_ENABLED:
        try:
            scheduler = SweepScheduler(get_sweeper())
            scheduler.start()
        except RuntimeError as e:
            logger.warning("Photo sweep not scheduled: %s", e)

    yield

    logger.info("Server shutting down...")
    if scheduler is not None:
        scheduler.stop()
    reset_sweeper()
    await shutdown_cache()
    await shutdown_object_store()
    await shutdown_database()


app = FastAPI(title=settings.PROJECT_NAME, version=settings.VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.CLIENT_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Register Routers ---
app.include_router(attendance_router)
app.include_router(admin_router)
app.include_router(health_router)


def start():
    import uvicorn

    uvicorn.run(
        "photo_attendance.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )


@app.get("/")
async def root():
    return {
        "message": f"{settings.PROJECT_NAME} is running!",
        "docs": "/docs",
        "version": settings.VERSION,
    }
