import asyncio
import itertools
import logging
import os
from dotenv import load_dotenv  # load .env variables

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sqlalchemy.exc import DBAPIError, OperationalError

import taskboard.database as database
from taskboard.errors import install_error_handlers
from taskboard.retry import RetryExhausted, retry
from taskboard.services.registrations import get_leader_registrations, get_member_registrations

# ----- Load environment variables -----
load_dotenv()

# ----- Logging -----
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
)

# ----- Routers -----
from taskboard.routes.auth import router as auth_router
from taskboard.routes.members import router as members_router
from taskboard.routes.tasks import router as tasks_router
from taskboard.routes.performance import router as performance_router

# ----- FastAPI app -----
app = FastAPI(
    title="Taskboard Backend",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# ----- CORS (enabled only if ALLOWED_ORIGINS is set) -----
raw_origins = os.getenv("ALLOWED_ORIGINS", "").strip()
if raw_origins:
    allowed_origins = [o.strip() for o in raw_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept", "Origin"],
        max_age=86400,
    )

install_error_handlers(app)

# ----- Include routers -----
app.include_router(auth_router)          # /auth/... registration, login
app.include_router(members_router)       # /auth/... approval, member lists
app.include_router(tasks_router)
app.include_router(performance_router)


def sqlite_fallback_allowed() -> bool:
    """Decide if we may fall back to the bundled SQLite database."""

    configured = os.getenv("DB_ALLOW_SQLITE_FALLBACK")
    if configured is not None:
        return configured.lower() in {"1", "true", "yes", "on"}
    return database.CURRENT_DATABASE_URL == database.DEFAULT_SQLITE_URL


DB_ERRORS = (OperationalError, DBAPIError, OSError)


async def init_database(max_attempts: int, base_delay: float, sleep=asyncio.sleep) -> None:
    """Create tables, backing off between attempts; fall back to SQLite once if allowed."""

    async def attempt_init():
        waits = (base_delay * min(2 ** n, 8) for n in itertools.count())

        async def backoff(_delay):
            wait_time = next(waits)
            logging.warning("Database not ready. Retrying in %.1f seconds...", wait_time)
            await sleep(wait_time)

        await retry(
            lambda: database.init_models(),
            attempts=max_attempts,
            retry_on=DB_ERRORS,
            delay=base_delay,
            sleep=backoff,
            label="Database init",
        )

    try:
        await attempt_init()
    except RetryExhausted as exc:
        if not sqlite_fallback_allowed() or database.CURRENT_DATABASE_URL == database.DEFAULT_SQLITE_URL:
            logging.error("Database not reachable after %s attempts: %s", exc.attempts, exc.last_error)
            raise
        logging.error(
            "Database not reachable after %s attempts: %s. Falling back to local SQLite for development.",
            exc.attempts,
            exc.last_error,
        )
        await database.engine.dispose()
        database.configure_engine(database.DEFAULT_SQLITE_URL)
        await attempt_init()

    logging.info("Taskboard API started and database tables ensured.")


@app.on_event("startup")
async def on_startup():
    """Ensure database connectivity with retries, then start sweepers."""

    await init_database(
        max_attempts=int(os.getenv("DB_INIT_MAX_ATTEMPTS", "10")),
        base_delay=float(os.getenv("DB_INIT_RETRY_SECONDS", "1.0")),
    )
    await get_leader_registrations().start_sweeper()
    await get_member_registrations().start_sweeper()


# ----- Health check endpoint -----
@app.get("/health", tags=["meta"])
async def health():
    return {"ok": True}


# Log booleans, never the secrets themselves.
if os.getenv("DATABASE_URL"):
    logging.info("DATABASE_URL loaded.")
if os.getenv("JWT_SECRET"):
    logging.info("JWT_SECRET loaded.")


# ----- Shutdown: stop background tasks -----
@app.on_event("shutdown")
async def on_shutdown():
    await get_leader_registrations().stop_sweeper()
    await get_member_registrations().stop_sweeper()
    await database.engine.dispose()
