"""
Festival Chat Backend Application Entry Point.
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from festchat.core.config import settings
from festchat.core.database import Base, engine
from festchat.core.exceptions import register_exception_handlers
from festchat.core.middleware import TokenMiddleware
from festchat.router.endpoints import api_router
from festchat.session import get_redis_client, init_redis, is_redis_initialized
import festchat.model  # noqa: F401
import logging
import redis
import uvicorn

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _database_ok() -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as e:
        logger.error(f"Database check failed: {e}")
        return False


def _redis_ok() -> bool:
    try:
        return bool(get_redis_client().ping())
    except (redis.RedisError, RuntimeError) as e:
        logger.warning(f"Redis check failed: {e}")
        return False


def _start_redis() -> None:
    if is_redis_initialized():
        return
    try:
        init_redis(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            db=settings.REDIS_DB,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
            refresh_ttl=settings.REFRESH_TOKEN_TTL,
            max_refresh_tokens=settings.MAX_REFRESH_TOKENS,
        )
    except redis.RedisError as e:
        # Auth refresh and rate limiting degrade until Redis is back.
        logger.error(f"Redis initialization failed: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.PROJECT_NAME}...")
    _start_redis()
    if _database_ok():
        logger.info("Database connection OK")
        if settings.DEBUG:
            # Alembic owns the schema outside DEBUG
            Base.metadata.create_all(bind=engine)
            logger.info("Database tables created (DEBUG mode)")

    yield

    logger.info("Shutting down...")
    engine.dispose()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version="1.0.0",
    lifespan=lifespan,
)

register_exception_handlers(app, debug=settings.DEBUG)

app.add_middleware(TokenMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.get("/health")
async def health():
    """Liveness plus backing-service status; 503 when the database is unreachable."""
    database = _database_ok()
    body = {
        "status": "ok" if database else "unavailable",
        "database": database,
        "redis": _redis_ok(),
    }
    code = status.HTTP_200_OK if database else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(status_code=code, content=body)


@app.get("/")
async def root():
    return {"message": f"Welcome to the {settings.PROJECT_NAME} API!"}


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
