import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from windynovel import config
from windynovel.database import Base, engine
from windynovel.exceptions import WindyNovelError
from windynovel.limiter import limiter as default_limiter
from windynovel.logging_config import setup_logging

# register every table on Base.metadata before create_all
from windynovel.models import user_model, story_model, chapter_model, comment_model, bookmark_model  # noqa: F401
from windynovel.routes import auth, story_routes, chapter_routes, comment_routes, user_routes

logger = logging.getLogger(__name__)


# SlowAPIMiddleware only invokes synchronous handlers; an async one is replaced by slowapi's default body
def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning("Rate limit hit for %s on %s", request.client.host if request.client else "?", request.url.path)
    return JSONResponse(
        status_code=429,
        content={"success": False, "message": "Too many requests. Please slow down.", "details": {}},
    )


async def windynovel_error_handler(request: Request, exc: WindyNovelError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc)
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.message, "details": exc.details},
        headers=headers,
    )


async def init_db():
    # Tiny retry so a momentary DB disconnect doesn't crash the app.
    for attempt in range(2):
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Database schema ready")
            break
        except Exception as e:
            if attempt == 0:
                logger.warning("DB init failed, retrying once: %r", e)
                await asyncio.sleep(0.5)
            else:
                # tables should already exist from previous runs
                logger.error("Skipping DB init due to error: %r", e)


def create_app(limiter: Optional[Limiter] = None) -> FastAPI:
    app = FastAPI(title="WindyNovel API")

    app.state.limiter = limiter or default_limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(WindyNovelError, windynovel_error_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    for module in (auth, user_routes, story_routes, chapter_routes, comment_routes):
        app.include_router(module.router, prefix="/api")

    @app.get("/api/health")
    async def health():
        return {
            "success": True,
            "message": "WindyNovel API is running",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.on_event("startup")
    async def on_startup():
        await init_db()

    return app


setup_logging(config.LOG_LEVEL, config.LOG_DIR, file_enabled=config.LOG_TO_FILE)
app = create_app()
