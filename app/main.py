"""Main FastAPI application for the SparkLearn study companion."""
from contextlib import asynccontextmanager
from datetime import datetime
from fastapi import FastAPI, Depends
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from app.routers import user, quiz, learn
from app.db.init_db import init_db
from app.db.database import get_db
from app.logging_config import setup_logging, get_logger
from app.config import settings
from app.constants import DEFAULT_RATE_LIMIT

# Set up logging on module import
log_level = settings.LOG_LEVEL if settings.LOG_LEVEL else None
setup_logging(log_level)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and apply schema migrations on startup."""
    logger.info("Application startup initiated")
    try:
        init_db()
        logger.info("Database initialization completed successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)
        raise

    yield

    logger.info("Application shutdown complete")


app = FastAPI(
    title="SparkLearn API",
    description="""
    Study companion API with AI-generated learning content and an adaptive quiz loop.

    ## Features

    - **Adaptive Quizzes**: Difficulty moves between beginner, intermediate and advanced
      based on quiz scores (>= 80% up a tier, <= 40% down a tier)
    - **AI Content**: Topic explanations, revision notes, doubt answers and weekly plans
    - **Progress Dashboard**: Streaks, weekly goal, averages, recomputed from the activity log
    - **Bookmarks and Notes**: Saved per user
    - **Anonymous Sessions**: No account required, uses browser cookies

    ## Quiz Flow

    1. **Generate**: POST `/api/quiz/generate` for questions at the current tier
    2. **Submit**: POST `/api/quiz/submit` with the selected and correct options
    3. **Dashboard**: GET `/api/dashboard` for the refreshed statistics
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_tags=[
        {"name": "user", "description": "Session, dashboard, history, progress, bookmarks and notes"},
        {"name": "quiz", "description": "Quiz generation, scoring and difficulty adjustment"},
        {"name": "learn", "description": "Explanations, revision notes, doubts and weekly plans"},
        {"name": "health", "description": "Service health and readiness checks"}
    ]
)

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[DEFAULT_RATE_LIMIT],
    enabled=settings.RATE_LIMIT_ENABLED
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

logger.info(f"Rate limiting {'enabled' if settings.RATE_LIMIT_ENABLED else 'disabled'}: "
            f"default {DEFAULT_RATE_LIMIT} per IP")

if settings.is_production:
    from starlette.middleware.sessions import SessionMiddleware
    app.add_middleware(SessionMiddleware, secret_key=settings.SECRET_KEY, https_only=settings.COOKIE_SECURE)
    logger.info("Session middleware enabled")

app.include_router(user.router)
app.include_router(quiz.router)
app.include_router(learn.router)




def _utc_timestamp() -> str:
    return datetime.utcnow().isoformat() + "Z"


def _probe_database(db: Session):
    """None when the database answers SELECT 1, else the error text."""
    try:
        db.execute(text("SELECT 1"))
        return None
    except SQLAlchemyError as e:
        logger.error(f"Database probe failed: {e}", exc_info=True)
        return str(e)


@app.get("/health", tags=["health"])
async def health_check(db: Session = Depends(get_db)):
    """Liveness plus database connectivity; 503 when the database is down."""
    error = _probe_database(db)
    if error:
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "database": "disconnected", "error": error,
                     "timestamp": _utc_timestamp()}
        )
    return {
        "status": "healthy",
        "database": "connected",
        "llm_configured": bool(settings.GEMINI_API_KEY),
        "timestamp": _utc_timestamp(),
        "environment": settings.ENVIRONMENT
    }


@app.get("/readiness", tags=["health"])
async def readiness_check(db: Session = Depends(get_db)):
    """Readiness check for container orchestration."""
    error = _probe_database(db)
    if error:
        return JSONResponse(status_code=503, content={"status": "not ready", "error": error})
    return {"status": "ready", "timestamp": _utc_timestamp()}
