"""Concurrent loading of dashboard inputs."""
import asyncio
from typing import Callable, Dict, List, Optional, Tuple
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session
from app.db.models import ActivityEvent
from app.logging_config import get_logger
from app.services import persistence

logger = get_logger(__name__)


def _run_with_session(session_factory: Callable[[], Session], fetch: Callable, user_id: str):
    db = session_factory()
    try:
        return fetch(db, user_id)
    finally:
        db.close()


async def load_history_and_progress(
    session_factory: Callable[[], Session],
    user_id: Optional[str]
) -> Tuple[List[ActivityEvent], Dict[str, Optional[int]]]:
    """
    Fetch the activity log and the progress snapshot concurrently.

    Each fetch runs in the threadpool with its own session. Both are awaited
    before returning; a side that fails is logged and replaced by its default
    (empty history, no overrides) without affecting the other.

    Args:
        session_factory: Callable returning a new Session
        user_id: User to load, or None

    Returns:
        (history newest first, progress overrides)
    """
    history, progress = await asyncio.gather(
        run_in_threadpool(_run_with_session, session_factory, persistence.get_history, user_id),
        run_in_threadpool(_run_with_session, session_factory, persistence.get_progress, user_id),
        return_exceptions=True
    )

    if isinstance(history, Exception):
        logger.error(f"History fetch failed, using empty history: {history}", extra={"user_id": user_id})
        history = []
    if isinstance(progress, Exception):
        logger.error(f"Progress fetch failed, using defaults: {progress}", extra={"user_id": user_id})
        progress = persistence.default_progress()

    return history, progress
