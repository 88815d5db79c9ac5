"""Stage timing recorded into the job's stage-duration map."""

import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Callable

import structlog

from vitrine.core.timezone import utcnow

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def stage_timer(
    durations: dict[str, dict[str, Any]],
    stage: str,
    clock: Callable[[], datetime] = utcnow,
    **log_context: Any,
) -> AsyncIterator[None]:
    """Time one stage. The entry is written whether the stage succeeds or raises.

    Entries are inserted when the stage starts, so the map's key order is the order in
    which stages actually ran.
    """
    entry: dict[str, Any] = {"started_at": clock().isoformat(), "status": "running"}
    durations[stage] = entry
    started = time.perf_counter()
    logger.debug("pipeline.stage.started", stage=stage, **log_context)

    try:
        yield
    except BaseException as e:
        entry["status"] = "failed"
        entry["error_type"] = type(e).__name__
        raise
    else:
        entry["status"] = "ok"
    finally:
        entry["finished_at"] = clock().isoformat()
        entry["duration_ms"] = int((time.perf_counter() - started) * 1000)
        logger.debug(
            "pipeline.stage.finished",
            stage=stage,
            status=entry["status"],
            duration_ms=entry["duration_ms"],
            **log_context,
        )
