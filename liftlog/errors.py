from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlmodel.ext.asyncio.session import AsyncSession

logger = logging.getLogger(__name__)


class WorkoutError(Exception):
    """Base for failures the engine reports back to the caller.

    ``status_code`` follows HTTP semantics so the API surface can map it
    directly; ``message`` is always safe to show to the client.
    """

    status_code = 500

    def __init__(self, message: str = "Not allowed") -> None:
        super().__init__(message)
        self.message = message


class NotFound(WorkoutError):
    status_code = 404


class Forbidden(WorkoutError):
    status_code = 403


class Conflict(WorkoutError):
    status_code = 409


class BadRequest(WorkoutError):
    status_code = 400


class InternalError(WorkoutError):
    status_code = 500


@asynccontextmanager
async def guarded(session: AsyncSession, operation: str, **context: Any) -> AsyncIterator[None]:
    """Run one unit of work, rolling back on any failure.

    Engine errors pass through untouched. Anything else is logged with the
    operation name and identifiers and replaced by an opaque InternalError.
    """
    try:
        yield
    except WorkoutError:
        await session.rollback()
        raise
    except Exception as e:
        await session.rollback()
        logger.exception("Failed to %s %s", operation, context)
        raise InternalError(f"Failed to {operation.replace('_', ' ')}") from e
