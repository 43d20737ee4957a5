"""
Multi-step writes with a declared failure policy per step.

Every operation runs inside one session transaction. Steps whose failure
may be absorbed run inside a SAVEPOINT so the outer transaction survives.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.logging_config import get_logger

log = get_logger("write_steps")

MISSING_RELATION_SQLSTATE = "42P01"
_MISSING_RELATION_MARKERS = (
    "does not exist",
    "could not find the table",
    "schema cache",
    "no such table",
)


class StepPolicy(str, Enum):
    MANDATORY = "mandatory"              # any error aborts the operation
    OPTIONAL_SCHEMA = "optional_schema"  # missing relation absorbed, other errors abort
    BEST_EFFORT = "best_effort"          # any database error logged and absorbed


@dataclass
class WriteStep:
    name: str
    action: Callable[[], Awaitable[Any]]
    policy: StepPolicy = StepPolicy.MANDATORY


@dataclass
class StepOutcome:
    name: str
    policy: StepPolicy
    ok: bool
    skipped: bool = False
    error: Optional[str] = None


class LevelingWriteError(Exception):
    """A mandatory step failed; the whole operation was rolled back."""

    def __init__(self, operation: str, step: str, cause: BaseException):
        self.operation = operation
        self.step = step
        self.cause = cause
        super().__init__(f"{operation} failed at step '{step}': {cause}")


def is_optional_schema_error(exc: BaseException) -> bool:
    """True when ``exc`` means an enhanced-schema relation is not provisioned."""
    if not isinstance(exc, DBAPIError):
        return False
    orig = exc.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code == MISSING_RELATION_SQLSTATE:
        return True
    text = str(orig if orig is not None else "").strip().lower()
    if not text:
        return True
    return any(marker in text for marker in _MISSING_RELATION_MARKERS)


async def _run_step(session: AsyncSession, step: WriteStep, operation: str) -> StepOutcome:
    if step.policy is StepPolicy.MANDATORY:
        try:
            await step.action()
        except SQLAlchemyError as exc:
            log.error("%s: mandatory step %s failed: %s", operation, step.name, exc)
            raise LevelingWriteError(operation, step.name, exc) from exc
        return StepOutcome(step.name, step.policy, ok=True)

    try:
        async with session.begin_nested():
            await step.action()
    except SQLAlchemyError as exc:
        if step.policy is StepPolicy.OPTIONAL_SCHEMA and not is_optional_schema_error(exc):
            log.error("%s: step %s failed: %s", operation, step.name, exc)
            raise LevelingWriteError(operation, step.name, exc) from exc
        log.warning("%s: step %s skipped (%s): %s", operation, step.name, step.policy.value, exc)
        return StepOutcome(step.name, step.policy, ok=False, skipped=True, error=str(exc))
    return StepOutcome(step.name, step.policy, ok=True)


async def run_steps(
    session: AsyncSession,
    steps: Sequence[WriteStep],
    *,
    operation: str,
) -> List[StepOutcome]:
    """
    Run ``steps`` in order and commit once. A fatal failure rolls back
    everything done so far and raises :class:`LevelingWriteError`.
    """
    outcomes: List[StepOutcome] = []
    try:
        for step in steps:
            outcomes.append(await _run_step(session, step, operation))
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    log.debug("%s: %d step(s) done, %d skipped", operation, len(outcomes), sum(o.skipped for o in outcomes))
    return outcomes


async def read_optional(session: AsyncSession, reader: Callable[[], Awaitable[Any]], default: Any, *, what: str) -> Any:
    """
    Read from an enhanced-schema table, returning ``default`` when the
    relation is not provisioned. Other errors propagate.
    """
    try:
        async with session.begin_nested():
            return await reader()
    except SQLAlchemyError as exc:
        if not is_optional_schema_error(exc):
            log.error("Failed to load %s: %s", what, exc)
            raise
        log.warning("%s unavailable, falling back to legacy data: %s", what, exc)
        return default
