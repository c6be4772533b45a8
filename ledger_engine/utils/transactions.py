"""
Ledger Engine - Transaction Scope

Every mutating ledger operation runs as one unit of work: the body
executes against the session, then either everything commits or
everything is rolled back.
"""

import logging
from typing import Any, Awaitable, Callable, List, Optional, Tuple, TypeVar, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_engine.utils.error_handling import (
    AppException,
    DatabaseException,
    OperationResult,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_in_transaction(
    db: AsyncSession,
    operation: str,
    work: Callable[[], Awaitable[Union[T, Tuple[T, List[str]]]]],
    with_warnings: bool = False,
) -> OperationResult[T]:
    """
    Run ``work`` and commit, or roll back and report why.

    Business rule violations (AppException) come back as failed results
    with their own error kind. Storage failures are logged with their
    traceback and reported as a generic internal error; they are not
    retried.

    When ``with_warnings`` is set, ``work`` returns ``(data, warnings)``.
    """
    try:
        outcome: Any = await work()
        await db.commit()
    except AppException as exc:
        await db.rollback()
        logger.info(f"{operation} rejected: {exc.code.value} - {exc.message}")
        return OperationResult.fail(exc)
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception(f"{operation} failed in storage layer")
        return OperationResult.fail(DatabaseException(original_error=exc))
    
    warnings: Optional[List[str]] = None
    if with_warnings:
        outcome, warnings = outcome
    return OperationResult.ok(outcome, warnings=warnings)
