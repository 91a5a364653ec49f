"""Optimistic local updates with rollback when the remote commit fails."""

import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class OptimisticUpdateError(Exception):
    """The remote commit failed and the local change was rolled back."""

    def __init__(self, message: str, cause: BaseException) -> None:
        """Initialize the error.

        Args:
            message: Human-readable description of the failed update.
            cause: The exception raised by the commit.
        """
        self.message = message
        self.cause = cause
        super().__init__(message)


async def optimistic_update(
    get_current: Callable[[], T],
    apply: Callable[[T], Any],
    commit: Callable[[], Awaitable[R]],
    new_value: T,
    description: str = "update",
) -> R:
    """Apply a change locally, commit it remotely, and roll back on failure.

    The sequence is a small transaction: snapshot the current value, apply
    ``new_value``, await ``commit``; if the commit raises, re-apply the
    snapshot and raise ``OptimisticUpdateError`` chained to the cause.

    Args:
        get_current: Reads the current local value.
        apply: Writes a value locally (also used to restore the snapshot).
        commit: Pushes the change to the remote side.
        new_value: The value to apply.
        description: Label used in logs and the error message.

    Returns:
        Whatever ``commit`` returns.

    Raises:
        OptimisticUpdateError: If the commit fails; the local value is restored first.
    """
    snapshot = get_current()
    apply(new_value)

    try:
        return await commit()
    except Exception as e:
        apply(snapshot)
        logger.warning("Rolled back %s after failed commit: %s", description, e)
        raise OptimisticUpdateError(f"Failed to save {description}", cause=e) from e
