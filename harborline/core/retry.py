"""Bounded retry for calls to external tools.

Build, scan, registry and git operations all run with a timeout and a small
fixed retry budget.  Once the budget is spent the last error propagates; it
never turns into an unbounded wait.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TypeVar

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

logger = logging.getLogger(__name__)

T = TypeVar("T")


def make_retrying(
    *,
    retries: int,
    retry_on: tuple[type[BaseException], ...],
    delay: float = 0.0,
    description: str = "operation",
) -> Retrying:
    """A ``Retrying`` that tries once plus *retries* times on *retry_on* errors."""

    def _before_sleep(retry_state) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "%s failed (%s), retry %d/%d",
            description,
            exc,
            retry_state.attempt_number,
            retries,
        )

    return Retrying(
        stop=stop_after_attempt(retries + 1),
        wait=wait_fixed(delay),
        retry=retry_if_exception_type(retry_on),
        reraise=True,
        before_sleep=_before_sleep,
    )


def retry_call(
    fn: Callable[[], T],
    *,
    retries: int,
    retry_on: tuple[type[BaseException], ...],
    delay: float = 0.0,
    description: str = "operation",
) -> T:
    """Call *fn*, retrying up to *retries* more times on *retry_on* errors."""
    retrying = make_retrying(
        retries=retries, retry_on=retry_on, delay=delay, description=description
    )
    return retrying(fn)
