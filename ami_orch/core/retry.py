from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, TypeVar

from ami_orch.config import MAX_ATTEMPTS
from ami_orch.errors import RetryableCallError, RetryExhaustedError

if TYPE_CHECKING:
    from ami_orch.core.cancel import CancellationToken
    from ami_orch.progress import ProgressReporter

logger = logging.getLogger("ami.core.retry")

T = TypeVar("T")

RETRYABLE: tuple[type[BaseException], ...] = (RetryableCallError, OSError)


def call_with_retry(
    op: Callable[[], T],
    description: str,
    max_attempts: int = MAX_ATTEMPTS,
    retry_on: tuple[type[BaseException], ...] = RETRYABLE,
    progress: ProgressReporter | None = None,
    cancel_token: CancellationToken | None = None,
) -> T:
    """
    Invoke ``op`` up to ``max_attempts`` times and return its first result.

    Attempts follow each other immediately (no backoff). Only errors in
    ``retry_on`` are retried; anything else propagates from the attempt that
    raised it. Use this only for calls that are safe to re-issue: describe
    and list calls, object PUTs, attribute modifications. Resource-creating
    calls are issued once, without this wrapper.

    Raises:
        RetryExhaustedError: every attempt failed with a retryable error
        BuildCancelledError: cancellation was requested between attempts
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    last_error: BaseException | None = None
    for attempt in range(1, max_attempts + 1):
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        try:
            return op()
        except retry_on as e:
            last_error = e
            logger.warning(
                f"{description} failed (attempt {attempt}/{max_attempts}): {e}",
                extra={"operation": description, "attempt": attempt},
            )
            if progress is not None:
                progress.line(f"{description} failed {attempt} times")

    raise RetryExhaustedError(description, max_attempts, last_error)
