"""
Retry policy for idempotent Kubernetes reads.

Only raw ``ApiException`` responses that signal a transient server-side or
throttling problem are retried. Not-found and conflict responses carry
meaning for the caller and are raised immediately.
"""
from typing import Callable

from kubernetes_asyncio.client import ApiException
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from rds_operator.config.logging import get_logger

logger = get_logger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


def is_retryable_k8s_error(exception: BaseException) -> bool:
    return isinstance(exception, ApiException) and exception.status in RETRYABLE_STATUS_CODES


def _log_retry(state: RetryCallState) -> None:
    error = state.outcome.exception()
    logger.warning(
        "k8s_read_retrying",
        function=state.fn.__name__ if state.fn else None,
        attempt=state.attempt_number,
        status_code=getattr(error, "status", None),
        delay_seconds=round(state.next_action.sleep, 3) if state.next_action else None,
    )


def retry_on_k8s_error(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
) -> Callable:
    """
    Retry a coroutine on transient API errors with exponential backoff.

    Args:
        max_retries: Retries after the first attempt
        initial_delay: Delay before the first retry, in seconds
        max_delay: Upper bound for any single delay, in seconds
    """
    return retry(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=initial_delay, max=max_delay),
        retry=retry_if_exception(is_retryable_k8s_error),
        before_sleep=_log_retry,
        reraise=True,
    )
