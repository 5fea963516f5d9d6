from __future__ import annotations

from typing import Callable, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

T = TypeVar("T")


def run_with_retry(
    *,
    operation: Callable[[], T],
    should_retry: Callable[[BaseException], bool],
    max_attempts: int = 1,
    base_delay_seconds: float = 0.2,
    max_delay_seconds: float = 10.0,
    on_retry: Callable[[int, float, BaseException], None] | None = None,
) -> T:
    def _before_sleep(state: RetryCallState) -> None:
        if on_retry is None or state.outcome is None:
            return
        error = state.outcome.exception()
        delay = state.next_action.sleep if state.next_action is not None else 0.0
        if error is not None:
            on_retry(state.attempt_number, delay, error)

    retrying = Retrying(
        retry=retry_if_exception(should_retry),
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait_exponential(multiplier=base_delay_seconds, max=max_delay_seconds),
        before_sleep=_before_sleep,
        reraise=True,
    )
    return retrying(operation)
