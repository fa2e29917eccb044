from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Union

from tenacity import AsyncRetrying, RetryCallState, retry_if_result, stop_after_attempt, wait_exponential

from vibeflow.ai.errors import FailureClassification, TerminalError


logger = logging.getLogger(__name__)


MAX_RETRIES = 3
INITIAL_BACKOFF_MS = 1000


@dataclass(frozen=True)
class Success:
    text: str


@dataclass(frozen=True)
class Failure:
    classification: FailureClassification
    raw_message: str
    raw_status: int | str | None = None
    cause: BaseException | None = field(default=None, compare=False, repr=False)


AttemptOutcome = Union[Success, Failure]


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = MAX_RETRIES
    initial_backoff_ms: int = INITIAL_BACKOFF_MS
    multiplier: float = 2.0
    max_backoff_ms: int = 30000

    def backoff_ms(self, retries_done: int) -> float:
        return min(float(self.max_backoff_ms), self.initial_backoff_ms * (self.multiplier**retries_done))


@dataclass
class RetryState:
    """Owned by a single in-flight call; dropped when the call terminates."""

    attempts_made: int = 0
    current_backoff_ms: float = 0.0
    last_outcome: AttemptOutcome | None = None


def _should_retry(outcome: AttemptOutcome) -> bool:
    return isinstance(outcome, Failure) and not outcome.classification.terminal


def _last_outcome(retry_state: RetryCallState) -> AttemptOutcome:
    # budget exhausted: hand back the last Failure instead of tenacity's RetryError
    return retry_state.outcome.result()


async def with_retry(
    operation: str,
    attempt: Callable[[], Awaitable[AttemptOutcome]],
    policy: RetryPolicy,
    on_failure: Callable[[Failure, int], TerminalError],
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    on_retry: Callable[[Failure, int, float], None] | None = None,
) -> str:
    """Run ``attempt`` until it succeeds, hits a terminal failure or the budget runs out.

    Returns the success text; otherwise raises the ``TerminalError`` built by
    ``on_failure(last_failure, attempts_made)``.
    """
    state = RetryState(current_backoff_ms=float(policy.initial_backoff_ms))

    async def _counted() -> AttemptOutcome:
        outcome = await attempt()
        state.attempts_made += 1
        state.last_outcome = outcome
        return outcome

    def _before_sleep(retry_state: RetryCallState) -> None:
        failure = retry_state.outcome.result()
        wait_s = retry_state.next_action.sleep if retry_state.next_action else 0.0
        state.current_backoff_ms = wait_s * 1000
        logger.warning(
            "%s: %s (%s). retrying in %.0fms (attempt %s/%s)",
            operation,
            failure.classification.value,
            failure.raw_message,
            state.current_backoff_ms,
            state.attempts_made,
            policy.max_retries,
        )
        if on_retry is not None:
            on_retry(failure, state.attempts_made, state.current_backoff_ms)

    retrying = AsyncRetrying(
        sleep=sleep,
        stop=stop_after_attempt(max(1, policy.max_retries)),
        wait=wait_exponential(
            multiplier=policy.initial_backoff_ms / 1000.0,
            exp_base=policy.multiplier,
            max=policy.max_backoff_ms / 1000.0,
        ),
        retry=retry_if_result(_should_retry),
        before_sleep=_before_sleep,
        retry_error_callback=_last_outcome,
    )

    outcome = await retrying(_counted)

    if isinstance(outcome, Success):
        if state.attempts_made > 1:
            logger.info("%s: succeeded after %s attempts", operation, state.attempts_made)
        return outcome.text

    error = on_failure(outcome, state.attempts_made)
    logger.error(
        "%s: failed after %s attempt(s) classification=%s raw=%s",
        operation,
        state.attempts_made,
        outcome.classification.value,
        outcome.raw_message,
    )
    raise error
