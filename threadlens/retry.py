"""
Retry-then-fallback as an explicit state machine.

    ATTEMPT -> SUCCESS
    ATTEMPT -> RETRY -> ATTEMPT
    ATTEMPT -> EXHAUSTED

`call_with_retry` drives a callable through these states and never raises
the callable's exception; the caller decides what EXHAUSTED falls back to.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Type

logger = logging.getLogger(__name__)


class AttemptState(str, Enum):
    ATTEMPT = "attempt"
    SUCCESS = "success"
    RETRY = "retry"
    EXHAUSTED = "exhausted"


class InvalidTransitionError(Exception):
    """Raised when a retry run tries to move between states it cannot."""

    def __init__(self, from_state: AttemptState, to_state: AttemptState):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid retry transition: {from_state.value} -> {to_state.value}")


VALID_TRANSITIONS: Dict[AttemptState, Set[AttemptState]] = {
    AttemptState.ATTEMPT: {AttemptState.SUCCESS, AttemptState.RETRY, AttemptState.EXHAUSTED},
    AttemptState.RETRY: {AttemptState.ATTEMPT},
    AttemptState.SUCCESS: set(),
    AttemptState.EXHAUSTED: set(),
}


def validate_transition(from_state: AttemptState, to_state: AttemptState) -> None:
    if to_state not in VALID_TRANSITIONS[from_state]:
        raise InvalidTransitionError(from_state, to_state)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff.

    max_retries counts retries after the first attempt, so a policy with
    max_retries=2 makes at most three calls. The delay before retry n
    (1-based) is base_delay * 2**(n-1), capped at max_delay.
    """

    max_retries: int = 2
    base_delay: float = 1.0
    max_delay: float = 10.0

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, retry_number: int) -> float:
        return min(self.base_delay * (2 ** (retry_number - 1)), self.max_delay)

    def next_state(self, succeeded: bool, attempts_made: int) -> AttemptState:
        """State to move to after an attempt finishes."""
        if succeeded:
            return AttemptState.SUCCESS
        if attempts_made < self.max_attempts:
            return AttemptState.RETRY
        return AttemptState.EXHAUSTED


@dataclass
class RetryOutcome:
    """How a retry run ended. `value` is only meaningful on SUCCESS."""

    state: AttemptState
    value: Any = None
    attempts: int = 0
    errors: List[BaseException] = field(default_factory=list)
    history: List[Tuple[AttemptState, AttemptState]] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state == AttemptState.SUCCESS

    @property
    def last_error(self) -> Optional[BaseException]:
        return self.errors[-1] if self.errors else None


def call_with_retry(
    fn: Callable[[], Any],
    policy: RetryPolicy,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
    description: str = "call",
) -> RetryOutcome:
    """Run fn under policy, sleeping between attempts.

    Exceptions listed in retry_on count as failed attempts; anything else
    propagates immediately.
    """
    outcome = RetryOutcome(state=AttemptState.ATTEMPT)

    def move(to_state: AttemptState) -> None:
        validate_transition(outcome.state, to_state)
        outcome.history.append((outcome.state, to_state))
        outcome.state = to_state

    while True:
        outcome.attempts += 1
        try:
            outcome.value = fn()
        except retry_on as e:
            outcome.errors.append(e)
            next_state = policy.next_state(False, outcome.attempts)
            move(next_state)
            if next_state == AttemptState.EXHAUSTED:
                logger.warning(
                    f"{description} failed after {outcome.attempts} attempts: {e}"
                )
                return outcome
            delay = policy.delay_for(outcome.attempts)
            logger.warning(
                f"{description} failed (attempt {outcome.attempts}/{policy.max_attempts}): {e}, "
                f"retrying in {delay:.1f}s"
            )
            sleep(delay)
            move(AttemptState.ATTEMPT)
            continue

        move(policy.next_state(True, outcome.attempts))
        return outcome
