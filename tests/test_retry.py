"""
Retry state machine tests.

Run with: pytest tests/test_retry.py -v
"""

from unittest.mock import Mock

import pytest

from threadlens.retry import (
    AttemptState,
    InvalidTransitionError,
    RetryPolicy,
    call_with_retry,
    validate_transition,
)


class TestRetryPolicy:
    """Tests for backoff and state decisions."""

    def test_delays_double_and_cap(self):
        """Delay doubles per retry and never exceeds max_delay."""
        policy = RetryPolicy(max_retries=5, base_delay=1.0, max_delay=10.0)
        assert [policy.delay_for(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 10.0]

    def test_max_attempts_includes_first_call(self):
        """max_retries=2 means three calls."""
        assert RetryPolicy(max_retries=2).max_attempts == 3

    def test_next_state(self):
        """Failures retry until attempts run out, then exhaust."""
        policy = RetryPolicy(max_retries=1)
        assert policy.next_state(True, 1) == AttemptState.SUCCESS
        assert policy.next_state(False, 1) == AttemptState.RETRY
        assert policy.next_state(False, 2) == AttemptState.EXHAUSTED

    def test_negative_retries_rejected(self):
        """A policy cannot have negative retries."""
        with pytest.raises(ValueError):
            RetryPolicy(max_retries=-1)


class TestTransitions:
    """Tests for the transition table."""

    def test_terminal_states_have_no_exits(self):
        """SUCCESS and EXHAUSTED are terminal."""
        with pytest.raises(InvalidTransitionError):
            validate_transition(AttemptState.SUCCESS, AttemptState.ATTEMPT)
        with pytest.raises(InvalidTransitionError):
            validate_transition(AttemptState.EXHAUSTED, AttemptState.RETRY)

    def test_retry_only_returns_to_attempt(self):
        """RETRY can only go back to ATTEMPT."""
        validate_transition(AttemptState.RETRY, AttemptState.ATTEMPT)
        with pytest.raises(InvalidTransitionError):
            validate_transition(AttemptState.RETRY, AttemptState.SUCCESS)


class TestCallWithRetry:
    """Tests for driving a callable through the state machine."""

    def test_success_first_try(self):
        """No sleep when the first call succeeds."""
        sleep = Mock()
        outcome = call_with_retry(lambda: "ok", RetryPolicy(), sleep=sleep)

        assert outcome.succeeded
        assert outcome.value == "ok"
        assert outcome.attempts == 1
        sleep.assert_not_called()

    def test_recovers_after_failures(self):
        """Transient failures are retried with backoff between attempts."""
        fn = Mock(side_effect=[RuntimeError("a"), RuntimeError("b"), "done"])
        sleep = Mock()

        outcome = call_with_retry(fn, RetryPolicy(max_retries=2, base_delay=1.0), sleep=sleep)

        assert outcome.succeeded
        assert outcome.value == "done"
        assert outcome.attempts == 3
        assert [c.args[0] for c in sleep.call_args_list] == [1.0, 2.0]
        assert outcome.history == [
            (AttemptState.ATTEMPT, AttemptState.RETRY),
            (AttemptState.RETRY, AttemptState.ATTEMPT),
            (AttemptState.ATTEMPT, AttemptState.RETRY),
            (AttemptState.RETRY, AttemptState.ATTEMPT),
            (AttemptState.ATTEMPT, AttemptState.SUCCESS),
        ]

    def test_exhausts_without_raising(self):
        """After the last attempt fails the outcome is EXHAUSTED, not an exception."""
        fn = Mock(side_effect=RuntimeError("down"))
        sleep = Mock()

        outcome = call_with_retry(fn, RetryPolicy(max_retries=2), sleep=sleep)

        assert outcome.state == AttemptState.EXHAUSTED
        assert not outcome.succeeded
        assert fn.call_count == 3
        assert sleep.call_count == 2
        assert str(outcome.last_error) == "down"

    def test_unlisted_exceptions_propagate(self):
        """Exceptions outside retry_on are not swallowed."""
        fn = Mock(side_effect=KeyError("bug"))
        with pytest.raises(KeyError):
            call_with_retry(fn, RetryPolicy(), retry_on=(RuntimeError,), sleep=Mock())
        assert fn.call_count == 1

    def test_zero_retries(self):
        """max_retries=0 makes a single attempt."""
        fn = Mock(side_effect=RuntimeError("x"))
        outcome = call_with_retry(fn, RetryPolicy(max_retries=0), sleep=Mock())
        assert outcome.state == AttemptState.EXHAUSTED
        assert fn.call_count == 1
