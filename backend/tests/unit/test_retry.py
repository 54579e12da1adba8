"""Tests for exponential-backoff retry."""

from unittest.mock import MagicMock

import pytest

from integrations.exceptions import (
    MalformedResponseError,
    PermanentProviderError,
    TransientProviderError,
)
from services.retry import calculate_backoff_delay, with_retry


class RecordingSleep:
    def __init__(self):
        self.delays = []

    def __call__(self, seconds):
        self.delays.append(seconds)


class TestCalculateBackoffDelay:
    def test_doubles_each_attempt(self):
        assert [calculate_backoff_delay(n, 1.0) for n in range(1, 5)] == [1.0, 2.0, 4.0, 8.0]

    def test_respects_base_delay(self):
        assert calculate_backoff_delay(3, 0.5) == 2.0

    def test_caps_at_max_delay(self):
        assert calculate_backoff_delay(10, 1.0, max_delay=30.0) == 30.0

    def test_uncapped_without_max(self):
        assert calculate_backoff_delay(6, 1.0) == 32.0


class TestWithRetry:
    def test_success_first_try(self):
        operation = MagicMock(return_value="ok")
        sleep = RecordingSleep()

        assert with_retry(operation, sleep=sleep) == "ok"
        operation.assert_called_once()
        assert sleep.delays == []

    def test_transient_then_success(self):
        operation = MagicMock(
            side_effect=[
                TransientProviderError("down", error_code="INSTITUTION_DOWN"),
                TransientProviderError("down", error_code="INSTITUTION_DOWN"),
                "ok",
            ]
        )
        sleep = RecordingSleep()

        assert with_retry(operation, sleep=sleep) == "ok"
        assert operation.call_count == 3
        assert sleep.delays == [1.0, 2.0]

    def test_gives_up_after_max_retries(self):
        error = TransientProviderError("rate limited", error_code="RATE_LIMIT_EXCEEDED")
        operation = MagicMock(side_effect=error)
        sleep = RecordingSleep()

        with pytest.raises(TransientProviderError) as exc_info:
            with_retry(operation, max_retries=4, sleep=sleep)

        assert exc_info.value is error
        assert operation.call_count == 5
        assert sleep.delays == [1.0, 2.0, 4.0, 8.0]

    def test_delays_capped(self):
        operation = MagicMock(side_effect=TransientProviderError("down"))
        sleep = RecordingSleep()

        with pytest.raises(TransientProviderError):
            with_retry(operation, max_retries=4, max_delay=3.0, sleep=sleep)

        assert sleep.delays == [1.0, 2.0, 3.0, 3.0]

    def test_permanent_error_not_retried(self):
        operation = MagicMock(side_effect=PermanentProviderError("bad login"))
        sleep = RecordingSleep()

        with pytest.raises(PermanentProviderError):
            with_retry(operation, sleep=sleep)

        operation.assert_called_once()
        assert sleep.delays == []

    def test_malformed_response_not_retried(self):
        operation = MagicMock(side_effect=MalformedResponseError("no cursor"))

        with pytest.raises(MalformedResponseError):
            with_retry(operation, sleep=RecordingSleep())
        operation.assert_called_once()

    def test_plain_exception_not_retried(self):
        operation = MagicMock(side_effect=ValueError("bug"))

        with pytest.raises(ValueError):
            with_retry(operation, sleep=RecordingSleep())
        operation.assert_called_once()

    def test_zero_retries_calls_once(self):
        operation = MagicMock(side_effect=TransientProviderError("down"))

        with pytest.raises(TransientProviderError):
            with_retry(operation, max_retries=0, sleep=RecordingSleep())
        operation.assert_called_once()

    def test_on_retry_called_before_each_wait(self):
        events = []
        error = TransientProviderError("down")
        operation = MagicMock(side_effect=[error, error, "ok"])

        def on_retry(attempt, exc, delay):
            events.append(("retry", attempt, exc, delay))

        def sleep(seconds):
            events.append(("sleep", seconds))

        with_retry(operation, on_retry=on_retry, sleep=sleep)

        assert events == [
            ("retry", 1, error, 1.0),
            ("sleep", 1.0),
            ("retry", 2, error, 2.0),
            ("sleep", 2.0),
        ]

    def test_custom_predicate(self):
        operation = MagicMock(side_effect=[KeyError("x"), "ok"])

        result = with_retry(
            operation,
            is_retryable=lambda e: isinstance(e, KeyError),
            sleep=RecordingSleep(),
        )
        assert result == "ok"
