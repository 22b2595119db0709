# tests/test_retry.py
"""
Retry with exponential backoff
"""
import pytest
import requests
from unittest.mock import MagicMock

from momentum_backend.modules.shared.retry import retry_with_backoff, is_retryable_error


def _http_error(status):
    return requests.HTTPError(response=MagicMock(status_code=status))


@pytest.mark.parametrize("error, retryable", [
    (requests.ConnectionError(), True),
    (requests.Timeout(), True),
    (TimeoutError(), True),
    (_http_error(500), True),
    (_http_error(503), True),
    (_http_error(429), True),
    (_http_error(408), True),
    (_http_error(400), False),
    (_http_error(401), False),
    (_http_error(404), False),
    (RuntimeError("unknown"), True),
])
def test_is_retryable_error(error, retryable):
    assert is_retryable_error(error) is retryable


def test_succeeds_after_transient_failures():
    delays = []
    fn = MagicMock(side_effect=[requests.ConnectionError(), _http_error(503), "ok"])

    assert retry_with_backoff(fn, max_retries=3, initial_delay=1.0, sleep=delays.append) == "ok"
    assert fn.call_count == 3
    assert 1.0 <= delays[0] <= 1.3
    assert 2.0 <= delays[1] <= 2.6


def test_gives_up_after_max_retries():
    delays = []
    fn = MagicMock(side_effect=requests.Timeout("slow"))

    with pytest.raises(requests.Timeout):
        retry_with_backoff(fn, max_retries=2, initial_delay=0.5, sleep=delays.append)
    assert fn.call_count == 3
    assert len(delays) == 2


def test_non_retryable_raises_immediately():
    sleep = MagicMock()
    fn = MagicMock(side_effect=_http_error(401))

    with pytest.raises(requests.HTTPError):
        retry_with_backoff(fn, sleep=sleep)
    assert fn.call_count == 1
    sleep.assert_not_called()


def test_custom_predicate():
    fn = MagicMock(side_effect=[ValueError("flaky"), "done"])
    assert retry_with_backoff(fn, should_retry=lambda e: isinstance(e, ValueError), sleep=lambda _: None) == "done"
