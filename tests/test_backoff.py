import pytest
import requests

from gratbox.backoff import BackoffCaller, classify_exception
from gratbox.errors import FatalError, RetriesExhaustedError, TransientError


class FlakyCall:
    """Raises the queued errors in order, then returns `result`."""

    def __init__(self, errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.attempts = 0

    def __call__(self, *args, **kwargs):
        self.attempts += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


def test_three_503s_then_success(caller, sleeps):
    fn = FlakyCall([TransientError("unavailable", status_code=503) for _ in range(3)], result={"value": []})

    assert caller.call(fn) == {"value": []}
    assert fn.attempts == 4
    assert sleeps == [2, 4, 8]


def test_n_transient_failures_make_n_plus_one_attempts(sleeps):
    caller = BackoffCaller(max_retries=8, base_delay=2, max_delay=10, sleep=sleeps.append)
    fn = FlakyCall([TransientError("throttled", status_code=429) for _ in range(7)])

    caller.call(fn)

    assert fn.attempts == 8
    assert len(sleeps) == 7
    assert all(delay <= 10 for delay in sleeps)
    assert sleeps == [2, 4, 8, 10, 10, 10, 10]


def test_fatal_error_is_not_retried(caller, sleeps):
    error = FatalError("not found", status_code=404)
    fn = FlakyCall([error])

    with pytest.raises(FatalError) as info:
        caller.call(fn)

    assert info.value is error
    assert fn.attempts == 1
    assert sleeps == []


def test_exhausted_retries_raise_terminal_error(sleeps):
    caller = BackoffCaller(max_retries=2, base_delay=1, max_delay=60, sleep=sleeps.append)
    last = TransientError("still down", status_code=502)
    fn = FlakyCall([TransientError("down", status_code=502), TransientError("down", status_code=502), last])

    with pytest.raises(RetriesExhaustedError) as info:
        caller.call(fn)

    assert isinstance(info.value, FatalError)
    assert info.value.last_error is last
    assert info.value.attempts == 3
    assert info.value.status_code == 502
    assert sleeps == [1, 2]


def test_retry_after_raises_delay_but_not_past_max(sleeps):
    caller = BackoffCaller(max_retries=3, base_delay=2, max_delay=60, sleep=sleeps.append)
    fn = FlakyCall(
        [
            TransientError("throttled", status_code=429, retry_after=30),
            TransientError("throttled", status_code=429, retry_after=600),
        ]
    )

    caller.call(fn)

    assert sleeps == [30, 60]


def test_untyped_network_errors_are_retried(caller, sleeps):
    fn = FlakyCall([requests.ConnectionError("reset by peer"), requests.Timeout("read timed out")])

    assert caller.call(fn) == "ok"
    assert sleeps == [2, 4]


def test_arguments_are_passed_through(caller):
    calls = []

    def fn(method, url, json=None):
        calls.append((method, url, json))
        return "done"

    assert caller.call(fn, "POST", "groups/x", json={"a": 1}) == "done"
    assert calls == [("POST", "groups/x", {"a": 1})]


@pytest.mark.parametrize(
    "exc, expected",
    [
        (requests.ConnectionError("boom"), TransientError),
        (requests.Timeout("slow"), TransientError),
        (RuntimeError("Request was throttled, try later"), TransientError),
        (RuntimeError("The operation timed out"), TransientError),
        (ValueError("bad payload"), FatalError),
        (KeyError("id"), FatalError),
    ],
)
def test_classify_exception(exc, expected):
    assert isinstance(classify_exception(exc), expected)


def test_classify_uses_response_status_before_message():
    response = requests.Response()
    response.status_code = 504
    error = requests.HTTPError("something odd", response=response)

    classified = classify_exception(error)

    assert isinstance(classified, TransientError)
    assert classified.status_code == 504


def test_delay_for_is_capped():
    caller = BackoffCaller(base_delay=2, max_delay=60)
    assert [caller.delay_for(n) for n in range(1, 8)] == [2, 4, 8, 16, 32, 60, 60]
