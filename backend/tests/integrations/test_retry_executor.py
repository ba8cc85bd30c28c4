from __future__ import annotations

from types import SimpleNamespace

import pytest
import requests

from catalog_hub.integrations.marketplace.errors import (
    MarketplaceAuthError, MarketplaceClientError, MarketplaceError, MarketplaceNetworkError,
    MarketplacePayloadError, MarketplaceRateLimitError, MarketplaceServerError,
)
from catalog_hub.integrations.marketplace.http_client import MarketplaceHttpClient
from catalog_hub.integrations.marketplace.retry import RetryExecutor, is_retryable
from catalog_hub.utils.backoff import calc_next_delay


def _flaky(errors, value="ok"):
    """Raises the given errors in order, then returns value."""
    calls = {"n": 0}

    def fn():
        calls["n"] += 1
        if errors:
            raise errors.pop(0)
        return value
    return fn, calls


# ---------- backoff ----------
def test_backoff_doubles_from_base_and_caps():
    assert [calc_next_delay(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]
    assert calc_next_delay(10, base_seconds=1.0, max_seconds=30.0) == 30.0


# ---------- classification ----------
@pytest.mark.parametrize(
    "exc, expected",
    [
        (MarketplaceRateLimitError("slow down", status_code=429), True),
        (MarketplaceServerError("boom", status_code=503), True),
        (MarketplaceNetworkError("reset by peer"), True),
        (MarketplaceClientError("bad request", status_code=400), False),
        (MarketplaceAuthError("forbidden", status_code=403), False),
        (MarketplaceError("gateway", status_code=502), True),
        (RuntimeError("Rate limit exceeded"), True),
        (ValueError("bad input"), False),
    ],
)
def test_is_retryable(exc, expected):
    assert is_retryable(exc) is expected


def test_status_code_beats_message_text():
    # a 400 mentioning "rate limit" in its body is still a client error
    assert not is_retryable(MarketplaceClientError("rate limit docs link", status_code=400))


# ---------- executor ----------
def test_gives_up_after_max_attempts_and_reraises_same_error(sleeps):
    last = MarketplaceServerError("third", status_code=500)
    fn, calls = _flaky([MarketplaceServerError("first", status_code=500),
                        MarketplaceServerError("second", status_code=500), last])

    with pytest.raises(MarketplaceServerError) as info:
        RetryExecutor(max_attempts=3, base_delay=1.0, sleep=sleeps.append).call(fn)

    assert info.value is last
    assert calls["n"] == 3
    assert sleeps == [1.0, 2.0]


def test_recovers_after_transient_failures(sleeps):
    fn, calls = _flaky([MarketplaceRateLimitError("429", status_code=429)] * 3, value={"ok": True})
    out = RetryExecutor(max_attempts=4, base_delay=1.0, sleep=sleeps.append).call(fn)

    assert out == {"ok": True}
    assert calls["n"] == 4
    assert sleeps == [1.0, 2.0, 4.0]


def test_non_retryable_fails_fast(sleeps):
    fn, calls = _flaky([MarketplaceClientError("400", status_code=400)])
    with pytest.raises(MarketplaceClientError):
        RetryExecutor(max_attempts=5, sleep=sleeps.append).call(fn)
    assert calls["n"] == 1
    assert sleeps == []


def test_single_attempt_means_no_retry(sleeps):
    fn, calls = _flaky([MarketplaceServerError("500", status_code=500)])
    with pytest.raises(MarketplaceServerError):
        RetryExecutor(max_attempts=1, sleep=sleeps.append).call(fn)
    assert calls["n"] == 1


# ---------- http client status mapping ----------
class _FakeResponse:
    def __init__(self, status_code, body=None, text=None):
        self.status_code = status_code
        self._body = body
        self.text = text if text is not None else ("" if body is None else str(body))
        self.headers = {"Content-Type": "application/json"}

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body


class _FakeSession:
    """Replays canned responses (or raises canned exceptions) for session.request()."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []
        self.closed = False

    def request(self, method, url, **kwargs):
        self.requests.append(SimpleNamespace(method=method, url=url, **kwargs))
        nxt = self.responses.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return nxt

    def close(self):
        self.closed = True


def _client(session, sleeps):
    return MarketplaceHttpClient(
        "https://api.example.test",
        headers={"Api-Key": "k"},
        rate_limit_per_min=None,
        retry=RetryExecutor(max_attempts=3, base_delay=1.0, sleep=sleeps.append),
        session=session,
    )


def test_client_retries_5xx_then_returns_json(sleeps):
    session = _FakeSession(_FakeResponse(502, text="bad gateway"), _FakeResponse(200, {"result": []}))
    data = _client(session, sleeps).post_json("/v3/product/list", {"limit": 1})

    assert data == {"result": []}
    assert sleeps == [1.0]
    first = session.requests[0]
    assert first.method == "POST"
    assert first.url == "https://api.example.test/v3/product/list"
    assert first.headers["Api-Key"] == "k"
    assert first.json == {"limit": 1}


def test_client_maps_network_errors_and_retries(sleeps):
    session = _FakeSession(requests.ConnectionError("reset"), _FakeResponse(200, {"ok": 1}))
    assert _client(session, sleeps).get_json("ping") == {"ok": 1}
    assert sleeps == [1.0]


@pytest.mark.parametrize(
    "status, exc",
    [(401, MarketplaceAuthError), (403, MarketplaceAuthError), (404, MarketplaceClientError)],
)
def test_client_does_not_retry_4xx(sleeps, status, exc):
    session = _FakeSession(_FakeResponse(status, text="nope"))
    with pytest.raises(exc) as info:
        _client(session, sleeps).get_json("/x")
    assert info.value.status_code == status
    assert len(session.requests) == 1
    assert sleeps == []


def test_client_429_exhausts_retries(sleeps):
    session = _FakeSession(*[_FakeResponse(429, text="slow") for _ in range(3)])
    with pytest.raises(MarketplaceRateLimitError):
        _client(session, sleeps).get_json("/x")
    assert len(session.requests) == 3
    assert sleeps == [1.0, 2.0]


def test_client_non_json_body_is_payload_error(sleeps):
    session = _FakeSession(_FakeResponse(200, body=None, text="<html>"))
    with pytest.raises(MarketplacePayloadError):
        _client(session, sleeps).get_json("/x")


def test_client_close_closes_session(sleeps):
    session = _FakeSession()
    _client(session, sleeps).close()
    assert session.closed


def test_explicit_zero_attempts_is_rejected():
    with pytest.raises(ValueError):
        RetryExecutor(max_attempts=0)
