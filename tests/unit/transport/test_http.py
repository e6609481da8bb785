# tests/unit/transport/test_http.py
"""Unit tests for HTTPTransport.

Tests cover:
- Request shape (URL, auth header, content type, gzip)
- Response parsing (assigned id, empty id, invalid bodies)
- Retry schedule: every non-2xx status retried, exhaustion
- Timeout surfacing with an empty schedule
- Rate-limit headers applied on every response and re-checked before retries
"""

import gzip
from collections.abc import Iterator

import httpx
import pytest
import respx

from faultline.contracts import DataCategory
from faultline.dsn import Dsn
from faultline.rate_limit import RateLimiter
from faultline.transport.errors import ClientError, ClientErrorReason
from faultline.transport.http import HTTPTransport
from tests.helpers import DSN, ENVELOPE_URL, FakeClock

BODY = b'{"event_id":"abc"}\n{"type":"event","length":2}\n{}\n'


@pytest.fixture
def router() -> Iterator[respx.MockRouter]:
    with respx.mock(assert_all_called=False) as router:
        yield router


@pytest.fixture
def limiter(clock: FakeClock) -> RateLimiter:
    return RateLimiter(clock=clock)


@pytest.fixture
def sleeps() -> list[float]:
    return []


def _transport(limiter: RateLimiter, sleeps: list[float], **kwargs) -> HTTPTransport:
    return HTTPTransport(Dsn.parse(DSN), rate_limiter=limiter, client_name="faultline.python/test", sleep=sleeps.append, **kwargs)


class TestRequest:
    def test_posts_envelope_with_auth(self, router: respx.MockRouter, limiter: RateLimiter, sleeps: list[float]) -> None:
        route = router.post(ENVELOPE_URL).mock(return_value=httpx.Response(200, json={"id": "srv-1"}))
        transport = _transport(limiter, sleeps)

        response = transport.send(BODY, DataCategory.ERROR)

        request = route.calls.last.request
        assert response.event_id == "srv-1"
        assert response.attempts == 1
        assert request.content == BODY
        assert request.headers["Content-Type"] == "application/x-sentry-envelope"
        assert request.headers["X-Sentry-Auth"].startswith("Sentry sentry_version=7, sentry_client=faultline.python/test")
        assert "sentry_key=public" in request.headers["X-Sentry-Auth"]
        assert "Content-Encoding" not in request.headers
        transport.close()

    def test_gzip(self, router: respx.MockRouter, limiter: RateLimiter, sleeps: list[float]) -> None:
        route = router.post(ENVELOPE_URL).mock(return_value=httpx.Response(200, json={"id": "srv-1"}))
        transport = _transport(limiter, sleeps, gzip_body=True)

        transport.send(BODY, DataCategory.ERROR)

        request = route.calls.last.request
        assert request.headers["Content-Encoding"] == "gzip"
        assert gzip.decompress(request.content) == BODY
        transport.close()


class TestResponse:
    def test_empty_id(self, router: respx.MockRouter, limiter: RateLimiter, sleeps: list[float]) -> None:
        router.post(ENVELOPE_URL).mock(return_value=httpx.Response(200, json={"id": ""}))

        assert _transport(limiter, sleeps).send(BODY, DataCategory.ERROR).event_id == ""

    def test_missing_id_and_empty_body(self, router: respx.MockRouter, limiter: RateLimiter, sleeps: list[float]) -> None:
        router.post(ENVELOPE_URL).mock(side_effect=[httpx.Response(200, json={}), httpx.Response(200)])
        transport = _transport(limiter, sleeps)

        assert transport.send(BODY, DataCategory.ERROR).event_id == ""
        assert transport.send(BODY, DataCategory.ERROR).event_id == ""

    def test_invalid_json_body(self, router: respx.MockRouter, limiter: RateLimiter, sleeps: list[float]) -> None:
        router.post(ENVELOPE_URL).mock(return_value=httpx.Response(200, text="<html>ok</html>"))

        with pytest.raises(ClientError) as exc_info:
            _transport(limiter, sleeps).send(BODY, DataCategory.ERROR, retries=[1.0])

        assert exc_info.value.reason is ClientErrorReason.INVALID_RESPONSE
        assert exc_info.value.attempts == 1
        assert sleeps == []

    def test_rate_limit_headers_applied_on_success(
        self, router: respx.MockRouter, limiter: RateLimiter, sleeps: list[float]
    ) -> None:
        router.post(ENVELOPE_URL).mock(
            return_value=httpx.Response(200, json={"id": "x"}, headers={"X-Sentry-Rate-Limits": "60:transaction"})
        )

        _transport(limiter, sleeps).send(BODY, DataCategory.ERROR)

        assert limiter.check(DataCategory.TRANSACTION) is False
        assert limiter.check(DataCategory.ERROR) is True

    def test_retry_after_applied_on_error(self, router: respx.MockRouter, limiter: RateLimiter, sleeps: list[float]) -> None:
        router.post(ENVELOPE_URL).mock(return_value=httpx.Response(503, headers={"Retry-After": "30"}))

        with pytest.raises(ClientError):
            _transport(limiter, sleeps).send(BODY, DataCategory.ERROR)

        assert limiter.check(DataCategory.CHECK_IN) is False


class TestRetries:
    def test_retryable_status_then_success(self, router: respx.MockRouter, limiter: RateLimiter, sleeps: list[float]) -> None:
        route = router.post(ENVELOPE_URL).mock(
            side_effect=[httpx.Response(503), httpx.Response(200, json={"id": "srv-2"})]
        )

        response = _transport(limiter, sleeps).send(BODY, DataCategory.ERROR, retries=[1.0, 2.0])

        assert response.event_id == "srv-2"
        assert response.attempts == 2
        assert route.call_count == 2
        assert sleeps == [1.0]

    def test_schedule_exhausted(self, router: respx.MockRouter, limiter: RateLimiter, sleeps: list[float]) -> None:
        route = router.post(ENVELOPE_URL).mock(return_value=httpx.Response(500, text="boom"))

        with pytest.raises(ClientError) as exc_info:
            _transport(limiter, sleeps).send(BODY, DataCategory.ERROR, retries=[0.1, 0.2])

        error = exc_info.value
        assert error.reason is ClientErrorReason.SERVER_ERROR
        assert error.status_code == 500
        assert error.attempts == 3
        assert route.call_count == 3
        assert sleeps == [0.1, 0.2]

    def test_client_error_status_retried_on_schedule(
        self, router: respx.MockRouter, limiter: RateLimiter, sleeps: list[float]
    ) -> None:
        route = router.post(ENVELOPE_URL).mock(return_value=httpx.Response(400, text="bad envelope"))

        with pytest.raises(ClientError) as exc_info:
            _transport(limiter, sleeps).send(BODY, DataCategory.ERROR, retries=[0.0, 0.0])

        assert exc_info.value.status_code == 400
        assert exc_info.value.reason is ClientErrorReason.SERVER_ERROR
        assert exc_info.value.attempts == 3
        assert route.call_count == 3
        assert sleeps == [0.0, 0.0]

    @pytest.mark.parametrize("status_code", [401, 413])
    def test_any_non_success_status_then_success(
        self, router: respx.MockRouter, limiter: RateLimiter, sleeps: list[float], status_code: int
    ) -> None:
        router.post(ENVELOPE_URL).mock(side_effect=[httpx.Response(status_code), httpx.Response(200, json={"id": "late"})])

        assert _transport(limiter, sleeps).send(BODY, DataCategory.ERROR, retries=[0.5]).event_id == "late"

    def test_connection_error_retried(self, router: respx.MockRouter, limiter: RateLimiter, sleeps: list[float]) -> None:
        router.post(ENVELOPE_URL).mock(
            side_effect=[httpx.ConnectError("refused"), httpx.Response(200, json={"id": "ok"})]
        )

        assert _transport(limiter, sleeps).send(BODY, DataCategory.ERROR, retries=[0.5]).event_id == "ok"

    def test_connection_error_surfaced(self, router: respx.MockRouter, limiter: RateLimiter, sleeps: list[float]) -> None:
        router.post(ENVELOPE_URL).mock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(ClientError) as exc_info:
            _transport(limiter, sleeps).send(BODY, DataCategory.ERROR)

        assert exc_info.value.reason is ClientErrorReason.CONNECTION_ERROR
        assert isinstance(exc_info.value.cause, httpx.ConnectError)

    def test_retry_blocked_by_fresh_rate_limit(
        self, router: respx.MockRouter, limiter: RateLimiter, sleeps: list[float]
    ) -> None:
        route = router.post(ENVELOPE_URL).mock(
            return_value=httpx.Response(429, headers={"X-Sentry-Rate-Limits": "60:error:key"})
        )

        with pytest.raises(ClientError) as exc_info:
            _transport(limiter, sleeps).send(BODY, DataCategory.ERROR, retries=[1.0, 1.0])

        assert exc_info.value.reason is ClientErrorReason.RATE_LIMITED
        assert exc_info.value.backed_off
        assert exc_info.value.status_code == 429
        assert exc_info.value.attempts == 1
        assert route.call_count == 1

    def test_blocked_retry_keeps_last_server_status(
        self, router: respx.MockRouter, limiter: RateLimiter, sleeps: list[float]
    ) -> None:
        route = router.post(ENVELOPE_URL).mock(
            side_effect=[
                httpx.Response(500),
                httpx.Response(503, headers={"X-Sentry-Rate-Limits": "60:error:key"}),
            ]
        )

        with pytest.raises(ClientError) as exc_info:
            _transport(limiter, sleeps).send(BODY, DataCategory.ERROR, retries=[0.0, 0.0, 0.0])

        assert exc_info.value.backed_off
        assert exc_info.value.status_code == 503
        assert exc_info.value.attempts == 2
        assert route.call_count == 2
        assert sleeps == [0.0, 0.0]


class TestTimeout:
    def test_timeout_with_empty_schedule_is_timeout_failure(
        self, router: respx.MockRouter, limiter: RateLimiter, sleeps: list[float]
    ) -> None:
        route = router.post(ENVELOPE_URL).mock(side_effect=httpx.ReadTimeout("timed out"))

        with pytest.raises(ClientError) as exc_info:
            _transport(limiter, sleeps, timeout=0.5).send(BODY, DataCategory.ERROR, retries=[])

        error = exc_info.value
        assert error.reason is ClientErrorReason.TIMEOUT
        assert isinstance(error.cause, httpx.TimeoutException)
        assert error.attempts == 1
        assert route.call_count == 1

    def test_timeout_follows_schedule(self, router: respx.MockRouter, limiter: RateLimiter, sleeps: list[float]) -> None:
        route = router.post(ENVELOPE_URL).mock(side_effect=httpx.ConnectTimeout("timed out"))

        with pytest.raises(ClientError) as exc_info:
            _transport(limiter, sleeps).send(BODY, DataCategory.ERROR, retries=[0.1])

        assert exc_info.value.reason is ClientErrorReason.TIMEOUT
        assert route.call_count == 2
