"""Unit tests for the transient-error retry decorator."""

from unittest.mock import MagicMock

import httpx
import pytest

from src.services.retry import is_transient_error, with_retry


def _status_error(code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://example.com")
    return httpx.HTTPStatusError("error", request=request, response=httpx.Response(code, request=request))


class TestIsTransientError:
    @pytest.mark.parametrize("code", [429, 500, 502, 503, 504])
    def test_retryable_status_codes(self, code: int) -> None:
        assert is_transient_error(_status_error(code))

    @pytest.mark.parametrize("code", [400, 401, 404, 413])
    def test_client_errors_are_not_retried(self, code: int) -> None:
        assert not is_transient_error(_status_error(code))

    def test_transport_errors_are_retried(self) -> None:
        assert is_transient_error(httpx.ConnectTimeout("timed out"))

    def test_other_exceptions_are_not_retried(self) -> None:
        assert not is_transient_error(ValueError("bad"))


class TestWithRetry:
    def test_backs_off_exponentially_then_succeeds(self) -> None:
        sleep = MagicMock()
        func = MagicMock(side_effect=[httpx.ConnectError("a"), httpx.ConnectError("b"), "ok"])
        func.__name__ = "func"

        result = with_retry(max_attempts=3, sleep=sleep)(func)()

        assert result == "ok"
        assert [c.args[0] for c in sleep.call_args_list] == [1.0, 2.0]

    def test_raises_last_error_after_max_attempts(self) -> None:
        sleep = MagicMock()
        func = MagicMock(side_effect=_status_error(503))
        func.__name__ = "func"

        with pytest.raises(httpx.HTTPStatusError):
            with_retry(max_attempts=3, sleep=sleep)(func)()

        assert func.call_count == 3

    def test_delay_is_capped(self) -> None:
        sleep = MagicMock()
        func = MagicMock(side_effect=[httpx.ConnectError("x")] * 3 + ["ok"])
        func.__name__ = "func"

        with_retry(max_attempts=4, initial_delay=10.0, max_delay=15.0, sleep=sleep)(func)()

        assert [c.args[0] for c in sleep.call_args_list] == [10.0, 15.0, 15.0]

    def test_non_retryable_error_propagates_immediately(self) -> None:
        sleep = MagicMock()
        func = MagicMock(side_effect=ValueError("bad input"))
        func.__name__ = "func"

        with pytest.raises(ValueError):
            with_retry(sleep=sleep)(func)()

        func.assert_called_once()
        sleep.assert_not_called()
