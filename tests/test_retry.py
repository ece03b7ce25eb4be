"""Tests for retry.py - bounded retry policy."""

import pytest

from mediguard.retry import call_with_retry, is_client_error, should_retry


class Failure(Exception):
    def __init__(self, status=None):
        super().__init__(f"status {status}")
        self.status = status


class TestShouldRetry:
    def test_server_errors_retry_twice(self):
        assert should_retry(0, 500)
        assert should_retry(1, 500)
        assert not should_retry(2, 500)

    def test_client_errors_never_retry(self):
        for status in (400, 401, 404, 429, 499):
            assert not should_retry(0, status)

    def test_network_errors_retry(self):
        assert should_retry(0, None)

    def test_custom_limit(self):
        assert not should_retry(0, 503, max_retries=0)

    def test_is_client_error(self):
        assert is_client_error(400)
        assert not is_client_error(500)
        assert not is_client_error(None)


class TestCallWithRetry:
    def test_recovers_after_transient_failures(self):
        attempts = []

        def operation():
            attempts.append(1)
            if len(attempts) < 3:
                raise Failure(502)
            return "ok"

        assert call_with_retry(operation) == "ok"
        assert len(attempts) == 3

    def test_gives_up_after_limit(self):
        attempts = []

        def operation():
            attempts.append(1)
            raise Failure(500)

        with pytest.raises(Failure):
            call_with_retry(operation)
        assert len(attempts) == 3

    def test_client_error_is_not_retried(self):
        attempts = []

        def operation():
            attempts.append(1)
            raise Failure(400)

        with pytest.raises(Failure):
            call_with_retry(operation)
        assert len(attempts) == 1

    def test_only_listed_errors_are_retried(self):
        attempts = []

        def operation():
            attempts.append(1)
            raise KeyError("boom")

        with pytest.raises(KeyError):
            call_with_retry(operation, retry_on=(Failure,))
        assert len(attempts) == 1
