# tests/unit/test_infrastructure.py
# Unit tests for infrastructure components

import pytest
import asyncio
import json


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestRateLimiter:
    """Test rate limiter implementation."""

    def test_sliding_window_allows_requests_under_limit(self):
        from chapter_portal.middleware.rate_limiter import SlidingWindowCounter

        limiter = SlidingWindowCounter(window_size=60, max_requests=10, clock=FakeClock(0.0))

        # First 10 requests should be allowed
        for i in range(10):
            allowed, remaining = limiter.is_allowed("test_client")
            assert allowed, f"Request {i+1} should be allowed"

        # 11th request should be rejected
        allowed, remaining = limiter.is_allowed("test_client")
        assert not allowed, "11th request should be rejected"
        assert remaining == 0

    def test_different_clients_have_separate_limits(self):
        from chapter_portal.middleware.rate_limiter import SlidingWindowCounter

        limiter = SlidingWindowCounter(window_size=60, max_requests=5)

        # Fill up client1's limit
        for _ in range(5):
            limiter.is_allowed("user:alice@example.org")

        # client2 should still be allowed
        allowed, _ = limiter.is_allowed("user:bob@example.org")
        assert allowed, "Different client should have separate limit"

    def test_previous_window_is_weighted(self):
        from chapter_portal.middleware.rate_limiter import SlidingWindowCounter

        clock = FakeClock(0.0)
        limiter = SlidingWindowCounter(window_size=60, max_requests=4, clock=clock)
        for _ in range(4):
            limiter.is_allowed("client")

        # Half way through the next window half of the old count still applies
        clock.now = 90.0
        assert limiter.is_allowed("client")[0]
        assert limiter.is_allowed("client")[0]
        assert not limiter.is_allowed("client")[0]

    def test_cleanup_removes_old_entries(self):
        from chapter_portal.middleware.rate_limiter import SlidingWindowCounter

        clock = FakeClock(0.0)
        limiter = SlidingWindowCounter(window_size=60, max_requests=10, clock=clock)
        limiter.is_allowed("old_client")

        clock.now = 3600.0
        limiter.is_allowed("new_client")

        assert limiter.cleanup_old_entries(max_age=60) == 1
        assert "old_client" not in limiter._counters
        assert "new_client" in limiter._counters


class TestCircuitBreaker:
    """Test circuit breaker implementation."""

    @pytest.mark.asyncio
    async def test_circuit_starts_closed(self):
        from chapter_portal.middleware.circuit_breaker import CircuitBreaker, CircuitState

        cb = CircuitBreaker("test", failure_threshold=3)
        assert cb.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_circuit_opens_after_failures(self):
        from chapter_portal.middleware.circuit_breaker import CircuitBreaker, CircuitState

        cb = CircuitBreaker("test", failure_threshold=3, recovery_timeout=30)

        async def failing_func():
            raise Exception("Test error")

        for _ in range(3):
            with pytest.raises(Exception):
                await cb.call(failing_func)

        assert cb.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_circuit_rejects_when_open(self):
        from chapter_portal.middleware.circuit_breaker import (
            CircuitBreaker, CircuitState, CircuitBreakerError
        )

        cb = CircuitBreaker("test", failure_threshold=1, recovery_timeout=30)

        async def failing_func():
            raise Exception("Test error")

        with pytest.raises(Exception):
            await cb.call(failing_func)

        assert cb.state == CircuitState.OPEN

        async def any_func():
            return "result"

        with pytest.raises(CircuitBreakerError):
            await cb.call(any_func)

    @pytest.mark.asyncio
    async def test_half_open_success_closes_circuit(self):
        from chapter_portal.middleware.circuit_breaker import CircuitBreaker, CircuitState

        clock = FakeClock(0.0)
        cb = CircuitBreaker("test", failure_threshold=1, recovery_timeout=30, clock=clock)

        async def failing_func():
            raise Exception("Test error")

        async def success_func():
            return "ok"

        with pytest.raises(Exception):
            await cb.call(failing_func)

        clock.now = 31.0
        assert await cb.call(success_func) == "ok"
        assert cb.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_ignored_errors_do_not_trip(self):
        from chapter_portal.middleware.circuit_breaker import CircuitBreaker, CircuitState
        from chapter_portal.middleware.error_handler import NotFoundError

        cb = CircuitBreaker("test", failure_threshold=1, ignore=(NotFoundError,))

        async def missing():
            raise NotFoundError("gone")

        with pytest.raises(NotFoundError):
            await cb.call(missing)

        assert cb.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_circuit_success_resets_failure_count(self):
        from chapter_portal.middleware.circuit_breaker import CircuitBreaker

        cb = CircuitBreaker("test", failure_threshold=3)

        async def failing_func():
            raise Exception("Test error")

        for _ in range(2):
            with pytest.raises(Exception):
                await cb.call(failing_func)

        async def success_func():
            return "ok"

        await cb.call(success_func)

        assert cb._failure_count == 0

    def test_circuit_manual_reset(self):
        from chapter_portal.middleware.circuit_breaker import CircuitBreaker, CircuitState

        cb = CircuitBreaker("test", failure_threshold=1)
        cb._state = CircuitState.OPEN
        cb._failure_count = 5

        cb.reset()

        assert cb.state == CircuitState.CLOSED
        assert cb._failure_count == 0


class TestErrorHandler:
    """Test error handler classes."""

    def test_app_error_has_correct_properties(self):
        from chapter_portal.middleware.error_handler import AppError

        error = AppError(
            message="Test error",
            error_code="TEST_ERROR",
            status_code=400,
            details={"field": "value"}
        )

        assert error.message == "Test error"
        assert error.error_code == "TEST_ERROR"
        assert error.status_code == 400
        assert error.details == {"field": "value"}

    def test_backing_service_error_defaults(self):
        from chapter_portal.middleware.error_handler import BackingServiceError

        error = BackingServiceError()

        assert error.error_code == "BACKING_SERVICE_ERROR"
        assert error.status_code == 503

    def test_busy_error_carries_resource(self):
        from chapter_portal.middleware.error_handler import BusyError

        error = BusyError("recruits:101", 2.0)

        assert error.status_code == 503
        assert error.details == {"resource": "recruits:101", "waited_seconds": 2.0}

    def test_validation_error_defaults(self):
        from chapter_portal.middleware.error_handler import ValidationError

        error = ValidationError("Invalid input")

        assert error.error_code == "VALIDATION_ERROR"
        assert error.status_code == 400

    def test_create_error_response_structure(self):
        from chapter_portal.middleware.error_handler import create_error_response

        response = create_error_response(
            error_code="TEST",
            message="Test message",
            status_code=400,
            details={"key": "value"},
            request_id="req-123"
        )

        assert response.status_code == 400
        body = json.loads(response.body)
        assert body["error"]["code"] == "TEST"
        assert body["error"]["details"] == {"key": "value"}
        assert body["error"]["request_id"] == "req-123"


    def test_describe_error_maps_backend_failures(self):
        from chapter_portal.middleware.circuit_breaker import CircuitBreakerError
        from chapter_portal.middleware.error_handler import NotFoundError, describe_error

        assert describe_error(NotFoundError("Poll not found"))[:3] == ("NOT_FOUND", "Poll not found", 404)
        code, _, status, details = describe_error(CircuitBreakerError("sheets:records", 12.34))
        assert (code, status, details) == ("BACKING_SERVICE_ERROR", 503, {"retry_after_seconds": 12.3})
        assert describe_error(asyncio.TimeoutError())[2] == 503
        assert describe_error(RuntimeError("boom")) == (
            "INTERNAL_ERROR", "An internal error occurred. Please try again later.", 500, None
        )


class TestAuditLog:

    def test_audit_line_format(self):
        import logging
        from chapter_portal.utils.logger import log_audit

        records = []

        class _Collect(logging.Handler):
            def emit(self, record):
                records.append(record.getMessage())

        handler = _Collect()
        audit = logging.getLogger("audit")
        audit.addHandler(handler)
        try:
            log_audit("alice@example.org", "roster.delete", "bob@example.org", removed=1)
            log_audit("", "cache.clear")
        finally:
            audit.removeHandler(handler)

        assert records == ["alice@example.org roster.delete bob@example.org removed=1", "system cache.clear"]

    def test_trail_keeps_most_recent_entries(self):
        import logging
        from chapter_portal.utils.logger import AuditTrail, log_audit

        trail = AuditTrail(capacity=3)
        audit = logging.getLogger("audit")
        audit.addHandler(trail)
        try:
            for i in range(5):
                log_audit("alice@example.org", "buttons.delete", f"btn_{i}")
            log_audit("", "cache.clear", count=2)
        finally:
            audit.removeHandler(trail)

        entries = trail.entries()
        assert [e["details"] for e in entries] == ["btn_3", "btn_4", "count=2"]
        assert entries[-1]["email"] == "system"
        assert entries[-1]["action"] == "cache.clear"
        assert trail.to_csv().count("\n") == 4


class TestTimeout:
    """Test timeout decorator."""

    @pytest.mark.asyncio
    async def test_timeout_allows_fast_operations(self):
        from chapter_portal.middleware.circuit_breaker import with_timeout

        @with_timeout(1.0)
        async def fast_func():
            return "done"

        result = await fast_func()
        assert result == "done"

    @pytest.mark.asyncio
    async def test_timeout_raises_on_slow_operations(self):
        from chapter_portal.middleware.circuit_breaker import with_timeout

        @with_timeout(0.1)
        async def slow_func():
            await asyncio.sleep(1.0)
            return "done"

        with pytest.raises(asyncio.TimeoutError):
            await slow_func()
