"""Tests for spawn retry backoff."""
import pytest

from mcp_addrconf.utils.retry import with_retry, RETRYABLE_EXCEPTIONS


class Flaky:
    """Coroutine that raises ``exc`` for the first ``failures`` calls."""

    def __init__(self, failures, exc=BlockingIOError):
        self.failures = failures
        self.exc = exc
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc("Resource temporarily unavailable")
        return self.calls


class TestWithRetry:
    """Tests for the retry decorator."""

    @pytest.mark.asyncio
    async def test_first_try(self):
        flaky = Flaky(0)
        assert await with_retry()(flaky)() == 1
        assert flaky.calls == 1

    @pytest.mark.asyncio
    async def test_recovers_after_eagain(self):
        flaky = Flaky(2)
        wrapped = with_retry(max_attempts=3, min_wait=0.01, max_wait=0.05)(flaky)
        assert await wrapped() == 3

    @pytest.mark.asyncio
    async def test_gives_up(self, caplog):
        """The original exception surfaces after the last attempt."""
        flaky = Flaky(10)
        wrapped = with_retry(max_attempts=3, min_wait=0.01, max_wait=0.05)(flaky)
        with pytest.raises(BlockingIOError):
            await wrapped()
        assert flaky.calls == 3
        assert "attempt 1/3 failed" in caplog.text

    @pytest.mark.asyncio
    async def test_missing_program_not_retried(self):
        flaky = Flaky(10, exc=FileNotFoundError)
        with pytest.raises(FileNotFoundError):
            await with_retry(min_wait=0.01)(flaky)()
        assert flaky.calls == 1

    @pytest.mark.asyncio
    async def test_custom_exceptions(self):
        flaky = Flaky(10, exc=ValueError)
        with pytest.raises(ValueError):
            await with_retry(max_attempts=2, min_wait=0.01, exceptions=(ValueError,))(flaky)()
        assert flaky.calls == 2

    @pytest.mark.asyncio
    async def test_keeps_metadata(self):
        @with_retry()
        async def spawn_script():
            """Start it."""
            return "ok"

        assert spawn_script.__name__ == "spawn_script"
        assert await spawn_script() == "ok"

    def test_retryable_set(self):
        assert BlockingIOError in RETRYABLE_EXCEPTIONS
        assert OSError not in RETRYABLE_EXCEPTIONS
