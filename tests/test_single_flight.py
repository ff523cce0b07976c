"""Tests for the single-flight re-entrancy guard."""

import asyncio

import pytest

from assist_auth.utils.single_flight import SingleFlight


class TestSingleFlight:
    """Concurrent callers share one task."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_result(self):
        """Test concurrent callers share one run."""
        flight = SingleFlight("test")
        calls = 0
        release = asyncio.Event()

        async def work():
            nonlocal calls
            calls += 1
            await release.wait()
            return "done"

        first = asyncio.ensure_future(flight.run(work))
        second = asyncio.ensure_future(flight.run(work))
        await asyncio.sleep(0)
        assert flight.in_flight

        release.set()

        assert await asyncio.gather(first, second) == ["done", "done"]
        assert calls == 1
        assert not flight.in_flight

    @pytest.mark.asyncio
    async def test_sequential_calls_run_again(self):
        """Test a finished run does not block the next one."""
        flight = SingleFlight("test")
        calls = 0

        async def work():
            nonlocal calls
            calls += 1
            return calls

        assert await flight.run(work) == 1
        assert await flight.run(work) == 2

    @pytest.mark.asyncio
    async def test_failure_releases_the_guard(self):
        """Test a failed run releases the guard."""
        flight = SingleFlight("test")

        async def boom():
            raise RuntimeError("refresh exploded")

        async def ok():
            return True

        with pytest.raises(RuntimeError):
            await flight.run(boom)

        assert not flight.in_flight
        assert await flight.run(ok) is True

    @pytest.mark.asyncio
    async def test_joined_callers_see_the_error(self):
        """Test joined callers receive the same error."""
        flight = SingleFlight("test")
        release = asyncio.Event()

        async def boom():
            await release.wait()
            raise RuntimeError("refresh exploded")

        first = asyncio.ensure_future(flight.run(boom))
        second = asyncio.ensure_future(flight.run(boom))
        await asyncio.sleep(0)
        release.set()

        results = await asyncio.gather(first, second, return_exceptions=True)

        assert all(isinstance(r, RuntimeError) for r in results)
