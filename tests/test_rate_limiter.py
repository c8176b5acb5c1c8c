"""
Tests for the rate-limited call gateway.

INVARIANTS:
- Calls start in submission order
- Never more than `calls_per_second` calls start in any rolling second
- One failing unit fails only its own caller
"""

import asyncio

import pytest
from helpers import FakeClock

from nftstatus.services.rate_limiter import MISSING, RateLimitedGateway


def make_gateway(clock: FakeClock, calls_per_second: int = 200) -> RateLimitedGateway:
    return RateLimitedGateway(
        calls_per_second=calls_per_second,
        clock=clock,
        sleep=clock.sleep,
        batch_pause=0.0,
    )


def recording_unit(clock: FakeClock, started: list[tuple[int, float]], index: int):
    async def unit() -> int:
        started.append((index, clock()))
        return index

    return unit


class TestPacing:
    async def test_500_units_at_200_per_second_take_between_2_and_3_seconds(
        self, clock: FakeClock
    ) -> None:
        gateway = make_gateway(clock)
        started: list[tuple[int, float]] = []
        begin = clock()

        results = await asyncio.gather(
            *(gateway.execute(recording_unit(clock, started, i)) for i in range(500))
        )

        elapsed = clock() - begin
        assert results == list(range(500))
        assert 2.0 <= elapsed < 3.0
        await gateway.aclose()

    async def test_never_more_than_ceiling_in_rolling_second(self, clock: FakeClock) -> None:
        gateway = make_gateway(clock)
        started: list[tuple[int, float]] = []

        await asyncio.gather(
            *(gateway.execute(recording_unit(clock, started, i)) for i in range(500))
        )

        times = sorted(t for _, t in started)
        for i, t in enumerate(times):
            in_window = sum(1 for other in times[i:] if other < t + 1.0 - 1e-6)
            assert in_window <= 200
        await gateway.aclose()

    async def test_consecutive_calls_are_spaced(self, clock: FakeClock) -> None:
        gateway = make_gateway(clock, calls_per_second=10)
        started: list[tuple[int, float]] = []

        await asyncio.gather(
            *(gateway.execute(recording_unit(clock, started, i)) for i in range(5))
        )

        times = [t for _, t in started]
        gaps = [b - a for a, b in zip(times, times[1:], strict=False)]
        assert all(gap >= 0.1 - 1e-9 for gap in gaps)
        await gateway.aclose()

    async def test_full_window_waits_for_next_window(self, clock: FakeClock) -> None:
        """A window already at its ceiling blocks until the second is over."""
        gateway = make_gateway(clock, calls_per_second=5)
        gateway._window_count = 5
        gateway._window_start = begin = clock()
        started: list[tuple[int, float]] = []

        await gateway.execute(recording_unit(clock, started, 0))

        assert started[0][1] == pytest.approx(begin + 1.0)
        assert clock.sleeps[0] == pytest.approx(1.0)
        await gateway.aclose()


class TestOrderingAndIsolation:
    async def test_calls_start_in_submission_order(self, clock: FakeClock) -> None:
        gateway = make_gateway(clock)
        started: list[tuple[int, float]] = []

        await asyncio.gather(
            *(gateway.execute(recording_unit(clock, started, i)) for i in range(50))
        )

        assert [index for index, _ in started] == list(range(50))
        await gateway.aclose()

    async def test_failing_unit_only_fails_its_caller(self, clock: FakeClock) -> None:
        gateway = make_gateway(clock)

        async def boom() -> int:
            raise RuntimeError("rpc down")

        async def ok() -> int:
            return 7

        results = await asyncio.gather(
            gateway.execute(ok), gateway.execute(boom), gateway.execute(ok),
            return_exceptions=True,
        )

        assert results[0] == 7
        assert isinstance(results[1], RuntimeError)
        assert results[2] == 7
        await gateway.aclose()

    async def test_timeout_raises_to_caller(self, clock: FakeClock) -> None:
        gateway = RateLimitedGateway(calls_per_second=200)

        async def slow() -> int:
            await asyncio.sleep(10)
            return 1

        with pytest.raises(TimeoutError):
            await gateway.execute(slow, timeout=0.01)
        await gateway.aclose()


class TestExecuteBatch:
    async def test_failures_become_missing_in_order(self, clock: FakeClock) -> None:
        gateway = make_gateway(clock)

        def unit(i: int):
            async def run() -> int:
                if i in (2, 6):
                    raise ValueError(f"query {i} failed")
                return i * 10

            return run

        results = await gateway.execute_batch([unit(i) for i in range(10)], batch_size=4)

        assert len(results) == 10
        assert results[2] is MISSING
        assert results[6] is MISSING
        assert [r for i, r in enumerate(results) if i not in (2, 6)] == [
            i * 10 for i in range(10) if i not in (2, 6)
        ]
        await gateway.aclose()

    async def test_empty_batch(self, clock: FakeClock) -> None:
        gateway = make_gateway(clock)
        assert await gateway.execute_batch([]) == []

    async def test_rejects_non_positive_batch_size(self, clock: FakeClock) -> None:
        gateway = make_gateway(clock)
        with pytest.raises(ValueError):
            await gateway.execute_batch([], batch_size=0)


def test_rejects_non_positive_ceiling() -> None:
    with pytest.raises(ValueError):
        RateLimitedGateway(calls_per_second=0)
