import pytest
from helpers import FakeClock, FakeLedger

from nftstatus.services.rate_limiter import RateLimitedGateway
from nftstatus.services.runtime import reset_service


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
async def gateway(clock: FakeClock):
    """Gateway paced against the fake clock, so tests never really wait."""
    gateway = RateLimitedGateway(calls_per_second=200, clock=clock, sleep=clock.sleep, batch_pause=0.0)
    yield gateway
    await gateway.aclose()


@pytest.fixture(autouse=True)
def clear_service():
    """Forget the process-wide service between tests."""
    reset_service()
    yield
    reset_service()
