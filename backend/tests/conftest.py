"""
Pytest Configuration for Auctionhouse Backend Tests

Run all tests: python -m pytest tests/ -v
Run unit tests only: python -m pytest tests/ -v -m "not integration"
Run integration tests: python -m pytest tests/ -v -m integration
"""

import pytest
import pytest_asyncio
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Load environment
from dotenv import load_dotenv
load_dotenv(Path(__file__).parent.parent / ".env")


# =============================================================================
# FIXTURES - Shared across all test files
# =============================================================================

@pytest.fixture
def test_addresses():
    """Standard test addresses"""
    return {
        "seller": "0xa30A689ec0F9D717C5bA1098455B031b868B720f",
        "bidder": "0x5E047DeB5eb22F4E4A7f2207087369468575e3EF",
        "bidder2": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
        "verified": "0xcbB7C0000aB88B473b1f5aFd9ef808440eed33Bf",
        "nft": "0x940181a94A35A4569E4529A3CDfB74e38FD98631",
        "marketplace": "0x6f93C211695c2ea7D81c7A9139590835ef7A2364",
        "usdc": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
    }


class FakeClock:
    """Manually advanced time source"""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that records requested delays"""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float):
        self.delays.append(delay)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def recorded_sleep():
    return RecordingSleep()


@pytest_asyncio.fixture
async def memory_db():
    """In-memory sqlite with the cache schema"""
    from infrastructure.database import DatabasePool

    db = DatabasePool(":memory:")
    await db.initialize()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def cache_store(memory_db, clock):
    from infrastructure.cache_store import CacheStore

    return CacheStore(memory_db, clock=clock)


@pytest.fixture
def listing_payload(test_addresses):
    """Factory for subgraph listing rows"""

    def _make(listing_id: str = "42", **overrides):
        row = {
            "id": listing_id,
            "listingId": listing_id,
            "marketplace": test_addresses["marketplace"].lower(),
            "seller": test_addresses["seller"].lower(),
            "tokenAddress": test_addresses["nft"].lower(),
            "tokenId": "7",
            "tokenSpec": "ERC721",
            "listingType": "INDIVIDUAL_AUCTION",
            "initialAmount": "1000000000000000000",
            "totalAvailable": "1",
            "totalPerSale": "1",
            "startTime": "1700000000",
            "endTime": "1800000000",
            "lazy": False,
            "status": "ACTIVE",
            "totalSold": "0",
            "hasBid": False,
            "finalized": False,
            "erc20": "0x0000000000000000000000000000000000000000",
            "createdAt": "1699990000",
            "bids": [],
            "purchases": [],
            "offers": [],
        }
        row.update(overrides)
        return row

    return _make


# =============================================================================
# MARKERS
# =============================================================================

def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (use real APIs)"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests as slow running"
    )
