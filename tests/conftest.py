"""Shared pytest fixtures for all test modules."""

import pytest

from tests.fakes import ALICE, FakeClock, FakeLedger
from tokenmarket.ledger.gateway import LedgerGateway
from tokenmarket.registry.asset_registry import AssetRegistry
from tokenmarket.registry.fetcher import AssetSnapshotFetcher


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger(clock: FakeClock) -> FakeLedger:
    return FakeLedger(clock)


@pytest.fixture
def gateway(ledger: FakeLedger) -> LedgerGateway:
    return LedgerGateway(ledger)


@pytest.fixture
def registry() -> AssetRegistry:
    return AssetRegistry(owner=ALICE)


@pytest.fixture
def fetcher(gateway: LedgerGateway, clock: FakeClock) -> AssetSnapshotFetcher:
    return AssetSnapshotFetcher(gateway, clock=clock, concurrency=4)
