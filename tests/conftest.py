import pytest

from app.config import settings
from app.core.networks import IndexerName
from app.services.orchestrator import QueryOrchestrator

from fakes import FakeIndexer, FakePrices, FakeUtxoIndexer


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch):
    """No real sleeping between upstream retries in tests."""
    monkeypatch.setattr(settings, "provider_retry_backoff_seconds", 0)


@pytest.fixture
def indexer() -> FakeIndexer:
    return FakeIndexer()


@pytest.fixture
def utxo_indexer() -> FakeUtxoIndexer:
    return FakeUtxoIndexer()


@pytest.fixture
def prices() -> FakePrices:
    return FakePrices()


@pytest.fixture
def orchestrator(indexer, utxo_indexer, prices) -> QueryOrchestrator:
    return QueryOrchestrator(
        indexers={IndexerName.ALCHEMY: indexer, IndexerName.BLOCKSTREAM: utxo_indexer},
        prices=prices,
        timeout_s=1,
        max_concurrency=4,
    )
