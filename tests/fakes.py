"""Test doubles for providers, plus sample addresses."""

from decimal import Decimal
from typing import Any, Dict
from unittest.mock import AsyncMock

from app.providers.base import (
    BalanceProvider,
    FeeProvider,
    HistoryProvider,
    NftProvider,
    PriceProvider,
    TokenMetadataProvider,
)

HOLDER = "0xd8da6bf26964af9d7eed9e03e53415d37aa96045"
USDC = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
BAYC = "0xBC4CA0EdA7647A8aB7C2061c2E118A18a936f13D"
BTC_ADDRESS = "bc1qar0srrr7xfkvy5l643lydnw9re59gtzzwf5mdq"


class FakeIndexer(BalanceProvider, FeeProvider, HistoryProvider, NftProvider, TokenMetadataProvider):
    """Account-chain indexer whose calls are AsyncMocks."""

    timeout_s = 5

    def __init__(self, name: str = "alchemy"):
        super().__init__()
        self.name = name
        self.balance = AsyncMock()
        self.fee = AsyncMock()
        self.transactions = AsyncMock()
        self.owners = AsyncMock()
        self.owned = AsyncMock()
        self.nft_metadata = AsyncMock()
        self.metadata = AsyncMock()

    async def ready(self) -> bool:
        return True

    async def health_check(self) -> Dict[str, Any]:
        return {"status": "healthy", "latency_ms": 1}

    async def get_balance(self, asset, address):
        return await self.balance(asset, address)

    async def get_fee(self, network, kind):
        return await self.fee(network, kind)

    async def get_transactions(self, asset, address, page, limit):
        return await self.transactions(asset, address, page, limit)

    async def get_owners(self, contract_address, network, token_id=None):
        return await self.owners(contract_address, network, token_id)

    async def get_owned_nfts(self, owner, network, contract_address=None):
        return await self.owned(owner, network, contract_address)

    async def get_nft_metadata(self, asset):
        return await self.nft_metadata(asset)

    async def get_metadata(self, asset):
        return await self.metadata(asset)


class FakeUtxoIndexer(BalanceProvider, HistoryProvider):
    timeout_s = 5

    def __init__(self):
        super().__init__()
        self.name = "blockstream"
        self.balance = AsyncMock()
        self.transactions = AsyncMock()

    async def ready(self) -> bool:
        return True

    async def health_check(self) -> Dict[str, Any]:
        return {"status": "healthy", "latency_ms": 1}

    async def get_balance(self, asset, address):
        return await self.balance(asset, address)

    async def get_transactions(self, asset, address, page, limit):
        return await self.transactions(asset, address, page, limit)


class FakePrices(PriceProvider):
    timeout_s = 5

    def __init__(self):
        super().__init__()
        self.name = "coingecko"
        self.price = AsyncMock()
        self.prices = AsyncMock(return_value={})
        self.history = AsyncMock(return_value=[])

    async def ready(self) -> bool:
        return True

    async def health_check(self) -> Dict[str, Any]:
        return {"status": "healthy", "latency_ms": 1}

    async def get_price(self, asset, currency) -> Decimal:
        return await self.price(asset, currency)

    async def get_prices(self, assets, currency):
        return await self.prices(list(assets), currency)

    async def get_price_history(self, asset, days, currency):
        return await self.history(asset, days, currency)
