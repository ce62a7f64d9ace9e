"""Caching decorator for price providers."""

from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from ..cache import TTLCache
from ..config import settings
from ..core.assets import ResolvedAsset
from ..types.results import PricePoint
from .base import PriceProvider


class CachedPriceProvider(PriceProvider):
    """Wrap a ``PriceProvider`` and memoize its answers for a short TTL.

    Failures are never cached. Only successful prices and histories are kept.
    """

    def __init__(self, inner: PriceProvider, cache: Optional[TTLCache] = None):
        super().__init__()
        self.inner = inner
        self.name = inner.name
        self.timeout_s = inner.timeout_s
        self.cache = cache or TTLCache(
            default_ttl=settings.cache_ttl_seconds,
            max_size=settings.max_cache_size,
        )

    async def ready(self) -> bool:
        return await self.inner.ready()

    async def health_check(self) -> Dict[str, Any]:
        status = await self.inner.health_check()
        return {**status, "cache_size": self.cache.size()}

    async def get_price(self, asset: ResolvedAsset, currency: str) -> Decimal:
        key = ("price", asset.asset_id, currency)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached
        price = await self.inner.get_price(asset, currency)
        await self.cache.set(key, price)
        return price

    async def get_prices(self, assets: Sequence[ResolvedAsset], currency: str) -> Dict[ResolvedAsset, Decimal]:
        prices: Dict[ResolvedAsset, Decimal] = {}
        missing: List[ResolvedAsset] = []
        for asset in assets:
            cached = await self.cache.get(("price", asset.asset_id, currency))
            if cached is None:
                missing.append(asset)
            else:
                prices[asset] = cached

        if missing:
            fetched = await self.inner.get_prices(missing, currency)
            for asset, price in fetched.items():
                await self.cache.set(("price", asset.asset_id, currency), price)
            prices.update(fetched)
        return prices

    async def get_price_history(self, asset: ResolvedAsset, days: int, currency: str) -> List[PricePoint]:
        key = ("history", asset.asset_id, days, currency)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached
        points = await self.inner.get_price_history(asset, days, currency)
        await self.cache.set(key, points)
        return points
