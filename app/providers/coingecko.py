import asyncio
from collections import defaultdict
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

import httpx

from ..config import settings
from ..core.assets import AssetKind, ResolvedAsset
from ..types.results import PricePoint
from .base import PriceProvider
from .errors import (
    ProviderError,
    ProviderNotConfigured,
    ProviderNotFound,
    ProviderResponseError,
    ProviderUnsupported,
)


def _to_decimal(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return None
    try:
        return Decimal(str(value))
    except ArithmeticError:
        return None


class CoingeckoProvider(PriceProvider):
    """Coingecko API provider for token prices"""

    name = "coingecko"
    timeout_s = 15

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(transport=transport)
        self.api_key = settings.coingecko_api_key if api_key is None else api_key
        self.base_url = (base_url or settings.coingecko_base_url).rstrip("/")

    def _build_headers(self) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if self.api_key:
            if "pro-api" in self.base_url:
                headers["x-cg-pro-api-key"] = self.api_key
            else:
                headers["X-CG-Demo-API-Key"] = self.api_key
        return headers

    async def ready(self) -> bool:
        return settings.enable_coingecko  # API key is optional for basic tier

    async def health_check(self) -> Dict[str, Any]:
        if not await self.ready():
            return {
                "status": "unavailable",
                "reason": "Provider disabled"
            }

        started = asyncio.get_running_loop().time()
        try:
            await self._get("/ping")
        except ProviderError as e:
            return {"status": "error", "reason": e.message}
        latency_ms = int((asyncio.get_running_loop().time() - started) * 1000)
        return {"status": "healthy", "latency_ms": latency_ms}

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        if not settings.enable_coingecko:
            raise ProviderNotConfigured("Coingecko provider disabled", provider=self.name)
        return await self._request_json(
            "GET",
            f"{self.base_url}{path}",
            params=params,
            headers=self._build_headers(),
        )

    @staticmethod
    def _require_priceable(asset: ResolvedAsset) -> None:
        if asset.kind is AssetKind.NFT:
            raise ProviderUnsupported("Coingecko does not price individual NFTs", provider="coingecko")
        if asset.kind is AssetKind.NATIVE_COIN and not asset.network.coingecko_native_id:
            raise ProviderUnsupported(f"No Coingecko id for {asset.network.id}", provider="coingecko")
        if asset.kind is AssetKind.FUNGIBLE_TOKEN and not asset.network.coingecko_platform:
            raise ProviderUnsupported(f"No Coingecko platform for {asset.network.id}", provider="coingecko")

    async def get_price(self, asset: ResolvedAsset, currency: str) -> Decimal:
        prices = await self.get_prices([asset], currency)
        if asset not in prices:
            raise ProviderNotFound(f"Coingecko has no {currency} price for {asset.asset_id}", provider=self.name)
        return prices[asset]

    async def get_prices(self, assets: Sequence[ResolvedAsset], currency: str) -> Dict[ResolvedAsset, Decimal]:
        """Get current prices, one upstream call for native coins and one per token platform"""
        for asset in assets:
            self._require_priceable(asset)

        natives: Dict[str, List[ResolvedAsset]] = defaultdict(list)
        tokens_by_platform: Dict[str, List[ResolvedAsset]] = defaultdict(list)
        for asset in assets:
            if asset.kind is AssetKind.NATIVE_COIN:
                natives[asset.network.coingecko_native_id].append(asset)
            else:
                tokens_by_platform[asset.network.coingecko_platform].append(asset)

        calls = []
        if natives:
            calls.append(self._native_prices(natives, currency))
        for platform, tokens in tokens_by_platform.items():
            calls.append(self._token_prices(platform, tokens, currency))

        prices: Dict[ResolvedAsset, Decimal] = {}
        for partial in await asyncio.gather(*calls):
            prices.update(partial)
        return prices

    async def _native_prices(
        self, natives: Dict[str, List[ResolvedAsset]], currency: str
    ) -> Dict[ResolvedAsset, Decimal]:
        data = await self._get(
            "/simple/price",
            {"ids": ",".join(sorted(natives)), "vs_currencies": currency},
        )
        if not isinstance(data, dict):
            raise ProviderResponseError("Coingecko simple/price returned an unexpected body", provider=self.name)

        prices: Dict[ResolvedAsset, Decimal] = {}
        for coin_id, assets in natives.items():
            price = _to_decimal((data.get(coin_id) or {}).get(currency))
            if price is not None:
                for asset in assets:
                    prices[asset] = price
        return prices

    async def _token_prices(
        self, platform: str, tokens: List[ResolvedAsset], currency: str
    ) -> Dict[ResolvedAsset, Decimal]:
        # Coingecko expects comma-separated addresses
        addresses = sorted({t.contract_address.lower() for t in tokens})
        data = await self._get(
            f"/simple/token_price/{platform}",
            {"contract_addresses": ",".join(addresses), "vs_currencies": currency},
        )
        if not isinstance(data, dict):
            raise ProviderResponseError("Coingecko token_price returned an unexpected body", provider=self.name)

        by_address = {address.lower(): quote for address, quote in data.items() if isinstance(quote, dict)}
        prices: Dict[ResolvedAsset, Decimal] = {}
        for token in tokens:
            price = _to_decimal((by_address.get(token.contract_address.lower()) or {}).get(currency))
            if price is not None:
                prices[token] = price
        return prices

    async def get_price_history(self, asset: ResolvedAsset, days: int, currency: str) -> List[PricePoint]:
        self._require_priceable(asset)
        if asset.kind is AssetKind.NATIVE_COIN:
            path = f"/coins/{asset.network.coingecko_native_id}/market_chart"
        else:
            path = f"/coins/{asset.network.coingecko_platform}/contract/{asset.contract_address.lower()}/market_chart"

        data = await self._get(path, {"vs_currency": currency, "days": str(days)})
        series = data.get("prices") if isinstance(data, dict) else None
        if not isinstance(series, list):
            raise ProviderResponseError("Coingecko market_chart has no price series", provider=self.name)

        points: List[PricePoint] = []
        for entry in series:
            if not isinstance(entry, (list, tuple)) or len(entry) < 2:
                continue
            price = _to_decimal(entry[1])
            if price is None:
                continue
            points.append(PricePoint(timestamp=int(entry[0]), price=price))
        points.sort(key=lambda p: p.timestamp)
        return points
