import asyncio
from abc import ABC, abstractmethod
from decimal import Decimal, localcontext
from typing import Any, Dict, List, Mapping, Optional, Sequence

import httpx

from ..config import settings
from ..core.assets import ResolvedAsset
from ..core.networks import NetworkDescriptor
from ..types.results import (
    Balance,
    FeeQuote,
    NftMetadata,
    OwnedNfts,
    PricePoint,
    TokenMetadata,
    TransactionPage,
)
from .errors import (
    ProviderAuthError,
    ProviderNotFound,
    ProviderResponseError,
    ProviderTimeout,
    ProviderUnavailable,
    RateLimited,
)


def format_units(raw: int, decimals: int) -> Decimal:
    """Scale an integer amount in smallest units to a human readable Decimal."""
    with localcontext() as ctx:
        ctx.prec = 96
        return Decimal(raw) / Decimal(10 ** decimals)


class Provider(ABC):
    """Base provider interface"""

    name: str
    timeout_s: float = 10

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        # Injected in tests; None means the default network transport
        self._transport = transport

    @abstractmethod
    async def ready(self) -> bool:
        """Check if provider is ready to serve requests"""
        pass

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """Return provider health status"""
        pass

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self.timeout_s)

    async def _request_json(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json: Optional[Any] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Any:
        """Send one request and return the decoded JSON body.

        Transient 429 responses are retried ``settings.provider_max_retries``
        times. Every failure surfaces as a ``ProviderError`` subclass.
        """
        attempts = settings.provider_max_retries + 1
        async with self._client() as client:
            for attempt in range(attempts):
                try:
                    response = await client.request(method, url, params=params, json=json, headers=headers)
                except httpx.TimeoutException as exc:
                    raise ProviderTimeout(f"{self.name} request timed out", provider=self.name) from exc
                except httpx.TransportError as exc:
                    raise ProviderUnavailable(f"{self.name} transport error: {exc}", provider=self.name) from exc

                if response.status_code == 429 and attempt + 1 < attempts:
                    await asyncio.sleep(settings.provider_retry_backoff_seconds)
                    continue

                self._raise_for_status(response)
                try:
                    return response.json()
                except ValueError as exc:
                    raise ProviderResponseError(
                        f"{self.name} returned a non-JSON body",
                        provider=self.name,
                        status_code=response.status_code,
                    ) from exc
        raise ProviderUnavailable(f"{self.name} request was not attempted", provider=self.name)

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        body = response.text[:500]
        if status == 429:
            raise RateLimited(f"{self.name} rate limit exceeded", self.name, status, body)
        if status in (401, 403):
            raise ProviderAuthError(f"{self.name} rejected the configured credential", self.name, status, body)
        if status == 404:
            raise ProviderNotFound(f"{self.name} has no data for this request", self.name, status, body)
        if status >= 500:
            raise ProviderUnavailable(f"{self.name} returned HTTP {status}", self.name, status, body)
        raise ProviderResponseError(f"{self.name} returned HTTP {status}", self.name, status, body)


class BalanceProvider(Provider):
    @abstractmethod
    async def get_balance(self, asset: ResolvedAsset, address: str) -> Balance:
        """Balance of ``asset`` held by ``address``"""
        pass


class FeeProvider(Provider):
    @abstractmethod
    async def get_fee(self, network: NetworkDescriptor, kind: str) -> FeeQuote:
        """Current fee data; ``kind`` is ``legacy`` or ``eip1559``"""
        pass


class PriceProvider(Provider):
    """Provider for market price data"""

    @abstractmethod
    async def get_price(self, asset: ResolvedAsset, currency: str) -> Decimal:
        pass

    @abstractmethod
    async def get_prices(self, assets: Sequence[ResolvedAsset], currency: str) -> Dict[ResolvedAsset, Decimal]:
        """Batch variant; assets the upstream cannot price are absent from the result"""
        pass

    @abstractmethod
    async def get_price_history(self, asset: ResolvedAsset, days: int, currency: str) -> List[PricePoint]:
        pass


class HistoryProvider(Provider):
    @abstractmethod
    async def get_transactions(self, asset: ResolvedAsset, address: str, page: int, limit: int) -> TransactionPage:
        pass


class NftProvider(Provider):
    @abstractmethod
    async def get_owners(
        self, contract_address: str, network: NetworkDescriptor, token_id: Optional[str] = None
    ) -> List[str]:
        pass

    @abstractmethod
    async def get_owned_nfts(
        self, owner: str, network: NetworkDescriptor, contract_address: Optional[str] = None
    ) -> OwnedNfts:
        pass

    @abstractmethod
    async def get_nft_metadata(self, asset: ResolvedAsset) -> NftMetadata:
        pass


class TokenMetadataProvider(Provider):
    @abstractmethod
    async def get_metadata(self, asset: ResolvedAsset) -> TokenMetadata:
        pass
