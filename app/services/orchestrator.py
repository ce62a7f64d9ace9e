"""
Query orchestration.

Takes resolved assets, checks locally that the requested operation is offered
on the asset's chain family, dispatches to the provider that serves the
network, and turns every provider failure into a ``GatewayError``.

Batch and portfolio operations return one outcome per input, in input order.
A failing input only ever fills its own slot.
"""

from __future__ import annotations

import asyncio
import re
from collections import defaultdict
from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Mapping, Optional, Sequence, TypeVar

import structlog

from ..config import settings
from ..core.assets import AssetKind, ResolvedAsset, normalize_token_id
from ..core.errors import (
    ErrorCode,
    GatewayError,
    InternalError,
    InvalidRequest,
    MissingCredential,
    UnsupportedAssetType,
    UnsupportedNetwork,
    UpstreamDataError,
    UpstreamUnavailable,
    error_for_code,
)
from ..core.networks import IndexerName, NetworkDescriptor, NetworkFamily, lookup
from ..core.outcome import Failure, Outcome, Success
from ..core.resolver import resolve
from ..providers.alchemy import AlchemyProvider
from ..providers.base import (
    BalanceProvider,
    FeeProvider,
    HistoryProvider,
    NftProvider,
    PriceProvider,
    Provider,
    TokenMetadataProvider,
)
from ..providers.blockstream import BlockstreamProvider
from ..providers.cached import CachedPriceProvider
from ..providers.coingecko import CoingeckoProvider
from ..providers.errors import (
    ProviderAuthError,
    ProviderError,
    ProviderNotConfigured,
    ProviderNotFound,
    ProviderResponseError,
    ProviderTimeout,
    ProviderUnavailable,
    ProviderUnsupported,
    RateLimited,
)
from ..types.envelope import ErrorBody
from ..types.results import (
    AssetDescriptor,
    Balance,
    BatchEntry,
    BatchResult,
    FeeQuote,
    NftMetadata,
    NftOwners,
    OwnedNfts,
    PortfolioEntry,
    PortfolioResult,
    Price,
    PriceHistory,
    TokenMetadata,
    TransactionPage,
)
from .address import require_valid_address

logger = structlog.stdlib.get_logger(__name__)

T = TypeVar("T")

FEE_TYPES = ("legacy", "eip1559")
MAX_HISTORY_DAYS = 365
MAX_PAGE_LIMIT = 100
MAX_BATCH_SIZE = 50

_CURRENCY_RE = re.compile(r"^[a-z]{2,10}$")


class Operation(str, Enum):
    BALANCE = "balance"
    FEE = "fee"
    PRICE = "price"
    PRICE_HISTORY = "price_history"
    TRANSACTIONS = "transactions"
    NFT_OWNERS = "nft_owners"
    OWNED_NFTS = "owned_nfts"
    NFT_METADATA = "nft_metadata"
    TOKEN_METADATA = "token_metadata"


_ALL_KINDS = frozenset(AssetKind)
_FUNGIBLE = frozenset({AssetKind.NATIVE_COIN, AssetKind.FUNGIBLE_TOKEN})
_NATIVE = frozenset({AssetKind.NATIVE_COIN})

# Asset-level operations: which asset kinds each family offers
ASSET_OPERATIONS: Mapping[NetworkFamily, Mapping[Operation, FrozenSet[AssetKind]]] = {
    NetworkFamily.ACCOUNT: {
        Operation.BALANCE: _ALL_KINDS,
        Operation.PRICE: _FUNGIBLE,
        Operation.PRICE_HISTORY: _FUNGIBLE,
        Operation.TRANSACTIONS: _ALL_KINDS,
        Operation.NFT_METADATA: frozenset({AssetKind.NFT}),
        Operation.TOKEN_METADATA: _FUNGIBLE,
    },
    NetworkFamily.UTXO: {
        Operation.BALANCE: _NATIVE,
        Operation.PRICE: _NATIVE,
        Operation.PRICE_HISTORY: _NATIVE,
        Operation.TRANSACTIONS: _NATIVE,
        Operation.TOKEN_METADATA: _NATIVE,
    },
}

# Network-level operations: families offering them, and the error otherwise
NETWORK_OPERATIONS: Mapping[Operation, tuple] = {
    Operation.FEE: (frozenset({NetworkFamily.ACCOUNT}), UnsupportedAssetType),
    Operation.NFT_OWNERS: (frozenset({NetworkFamily.ACCOUNT}), UnsupportedNetwork),
    Operation.OWNED_NFTS: (frozenset({NetworkFamily.ACCOUNT}), UnsupportedNetwork),
}


@dataclass(frozen=True)
class QueryTarget:
    """One unit of work: an asset plus the parameters of the query."""

    asset: ResolvedAsset
    address: Optional[str] = None
    currency: str = "usd"
    page: int = 1
    limit: int = 50
    days: int = 7
    token_id: Optional[str] = None


# Message fragments for exceptions raised outside the provider layer
_UNAVAILABLE_PATTERNS = (
    "rate limit",
    "too many requests",
    "timeout",
    "timed out",
    "connection",
    "unreachable",
    "refused",
)


def normalize_error(exc: BaseException) -> GatewayError:
    """Map any failure onto the gateway error taxonomy."""

    if isinstance(exc, GatewayError):
        return exc

    if isinstance(exc, ProviderError):
        details = {"provider": exc.provider} if exc.provider else None
        if isinstance(exc, (RateLimited, ProviderTimeout, ProviderUnavailable)):
            return UpstreamUnavailable(exc.message, details)
        if isinstance(exc, (ProviderNotConfigured, ProviderAuthError)):
            return MissingCredential(exc.message, details)
        if isinstance(exc, (ProviderNotFound, ProviderResponseError)):
            return UpstreamDataError(exc.message, details)
        if isinstance(exc, ProviderUnsupported):
            return UnsupportedAssetType(exc.message, details)
        return UpstreamDataError(exc.message, details)

    if isinstance(exc, asyncio.TimeoutError):
        return UpstreamUnavailable("Upstream provider timed out")

    message = str(exc).lower()
    if any(p in message for p in _UNAVAILABLE_PATTERNS):
        return UpstreamUnavailable(str(exc))

    logger.error("unclassified_failure", error=repr(exc), exc_info=exc)
    return InternalError()


def check_supported(operation: Operation, network: NetworkDescriptor, kind: Optional[AssetKind] = None) -> None:
    """Fail locally if ``operation`` is not offered for ``kind`` on ``network``'s family."""

    if operation in NETWORK_OPERATIONS:
        families, error_cls = NETWORK_OPERATIONS[operation]
        if network.family not in families:
            raise error_cls(
                f"{operation.value.replace('_', ' ')} is not supported on {network.name}",
                details={"network": network.id, "operation": operation.value},
            )
        return

    offered = ASSET_OPERATIONS[network.family]
    if operation not in offered:
        raise UnsupportedNetwork(
            f"{operation.value.replace('_', ' ')} is not supported on {network.name}",
            details={"network": network.id, "operation": operation.value},
        )
    if kind not in offered[operation]:
        raise UnsupportedAssetType(
            f"{operation.value.replace('_', ' ')} is not supported for {kind.value if kind else 'this'} "
            f"assets on {network.name}",
            details={"network": network.id, "operation": operation.value, "kind": kind.value if kind else None},
        )


def normalize_currency(currency: Optional[str]) -> str:
    value = (currency or "usd").strip().lower()
    if not _CURRENCY_RE.fullmatch(value):
        raise InvalidRequest(f"Invalid currency code '{currency}'", details={"currency": currency})
    return value


def parse_token_id(value: str) -> str:
    normalized = normalize_token_id(value)
    if normalized is None:
        raise InvalidRequest(f"Invalid token id '{value}'", details={"tokenId": value})
    return normalized


def target_asset(target: QueryTarget) -> ResolvedAsset:
    """The target's asset, narrowed to ``target.token_id`` when one is given."""

    asset = target.asset
    if target.token_id is None:
        return asset
    if asset.kind is not AssetKind.NFT:
        raise InvalidRequest("A token id filter only applies to NFT assets", details={"asset_id": asset.asset_id})
    token_id = parse_token_id(target.token_id)
    if asset.token_id is not None and asset.token_id != token_id:
        raise InvalidRequest(
            "Token id filter conflicts with the identifier",
            details={"asset_id": asset.asset_id, "tokenId": target.token_id},
        )
    return replace(asset, token_id=token_id)


def _check_batch_size(identifiers: Sequence[str]) -> None:
    if not identifiers:
        raise InvalidRequest("assetIds array is required")
    if len(identifiers) > MAX_BATCH_SIZE:
        raise InvalidRequest(f"At most {MAX_BATCH_SIZE} assetIds per request", details={"count": len(identifiers)})


class QueryOrchestrator:
    """Dispatches queries to providers and normalizes their failures."""

    def __init__(
        self,
        *,
        indexers: Mapping[IndexerName, Provider],
        prices: PriceProvider,
        timeout_s: Optional[float] = None,
        max_concurrency: Optional[int] = None,
    ):
        self._indexers = dict(indexers)
        self._prices = prices
        self.timeout_s = timeout_s if timeout_s is not None else settings.request_timeout_seconds
        self.max_concurrency = max_concurrency or settings.max_concurrent_requests

    @property
    def providers(self) -> Dict[str, Provider]:
        found = {p.name: p for p in self._indexers.values()}
        found[self._prices.name] = self._prices
        return found

    async def health(self) -> Dict[str, Dict[str, Any]]:
        names = list(self.providers)
        statuses = await asyncio.gather(
            *(p.health_check() for p in self.providers.values()), return_exceptions=True
        )
        report: Dict[str, Dict[str, Any]] = {}
        for name, status in zip(names, statuses):
            if isinstance(status, Exception):
                status = {"status": "error", "reason": str(status)}
            report[name] = status
        return report

    # Plumbing

    def _indexer(self, network: NetworkDescriptor, capability: type) -> Any:
        provider = self._indexers.get(network.indexer)
        if provider is None or not isinstance(provider, capability):
            raise UnsupportedAssetType(
                f"No provider offers this query on {network.name}",
                details={"network": network.id},
            )
        return provider

    async def _call(self, fn: Callable[..., Awaitable[T]], *args: Any) -> T:
        """Run one provider call under the per-call timeout, normalizing failures."""
        try:
            return await asyncio.wait_for(fn(*args), timeout=self.timeout_s)
        except GatewayError:
            raise
        except Exception as exc:
            error = normalize_error(exc)
            logger.warning(
                "provider_call_failed",
                call=getattr(fn, "__qualname__", repr(fn)),
                code=error.code.value,
                reason=error.message,
            )
            raise error from exc

    @staticmethod
    async def _capture(awaitable: Awaitable[T]) -> Outcome[T]:
        try:
            return Success(await awaitable)
        except Exception as exc:
            return Failure(normalize_error(exc))

    @staticmethod
    def _resolve_slot(identifier: str) -> Outcome[ResolvedAsset]:
        try:
            return Success(resolve(identifier))
        except Exception as exc:
            return Failure(normalize_error(exc))

    async def _bounded(self, awaitables: Sequence[Awaitable[T]]) -> List[T]:
        # Semaphore is per batch; nothing is shared across requests
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run(awaitable: Awaitable[T]) -> T:
            async with semaphore:
                return await awaitable

        return list(await asyncio.gather(*(run(a) for a in awaitables)))

    # Single-target reads

    async def execute(self, operation: Operation, target: QueryTarget) -> Any:
        handlers: Dict[Operation, Callable[[QueryTarget], Awaitable[Any]]] = {
            Operation.BALANCE: self.get_balance,
            Operation.PRICE: self.get_price,
            Operation.PRICE_HISTORY: self.get_price_history,
            Operation.TRANSACTIONS: self.get_transactions,
            Operation.NFT_METADATA: self.get_nft_metadata,
            Operation.TOKEN_METADATA: self.get_token_metadata,
        }
        handler = handlers.get(operation)
        if handler is None:
            raise InvalidRequest(f"{operation.value} is not an asset-level operation")
        return await handler(target)

    async def get_balance(self, target: QueryTarget) -> Balance:
        asset = target_asset(target)
        check_supported(Operation.BALANCE, asset.network, asset.kind)
        address = require_valid_address(target.address, asset.network)
        provider: BalanceProvider = self._indexer(asset.network, BalanceProvider)
        return await self._call(provider.get_balance, asset, address)

    async def get_fee(self, network_id: str, kind: str = "eip1559") -> FeeQuote:
        network = lookup(network_id)
        if kind not in FEE_TYPES:
            raise InvalidRequest('Gas type must be either "legacy" or "eip1559"', details={"type": kind})
        check_supported(Operation.FEE, network)
        provider: FeeProvider = self._indexer(network, FeeProvider)
        return await self._call(provider.get_fee, network, kind)

    async def get_price(self, target: QueryTarget) -> Price:
        asset = target.asset
        check_supported(Operation.PRICE, asset.network, asset.kind)
        currency = normalize_currency(target.currency)
        price = await self._call(self._prices.get_price, asset, currency)
        return Price(asset=AssetDescriptor.from_asset(asset), currency=currency, price=price, source=self._prices.name)

    async def get_price_history(self, target: QueryTarget) -> PriceHistory:
        asset = target.asset
        check_supported(Operation.PRICE_HISTORY, asset.network, asset.kind)
        currency = normalize_currency(target.currency)
        if not 1 <= target.days <= MAX_HISTORY_DAYS:
            raise InvalidRequest(f"days must be between 1 and {MAX_HISTORY_DAYS}", details={"days": target.days})
        points = await self._call(self._prices.get_price_history, asset, target.days, currency)
        return PriceHistory(
            asset=AssetDescriptor.from_asset(asset),
            currency=currency,
            days=target.days,
            points=points,
        )

    async def get_transactions(self, target: QueryTarget) -> TransactionPage:
        asset = target_asset(target)
        check_supported(Operation.TRANSACTIONS, asset.network, asset.kind)
        if target.page < 1:
            raise InvalidRequest("page must be 1 or greater", details={"page": target.page})
        if not 1 <= target.limit <= MAX_PAGE_LIMIT:
            raise InvalidRequest(f"limit must be between 1 and {MAX_PAGE_LIMIT}", details={"limit": target.limit})
        address = require_valid_address(target.address, asset.network)
        provider: HistoryProvider = self._indexer(asset.network, HistoryProvider)
        return await self._call(provider.get_transactions, asset, address, target.page, target.limit)

    async def get_nft_owners(
        self, network_id: str, contract_address: str, token_id: Optional[str] = None
    ) -> NftOwners:
        network = lookup(network_id)
        check_supported(Operation.NFT_OWNERS, network)
        contract = require_valid_address(contract_address, network, role="contract address")
        normalized_id = parse_token_id(token_id) if token_id is not None else None
        provider: NftProvider = self._indexer(network, NftProvider)
        owners = await self._call(provider.get_owners, contract, network, normalized_id)
        return NftOwners(network=network.id, contract_address=contract, token_id=normalized_id, owners=owners)

    async def get_owned_nfts(
        self, owner: str, network_id: str, contract_address: Optional[str] = None
    ) -> OwnedNfts:
        network = lookup(network_id)
        check_supported(Operation.OWNED_NFTS, network)
        owner = require_valid_address(owner, network, role="owner address")
        contract = None
        if contract_address:
            contract = require_valid_address(contract_address, network, role="contract address")
        provider: NftProvider = self._indexer(network, NftProvider)
        return await self._call(provider.get_owned_nfts, owner, network, contract)

    async def get_nft_metadata(self, target: QueryTarget) -> NftMetadata:
        asset = target_asset(target)
        check_supported(Operation.NFT_METADATA, asset.network, asset.kind)
        if asset.token_id is None:
            raise InvalidRequest("NFT metadata needs a token id", details={"asset_id": asset.asset_id})
        provider: NftProvider = self._indexer(asset.network, NftProvider)
        return await self._call(provider.get_nft_metadata, asset)

    async def get_token_metadata(self, target: QueryTarget) -> TokenMetadata:
        asset = target.asset
        check_supported(Operation.TOKEN_METADATA, asset.network, asset.kind)
        if asset.kind is AssetKind.NATIVE_COIN:
            # Native coin metadata comes from the registry; no upstream call
            network = asset.network
            return TokenMetadata(
                asset=AssetDescriptor.from_asset(asset),
                name=network.native_name,
                symbol=network.native_symbol,
                decimals=network.native_decimals,
            )
        provider: TokenMetadataProvider = self._indexer(asset.network, TokenMetadataProvider)
        return await self._call(provider.get_metadata, asset)

    # Batch reads

    def resolve_targets(
        self,
        identifiers: Sequence[str],
        *,
        address: Optional[str] = None,
        currency: str = "usd",
    ) -> List[Outcome[QueryTarget]]:
        targets: List[Outcome[QueryTarget]] = []
        for identifier in identifiers:
            slot = self._resolve_slot(identifier)
            if isinstance(slot, Success):
                targets.append(Success(QueryTarget(asset=slot.value, address=address, currency=currency)))
            else:
                targets.append(slot)
        return targets

    async def execute_batch(self, operation: Operation, targets: Sequence[Outcome[QueryTarget]]) -> List[Outcome]:
        """Run ``operation`` for every target; slot ``i`` of the result answers target ``i``."""

        async def run(slot: Outcome[QueryTarget]) -> Outcome:
            if isinstance(slot, Failure):
                return slot
            return await self._capture(self.execute(operation, slot.value))

        return await self._bounded([run(slot) for slot in targets])

    async def get_multiple_balances(self, address: str, identifiers: Sequence[str]) -> BatchResult:
        _check_batch_size(identifiers)
        outcomes = await self.execute_batch(Operation.BALANCE, self.resolve_targets(identifiers, address=address))
        return self._batch_result(identifiers, outcomes)

    async def get_multiple_prices(self, identifiers: Sequence[str], currency: str = "usd") -> BatchResult:
        _check_batch_size(identifiers)
        currency = normalize_currency(currency)
        assets = [self._resolve_slot(identifier) for identifier in identifiers]
        prices = await self._price_outcomes(assets, currency)

        outcomes: List[Outcome] = []
        for asset, price in zip(assets, prices):
            if isinstance(price, Success):
                outcomes.append(Success(Price(
                    asset=AssetDescriptor.from_asset(asset.value),
                    currency=currency,
                    price=price.value,
                    source=self._prices.name,
                )))
            else:
                outcomes.append(price)
        return self._batch_result(identifiers, outcomes)

    async def _price_outcomes(
        self, assets: Sequence[Outcome[ResolvedAsset]], currency: str
    ) -> List[Outcome[Decimal]]:
        """Price every asset with one batch call per network; failures stay in their slots."""

        slots: List[Optional[Outcome[Decimal]]] = [None] * len(assets)
        groups: Dict[str, List[int]] = defaultdict(list)
        for index, slot in enumerate(assets):
            if isinstance(slot, Failure):
                slots[index] = slot
                continue
            asset = slot.value
            try:
                check_supported(Operation.PRICE, asset.network, asset.kind)
            except GatewayError as exc:
                slots[index] = Failure(exc)
                continue
            groups[asset.network.id].append(index)

        group_indices = list(groups.values())
        group_results = await self._bounded([
            self._capture(self._call(self._prices.get_prices, [assets[i].value for i in indices], currency))
            for indices in group_indices
        ])

        for indices, result in zip(group_indices, group_results):
            for index in indices:
                asset = assets[index].value
                if isinstance(result, Failure):
                    slots[index] = result
                elif asset in result.value:
                    slots[index] = Success(result.value[asset])
                else:
                    slots[index] = Failure(UpstreamDataError(
                        f"No {currency} price available for {asset.asset_id}",
                        details={"asset_id": asset.asset_id},
                    ))
        return slots

    @staticmethod
    def _batch_result(identifiers: Sequence[str], outcomes: Sequence[Outcome]) -> BatchResult:
        items: List[BatchEntry] = []
        for identifier, outcome in zip(identifiers, outcomes):
            if isinstance(outcome, Success):
                items.append(BatchEntry(asset_id=identifier, success=True, data=outcome.value))
            else:
                items.append(BatchEntry(asset_id=identifier, success=False, error=ErrorBody.from_error(outcome.error)))
        succeeded = sum(1 for item in items if item.success)
        return BatchResult(items=items, succeeded=succeeded, failed=len(items) - succeeded)

    # Portfolio

    async def summarize(self, address: str, identifiers: Sequence[str], currency: str = "usd") -> PortfolioResult:
        """Value a holder's assets.

        Balances and prices are fetched independently per asset. Only assets
        with both contribute to ``total_value``; the rest are reported with a
        ``partial`` or ``failed`` status. The call fails only if every asset
        failed both lookups.
        """
        _check_batch_size(identifiers)
        currency = normalize_currency(currency)
        assets = [self._resolve_slot(identifier) for identifier in identifiers]
        balance_targets: List[Outcome[QueryTarget]] = [
            Success(QueryTarget(asset=slot.value, address=address)) if isinstance(slot, Success) else slot
            for slot in assets
        ]

        balances, prices = await asyncio.gather(
            self.execute_batch(Operation.BALANCE, balance_targets),
            self._price_outcomes(assets, currency),
        )

        entries: List[PortfolioEntry] = []
        total = Decimal("0")
        priced = 0
        for identifier, asset, balance, price in zip(identifiers, assets, balances, prices):
            if isinstance(asset, Failure):
                entries.append(PortfolioEntry(
                    asset_id=identifier,
                    status="failed",
                    errors=[ErrorBody.from_error(asset.error)],
                ))
                continue

            errors = [ErrorBody.from_error(o.error) for o in (balance, price) if isinstance(o, Failure)]
            balance_value = balance.value if isinstance(balance, Success) else None
            unit_price = price.value if isinstance(price, Success) else None

            value = None
            if balance_value is not None and unit_price is not None:
                value = balance_value.formatted * unit_price
                total += value
                priced += 1
                status = "complete"
            elif balance_value is not None or unit_price is not None:
                status = "partial"
            else:
                status = "failed"

            entries.append(PortfolioEntry(
                asset_id=identifier,
                asset=AssetDescriptor.from_asset(asset.value),
                status=status,
                balance=balance_value,
                price=unit_price,
                value=value,
                errors=errors,
            ))

        if all(entry.status == "failed" for entry in entries):
            raise self._portfolio_failure(entries)

        logger.info(
            "portfolio_summarized",
            assets=len(entries),
            priced=priced,
            currency=currency,
        )
        return PortfolioResult(
            address=address,
            currency=currency,
            total_value=total,
            priced_assets=priced,
            assets=entries,
        )

    @staticmethod
    def _portfolio_failure(entries: Sequence[PortfolioEntry]) -> GatewayError:
        codes = {error.code for entry in entries for error in entry.errors}
        details = {
            "assets": [
                {"asset_id": entry.asset_id, "errors": [e.model_dump() for e in entry.errors]}
                for entry in entries
            ]
        }
        if len(codes) == 1:
            code = ErrorCode(codes.pop())
            return error_for_code(code, "Every portfolio asset failed", details)
        return UpstreamUnavailable("Every portfolio asset failed", details)


def build_orchestrator() -> QueryOrchestrator:
    if not settings.has_alchemy_key:
        logger.warning("alchemy_key_missing", detail="account-chain queries will fail with MISSING_CREDENTIAL")
    logger.info(
        "orchestrator_built",
        coingecko_tier="keyed" if settings.has_coingecko_key else "public",
        price_cache=settings.enable_price_cache,
    )
    prices: PriceProvider = CoingeckoProvider()
    if settings.enable_price_cache:
        prices = CachedPriceProvider(prices)
    return QueryOrchestrator(
        indexers={
            IndexerName.ALCHEMY: AlchemyProvider(),
            IndexerName.BLOCKSTREAM: BlockstreamProvider(),
        },
        prices=prices,
    )


# Singleton instance
_orchestrator: Optional[QueryOrchestrator] = None


def get_orchestrator() -> QueryOrchestrator:
    """Get the process-wide orchestrator; it holds no per-request state."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_orchestrator()
    return _orchestrator


__all__ = [
    "Operation",
    "QueryTarget",
    "QueryOrchestrator",
    "check_supported",
    "normalize_currency",
    "normalize_error",
    "build_orchestrator",
    "get_orchestrator",
]
