"""Esplora (Blockstream / mempool.space) explorer provider for Bitcoin."""

import asyncio
from typing import Any, Dict, List, Optional

import httpx
import structlog

from ..config import settings
from ..core.assets import ResolvedAsset
from ..types.results import AssetDescriptor, Balance, TransactionPage, TransactionRecord
from .base import BalanceProvider, HistoryProvider, format_units
from .errors import ProviderError, ProviderNotConfigured, ProviderResponseError, ProviderUnsupported

logger = structlog.stdlib.get_logger(__name__)

# Esplora returns confirmed transactions 25 at a time
_CHAIN_PAGE_SIZE = 25
_MAX_CHAIN_PAGES = 40


def _canonical_address(address: str) -> str:
    # Esplora reports bech32 addresses lower-cased
    return address.lower() if address.lower().startswith("bc1") else address


class BlockstreamProvider(BalanceProvider, HistoryProvider):
    name = "blockstream"
    timeout_s = 20

    def __init__(self, base_url: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(transport=transport)
        self.base_url = (base_url or settings.blockstream_base_url).rstrip("/")

    async def ready(self) -> bool:
        return settings.enable_blockstream

    async def health_check(self) -> Dict[str, Any]:
        if not await self.ready():
            return {"status": "unavailable", "reason": "Provider disabled"}

        started = asyncio.get_running_loop().time()
        try:
            height = await self._get("/blocks/tip/height")
        except ProviderError as e:
            return {"status": "error", "reason": e.message}
        latency_ms = int((asyncio.get_running_loop().time() - started) * 1000)
        return {"status": "healthy", "latency_ms": latency_ms, "tip_height": height}

    async def _get(self, path: str) -> Any:
        if not settings.enable_blockstream:
            raise ProviderNotConfigured("Blockstream provider disabled", provider=self.name)
        return await self._request_json("GET", f"{self.base_url}{path}")

    def _require_native(self, asset: ResolvedAsset) -> None:
        if not asset.is_native or not asset.network.is_utxo:
            raise ProviderUnsupported(f"{self.name} only serves native UTXO coins", provider=self.name)

    async def get_balance(self, asset: ResolvedAsset, address: str) -> Balance:
        """Confirmed on-chain balance; mempool activity is not counted."""
        self._require_native(asset)
        address = _canonical_address(address)
        data = await self._get(f"/address/{address}")
        stats = data.get("chain_stats") if isinstance(data, dict) else None
        if not isinstance(stats, dict):
            raise ProviderResponseError("Esplora address response has no chain_stats", provider=self.name)

        try:
            raw = int(stats["funded_txo_sum"]) - int(stats["spent_txo_sum"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ProviderResponseError("Esplora chain_stats are incomplete", provider=self.name) from exc

        network = asset.network
        return Balance(
            asset=AssetDescriptor.from_asset(asset),
            address=address,
            symbol=network.native_symbol,
            decimals=network.native_decimals,
            raw=str(raw),
            formatted=format_units(raw, network.native_decimals),
        )

    async def get_transactions(self, asset: ResolvedAsset, address: str, page: int, limit: int) -> TransactionPage:
        self._require_native(asset)
        address = _canonical_address(address)
        wanted = page * limit + 1

        first = await self._get(f"/address/{address}/txs")
        if not isinstance(first, list):
            raise ProviderResponseError("Esplora txs response is not a list", provider=self.name)
        txs: List[Dict[str, Any]] = list(first)

        # Follow the confirmed-history cursor until we have enough or it runs dry
        confirmed = [tx for tx in txs if (tx.get("status") or {}).get("confirmed")]
        last_batch = len(confirmed)
        pages = 0
        while len(txs) < wanted and last_batch >= _CHAIN_PAGE_SIZE and pages < _MAX_CHAIN_PAGES:
            last_seen = confirmed[-1]["txid"]
            batch = await self._get(f"/address/{address}/txs/chain/{last_seen}")
            if not isinstance(batch, list):
                raise ProviderResponseError("Esplora chain txs response is not a list", provider=self.name)
            txs.extend(batch)
            confirmed.extend(batch)
            last_batch = len(batch)
            pages += 1

        truncated = len(txs) < wanted and last_batch >= _CHAIN_PAGE_SIZE
        if truncated:
            logger.warning("chain_history_truncated", pages=pages)

        network = asset.network
        records = [self._record(tx, address, network.native_decimals, network.native_symbol) for tx in txs]
        start = (page - 1) * limit
        return TransactionPage(
            asset=AssetDescriptor.from_asset(asset),
            address=address,
            page=page,
            limit=limit,
            has_more=len(records) > start + limit or truncated,
            transactions=records[start:start + limit],
        )

    @staticmethod
    def _record(tx: Dict[str, Any], address: str, decimals: int, symbol: str) -> TransactionRecord:
        received = sum(
            int(out.get("value") or 0)
            for out in tx.get("vout") or []
            if out.get("scriptpubkey_address") == address
        )
        spent = sum(
            int((vin.get("prevout") or {}).get("value") or 0)
            for vin in tx.get("vin") or []
            if (vin.get("prevout") or {}).get("scriptpubkey_address") == address
        )
        net = received - spent
        if spent and received and net == 0:
            direction = "self"
        elif net < 0:
            direction = "out"
        else:
            direction = "in"

        status = tx.get("status") or {}
        fee = tx.get("fee")
        return TransactionRecord(
            hash=tx.get("txid", ""),
            block_number=status.get("block_height"),
            timestamp=status.get("block_time"),
            value=format_units(abs(net), decimals),
            symbol=symbol,
            direction=direction,
            category="transfer",
            fee=format_units(int(fee), decimals) if fee is not None else None,
            confirmed=bool(status.get("confirmed")),
        )
