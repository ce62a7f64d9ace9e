import asyncio
from datetime import datetime
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import httpx
import structlog

from ..config import settings
from ..core.assets import AssetKind, ResolvedAsset, normalize_token_id
from ..core.networks import NETWORKS, NetworkDescriptor
from ..types.results import (
    AssetDescriptor,
    Balance,
    FeeQuote,
    NftMetadata,
    NftRecord,
    OwnedNfts,
    TokenMetadata,
    TransactionPage,
    TransactionRecord,
)
from .base import (
    BalanceProvider,
    FeeProvider,
    HistoryProvider,
    NftProvider,
    TokenMetadataProvider,
    format_units,
)
from .errors import (
    ProviderError,
    ProviderNotConfigured,
    ProviderNotFound,
    ProviderResponseError,
    ProviderUnsupported,
)

logger = structlog.stdlib.get_logger(__name__)

# totalSupply() selector
_TOTAL_SUPPLY_CALL = "0x18160ddd"
# alchemy_getAssetTransfers caps maxCount at 0x3e8
_MAX_TRANSFER_COUNT = 1000
_MAX_TRANSFER_PAGES = 20
# getNFTsForOwner returns at most 100 NFTs per page
_NFT_PAGE_SIZE = 100
_MAX_NFT_PAGES = 50


def _hex_int(value: Any, field: str) -> int:
    try:
        return int(value, 16)
    except (TypeError, ValueError) as exc:
        raise ProviderResponseError(f"alchemy returned an invalid {field}: {value!r}", provider="alchemy") from exc


def _count(value: Any, field: str) -> int:
    text = str(value).strip()
    try:
        return int(text, 16) if text.lower().startswith("0x") else int(text, 10)
    except (TypeError, ValueError) as exc:
        raise ProviderResponseError(f"alchemy returned an invalid {field}: {value!r}", provider="alchemy") from exc


def _transfer_token_id(transfer: Dict[str, Any]) -> Optional[str]:
    token_id = transfer.get("erc721TokenId") or transfer.get("tokenId")
    if token_id is None and transfer.get("erc1155Metadata"):
        token_id = transfer["erc1155Metadata"][0].get("tokenId")
    return normalize_token_id(str(token_id)) if token_id is not None else None


def _iso_to_epoch(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        return int(datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp())
    except ValueError:
        return None


class AlchemyProvider(BalanceProvider, FeeProvider, HistoryProvider, NftProvider, TokenMetadataProvider):
    """Alchemy API provider for EVM balances, fees, transfers, NFTs and token metadata"""

    name = "alchemy"
    timeout_s = 30

    def __init__(self, api_key: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(transport=transport)
        self.api_key = settings.alchemy_api_key if api_key is None else api_key

    async def ready(self) -> bool:
        return bool(self.api_key) and settings.enable_alchemy

    async def health_check(self) -> Dict[str, Any]:
        if not await self.ready():
            return {
                "status": "unavailable",
                "reason": "API key not configured or provider disabled"
            }

        started = asyncio.get_running_loop().time()
        try:
            await self._rpc(NETWORKS["ethereum"], "eth_chainId", [])
        except ProviderError as e:
            return {"status": "error", "reason": e.message}
        latency_ms = int((asyncio.get_running_loop().time() - started) * 1000)
        return {"status": "healthy", "latency_ms": latency_ms}

    def _host(self, network: NetworkDescriptor) -> str:
        if not self.api_key or not settings.enable_alchemy:
            raise ProviderNotConfigured("Alchemy API key not configured or provider disabled", provider=self.name)
        if not network.alchemy_slug:
            raise ProviderUnsupported(f"Alchemy does not serve {network.id}", provider=self.name)
        return f"https://{network.alchemy_slug}.g.alchemy.com"

    def _rpc_url(self, network: NetworkDescriptor) -> str:
        return f"{self._host(network)}/v2/{self.api_key}"

    def _nft_url(self, network: NetworkDescriptor, method: str) -> str:
        return f"{self._host(network)}/nft/v3/{self.api_key}/{method}"

    async def _rpc(self, network: NetworkDescriptor, method: str, params: List[Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": 1
        }
        data = await self._request_json(
            "POST",
            self._rpc_url(network),
            json=payload,
            headers={"Content-Type": "application/json"},
        )

        if not isinstance(data, dict):
            raise ProviderResponseError(f"Alchemy {method} returned an unexpected body", provider=self.name)
        if "error" in data:
            error = data["error"] or {}
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ProviderResponseError(f"Alchemy error: {message}", provider=self.name, payload=error)
        if "result" not in data:
            raise ProviderResponseError(f"Alchemy {method} returned no result", provider=self.name)
        return data["result"]

    async def _nft_get(self, network: NetworkDescriptor, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        data = await self._request_json("GET", self._nft_url(network, method), params=params)
        if not isinstance(data, dict):
            raise ProviderResponseError(f"Alchemy {method} returned an unexpected body", provider=self.name)
        return data

    # Balances

    async def get_balance(self, asset: ResolvedAsset, address: str) -> Balance:
        """Get native, ERC-20 or NFT balance for address"""
        network = asset.network
        descriptor = AssetDescriptor.from_asset(asset)

        if asset.kind is AssetKind.NATIVE_COIN:
            raw = _hex_int(await self._rpc(network, "eth_getBalance", [address, "latest"]), "balance")
            decimals = network.native_decimals
            symbol: Optional[str] = network.native_symbol

        elif asset.kind is AssetKind.FUNGIBLE_TOKEN:
            balances, metadata = await asyncio.gather(
                self._rpc(network, "alchemy_getTokenBalances", [address, [asset.contract_address]]),
                self._rpc(network, "alchemy_getTokenMetadata", [asset.contract_address]),
            )
            entries = (balances or {}).get("tokenBalances") or []
            if not entries:
                raise ProviderNotFound("Alchemy returned no balance for token", provider=self.name)
            entry = entries[0]
            if entry.get("error"):
                raise ProviderResponseError(f"Alchemy error: {entry['error']}", provider=self.name)
            raw = _hex_int(entry.get("tokenBalance") or "0x0", "token balance")
            decimals = (metadata or {}).get("decimals")
            if decimals is None:
                raise ProviderResponseError("Token decimals unavailable", provider=self.name)
            decimals = _count(decimals, "token decimals")
            symbol = (metadata or {}).get("symbol")

        elif asset.kind is AssetKind.NFT:
            raw = await self._nft_balance(asset, address)
            decimals = 0
            symbol = None

        else:
            raise ProviderUnsupported(f"Unhandled asset kind {asset.kind}", provider=self.name)

        return Balance(
            asset=descriptor,
            address=address,
            symbol=symbol,
            decimals=decimals,
            raw=str(raw),
            formatted=format_units(raw, decimals),
        )

    # Fees

    async def get_fee(self, network: NetworkDescriptor, kind: str) -> FeeQuote:
        if kind == "legacy":
            gas_price = _hex_int(await self._rpc(network, "eth_gasPrice", []), "gas price")
            return FeeQuote(network=network.id, type="legacy", gas_price=format_units(gas_price, 9))

        fee_history, priority_hex = await asyncio.gather(
            self._rpc(network, "eth_feeHistory", [1, "latest", []]),
            self._rpc(network, "eth_maxPriorityFeePerGas", []),
        )
        base_fees = (fee_history or {}).get("baseFeePerGas") or []
        if not base_fees:
            raise ProviderResponseError("Alchemy fee history has no base fee", provider=self.name)

        # baseFeePerGas[-1] is the base fee of the next block
        base_fee = _hex_int(base_fees[-1], "base fee")
        priority_fee = _hex_int(priority_hex, "priority fee")
        max_fee = base_fee * 2 + priority_fee

        return FeeQuote(
            network=network.id,
            type="eip1559",
            base_fee=format_units(base_fee, 9),
            max_priority_fee=format_units(priority_fee, 9),
            max_fee=format_units(max_fee, 9),
        )

    # Transaction history

    async def get_transactions(self, asset: ResolvedAsset, address: str, page: int, limit: int) -> TransactionPage:
        network = asset.network
        wanted = page * limit + 1

        base_params: Dict[str, Any] = {
            "fromBlock": "0x0",
            "toBlock": "latest",
            "category": [self._transfer_category(asset)],
            "withMetadata": True,
            "excludeZeroValue": False,
            "maxCount": hex(_MAX_TRANSFER_COUNT if asset.token_id is not None else min(wanted, _MAX_TRANSFER_COUNT)),
            "order": "desc",
        }
        if asset.contract_address:
            base_params["contractAddresses"] = [asset.contract_address]

        (outgoing, more_out), (incoming, more_in) = await asyncio.gather(
            self._collect_transfers(network, {**base_params, "fromAddress": address}, wanted, asset.token_id),
            self._collect_transfers(network, {**base_params, "toAddress": address}, wanted, asset.token_id),
        )

        seen = set()
        transfers: List[Dict[str, Any]] = []
        for transfer in outgoing + incoming:
            key = transfer.get("uniqueId") or (transfer.get("hash"), transfer.get("from"), transfer.get("to"))
            if key in seen:
                continue
            seen.add(key)
            transfers.append(transfer)

        records = [self._transfer_record(t, address) for t in transfers]
        records.sort(key=lambda r: r.block_number or 0, reverse=True)

        start = (page - 1) * limit
        return TransactionPage(
            asset=AssetDescriptor.from_asset(asset),
            address=address,
            page=page,
            limit=limit,
            has_more=len(records) > start + limit or more_out or more_in,
            transactions=records[start:start + limit],
        )

    async def _collect_transfers(
        self, network: NetworkDescriptor, params: Dict[str, Any], wanted: int, token_id: Optional[str]
    ) -> Tuple[List[Dict[str, Any]], bool]:
        """Follow ``pageKey`` until ``wanted`` matching transfers are in hand.

        The flag is true when Alchemy still has older transfers.
        """
        collected: List[Dict[str, Any]] = []
        page_key: Optional[str] = None
        for _ in range(_MAX_TRANSFER_PAGES):
            request = dict(params)
            if page_key:
                request["pageKey"] = page_key
            result = await self._rpc(network, "alchemy_getAssetTransfers", [request]) or {}
            for transfer in result.get("transfers") or []:
                if token_id is None or _transfer_token_id(transfer) == token_id:
                    collected.append(transfer)
            page_key = result.get("pageKey")
            if not page_key or len(collected) >= wanted:
                return collected, bool(page_key)

        logger.warning("transfer_history_truncated", network=network.id, pages=_MAX_TRANSFER_PAGES)
        return collected, True

    @staticmethod
    def _transfer_category(asset: ResolvedAsset) -> str:
        if asset.kind is AssetKind.NATIVE_COIN:
            return "external"
        if asset.kind is AssetKind.FUNGIBLE_TOKEN:
            return "erc20"
        if asset.kind is AssetKind.NFT:
            return asset.token_standard.value
        raise ProviderUnsupported(f"Unhandled asset kind {asset.kind}", provider="alchemy")

    @staticmethod
    def _transfer_record(transfer: Dict[str, Any], address: str) -> TransactionRecord:
        sender = transfer.get("from")
        recipient = transfer.get("to")
        me = address.lower()
        if (sender or "").lower() == me and (recipient or "").lower() == me:
            direction = "self"
        elif (sender or "").lower() == me:
            direction = "out"
        else:
            direction = "in"

        value = transfer.get("value")
        block = transfer.get("blockNum")
        return TransactionRecord(
            hash=transfer.get("hash") or "",
            block_number=_hex_int(block, "block number") if block else None,
            timestamp=_iso_to_epoch((transfer.get("metadata") or {}).get("blockTimestamp")),
            from_address=sender,
            to_address=recipient,
            value=Decimal(str(value)) if value is not None else None,
            symbol=transfer.get("asset"),
            direction=direction,
            category=transfer.get("category"),
            token_id=_transfer_token_id(transfer),
        )

    # NFTs

    async def get_owners(
        self, contract_address: str, network: NetworkDescriptor, token_id: Optional[str] = None
    ) -> List[str]:
        if token_id is not None:
            method = "getOwnersForNFT"
            params: Dict[str, Any] = {"contractAddress": contract_address, "tokenId": token_id}
        else:
            method = "getOwnersForContract"
            params = {"contractAddress": contract_address}

        owners: List[str] = []
        for _ in range(_MAX_NFT_PAGES):
            data = await self._nft_get(network, method, params)
            page = data.get("owners")
            if page is None:
                raise ProviderResponseError("Alchemy owners response has no owners field", provider=self.name)
            owners.extend(o if isinstance(o, str) else o.get("ownerAddress", "") for o in page)
            page_key = data.get("pageKey")
            if not page_key:
                return owners
            params = {**params, "pageKey": page_key}
        raise ProviderResponseError(f"{method} did not finish within {_MAX_NFT_PAGES} pages", provider=self.name)

    async def _owned_nft_pages(
        self,
        owner: str,
        network: NetworkDescriptor,
        contract_address: Optional[str],
        *,
        with_metadata: bool,
    ) -> AsyncIterator[Dict[str, Any]]:
        """Yield ``getNFTsForOwner`` pages, following ``pageKey`` up to ``_MAX_NFT_PAGES``."""
        params: Dict[str, Any] = {
            "owner": owner,
            "withMetadata": "true" if with_metadata else "false",
            "pageSize": _NFT_PAGE_SIZE,
        }
        if contract_address:
            params["contractAddresses[]"] = [contract_address]

        for _ in range(_MAX_NFT_PAGES):
            data = await self._nft_get(network, "getNFTsForOwner", params)
            yield data
            page_key = data.get("pageKey")
            if not page_key:
                return
            params = {**params, "pageKey": page_key}
        raise ProviderResponseError(
            f"More than {_MAX_NFT_PAGES * _NFT_PAGE_SIZE} NFTs held, stopped paging",
            provider=self.name,
        )

    async def _nft_balance(self, asset: ResolvedAsset, address: str) -> int:
        raw = 0
        async for data in self._owned_nft_pages(address, asset.network, asset.contract_address, with_metadata=False):
            for item in data.get("ownedNfts") or []:
                if asset.token_id is None:
                    raw += _count(item.get("balance") or 1, "NFT balance")
                elif normalize_token_id(str(item.get("tokenId", ""))) == asset.token_id:
                    return _count(item.get("balance") or 1, "NFT balance")
        return raw

    async def get_owned_nfts(
        self, owner: str, network: NetworkDescriptor, contract_address: Optional[str] = None
    ) -> OwnedNfts:
        nfts: List[NftRecord] = []
        total_count: Optional[int] = None
        async for data in self._owned_nft_pages(owner, network, contract_address, with_metadata=True):
            nfts.extend(self._nft_record(item) for item in data.get("ownedNfts") or [])
            if total_count is None and data.get("totalCount") is not None:
                total_count = _count(data["totalCount"], "total count")
        return OwnedNfts(
            owner=owner,
            network=network.id,
            contract_address=contract_address,
            total_count=total_count if total_count is not None else len(nfts),
            nfts=nfts,
        )

    @staticmethod
    def _nft_record(item: Dict[str, Any]) -> NftRecord:
        contract = item.get("contract") or {}
        image = item.get("image") or {}
        token_type = (item.get("tokenType") or contract.get("tokenType") or "").lower() or None
        return NftRecord(
            contract_address=contract.get("address", ""),
            token_id=normalize_token_id(str(item.get("tokenId", ""))) or str(item.get("tokenId", "")),
            token_standard=token_type,
            name=item.get("name"),
            description=item.get("description"),
            image=image.get("cachedUrl") or image.get("originalUrl"),
            collection=(item.get("collection") or {}).get("name") or contract.get("name"),
            balance=str(item["balance"]) if item.get("balance") is not None else None,
        )

    async def get_nft_metadata(self, asset: ResolvedAsset) -> NftMetadata:
        if asset.kind is not AssetKind.NFT or asset.token_id is None:
            raise ProviderUnsupported("NFT metadata needs a contract and token id", provider=self.name)

        data = await self._nft_get(
            asset.network,
            "getNFTMetadata",
            {
                "contractAddress": asset.contract_address,
                "tokenId": asset.token_id,
                "tokenType": asset.token_standard.value.upper(),
            },
        )
        raw_metadata = (data.get("raw") or {}).get("metadata") or {}
        attributes = raw_metadata.get("attributes") if isinstance(raw_metadata, dict) else None
        image = data.get("image") or {}
        return NftMetadata(
            asset=AssetDescriptor.from_asset(asset),
            name=data.get("name"),
            description=data.get("description"),
            image=image.get("cachedUrl") or image.get("originalUrl"),
            token_uri=data.get("tokenUri"),
            collection=(data.get("contract") or {}).get("name"),
            attributes=[a for a in attributes or [] if isinstance(a, dict)],
        )

    # Token metadata

    async def get_metadata(self, asset: ResolvedAsset) -> TokenMetadata:
        if asset.kind is not AssetKind.FUNGIBLE_TOKEN:
            raise ProviderUnsupported("Token metadata is only served for ERC-20 contracts", provider=self.name)

        token_info = await self._rpc(asset.network, "alchemy_getTokenMetadata", [asset.contract_address]) or {}
        if not any(token_info.get(k) is not None for k in ("name", "symbol", "decimals")):
            raise ProviderNotFound(f"No token metadata for {asset.contract_address}", provider=self.name)

        total_supply: Optional[str] = None
        try:
            supply_hex = await self._rpc(
                asset.network,
                "eth_call",
                [{"to": asset.contract_address, "data": _TOTAL_SUPPLY_CALL}, "latest"],
            )
            total_supply = str(_hex_int(supply_hex, "total supply"))
        except ProviderResponseError as exc:
            # Non-standard contracts may revert on totalSupply()
            logger.info("total_supply_unavailable", contract=asset.contract_address, reason=exc.message)

        decimals = token_info.get("decimals")
        return TokenMetadata(
            asset=AssetDescriptor.from_asset(asset),
            name=token_info.get("name"),
            symbol=token_info.get("symbol"),
            decimals=_count(decimals, "token decimals") if decimals is not None else None,
            total_supply=total_supply,
            logo=token_info.get("logo"),
        )
