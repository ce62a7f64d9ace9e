import json
from decimal import Decimal

import httpx
import pytest

from app.config import settings
from app.core.networks import lookup
from app.core.resolver import resolve
from app.providers import alchemy
from app.providers.alchemy import AlchemyProvider
from app.providers.errors import ProviderNotConfigured, ProviderResponseError, RateLimited, ProviderUnsupported

from fakes import BAYC, HOLDER, USDC


def rpc_transport(results, calls=None):
    """Answer JSON-RPC calls from ``results`` keyed by method name."""

    def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        method = payload["method"]
        if calls is not None:
            calls.append((str(request.url), payload))
        result = results[method]
        if isinstance(result, httpx.Response):
            return result
        if isinstance(result, dict) and "error" in result:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": result["error"]})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": result})

    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_native_balance_uses_network_endpoint():
    calls = []
    provider = AlchemyProvider(
        api_key="test-key",
        transport=rpc_transport({"eth_getBalance": hex(1_500_000_000_000_000_000)}, calls),
    )

    balance = await provider.get_balance(resolve("base"), HOLDER)

    assert balance.raw == "1500000000000000000"
    assert balance.formatted == Decimal("1.5")
    assert balance.symbol == "ETH"
    url, payload = calls[0]
    assert url == "https://base-mainnet.g.alchemy.com/v2/test-key"
    assert payload["params"] == [HOLDER, "latest"]


@pytest.mark.asyncio
async def test_token_balance_uses_contract_decimals():
    provider = AlchemyProvider(
        api_key="test-key",
        transport=rpc_transport({
            "alchemy_getTokenBalances": {
                "address": HOLDER,
                "tokenBalances": [{"contractAddress": USDC, "tokenBalance": hex(2_500_000), "error": None}],
            },
            "alchemy_getTokenMetadata": {"decimals": 6, "symbol": "USDC", "name": "USD Coin"},
        }),
    )

    balance = await provider.get_balance(resolve(f"ethereum:{USDC}"), HOLDER)

    assert balance.decimals == 6
    assert balance.formatted == Decimal("2.5")
    assert balance.symbol == "USDC"


@pytest.mark.asyncio
async def test_eip1559_fee_quote():
    provider = AlchemyProvider(
        api_key="test-key",
        transport=rpc_transport({
            "eth_feeHistory": {"baseFeePerGas": [hex(9_000_000_000), hex(10_000_000_000)]},
            "eth_maxPriorityFeePerGas": hex(1_000_000_000),
        }),
    )

    quote = await provider.get_fee(lookup("ethereum"), "eip1559")

    assert quote.type == "eip1559"
    assert quote.base_fee == Decimal("10")
    assert quote.max_priority_fee == Decimal("1")
    assert quote.max_fee == Decimal("21")


@pytest.mark.asyncio
async def test_legacy_fee_quote():
    provider = AlchemyProvider(api_key="test-key", transport=rpc_transport({"eth_gasPrice": hex(25_000_000_000)}))
    quote = await provider.get_fee(lookup("polygon"), "legacy")
    assert quote.gas_price == Decimal("25")
    assert quote.base_fee is None


@pytest.mark.asyncio
async def test_transfers_are_merged_sorted_and_paged():
    def transfer(unique_id, block, sender, recipient):
        return {
            "uniqueId": unique_id,
            "hash": f"0x{unique_id}",
            "blockNum": hex(block),
            "from": sender,
            "to": recipient,
            "value": 0.5,
            "asset": "ETH",
            "category": "external",
            "metadata": {"blockTimestamp": "2024-01-01T00:00:00.000Z"},
        }

    other = "0x" + "1" * 40

    def handler(request: httpx.Request) -> httpx.Response:
        params = json.loads(request.content)["params"][0]
        if "fromAddress" in params:
            transfers = [transfer("a", 10, HOLDER, other), transfer("c", 30, HOLDER, HOLDER)]
        else:
            transfers = [transfer("b", 20, other, HOLDER), transfer("c", 30, HOLDER, HOLDER)]
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": {"transfers": transfers}})

    provider = AlchemyProvider(api_key="test-key", transport=httpx.MockTransport(handler))

    page = await provider.get_transactions(resolve("ethereum"), HOLDER, page=1, limit=2)

    assert [tx.hash for tx in page.transactions] == ["0xc", "0xb"]
    assert [tx.direction for tx in page.transactions] == ["self", "in"]
    assert page.transactions[0].timestamp == 1704067200
    assert page.has_more is True


@pytest.mark.asyncio
async def test_nft_owners_for_token():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        return httpx.Response(200, json={"owners": [HOLDER]})

    provider = AlchemyProvider(api_key="test-key", transport=httpx.MockTransport(handler))
    owners = await provider.get_owners(BAYC, lookup("ethereum"), "1")

    assert owners == [HOLDER]
    assert "/nft/v3/test-key/getOwnersForNFT" in seen["url"]
    assert "tokenId=1" in seen["url"]


@pytest.mark.asyncio
async def test_token_metadata_tolerates_missing_total_supply():
    provider = AlchemyProvider(
        api_key="test-key",
        transport=rpc_transport({
            "alchemy_getTokenMetadata": {"name": "USD Coin", "symbol": "USDC", "decimals": 6, "logo": None},
            "eth_call": {"error": {"code": -32000, "message": "execution reverted"}},
        }),
    )

    metadata = await provider.get_metadata(resolve(f"ethereum:{USDC}"))

    assert metadata.symbol == "USDC"
    assert metadata.decimals == 6
    assert metadata.total_supply is None


@pytest.mark.asyncio
async def test_rpc_error_is_a_response_error():
    provider = AlchemyProvider(
        api_key="test-key",
        transport=rpc_transport({"eth_getBalance": {"error": {"code": -32602, "message": "invalid params"}}}),
    )
    with pytest.raises(ProviderResponseError):
        await provider.get_balance(resolve("ethereum"), HOLDER)


@pytest.mark.asyncio
async def test_rate_limit_is_retried_then_raised(monkeypatch):
    monkeypatch.setattr(settings, "provider_max_retries", 1)
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        return httpx.Response(429, json={"error": "slow down"})

    provider = AlchemyProvider(api_key="test-key", transport=httpx.MockTransport(handler))
    with pytest.raises(RateLimited):
        await provider.get_balance(resolve("ethereum"), HOLDER)
    assert len(attempts) == 2


@pytest.mark.asyncio
async def test_missing_key_is_not_configured():
    provider = AlchemyProvider(api_key="", transport=rpc_transport({}))
    with pytest.raises(ProviderNotConfigured):
        await provider.get_balance(resolve("ethereum"), HOLDER)
    assert (await provider.health_check())["status"] == "unavailable"


@pytest.mark.asyncio
async def test_network_without_alchemy_slug_is_unsupported():
    provider = AlchemyProvider(api_key="test-key", transport=rpc_transport({}))
    with pytest.raises(ProviderUnsupported):
        await provider.get_balance(resolve("bitcoin"), HOLDER)


def owned_nfts_transport(pages, seen_keys=None):
    """Serve ``getNFTsForOwner`` pages in order, chained by ``pageKey``."""

    def handler(request: httpx.Request) -> httpx.Response:
        key = request.url.params.get("pageKey")
        if seen_keys is not None:
            seen_keys.append(key)
        index = int(key) if key else 0
        body = {"ownedNfts": pages[index], "totalCount": sum(len(p) for p in pages)}
        if index + 1 < len(pages):
            body["pageKey"] = str(index + 1)
        return httpx.Response(200, json=body)

    return httpx.MockTransport(handler)


def nft(token_id, balance="1"):
    return {"contract": {"address": BAYC}, "tokenId": str(token_id), "tokenType": "ERC721", "balance": balance}


@pytest.mark.asyncio
async def test_nft_balance_reads_every_page():
    pages = [[nft(i) for i in range(100)], [nft(500)]]
    keys = []
    provider = AlchemyProvider(api_key="test-key", transport=owned_nfts_transport(pages, keys))

    token = await provider.get_balance(resolve(f"ethereum:{BAYC}:500"), HOLDER)
    collection = await provider.get_balance(resolve(f"eip155:1/erc721:{BAYC}"), HOLDER)

    assert token.raw == "1"
    assert collection.raw == "101"
    assert keys == [None, "1", None, "1"]


@pytest.mark.asyncio
async def test_nft_balance_stops_once_token_is_found():
    keys = []
    provider = AlchemyProvider(
        api_key="test-key", transport=owned_nfts_transport([[nft(7)], [nft(8)]], keys)
    )

    balance = await provider.get_balance(resolve(f"ethereum:{BAYC}:7"), HOLDER)

    assert balance.raw == "1"
    assert keys == [None]


@pytest.mark.asyncio
async def test_owned_nfts_collects_all_pages():
    provider = AlchemyProvider(api_key="test-key", transport=owned_nfts_transport([[nft(1), nft(2)], [nft(3)]]))

    owned = await provider.get_owned_nfts(HOLDER, lookup("ethereum"), BAYC)

    assert [n.token_id for n in owned.nfts] == ["1", "2", "3"]
    assert owned.total_count == 3


@pytest.mark.asyncio
async def test_malformed_nft_balance_is_a_response_error():
    provider = AlchemyProvider(api_key="test-key", transport=owned_nfts_transport([[nft(1, balance="lots")]]))
    with pytest.raises(ProviderResponseError):
        await provider.get_balance(resolve(f"ethereum:{BAYC}:1"), HOLDER)


@pytest.mark.asyncio
async def test_contract_owners_follow_page_key():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params.get("pageKey") == "next":
            return httpx.Response(200, json={"owners": ["0x" + "2" * 40]})
        return httpx.Response(200, json={"owners": [HOLDER], "pageKey": "next"})

    provider = AlchemyProvider(api_key="test-key", transport=httpx.MockTransport(handler))
    owners = await provider.get_owners(BAYC, lookup("ethereum"))

    assert owners == [HOLDER, "0x" + "2" * 40]


def erc721_transfer(unique_id, block, token_id):
    return {
        "uniqueId": unique_id,
        "hash": f"0x{unique_id}",
        "blockNum": hex(block),
        "from": "0x" + "1" * 40,
        "to": HOLDER,
        "value": None,
        "asset": "BAYC",
        "category": "erc721",
        "erc721TokenId": hex(token_id),
    }


def transfer_pages_transport(pages, requests=None):
    """Serve incoming transfer pages chained by ``pageKey``; outgoing is empty."""

    def handler(request: httpx.Request) -> httpx.Response:
        params = json.loads(request.content)["params"][0]
        if requests is not None:
            requests.append(params)
        if "fromAddress" in params:
            result = {"transfers": []}
        else:
            index = int(params.get("pageKey") or 0)
            result = {"transfers": pages[index]}
            if index + 1 < len(pages):
                result["pageKey"] = str(index + 1)
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": result})

    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_transfers_follow_page_key_until_the_page_is_filled():
    pages = [
        [erc721_transfer(f"a{i}", 1000 - i, i) for i in range(3)],
        [erc721_transfer(f"b{i}", 900 - i, 10 + i) for i in range(3)],
    ]
    requests = []
    provider = AlchemyProvider(api_key="test-key", transport=transfer_pages_transport(pages, requests))

    page = await provider.get_transactions(resolve(f"eip155:1/erc721:{BAYC}"), HOLDER, page=2, limit=2)

    assert [tx.hash for tx in page.transactions] == ["0xa2", "0xb0"]
    assert page.has_more is True
    incoming = [r for r in requests if "toAddress" in r]
    assert [r.get("pageKey") for r in incoming] == [None, "1"]


@pytest.mark.asyncio
async def test_token_id_filter_is_applied_while_paging():
    pages = [
        [erc721_transfer(f"a{i}", 1000 - i, i) for i in range(5)],
        [erc721_transfer("b0", 900, 42), erc721_transfer("b1", 899, 3)],
        [erc721_transfer("c0", 800, 42)],
    ]
    provider = AlchemyProvider(api_key="test-key", transport=transfer_pages_transport(pages))

    page = await provider.get_transactions(resolve(f"ethereum:{BAYC}:42"), HOLDER, page=1, limit=10)

    assert [tx.hash for tx in page.transactions] == ["0xb0", "0xc0"]
    assert all(tx.token_id == "42" for tx in page.transactions)
    assert page.has_more is False


@pytest.mark.asyncio
async def test_transfer_page_cap_reports_more(monkeypatch):
    monkeypatch.setattr(alchemy, "_MAX_TRANSFER_PAGES", 2)
    pages = [[erc721_transfer(f"p{i}", 1000 - i, i)] for i in range(5)]
    provider = AlchemyProvider(api_key="test-key", transport=transfer_pages_transport(pages))

    page = await provider.get_transactions(resolve(f"eip155:1/erc721:{BAYC}"), HOLDER, page=2, limit=2)

    assert page.transactions == []
    assert page.has_more is True


@pytest.mark.asyncio
async def test_malformed_block_number_is_a_response_error():
    bad = erc721_transfer("x", 1, 1)
    bad["blockNum"] = "not-hex"
    provider = AlchemyProvider(api_key="test-key", transport=transfer_pages_transport([[bad]]))
    with pytest.raises(ProviderResponseError):
        await provider.get_transactions(resolve(f"eip155:1/erc721:{BAYC}"), HOLDER, page=1, limit=10)
