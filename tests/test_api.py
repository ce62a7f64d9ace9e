from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from app.core.resolver import resolve
from app.main import app
from app.providers.errors import ProviderNotConfigured, RateLimited
from app.services.orchestrator import get_orchestrator
from app.types.results import AssetDescriptor, Balance, FeeQuote

from fakes import BAYC, HOLDER, USDC


@pytest.fixture
def client(orchestrator):
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    yield TestClient(app)
    app.dependency_overrides.clear()


def _balance(asset_id: str, amount: str) -> Balance:
    return Balance(
        asset=AssetDescriptor.from_asset(resolve(asset_id)),
        address=HOLDER,
        symbol="ETH",
        decimals=18,
        raw="0",
        formatted=Decimal(amount),
    )


def test_balance_endpoint_with_compound_id(client, indexer):
    indexer.balance.return_value = _balance("ethereum", "1.25")

    response = client.get(f"/api/balance/{HOLDER}/eip155:1/slip44:60")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["error"] is None
    assert body["data"]["formatted"] == "1.25"
    assert body["data"]["asset"]["asset_id"] == "eip155:1/slip44:60"
    assert isinstance(body["timestamp"], int)


def test_invalid_address_is_400(client, indexer):
    response = client.get("/api/balance/not-an-address/ethereum")

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["data"] is None
    assert body["error"]["code"] == "INVALID_ADDRESS"
    indexer.balance.assert_not_awaited()


def test_unknown_network_is_400(client):
    response = client.get(f"/api/balance/{HOLDER}/notarealchain")
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "UNSUPPORTED_NETWORK"


def test_missing_credential_is_503(client, indexer):
    indexer.balance.side_effect = ProviderNotConfigured("Alchemy API key not configured", provider="alchemy")
    response = client.get(f"/api/balance/{HOLDER}/ethereum")
    assert response.status_code == 503
    assert response.json()["error"]["code"] == "MISSING_CREDENTIAL"


def test_gas_defaults_to_eip1559(client, indexer):
    indexer.fee.return_value = FeeQuote(
        network="ethereum", type="eip1559", base_fee=Decimal("10"), max_priority_fee=Decimal("1"), max_fee=Decimal("21")
    )
    response = client.get("/api/gas/ethereum")
    assert response.status_code == 200
    assert indexer.fee.await_args.args[1] == "eip1559"
    assert response.json()["data"]["max_fee"] == "21"


def test_gas_on_bitcoin_is_unsupported(client):
    response = client.get("/api/gas/bitcoin")
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "UNSUPPORTED_ASSET_TYPE"


def test_price_history_route_is_not_swallowed_by_price_route(client, prices):
    response = client.get(f"/api/price/eip155:1/erc20:{USDC}/history?days=30&currency=eur")
    assert response.status_code == 200
    asset, days, currency = prices.history.await_args.args
    assert asset == resolve(f"ethereum:{USDC}")
    assert (days, currency) == (30, "eur")


def test_price_upstream_rate_limit_is_503(client, prices):
    prices.price.side_effect = RateLimited("coingecko rate limit exceeded", provider="coingecko")
    response = client.get("/api/price/bitcoin")
    assert response.status_code == 503
    assert response.json()["error"]["code"] == "UPSTREAM_UNAVAILABLE"


def test_history_paging_validation(client):
    response = client.get(f"/api/history/{HOLDER}/ethereum?limit=500")
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_REQUEST"


def test_query_type_errors_are_invalid_request(client):
    response = client.get(f"/api/history/{HOLDER}/ethereum?page=abc")
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_REQUEST"


def test_nft_owners_token_id_alias(client, indexer):
    indexer.owners.return_value = [HOLDER]
    response = client.get(f"/api/nft/owners/{BAYC}/ethereum?tokenId=7")
    assert response.status_code == 200
    assert response.json()["data"] == {
        "network": "ethereum",
        "contract_address": BAYC,
        "token_id": "7",
        "owners": [HOLDER],
    }


def test_batch_balances_report_per_item(client, indexer):
    indexer.balance.return_value = _balance("ethereum", "1")
    response = client.post("/api/balances", json={"address": HOLDER, "assetIds": ["ethereum", "nope:"]})

    assert response.status_code == 200
    data = response.json()["data"]
    assert [item["success"] for item in data["items"]] == [True, False]
    assert data["items"][1]["error"]["code"] == "MALFORMED_IDENTIFIER"


def test_batch_requires_asset_ids(client):
    response = client.post("/api/prices", json={"assetIds": []})
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_REQUEST"


def test_portfolio(client, indexer, prices):
    indexer.balance.return_value = _balance("ethereum", "2")
    prices.prices.return_value = {resolve("ethereum"): Decimal("3000")}

    response = client.post("/api/portfolio", json={"address": HOLDER, "assetIds": ["ethereum"], "currency": "usd"})

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total_value"] == "6000"
    assert data["assets"][0]["status"] == "complete"


def test_resolve_endpoint(client):
    response = client.get(f"/api/resolve/ethereum:{BAYC}:0x01")
    assert response.json()["data"] == {
        "asset_id": f"eip155:1/erc721:{BAYC}:1",
        "network": "ethereum",
        "family": "account",
        "chain_id": 1,
        "kind": "nft",
        "contract_address": BAYC,
        "token_standard": "erc721",
        "token_id": "1",
    }


def test_networks_endpoint(client):
    data = client.get("/api/networks").json()["data"]
    ids = [network["id"] for network in data]
    assert "ethereum" in ids and "bitcoin" in ids


def test_health_endpoint(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert set(body["providers"]) == {"alchemy", "blockstream", "coingecko"}
    assert response.headers["x-request-id"]
