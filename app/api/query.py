from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from ..core.networks import list_networks
from ..core.resolver import resolve
from ..services.orchestrator import QueryOrchestrator, QueryTarget, get_orchestrator
from ..types import BalancesRequest, PortfolioRequest, PricesRequest, success_envelope

router = APIRouter(prefix="/api")


def _respond(data: Any) -> JSONResponse:
    return JSONResponse(content=success_envelope(data).model_dump(mode="json"))


@router.get("/balance/{address}/{asset_id:path}")
async def get_balance(
    address: str,
    asset_id: str,
    orchestrator: QueryOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    """Balance of one asset held by ``address``"""
    balance = await orchestrator.get_balance(QueryTarget(asset=resolve(asset_id), address=address))
    return _respond(balance)


@router.get("/gas/{network_id}")
async def get_gas(
    network_id: str,
    type: str = Query("eip1559", description="Fee model: legacy or eip1559"),
    orchestrator: QueryOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    return _respond(await orchestrator.get_fee(network_id, type))


# Declared before the plain price route so ".../history" is not read as part of the asset id
@router.get("/price/{asset_id:path}/history")
async def get_price_history(
    asset_id: str,
    days: int = Query(7, description="Days of history, 1 to 365"),
    currency: str = Query("usd", description="Quote currency"),
    orchestrator: QueryOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    target = QueryTarget(asset=resolve(asset_id), currency=currency, days=days)
    return _respond(await orchestrator.get_price_history(target))


@router.get("/price/{asset_id:path}")
async def get_price(
    asset_id: str,
    currency: str = Query("usd", description="Quote currency"),
    orchestrator: QueryOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    target = QueryTarget(asset=resolve(asset_id), currency=currency)
    return _respond(await orchestrator.get_price(target))


@router.get("/history/{address}/{asset_id:path}")
async def get_history(
    address: str,
    asset_id: str,
    page: int = Query(1, description="1-based page number"),
    limit: int = Query(50, description="Page size, 1 to 100"),
    token_id: Optional[str] = Query(None, alias="tokenId", description="NFT token id filter"),
    orchestrator: QueryOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    """Transactions touching ``address`` for one asset, newest first"""
    target = QueryTarget(asset=resolve(asset_id), address=address, page=page, limit=limit, token_id=token_id)
    return _respond(await orchestrator.get_transactions(target))


@router.get("/nft/owners/{contract_address}/{network_id}")
async def get_nft_owners(
    contract_address: str,
    network_id: str,
    token_id: Optional[str] = Query(None, alias="tokenId"),
    orchestrator: QueryOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    return _respond(await orchestrator.get_nft_owners(network_id, contract_address, token_id))


@router.get("/nft/owned/{owner}/{network_id}")
async def get_owned_nfts(
    owner: str,
    network_id: str,
    contract_address: Optional[str] = Query(None, alias="contractAddress"),
    orchestrator: QueryOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    return _respond(await orchestrator.get_owned_nfts(owner, network_id, contract_address))


@router.get("/token/metadata/{asset_id:path}")
async def get_token_metadata(
    asset_id: str,
    orchestrator: QueryOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    return _respond(await orchestrator.get_token_metadata(QueryTarget(asset=resolve(asset_id))))


@router.get("/nft/metadata/{asset_id:path}")
async def get_nft_metadata(
    asset_id: str,
    token_id: Optional[str] = Query(None, alias="tokenId"),
    orchestrator: QueryOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    target = QueryTarget(asset=resolve(asset_id), token_id=token_id)
    return _respond(await orchestrator.get_nft_metadata(target))


@router.post("/balances")
async def get_balances(
    request: BalancesRequest,
    orchestrator: QueryOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    """Balances for many assets; each entry succeeds or fails on its own"""
    return _respond(await orchestrator.get_multiple_balances(request.address, request.asset_ids))


@router.post("/prices")
async def get_prices(
    request: PricesRequest,
    orchestrator: QueryOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    return _respond(await orchestrator.get_multiple_prices(request.asset_ids, request.currency))


@router.post("/portfolio")
async def get_portfolio(
    request: PortfolioRequest,
    orchestrator: QueryOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    """Valued holdings; only fails when no asset could be looked up at all"""
    summary = await orchestrator.summarize(request.address, request.asset_ids, request.currency)
    return _respond(summary)


@router.get("/resolve/{asset_id:path}")
async def resolve_asset(asset_id: str) -> JSONResponse:
    return _respond(resolve(asset_id).describe())


@router.get("/networks")
async def get_networks() -> JSONResponse:
    return _respond([
        {
            "id": network.id,
            "name": network.name,
            "caip2": network.caip2,
            "family": network.family.value,
            "chain_id": network.chain_id,
            "native_symbol": network.native_symbol,
            "native_decimals": network.native_decimals,
        }
        for network in list_networks()
    ])
