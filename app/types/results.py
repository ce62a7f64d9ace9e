from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field

from ..core.assets import ResolvedAsset
from .envelope import ErrorBody


class AssetDescriptor(BaseModel):
    asset_id: str = Field(description="Canonical CAIP-19 identifier")
    network: str = Field(description="Network id (e.g. ethereum, bitcoin)")
    family: str = Field(description="Chain family: account or utxo")
    chain_id: Optional[int] = Field(default=None, description="Numeric chain id for account-based networks")
    kind: str = Field(description="native, token or nft")
    contract_address: Optional[str] = Field(default=None, description="Token or NFT contract address")
    token_standard: Optional[str] = Field(default=None, description="erc721 or erc1155 for NFTs")
    token_id: Optional[str] = Field(default=None, description="NFT token id (decimal)")

    @classmethod
    def from_asset(cls, asset: ResolvedAsset) -> "AssetDescriptor":
        return cls(**asset.describe())


class Balance(BaseModel):
    asset: AssetDescriptor
    address: str = Field(description="Holder address")
    symbol: Optional[str] = Field(default=None, description="Asset symbol when known")
    decimals: int = Field(description="Decimal places used to format the raw balance")
    raw: str = Field(description="Balance in the smallest unit")
    formatted: Decimal = Field(description="Human readable balance")


class FeeQuote(BaseModel):
    network: str
    type: Literal["legacy", "eip1559"]
    unit: str = Field(default="gwei")
    gas_price: Optional[Decimal] = Field(default=None, description="Legacy gas price")
    base_fee: Optional[Decimal] = Field(default=None, description="Latest block base fee")
    max_priority_fee: Optional[Decimal] = Field(default=None, description="Suggested priority fee")
    max_fee: Optional[Decimal] = Field(default=None, description="Suggested max fee per gas")


class Price(BaseModel):
    asset: AssetDescriptor
    currency: str
    price: Decimal
    source: str = Field(default="coingecko")


class PricePoint(BaseModel):
    timestamp: int = Field(description="Epoch milliseconds")
    price: Decimal


class PriceHistory(BaseModel):
    asset: AssetDescriptor
    currency: str
    days: int
    points: List[PricePoint] = Field(default_factory=list)


class TransactionRecord(BaseModel):
    hash: str
    block_number: Optional[int] = None
    timestamp: Optional[int] = Field(default=None, description="Epoch seconds")
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    value: Optional[Decimal] = Field(default=None, description="Amount moved, in asset units")
    symbol: Optional[str] = None
    direction: Optional[Literal["in", "out", "self"]] = None
    category: Optional[str] = None
    token_id: Optional[str] = None
    fee: Optional[Decimal] = Field(default=None, description="Network fee in native units")
    confirmed: bool = True


class TransactionPage(BaseModel):
    asset: AssetDescriptor
    address: str
    page: int
    limit: int
    has_more: bool
    transactions: List[TransactionRecord] = Field(default_factory=list)


class NftOwners(BaseModel):
    network: str
    contract_address: str
    token_id: Optional[str] = None
    owners: List[str] = Field(default_factory=list)


class NftRecord(BaseModel):
    contract_address: str
    token_id: str
    token_standard: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    collection: Optional[str] = None
    balance: Optional[str] = None


class OwnedNfts(BaseModel):
    owner: str
    network: str
    contract_address: Optional[str] = None
    total_count: int = 0
    nfts: List[NftRecord] = Field(default_factory=list)


class NftMetadata(BaseModel):
    asset: AssetDescriptor
    name: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    token_uri: Optional[str] = None
    collection: Optional[str] = None
    attributes: List[Dict[str, Any]] = Field(default_factory=list)


class TokenMetadata(BaseModel):
    asset: AssetDescriptor
    name: Optional[str] = None
    symbol: Optional[str] = None
    decimals: Optional[int] = None
    total_supply: Optional[str] = Field(default=None, description="Raw total supply, when the chain exposes one")
    logo: Optional[str] = None


class BatchEntry(BaseModel):
    asset_id: str = Field(description="Identifier as sent by the caller")
    success: bool
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None


class BatchResult(BaseModel):
    items: List[BatchEntry] = Field(default_factory=list)
    succeeded: int = 0
    failed: int = 0


class PortfolioEntry(BaseModel):
    asset_id: str = Field(description="Identifier as sent by the caller")
    asset: Optional[AssetDescriptor] = None
    status: Literal["complete", "partial", "failed"]
    balance: Optional[Balance] = None
    price: Optional[Decimal] = None
    value: Optional[Decimal] = Field(default=None, description="balance x price, when both are known")
    errors: List[ErrorBody] = Field(default_factory=list)


class PortfolioResult(BaseModel):
    address: str
    currency: str
    total_value: Decimal = Field(description="Sum of value over fully priced assets")
    priced_assets: int = Field(description="Number of assets included in total_value")
    assets: List[PortfolioEntry] = Field(default_factory=list)
