from .envelope import Envelope, ErrorBody, error_envelope, success_envelope
from .requests import BalancesRequest, PricesRequest, PortfolioRequest
from .results import (
    AssetDescriptor,
    Balance,
    BatchEntry,
    BatchResult,
    FeeQuote,
    NftMetadata,
    NftOwners,
    NftRecord,
    OwnedNfts,
    PortfolioEntry,
    PortfolioResult,
    Price,
    PriceHistory,
    PricePoint,
    TokenMetadata,
    TransactionPage,
    TransactionRecord,
)

__all__ = [
    "Envelope",
    "ErrorBody",
    "error_envelope",
    "success_envelope",
    "BalancesRequest",
    "PricesRequest",
    "PortfolioRequest",
    "AssetDescriptor",
    "Balance",
    "BatchEntry",
    "BatchResult",
    "FeeQuote",
    "NftMetadata",
    "NftOwners",
    "NftRecord",
    "OwnedNfts",
    "PortfolioEntry",
    "PortfolioResult",
    "Price",
    "PriceHistory",
    "PricePoint",
    "TokenMetadata",
    "TransactionPage",
    "TransactionRecord",
]
