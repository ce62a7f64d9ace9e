"""
Canonical asset types.

A ``ResolvedAsset`` is the single internal representation of whatever
identifier the caller sent. It is either a native coin (no contract fields)
or a contract-qualified token/NFT; construction rejects anything in between.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .networks import NetworkDescriptor, NetworkFamily


class AssetKind(str, Enum):
    NATIVE_COIN = "native"
    FUNGIBLE_TOKEN = "token"
    NFT = "nft"


class TokenStandard(str, Enum):
    ERC721 = "erc721"
    ERC1155 = "erc1155"


# CAIP-19 asset namespaces
SLIP44_NAMESPACE = "slip44"
ERC20_NAMESPACE = "erc20"

ASSET_NAMESPACES = frozenset({
    SLIP44_NAMESPACE,
    ERC20_NAMESPACE,
    TokenStandard.ERC721.value,
    TokenStandard.ERC1155.value,
})

_DECIMAL_RE = re.compile(r"^[0-9]{1,78}$")
_HEX_RE = re.compile(r"^0x[0-9a-fA-F]{1,64}$")


def normalize_token_id(value: str) -> Optional[str]:
    """Return ``value`` as a decimal string, or ``None`` if it is not a token id.

    Accepts decimal digits or ``0x``-prefixed hex (uint256 range).
    """
    raw = (value or "").strip()
    if _DECIMAL_RE.fullmatch(raw):
        number = int(raw, 10)
    elif _HEX_RE.fullmatch(raw):
        number = int(raw, 16)
    else:
        return None
    if number >= 2**256:
        return None
    return str(number)


@dataclass(frozen=True)
class ResolvedAsset:
    network: NetworkDescriptor
    kind: AssetKind
    contract_address: Optional[str] = None
    token_standard: Optional[TokenStandard] = None
    token_id: Optional[str] = None

    def __post_init__(self) -> None:
        if self.kind is AssetKind.NATIVE_COIN:
            if self.contract_address or self.token_standard or self.token_id:
                raise ValueError("Native coin assets carry no contract fields")
            return

        if not self.contract_address:
            raise ValueError(f"{self.kind.value} assets require a contract address")
        if self.network.family is not NetworkFamily.ACCOUNT:
            raise ValueError(f"{self.network.id} does not support contract assets")

        if self.kind is AssetKind.FUNGIBLE_TOKEN:
            if self.token_standard or self.token_id:
                raise ValueError("Fungible tokens carry no NFT fields")
        elif self.token_standard is None:
            raise ValueError("NFT assets require a token standard")

    @classmethod
    def native(cls, network: NetworkDescriptor) -> "ResolvedAsset":
        return cls(network=network, kind=AssetKind.NATIVE_COIN)

    @classmethod
    def token(cls, network: NetworkDescriptor, contract_address: str) -> "ResolvedAsset":
        return cls(network=network, kind=AssetKind.FUNGIBLE_TOKEN, contract_address=contract_address)

    @classmethod
    def nft(
        cls,
        network: NetworkDescriptor,
        contract_address: str,
        standard: TokenStandard = TokenStandard.ERC721,
        token_id: Optional[str] = None,
    ) -> "ResolvedAsset":
        return cls(
            network=network,
            kind=AssetKind.NFT,
            contract_address=contract_address,
            token_standard=standard,
            token_id=token_id,
        )

    @property
    def is_native(self) -> bool:
        return self.kind is AssetKind.NATIVE_COIN

    @property
    def asset_namespace(self) -> str:
        if self.kind is AssetKind.NATIVE_COIN:
            return SLIP44_NAMESPACE
        if self.kind is AssetKind.FUNGIBLE_TOKEN:
            return ERC20_NAMESPACE
        if self.kind is AssetKind.NFT:
            return self.token_standard.value
        raise AssertionError(f"Unhandled asset kind: {self.kind}")

    @property
    def asset_id(self) -> str:
        """Canonical CAIP-19 form, e.g. ``eip155:1/erc20:0xA0b8...``."""
        if self.kind is AssetKind.NATIVE_COIN:
            reference = str(self.network.slip44)
        else:
            reference = self.contract_address
        asset_id = f"{self.network.caip2}/{self.asset_namespace}:{reference}"
        if self.token_id is not None:
            asset_id = f"{asset_id}:{self.token_id}"
        return asset_id

    def describe(self) -> Dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "network": self.network.id,
            "family": self.network.family.value,
            "chain_id": self.network.chain_id,
            "kind": self.kind.value,
            "contract_address": self.contract_address,
            "token_standard": self.token_standard.value if self.token_standard else None,
            "token_id": self.token_id,
        }


__all__ = [
    "AssetKind",
    "TokenStandard",
    "ResolvedAsset",
    "ASSET_NAMESPACES",
    "SLIP44_NAMESPACE",
    "ERC20_NAMESPACE",
    "normalize_token_id",
]
