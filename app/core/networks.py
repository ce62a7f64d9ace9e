"""
Network registry.

Static, process-wide table of the networks the gateway serves. Each network
belongs to exactly one chain family:
- ACCOUNT networks (EVM) are identified by their integer chain id and CAIP-2
  namespace ``eip155``.
- UTXO networks are identified by a genesis-hash prefix under ``bip122``.

The table is built once at import and never mutated.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import List, Mapping, Optional

from .errors import UnsupportedNetwork


class NetworkFamily(str, Enum):
    ACCOUNT = "account"
    UTXO = "utxo"


class IndexerName(str, Enum):
    """Upstream provider serving balances, history and NFT data for a network."""

    ALCHEMY = "alchemy"
    BLOCKSTREAM = "blockstream"


# CAIP-2 chain namespaces and the family each one denotes
EIP155_NAMESPACE = "eip155"
BIP122_NAMESPACE = "bip122"

CHAIN_NAMESPACES: Mapping[str, NetworkFamily] = MappingProxyType({
    EIP155_NAMESPACE: NetworkFamily.ACCOUNT,
    BIP122_NAMESPACE: NetworkFamily.UTXO,
})

_NETWORK_ID_RE = re.compile(r"^[a-z][a-z0-9-]{1,31}$")


@dataclass(frozen=True)
class NetworkDescriptor:
    id: str
    name: str
    family: NetworkFamily
    chain_reference: str
    indexer: IndexerName
    native_symbol: str
    native_name: str
    native_decimals: int
    slip44: int
    chain_id: Optional[int] = None
    alchemy_slug: Optional[str] = None
    coingecko_platform: Optional[str] = None
    coingecko_native_id: Optional[str] = None

    def __post_init__(self) -> None:
        if self.family is NetworkFamily.ACCOUNT:
            if self.chain_id is None or str(self.chain_id) != self.chain_reference:
                raise ValueError(f"Account network {self.id!r} needs a numeric chain id")
        elif self.chain_id is not None:
            raise ValueError(f"UTXO network {self.id!r} cannot carry a chain id")

    @property
    def namespace(self) -> str:
        if self.family is NetworkFamily.ACCOUNT:
            return EIP155_NAMESPACE
        return BIP122_NAMESPACE

    @property
    def caip2(self) -> str:
        return f"{self.namespace}:{self.chain_reference}"

    @property
    def is_account(self) -> bool:
        return self.family is NetworkFamily.ACCOUNT

    @property
    def is_utxo(self) -> bool:
        return self.family is NetworkFamily.UTXO


def _evm(
    id: str,
    name: str,
    chain_id: int,
    *,
    alchemy_slug: str,
    coingecko_platform: str,
    native_symbol: str = "ETH",
    native_name: str = "Ether",
    coingecko_native_id: str = "ethereum",
    slip44: int = 60,
) -> NetworkDescriptor:
    return NetworkDescriptor(
        id=id,
        name=name,
        family=NetworkFamily.ACCOUNT,
        chain_reference=str(chain_id),
        chain_id=chain_id,
        indexer=IndexerName.ALCHEMY,
        native_symbol=native_symbol,
        native_name=native_name,
        native_decimals=18,
        slip44=slip44,
        alchemy_slug=alchemy_slug,
        coingecko_platform=coingecko_platform,
        coingecko_native_id=coingecko_native_id,
    )


BITCOIN_GENESIS_REFERENCE = "000000000019d6689c085ae165831e93"

_NETWORKS = (
    _evm("ethereum", "Ethereum", 1, alchemy_slug="eth-mainnet", coingecko_platform="ethereum"),
    _evm(
        "polygon",
        "Polygon",
        137,
        alchemy_slug="polygon-mainnet",
        coingecko_platform="polygon-pos",
        native_symbol="POL",
        native_name="Polygon Ecosystem Token",
        coingecko_native_id="polygon-ecosystem-token",
        slip44=966,
    ),
    _evm("arbitrum", "Arbitrum One", 42161, alchemy_slug="arb-mainnet", coingecko_platform="arbitrum-one"),
    _evm("optimism", "OP Mainnet", 10, alchemy_slug="opt-mainnet", coingecko_platform="optimistic-ethereum"),
    _evm("base", "Base", 8453, alchemy_slug="base-mainnet", coingecko_platform="base"),
    NetworkDescriptor(
        id="bitcoin",
        name="Bitcoin",
        family=NetworkFamily.UTXO,
        chain_reference=BITCOIN_GENESIS_REFERENCE,
        indexer=IndexerName.BLOCKSTREAM,
        native_symbol="BTC",
        native_name="Bitcoin",
        native_decimals=8,
        slip44=0,
        coingecko_native_id="bitcoin",
    ),
)

NETWORKS: Mapping[str, NetworkDescriptor] = MappingProxyType({n.id: n for n in _NETWORKS})

_ALIASES: Mapping[str, str] = MappingProxyType({
    "eth": "ethereum",
    "btc": "bitcoin",
    "matic": "polygon",
    "arb": "arbitrum",
    "op": "optimism",
})

_BY_CHAIN_REFERENCE: Mapping[tuple, NetworkDescriptor] = MappingProxyType({
    (n.namespace, n.chain_reference): n for n in _NETWORKS
})


def is_network_id_syntax(value: str) -> bool:
    """True if ``value`` is shaped like a network id, registered or not."""
    return bool(_NETWORK_ID_RE.fullmatch(value.strip().lower()))


def find_network(network_id: str) -> Optional[NetworkDescriptor]:
    key = (network_id or "").strip().lower()
    return NETWORKS.get(_ALIASES.get(key, key))


def lookup(network_id: str) -> NetworkDescriptor:
    """Return the descriptor for ``network_id`` (id or alias, case-insensitive)."""
    network = find_network(network_id)
    if network is None:
        raise UnsupportedNetwork(
            f"Network '{network_id}' is not supported",
            details={"network": network_id, "supported": sorted(NETWORKS)},
        )
    return network


def find_by_chain_reference(namespace: str, reference: str) -> NetworkDescriptor:
    """Map a CAIP-2 ``namespace:reference`` pair back to a network.

    Matching is exact: ``eip155:01`` does not resolve to Ethereum.
    """
    network = _BY_CHAIN_REFERENCE.get((namespace, reference))
    if network is None:
        raise UnsupportedNetwork(
            f"Chain '{namespace}:{reference}' is not supported",
            details={"chain": f"{namespace}:{reference}"},
        )
    return network


def list_networks() -> List[NetworkDescriptor]:
    return list(_NETWORKS)


__all__ = [
    "NetworkFamily",
    "IndexerName",
    "NetworkDescriptor",
    "NETWORKS",
    "CHAIN_NAMESPACES",
    "EIP155_NAMESPACE",
    "BIP122_NAMESPACE",
    "BITCOIN_GENESIS_REFERENCE",
    "is_network_id_syntax",
    "find_network",
    "lookup",
    "find_by_chain_reference",
    "list_networks",
]
