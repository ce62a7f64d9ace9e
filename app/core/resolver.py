"""
Asset identifier resolution.

Two grammars are accepted and resolve to the same ``ResolvedAsset`` when they
name the same thing:

Simple form::

    bitcoin
    ethereum
    ethereum:0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48
    ethereum:0xBC4CA0EdA7647A8aB7C2061c2E118A18a936f13D:1234

Compound (CAIP-2/19) form::

    bip122:000000000019d6689c085ae165831e93/slip44:0
    eip155:1/slip44:60
    eip155:1/erc20:0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48
    eip155:1/erc721:0xBC4CA0EdA7647A8aB7C2061c2E118A18a936f13D:1234

The leading segment decides the grammar: a CAIP-2 chain namespace selects the
compound parser, anything else is treated as a network id.
"""

from __future__ import annotations

import re
from typing import List

from ..services.address import is_valid_address_for_family
from .assets import (
    ASSET_NAMESPACES,
    ERC20_NAMESPACE,
    SLIP44_NAMESPACE,
    AssetKind,
    ResolvedAsset,
    TokenStandard,
    normalize_token_id,
)
from .errors import InvalidAddress, MalformedIdentifier, UnsupportedAssetType, UnsupportedNetwork
from .networks import (
    CHAIN_NAMESPACES,
    NetworkDescriptor,
    find_by_chain_reference,
    find_network,
    is_network_id_syntax,
)

MAX_IDENTIFIER_LENGTH = 256

_CHAIN_REFERENCE_RE = re.compile(r"^[-_a-zA-Z0-9]{1,32}$")
_ASSET_NAMESPACE_RE = re.compile(r"^[-a-z0-9]{3,8}$")
_SLIP44_RE = re.compile(r"^[0-9]{1,10}$")


def resolve(identifier: str) -> ResolvedAsset:
    """Parse ``identifier`` into a canonical ``ResolvedAsset``.

    Raises:
        MalformedIdentifier: the string matches neither grammar.
        UnsupportedNetwork: the network segment is not registered.
        UnsupportedAssetType: the asset type is unknown or not offered on the chain family.
        InvalidAddress: the contract address fails the family syntax check.
    """
    if not isinstance(identifier, str):
        raise MalformedIdentifier("Asset identifier must be a string")

    raw = identifier.strip()
    if not raw:
        raise MalformedIdentifier("Asset identifier is empty")
    if len(raw) > MAX_IDENTIFIER_LENGTH or any(ch.isspace() for ch in raw):
        raise MalformedIdentifier(
            f"Asset identifier '{identifier}' is not well formed",
            details={"identifier": identifier},
        )

    head = raw.split(":", 1)[0]
    if head.lower() in CHAIN_NAMESPACES:
        return _resolve_compound(raw)
    return _resolve_simple(raw)


def _malformed(identifier: str, reason: str) -> MalformedIdentifier:
    return MalformedIdentifier(
        f"Malformed asset identifier '{identifier}': {reason}",
        details={"identifier": identifier},
    )


def _resolve_simple(identifier: str) -> ResolvedAsset:
    segments = identifier.split(":")
    if len(segments) > 3 or not all(segments):
        raise _malformed(identifier, "expected network[:contract[:tokenId]]")

    network_segment = segments[0]
    network = find_network(network_segment)
    if network is None:
        if is_network_id_syntax(network_segment):
            raise UnsupportedNetwork(
                f"Network '{network_segment}' is not supported",
                details={"identifier": identifier, "network": network_segment},
            )
        raise _malformed(identifier, "leading segment is not a network id")

    if len(segments) == 1:
        return ResolvedAsset.native(network)

    _require_contract_support(network, identifier)
    contract = _contract_address(network, segments[1], identifier)
    if len(segments) == 2:
        return ResolvedAsset.token(network, contract)

    token_id = _token_id(segments[2], identifier)
    return ResolvedAsset.nft(network, contract, TokenStandard.ERC721, token_id)


def _resolve_compound(identifier: str) -> ResolvedAsset:
    chain_part, slash, asset_part = identifier.partition("/")
    if not slash or not asset_part or "/" in asset_part:
        raise _malformed(identifier, "expected <chain>/<asset>")

    namespace, _, reference = chain_part.partition(":")
    if not _CHAIN_REFERENCE_RE.fullmatch(reference):
        raise _malformed(identifier, "invalid chain reference")
    network = find_by_chain_reference(namespace.lower(), reference)

    segments: List[str] = asset_part.split(":")
    if len(segments) not in (2, 3) or not all(segments):
        raise _malformed(identifier, "expected <namespace>:<reference>[:<tokenId>]")

    asset_namespace, asset_reference = segments[0], segments[1]
    if not _ASSET_NAMESPACE_RE.fullmatch(asset_namespace):
        raise _malformed(identifier, "invalid asset namespace")
    if asset_namespace not in ASSET_NAMESPACES:
        raise UnsupportedAssetType(
            f"Asset type '{asset_namespace}' is not supported",
            details={"identifier": identifier, "supported": sorted(ASSET_NAMESPACES)},
        )

    if asset_namespace == SLIP44_NAMESPACE:
        if len(segments) != 2 or not _SLIP44_RE.fullmatch(asset_reference):
            raise _malformed(identifier, "slip44 reference must be a coin type number")
        if int(asset_reference) != network.slip44:
            raise UnsupportedAssetType(
                f"Coin type {asset_reference} is not the native asset of {network.name}",
                details={"identifier": identifier, "expected": network.slip44},
            )
        return ResolvedAsset.native(network)

    _require_contract_support(network, identifier)
    contract = _contract_address(network, asset_reference, identifier)

    if asset_namespace == ERC20_NAMESPACE:
        if len(segments) != 2:
            raise _malformed(identifier, "erc20 assets take no token id")
        return ResolvedAsset.token(network, contract)

    standard = TokenStandard(asset_namespace)
    token_id = _token_id(segments[2], identifier) if len(segments) == 3 else None
    return ResolvedAsset(
        network=network,
        kind=AssetKind.NFT,
        contract_address=contract,
        token_standard=standard,
        token_id=token_id,
    )


def _require_contract_support(network: NetworkDescriptor, identifier: str) -> None:
    if not network.is_account:
        raise UnsupportedAssetType(
            f"{network.name} has no token or NFT contracts",
            details={"identifier": identifier, "network": network.id},
        )


def _contract_address(network: NetworkDescriptor, value: str, identifier: str) -> str:
    if not is_valid_address_for_family(value, network.family):
        raise InvalidAddress(
            f"Invalid contract address '{value}' for {network.name}",
            details={"identifier": identifier, "address": value},
        )
    return value


def _token_id(value: str, identifier: str) -> str:
    token_id = normalize_token_id(value)
    if token_id is None:
        raise _malformed(identifier, f"invalid token id '{value}'")
    return token_id


__all__ = ["resolve", "MAX_IDENTIFIER_LENGTH"]
