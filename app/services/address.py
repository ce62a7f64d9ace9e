"""Helpers for validating wallet and contract addresses per chain family."""

from __future__ import annotations

import re
from functools import lru_cache

from ..core.errors import InvalidAddress
from ..core.networks import NetworkDescriptor, NetworkFamily

_BASE58 = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_BECH32 = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"

_EVM_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")

# P2PKH (1...) and P2SH (3...), 26-35 characters
_BTC_LEGACY_RE = re.compile(rf"^[13][{_BASE58}]{{25,34}}$")

# Segwit v0 (bc1q, 42 or 62 chars) and taproot (bc1p, 62 chars)
_BTC_BECH32_RE = re.compile(rf"^bc1(?:q[{_BECH32}]{{38}}|[qp][{_BECH32}]{{58}})$")


def is_valid_evm_address(address: str) -> bool:
    return bool(address) and bool(_EVM_ADDRESS_RE.fullmatch(address))


@lru_cache(maxsize=256)
def is_valid_bitcoin_address(address: str) -> bool:
    if not address:
        return False
    if _BTC_LEGACY_RE.fullmatch(address):
        return True
    # bech32 is case-insensitive but must not mix cases
    if address != address.lower() and address != address.upper():
        return False
    return bool(_BTC_BECH32_RE.fullmatch(address.lower()))


def is_valid_address_for_family(address: str, family: NetworkFamily) -> bool:
    if family is NetworkFamily.ACCOUNT:
        return is_valid_evm_address(address)
    return is_valid_bitcoin_address(address)


def is_valid_address_for_network(address: str, network: NetworkDescriptor) -> bool:
    return is_valid_address_for_family(address, network.family)


def require_valid_address(address: str, network: NetworkDescriptor, *, role: str = "address") -> str:
    """Return ``address`` stripped, or raise ``InvalidAddress`` for ``network``'s family.

    Bech32 addresses come back lower-cased, the form explorers report them in.
    """

    candidate = (address or "").strip()
    if not is_valid_address_for_network(candidate, network):
        raise InvalidAddress(
            f"Invalid {role} format for {network.name}",
            details={"address": address, "network": network.id, "family": network.family.value},
        )
    if network.family is NetworkFamily.UTXO and candidate.lower().startswith("bc1"):
        return candidate.lower()
    return candidate


__all__ = [
    "is_valid_evm_address",
    "is_valid_bitcoin_address",
    "is_valid_address_for_family",
    "is_valid_address_for_network",
    "require_valid_address",
]
