import pytest

from app.core.errors import InvalidAddress
from app.core.networks import NetworkFamily, list_networks, lookup
from app.services.address import (
    is_valid_address_for_family,
    is_valid_address_for_network,
    is_valid_bitcoin_address,
    is_valid_evm_address,
    require_valid_address,
)


def test_address_validation_evm():
    address = "0x1234567890abcdef1234567890ABCDEF12345678"
    assert is_valid_evm_address(address) is True
    assert is_valid_evm_address(address[:-1]) is False
    assert is_valid_evm_address("1234567890abcdef1234567890ABCDEF12345678") is False
    assert is_valid_evm_address("") is False


def test_address_validation_bitcoin_legacy():
    assert is_valid_bitcoin_address("1A1zP1eP5QGefi2DMPTfTL5SLmv7DivfNa") is True
    assert is_valid_bitcoin_address("3J98t1WpEZ73CNmQviecrnyiWrnqRhWNLy") is True
    # 0, O, I and l are not base58
    assert is_valid_bitcoin_address("1A1zP1eP5QGefi2DMPTfTL5SLmv7DivfN0") is False


def test_address_validation_bitcoin_bech32():
    address = "bc1qar0srrr7xfkvy5l643lydnw9re59gtzzwf5mdq"
    assert is_valid_bitcoin_address(address) is True
    assert is_valid_bitcoin_address(address.upper()) is True
    assert is_valid_bitcoin_address("bc1qAr0srrr7xfkvy5l643lydnw9re59gtzzwf5mdq") is False
    assert is_valid_bitcoin_address("tb1qar0srrr7xfkvy5l643lydnw9re59gtzzwf5mdq") is False


def test_address_validation_by_family():
    evm = "0xd8da6bf26964af9d7eed9e03e53415d37aa96045"
    assert is_valid_address_for_family(evm, NetworkFamily.ACCOUNT) is True
    assert is_valid_address_for_family(evm, NetworkFamily.UTXO) is False


@pytest.mark.parametrize(
    "network", [n for n in list_networks() if n.family is NetworkFamily.ACCOUNT], ids=lambda n: n.id
)
def test_evm_address_valid_on_every_account_network(network):
    evm = "0xd8da6bf26964af9d7eed9e03e53415d37aa96045"
    assert is_valid_address_for_network(evm, network) is True
    assert is_valid_address_for_network("bc1qar0srrr7xfkvy5l643lydnw9re59gtzzwf5mdq", network) is False


def test_require_valid_address_strips_whitespace():
    address = "0xd8da6bf26964af9d7eed9e03e53415d37aa96045"
    assert require_valid_address(f"  {address} ", lookup("ethereum")) == address


def test_require_valid_address_raises_with_details():
    with pytest.raises(InvalidAddress) as excinfo:
        require_valid_address("not-an-address", lookup("bitcoin"), role="owner address")
    error = excinfo.value
    assert error.code.value == "INVALID_ADDRESS"
    assert "owner address" in error.message
    assert error.details["network"] == "bitcoin"
    assert error.details["family"] == "utxo"


def test_require_valid_address_lowercases_bech32():
    address = "bc1qar0srrr7xfkvy5l643lydnw9re59gtzzwf5mdq"
    assert require_valid_address(address.upper(), lookup("bitcoin")) == address
    # base58 is case-sensitive and passes through untouched
    assert require_valid_address("1A1zP1eP5QGefi2DMPTfTL5SLmv7DivfNa", lookup("bitcoin")) == "1A1zP1eP5QGefi2DMPTfTL5SLmv7DivfNa"
