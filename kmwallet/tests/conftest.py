"""
Pytest configuration and fixtures for kmwallet tests.
"""

import pytest
from _kmwallet_test_helpers import TEST_MNEMONIC

from kmwallet.key_manager import KeyManager


@pytest.fixture
def test_mnemonic() -> str:
    """Test mnemonic (BIP39 test vector)"""
    return TEST_MNEMONIC


@pytest.fixture
def address_infos() -> dict:
    return {}


@pytest.fixture
def bip44_manager(test_mnemonic, address_infos) -> KeyManager:
    """Unloaded mainnet bip44 manager with a small gap limit"""
    return KeyManager(
        network="mainnet",
        scheme="bip44",
        seed=test_mnemonic,
        gap_limit=3,
        address_infos=address_infos,
    )


@pytest.fixture
def bip49_manager(test_mnemonic) -> KeyManager:
    return KeyManager(network="mainnet", scheme="bip49", seed=test_mnemonic, gap_limit=3)


@pytest.fixture
def bip32_manager(test_mnemonic) -> KeyManager:
    return KeyManager(network="regtest", scheme="bip32", seed=test_mnemonic, gap_limit=3)
