"""
Tests for gap-limit address derivation and address selection.
"""

import pytest
from _kmwallet_test_helpers import BIP44_RECEIVE_0, BIP44_RECEIVE_1, BIP49_RECEIVE_0

from kmwallet.errors import UnknownAddressError
from kmwallet.events import NewAddressEvent
from kmwallet.key_manager import KeyManager
from kmwallet.models import AddressInfo, Branch


def _mark_used(manager: KeyManager, branch: Branch, index: int) -> None:
    address = manager.addresses(branch)[index]
    manager.address_infos[address.script_hash] = AddressInfo(
        display_address=address.display_address,
        path=manager.get_address_path(address.display_address),
        used=True,
    )


def _assert_consistent(manager: KeyManager) -> None:
    children = manager.addresses(Branch.RECEIVE) + manager.addresses(Branch.CHANGE)
    for branch in (Branch.RECEIVE, Branch.CHANGE):
        for i, address in enumerate(manager.addresses(branch)):
            assert address.index == i
            assert address.branch is branch
    assert set(manager._by_address.values()) == set(children)
    assert set(manager._by_script_hash.values()) == set(children)
    assert len(manager._by_address) == len(children)


def _assert_gap(manager: KeyManager, branch: Branch) -> None:
    children = manager.addresses(branch)
    used = [a.index for a in children if manager._is_used(a)]
    last_used = used[-1] if used else -1
    assert len(children) - 1 - last_used >= manager.config.gap_limit


class TestInitialScan:
    @pytest.mark.asyncio
    async def test_bip44_vectors(self, test_mnemonic):
        manager = KeyManager(network="mainnet", scheme="bip44", seed=test_mnemonic, gap_limit=2)
        await manager.load()

        receive = manager.addresses(Branch.RECEIVE)
        assert [a.display_address for a in receive] == [BIP44_RECEIVE_0, BIP44_RECEIVE_1]
        assert len(manager.addresses(Branch.CHANGE)) == 2

    @pytest.mark.asyncio
    async def test_bip49_vector(self, bip49_manager):
        await bip49_manager.load()
        assert bip49_manager.get_receive_address() == BIP49_RECEIVE_0
        assert bip49_manager.get_change_address().startswith("3")

    @pytest.mark.asyncio
    async def test_invariants_after_load(self, bip44_manager):
        await bip44_manager.load()
        _assert_consistent(bip44_manager)
        _assert_gap(bip44_manager, Branch.RECEIVE)
        _assert_gap(bip44_manager, Branch.CHANGE)

    @pytest.mark.asyncio
    async def test_bip32_has_single_branch(self, bip32_manager):
        await bip32_manager.load()
        assert len(bip32_manager.addresses(Branch.RECEIVE)) == 3
        assert bip32_manager.addresses(Branch.CHANGE) == []
        assert bip32_manager.get_change_address() == bip32_manager.get_receive_address()
        first = bip32_manager.get_receive_address()
        assert bip32_manager.get_address_path(first) == "m/0/0/0"
        assert first[0] in "mn"

    @pytest.mark.asyncio
    async def test_events_carry_paths(self, bip44_manager):
        await bip44_manager.load()
        paths = [e.path for e in bip44_manager.drain_events() if isinstance(e, NewAddressEvent)]
        assert paths == [
            "m/44'/0'/0'/0/0",
            "m/44'/0'/0'/0/1",
            "m/44'/0'/0'/0/2",
            "m/44'/0'/0'/1/0",
            "m/44'/0'/0'/1/1",
            "m/44'/0'/0'/1/2",
        ]


class TestRescan:
    @pytest.mark.asyncio
    async def test_second_scan_is_idempotent(self, bip44_manager):
        await bip44_manager.load()
        bip44_manager.drain_events()

        await bip44_manager.scan()
        assert bip44_manager.drain_events() == []
        assert len(bip44_manager.addresses(Branch.RECEIVE)) == 3

    @pytest.mark.asyncio
    async def test_used_address_extends_pool(self, bip44_manager):
        await bip44_manager.load()
        _mark_used(bip44_manager, Branch.RECEIVE, 0)

        await bip44_manager.scan()
        assert len(bip44_manager.addresses(Branch.RECEIVE)) == 4
        assert len(bip44_manager.addresses(Branch.CHANGE)) == 3
        _assert_gap(bip44_manager, Branch.RECEIVE)
        _assert_consistent(bip44_manager)

    @pytest.mark.asyncio
    async def test_last_used_address_keeps_full_gap(self, bip44_manager):
        await bip44_manager.load()
        _mark_used(bip44_manager, Branch.CHANGE, 2)

        await bip44_manager.scan()
        assert len(bip44_manager.addresses(Branch.CHANGE)) == 6
        _assert_gap(bip44_manager, Branch.CHANGE)


class TestAddressSelection:
    def test_empty_before_load(self, bip44_manager):
        assert bip44_manager.get_receive_address() == ""
        assert bip44_manager.get_change_address() == ""

    @pytest.mark.asyncio
    async def test_unknown_addresses_are_available(self, bip44_manager):
        await bip44_manager.load()
        assert bip44_manager.get_receive_address() == BIP44_RECEIVE_0

    @pytest.mark.asyncio
    async def test_skips_used_addresses(self, bip44_manager):
        await bip44_manager.load()
        _mark_used(bip44_manager, Branch.RECEIVE, 0)
        assert bip44_manager.get_receive_address() == BIP44_RECEIVE_1

    @pytest.mark.asyncio
    async def test_entry_marked_unused_is_available(self, bip44_manager):
        await bip44_manager.load()
        first = bip44_manager.addresses(Branch.RECEIVE)[0]
        bip44_manager.address_infos[first.script_hash] = {
            "displayAddress": first.display_address,
            "path": "m/44'/0'/0'/0/0",
            "used": False,
        }
        assert bip44_manager.get_receive_address() == BIP44_RECEIVE_0

    @pytest.mark.asyncio
    async def test_all_used_returns_empty(self, bip44_manager):
        await bip44_manager.load()
        for i in range(3):
            _mark_used(bip44_manager, Branch.CHANGE, i)
        assert bip44_manager.get_change_address() == ""


class TestAddressPaths:
    @pytest.mark.asyncio
    async def test_get_address_path(self, bip44_manager):
        await bip44_manager.load()
        assert bip44_manager.get_address_path(BIP44_RECEIVE_1) == "m/44'/0'/0'/0/1"
        change = bip44_manager.get_change_address()
        assert bip44_manager.get_address_path(change) == "m/44'/0'/0'/1/0"

    @pytest.mark.asyncio
    async def test_unknown_address(self, bip44_manager):
        await bip44_manager.load()
        with pytest.raises(UnknownAddressError):
            bip44_manager.get_address_path("1BgGZ9tcN4rm9KBzDn7KprQz87SZ26SAMH")
