"""
Tests for resolving spent outpoints to wallet derivation paths.
"""

import pytest
from _kmwallet_test_helpers import make_parent_tx, record_utxos
from kmcore.transaction import OutPoint

from kmwallet.errors import UnknownAddressError
from kmwallet.models import AddressInfo, Branch, UtxoInfo


@pytest.mark.asyncio
async def test_resolves_receive_and_change(bip44_manager):
    await bip44_manager.load()
    receive = bip44_manager.addresses(Branch.RECEIVE)[2]
    change = bip44_manager.addresses(Branch.CHANGE)[1]
    tx_a = make_parent_tx(receive.display_address, 10_000)
    tx_b = make_parent_tx(change.display_address, 5_000, 7_000, nonce=1)
    record_utxos(bip44_manager, receive, tx_a)
    record_utxos(bip44_manager, change, tx_b)

    assert bip44_manager.resolve_path(OutPoint(tx_a.txid, 0)) == (Branch.RECEIVE, 2)
    assert bip44_manager.resolve_path(OutPoint(tx_b.txid, 1)) == (Branch.CHANGE, 1)


@pytest.mark.asyncio
async def test_unknown_outpoint(bip44_manager):
    await bip44_manager.load()
    with pytest.raises(UnknownAddressError):
        bip44_manager.resolve_path(OutPoint("ab" * 32, 0))


@pytest.mark.asyncio
async def test_utxo_on_underived_script_hash(bip44_manager):
    await bip44_manager.load()
    bip44_manager.address_infos["cd" * 32] = AddressInfo(
        display_address="1SomewhereElse",
        path="m/44'/0'/0'/0/99",
        used=True,
        utxos=[UtxoInfo(txid="ab" * 32, index=0, value=1_000)],
    )
    with pytest.raises(UnknownAddressError):
        bip44_manager.resolve_path(OutPoint("ab" * 32, 0))


@pytest.mark.asyncio
async def test_follows_caller_updates(bip44_manager):
    await bip44_manager.load()
    first, second = bip44_manager.addresses(Branch.RECEIVE)[:2]
    tx = make_parent_tx(first.display_address, 10_000)
    record_utxos(bip44_manager, first, tx)
    outpoint = OutPoint(tx.txid, 0)
    assert bip44_manager.resolve_path(outpoint) == (Branch.RECEIVE, 0)

    # The caller moves the UTXO record to another address entry
    del bip44_manager.address_infos[first.script_hash]
    bip44_manager.address_infos[second.script_hash] = {
        "display_address": second.display_address,
        "path": "m/44'/0'/0'/0/1",
        "used": True,
        "utxos": [{"tx_hash": tx.txid, "tx_pos": 0, "value": 10_000}],
    }
    assert bip44_manager.resolve_path(outpoint) == (Branch.RECEIVE, 1)

    # And removes it entirely
    bip44_manager.address_infos.clear()
    with pytest.raises(UnknownAddressError):
        bip44_manager.resolve_path(outpoint)
