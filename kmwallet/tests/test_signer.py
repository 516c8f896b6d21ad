"""
Tests for signing wallet transactions.
"""

import pytest
from _kmwallet_test_helpers import (
    BIP44_ACCOUNT_XPUB,
    CHAIN_HEIGHT,
    EXTERNAL_ADDRESS,
    make_parent_tx,
    record_utxos,
)
from kmcore.bitcoin import p2pkh_script
from kmcore.signing import ForkIdSighash, StandardSighash, sighash_strategy_for, verify_transaction
from kmcore.transaction import Coin, MutableTransaction

from kmwallet.errors import MissingPrivateKeyError, UnknownAddressError
from kmwallet.events import NewKeysEvent
from kmwallet.fees import input_size_estimator
from kmwallet.key_manager import KeyManager
from kmwallet.models import Branch, SpendTarget


async def _spend_from_receive_and_change(manager: KeyManager) -> MutableTransaction:
    await manager.load()
    receive = manager.addresses(Branch.RECEIVE)[1]
    change = manager.addresses(Branch.CHANGE)[0]
    utxos = record_utxos(manager, receive, make_parent_tx(receive.display_address, 30_000))
    utxos += record_utxos(
        manager, change, make_parent_tx(change.display_address, 40_000, nonce=1)
    )
    return manager.create_transaction(
        [SpendTarget(address=EXTERNAL_ADDRESS, amount=60_000)],
        utxos,
        height=CHAIN_HEIGHT,
        fee_rate=2,
        max_fee=0,
    )


class TestSign:
    @pytest.mark.asyncio
    async def test_bip44(self, bip44_manager):
        tx = await _spend_from_receive_and_change(bip44_manager)
        assert len(tx.inputs) == 2

        assert await bip44_manager.sign(tx) == 2
        assert verify_transaction(tx, StandardSighash())
        assert all(inp.script_sig and not inp.witness for inp in tx.inputs)

    @pytest.mark.asyncio
    async def test_bip49(self, bip49_manager):
        tx = await _spend_from_receive_and_change(bip49_manager)

        assert await bip49_manager.sign(tx) == 2
        assert verify_transaction(tx, StandardSighash())
        for inp in tx.inputs:
            assert len(inp.script_sig) == 23
            assert len(inp.witness) == 2

    @pytest.mark.asyncio
    async def test_forkid_network(self, test_mnemonic):
        manager = KeyManager(network="bitcoincash", scheme="bip44", seed=test_mnemonic, gap_limit=2)
        tx = await _spend_from_receive_and_change(manager)

        assert await manager.sign(tx) == 2
        assert isinstance(sighash_strategy_for("bitcoincash"), ForkIdSighash)
        assert verify_transaction(tx, ForkIdSighash())
        assert not verify_transaction(tx, StandardSighash())

    @pytest.mark.asyncio
    @pytest.mark.parametrize("scheme", ["bip44", "bip49"])
    async def test_estimate_covers_signed_size(self, test_mnemonic, scheme):
        manager = KeyManager(network="mainnet", scheme=scheme, seed=test_mnemonic, gap_limit=2)
        tx = await _spend_from_receive_and_change(manager)
        estimate = tx.estimate_size(input_size_estimator(manager.config.scheme))

        await manager.sign(tx)
        assert tx.vsize <= estimate


class TestKeys:
    @pytest.mark.asyncio
    async def test_watch_only_cannot_sign(self):
        manager = KeyManager(
            network="mainnet", scheme="bip44", raw_keys={"master": {"xpub": BIP44_ACCOUNT_XPUB}}
        )
        tx = await _spend_from_receive_and_change(manager)
        with pytest.raises(MissingPrivateKeyError):
            await manager.sign(tx)

    @pytest.mark.asyncio
    async def test_master_private_key_derived_on_demand(self, test_mnemonic):
        manager = KeyManager(
            network="mainnet",
            scheme="bip44",
            seed=test_mnemonic,
            raw_keys={"master": {"xpub": BIP44_ACCOUNT_XPUB}},
            gap_limit=2,
        )
        tx = await _spend_from_receive_and_change(manager)
        assert manager.rings.master.priv_key is None
        manager.drain_events()

        assert await manager.sign(tx) == 2
        assert manager.rings.master.priv_key is not None
        assert verify_transaction(tx, StandardSighash())

        key_events = [e for e in manager.drain_events() if isinstance(e, NewKeysEvent)]
        assert key_events
        assert key_events[-1].keys.master.xpriv is not None
        assert key_events[-1].keys.receive.xpriv is not None

    @pytest.mark.asyncio
    async def test_foreign_input(self, bip44_manager):
        await bip44_manager.load()
        tx = MutableTransaction()
        tx.add_coin(Coin(txid="ab" * 32, index=0, value=10_000, script=p2pkh_script(b"\x07" * 20)))
        tx.add_output(p2pkh_script(b"\x08" * 20), 9_000)

        with pytest.raises(UnknownAddressError):
            await bip44_manager.sign(tx)
