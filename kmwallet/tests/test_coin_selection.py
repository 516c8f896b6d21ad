"""
Tests for coin selection and funding.
"""

import pytest
from kmcore.bitcoin import p2pkh_script
from kmcore.constants import RBF_SEQUENCE
from kmcore.transaction import Coin, MutableTransaction, TxOut

from kmwallet.coin_selection import CoinSelector, is_spendable, sort_by_age
from kmwallet.errors import FeeExceededError, InsufficientFundsError

WALLET_SCRIPT = p2pkh_script(b"\x01" * 20)
CHANGE_SCRIPT = p2pkh_script(b"\x02" * 20)
DEST_SCRIPT = p2pkh_script(b"\x03" * 20)


def _coin(n: int, value: int, height: int = 100, coinbase: bool = False) -> Coin:
    return Coin(
        txid=f"{n:064x}", index=0, value=value, script=WALLET_SCRIPT, height=height, coinbase=coinbase
    )


def _tx(*values: int) -> MutableTransaction:
    tx = MutableTransaction()
    for value in values:
        tx.add_output(DEST_SCRIPT, value)
    return tx


class TestSpendable:
    def test_regular_coin(self):
        assert is_spendable(_coin(1, 1000, height=-1), 500)

    def test_coinbase_maturity(self):
        assert not is_spendable(_coin(1, 1000, height=450, coinbase=True), 500)
        assert is_spendable(_coin(1, 1000, height=400, coinbase=True), 500)

    def test_unconfirmed_coinbase(self):
        assert not is_spendable(_coin(1, 1000, height=-1, coinbase=True), 500)

    def test_no_height_disables_check(self):
        assert is_spendable(_coin(1, 1000, height=450, coinbase=True), -1)


def test_sort_by_age_puts_unconfirmed_last():
    coins = [_coin(1, 1, height=-1), _coin(2, 1, height=300), _coin(3, 1, height=100)]
    assert [c.height for c in sort_by_age(coins)] == [100, 300, -1]


class TestFund:
    def test_adds_change(self):
        tx = _tx(50_000)
        selector = CoinSelector(tx, [_coin(1, 100_000)], CHANGE_SCRIPT, rate=10)
        selector.fund()

        assert len(tx.inputs) == 1
        assert len(tx.outputs) == 2
        assert tx.change_index == 1
        assert tx.outputs[1].script == CHANGE_SCRIPT
        assert tx.fee == selector.fee
        assert tx.fee == 10 * tx.estimate_size()

    def test_oldest_coins_first(self):
        tx = _tx(50_000)
        coins = [_coin(1, 100_000, height=-1), _coin(2, 100_000, height=900), _coin(3, 100_000, height=10)]
        CoinSelector(tx, coins, CHANGE_SCRIPT, rate=1).fund()
        assert [inp.prevout.txid for inp in tx.inputs] == [f"{3:064x}"]

    def test_accumulates_until_full(self):
        tx = _tx(25_000)
        coins = [_coin(n, 10_000, height=n) for n in range(1, 6)]
        CoinSelector(tx, coins, CHANGE_SCRIPT, rate=1).fund()
        assert len(tx.inputs) == 3
        assert tx.input_value >= 25_000 + tx.fee

    def test_dust_change_goes_to_fee(self):
        tx = _tx(50_000)
        probe = CoinSelector(_tx(50_000), [_coin(1, 200_000)], CHANGE_SCRIPT, rate=1)
        probe.fund()
        # Leave exactly 100 sats of change after the fee
        coin_value = 50_000 + probe.fee + 100

        selector = CoinSelector(tx, [_coin(1, coin_value)], CHANGE_SCRIPT, rate=1)
        selector.fund()
        assert len(tx.outputs) == 1
        assert tx.change_index == -1
        assert tx.fee == probe.fee + 100
        assert selector.fee == tx.fee

    def test_insufficient_funds(self):
        tx = _tx(150_000)
        with pytest.raises(InsufficientFundsError) as exc_info:
            CoinSelector(tx, [_coin(1, 100_000)], CHANGE_SCRIPT, rate=1).fund()
        assert exc_info.value.available == 100_000
        assert exc_info.value.needed > 150_000
        # Placeholder change output never leaks into the transaction
        assert len(tx.outputs) == 1

    def test_fee_exceeded(self):
        tx = _tx(50_000)
        with pytest.raises(FeeExceededError) as exc_info:
            CoinSelector(tx, [_coin(1, 100_000)], CHANGE_SCRIPT, rate=100, max_fee=1_000).fund()
        assert exc_info.value.max_fee == 1_000
        assert exc_info.value.fee > 1_000

    def test_immature_coinbase_skipped(self):
        tx = _tx(50_000)
        coins = [_coin(1, 100_000, height=950, coinbase=True)]
        with pytest.raises(InsufficientFundsError):
            CoinSelector(tx, coins, CHANGE_SCRIPT, rate=1, height=1_000).fund()

    def test_preferred_coins_always_spent(self):
        tx = _tx(10_000)
        old = _coin(1, 100_000, height=1)
        preferred = _coin(2, 5_000, height=500)
        CoinSelector(
            tx, [old, preferred], CHANGE_SCRIPT, rate=1, preferred=[preferred], sequence=RBF_SEQUENCE
        ).fund()
        assert tx.inputs[0].prevout == preferred.outpoint
        assert {inp.prevout for inp in tx.inputs} == {old.outpoint, preferred.outpoint}
        assert all(inp.sequence == RBF_SEQUENCE for inp in tx.inputs)

    def test_duplicate_candidates_ignored(self):
        tx = _tx(150_000)
        coin = _coin(1, 100_000)
        with pytest.raises(InsufficientFundsError):
            CoinSelector(tx, [coin, coin], CHANGE_SCRIPT, rate=1).fund()


class TestSubtractFee:
    def test_single_output_pays_fee(self):
        tx = _tx(100_000)
        selector = CoinSelector(tx, [_coin(1, 100_000)], CHANGE_SCRIPT, rate=2, subtract_fee=True)
        selector.fund()
        assert len(tx.outputs) == 1
        assert tx.outputs[0].value == 100_000 - selector.fee
        assert tx.fee == selector.fee

    def test_fee_split_across_outputs(self):
        tx = _tx(60_000, 40_000)
        selector = CoinSelector(tx, [_coin(1, 100_000)], CHANGE_SCRIPT, rate=3, subtract_fee=True)
        selector.fund()
        assert tx.output_value == 100_000 - selector.fee
        assert 60_000 - tx.outputs[0].value >= 40_000 - tx.outputs[1].value

    def test_fee_budgets_change_placeholder(self):
        tx = _tx(100_000)
        selector = CoinSelector(tx, [_coin(1, 100_000)], CHANGE_SCRIPT, rate=10, subtract_fee=True)
        selector.fund()
        assert len(tx.outputs) == 1
        placeholder = TxOut(0, CHANGE_SCRIPT).size
        assert selector.fee == 10 * (tx.estimate_size() + placeholder)

    def test_output_cannot_absorb_fee(self):
        tx = _tx(600)
        with pytest.raises(InsufficientFundsError):
            CoinSelector(tx, [_coin(1, 600)], CHANGE_SCRIPT, rate=5, subtract_fee=True).fund()
