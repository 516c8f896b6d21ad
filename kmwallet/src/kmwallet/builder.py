"""
Transaction construction.

Supports plain spends, replace-by-fee (RBF) replacements and
child-pays-for-parent (CPFP) fee bumps.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any

from kmcore.bitcoin import address_to_scriptpubkey
from kmcore.constants import RBF_SEQUENCE, SEQUENCE_FINAL
from kmcore.errors import TransactionError
from kmcore.networks import NetworkProfile
from kmcore.transaction import Coin, MutableTransaction, Transaction
from loguru import logger

from kmwallet.coin_selection import CoinSelector
from kmwallet.config import KeyManagerConfig
from kmwallet.errors import (
    ContextCheckError,
    EmptyOutputsError,
    InsufficientFundsError,
    SanityCheckError,
    UnknownAddressError,
)
from kmwallet.fees import input_size_estimator
from kmwallet.models import SpendableUtxo, SpendTarget


def _as_targets(outputs: Iterable[SpendTarget | dict[str, Any]]) -> list[SpendTarget]:
    return [o if isinstance(o, SpendTarget) else SpendTarget.model_validate(o) for o in outputs]


def _as_coins(utxos: Iterable[SpendableUtxo | dict[str, Any]]) -> list[Coin]:
    """
    Turn candidate UTXOs into coins using the raw transactions that created them.

    Raises:
        TransactionError: If a raw transaction does not parse or does not
            match the UTXO it is supplied for
    """
    coins = []
    for item in utxos:
        spendable = (
            item if isinstance(item, SpendableUtxo) else SpendableUtxo.model_validate(item)
        )
        parent = Transaction.from_hex(spendable.raw_tx)
        if parent.txid != spendable.utxo.txid:
            raise TransactionError(
                f"Raw transaction {parent.txid} does not match UTXO {spendable.utxo.txid}"
            )
        coins.append(Coin.from_tx(parent, spendable.utxo.index, height=spendable.height))
    return coins


class TransactionBuilderMixin:
    """Mixin assembling funded, unsigned transactions.

    Expects the host class to provide ``config``, ``network`` and
    ``get_change_address()``.
    """

    # Declared for mypy -- actually set by the host class __init__
    config: KeyManagerConfig
    network: NetworkProfile

    def get_change_address(self) -> str:
        raise NotImplementedError

    def _change_script(self) -> bytes:
        change_address = self.get_change_address()
        if not change_address:
            raise UnknownAddressError("No change address available, call load() first")
        return address_to_scriptpubkey(change_address, self.network)

    def create_transaction(
        self,
        outputs: Sequence[SpendTarget | dict[str, Any]],
        utxos: Sequence[SpendableUtxo | dict[str, Any]],
        height: int,
        fee_rate: float,
        max_fee: int,
        rbf: bool = False,
        rbf_raw: str = "",
        cpfp_txid: str = "",
        cpfp_limit: int = 1,
    ) -> MutableTransaction:
        """
        Build a funded, unsigned transaction.

        Args:
            outputs: Spend targets; may be empty only for a CPFP bump
            utxos: Candidate coins with their raw parent transactions
            height: Current chain height (-1 to skip maturity checks)
            fee_rate: Fee rate in sat/vB
            max_fee: Maximum fee in satoshis; 0 or less disables the cap
            rbf: Signal replaceability on every input
            rbf_raw: Raw transaction being replaced; its inputs are spent first
            cpfp_txid: Parent transaction whose outputs must be spent
            cpfp_limit: Maximum parent outputs to sweep when no outputs are
                given (0 = all)

        Returns:
            MutableTransaction with its coin view attached

        Raises:
            EmptyOutputsError: No outputs and no CPFP parent
            InsufficientFundsError: Coins cannot cover outputs plus fee
            FeeExceededError: Estimated fee above ``max_fee``
            UnknownAddressError: ``rbf_raw`` spends none of the candidate coins
            SanityCheckError: Assembled transaction fails consensus sanity
            ContextCheckError: Inputs fail contextual checks at ``height``
        """
        targets = _as_targets(outputs)
        if not targets and not cpfp_txid:
            raise EmptyOutputsError("No outputs to spend to")

        tx = MutableTransaction()
        for target in targets:
            tx.add_output(address_to_scriptpubkey(target.address, self.network), target.amount)

        change_script = self._change_script()
        coins = _as_coins(utxos)
        subtract_fee = False

        if cpfp_txid:
            coins = [c for c in coins if c.txid == cpfp_txid]
            if not coins:
                raise InsufficientFundsError(
                    0, 0, f"No candidate outputs of parent transaction {cpfp_txid}"
                )
            if not targets:
                coins.sort(key=lambda c: c.value, reverse=True)
                if cpfp_limit > 0:
                    coins = coins[:cpfp_limit]
                tx.add_output(change_script, sum(c.value for c in coins))
                subtract_fee = True

        preferred: list[Coin] = []
        if rbf_raw:
            replaced = Transaction.from_hex(rbf_raw)
            conflicts = {inp.prevout for inp in replaced.inputs}
            preferred = [c for c in coins if c.outpoint in conflicts]
            if not preferred:
                raise UnknownAddressError(
                    f"None of the inputs of {replaced.txid} are spendable by this wallet"
                )
            rbf = True

        selector = CoinSelector(
            tx,
            coins,
            change_script,
            rate=fee_rate,
            height=height,
            max_fee=max_fee,
            estimator=input_size_estimator(self.config.scheme),
            subtract_fee=subtract_fee,
            preferred=preferred,
            sequence=RBF_SEQUENCE if rbf else SEQUENCE_FINAL,
        )
        selector.fund()

        ok, reason = tx.check_sanity()
        if not ok:
            raise SanityCheckError(reason)
        fee, reason = tx.check_inputs(height)
        if fee == -1:
            raise ContextCheckError(reason)

        kind = "CPFP" if cpfp_txid else "RBF" if rbf else "standard"
        logger.info(
            f"Built {kind} transaction {tx.txid}: {len(tx.inputs)} input(s), "
            f"{len(tx.outputs)} output(s), fee {fee} sats"
        )
        return tx
