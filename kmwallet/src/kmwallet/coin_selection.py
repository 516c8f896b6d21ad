"""
Coin selection and transaction funding.

Selects coins oldest first (unconfirmed last), estimates the fee against a
placeholder change output and iterates until the inputs cover the outputs
plus fee. Change below the dust threshold is left to the miner.
"""

from __future__ import annotations

from collections.abc import Iterable

from kmcore.constants import COINBASE_MATURITY, SEQUENCE_FINAL
from kmcore.transaction import Coin, MutableTransaction, OutPoint, SizeEstimator, TxOut
from loguru import logger

from kmwallet.errors import FeeExceededError, InsufficientFundsError
from kmwallet.fees import fee_for_size

UNCONFIRMED_SORT_HEIGHT = 0x7FFFFFFF


def is_spendable(coin: Coin, height: int) -> bool:
    """
    Whether ``coin`` may be spent in a transaction mined at ``height``.

    A height of -1 disables the check. Coinbase outputs need
    ``COINBASE_MATURITY`` blocks.
    """
    if height == -1 or not coin.coinbase:
        return True
    if coin.height == -1:
        return False
    return height - coin.height >= COINBASE_MATURITY


def sort_by_age(coins: Iterable[Coin]) -> list[Coin]:
    return sorted(
        coins, key=lambda c: UNCONFIRMED_SORT_HEIGHT if c.height == -1 else c.height
    )


class CoinSelector:
    """
    Fund a transaction from a pool of candidate coins.

    Args:
        tx: Transaction holding the requested outputs; inputs and change are
            added in place
        coins: Candidate coins
        change_script: Output script receiving the change
        rate: Fee rate in sat/vB
        height: Chain height used for coinbase maturity (-1 to skip)
        max_fee: Maximum acceptable fee; 0 or less means unlimited
        estimator: Per-input script size estimator
        subtract_fee: Deduct the fee from the requested outputs instead of
            adding it on top
        preferred: Coins selected before any other
        sequence: nSequence given to each selected input
    """

    def __init__(
        self,
        tx: MutableTransaction,
        coins: Iterable[Coin],
        change_script: bytes,
        rate: float,
        height: int = -1,
        max_fee: int = 0,
        estimator: SizeEstimator | None = None,
        subtract_fee: bool = False,
        preferred: Iterable[Coin] = (),
        sequence: int = SEQUENCE_FINAL,
    ):
        self.tx = tx
        self.change_script = change_script
        self.rate = rate
        self.height = height
        self.max_fee = max_fee
        self.estimator = estimator
        self.subtract_fee = subtract_fee
        self.sequence = sequence

        self.fee = 0
        self.chosen: list[Coin] = []
        self.total = 0

        seen: set[OutPoint] = set()
        self.preferred: list[Coin] = []
        for coin in preferred:
            if coin.outpoint not in seen and is_spendable(coin, height):
                seen.add(coin.outpoint)
                self.preferred.append(coin)

        pool = []
        for coin in coins:
            if coin.outpoint in seen or coin.outpoint in tx.view:
                continue
            seen.add(coin.outpoint)
            if is_spendable(coin, height):
                pool.append(coin)
        self.pool = sort_by_age(pool)

    @property
    def output_value(self) -> int:
        return self.tx.output_value

    def target(self) -> int:
        if self.subtract_fee:
            return self.output_value
        return self.output_value + self.fee

    def is_full(self) -> bool:
        return self.total >= self.target()

    def _add(self, coin: Coin) -> None:
        self.tx.add_coin(coin, sequence=self.sequence)
        self.chosen.append(coin)
        self.total += coin.value

    def _next_coin(self) -> Coin | None:
        if self.preferred:
            return self.preferred.pop(0)
        if self.pool:
            return self.pool.pop(0)
        return None

    def select(self) -> None:
        # Estimate with a placeholder change output so the fee covers it. The
        # placeholder is counted in subtract-fee mode too, as bcoin does.
        self.tx.outputs.append(TxOut(0, self.change_script))
        try:
            # Preferred coins are always spent
            while self.preferred:
                self._add(self.preferred.pop(0))

            while True:
                size = self.tx.estimate_size(self.estimator)
                self.fee = fee_for_size(self.rate, size)

                if self.max_fee > 0 and self.fee > self.max_fee:
                    raise FeeExceededError(self.fee, self.max_fee)

                if self.is_full():
                    break

                coin = self._next_coin()
                if coin is None:
                    break
                self._add(coin)
        finally:
            self.tx.outputs.pop()

        if not self.is_full():
            raise InsufficientFundsError(self.target(), self.total)

    def _subtract_fee(self) -> None:
        outputs = self.tx.outputs
        share, remainder = divmod(self.fee, len(outputs))
        for i, output in enumerate(outputs):
            output.value -= share + (remainder if i == 0 else 0)
            if output.value < 0 or output.is_dust():
                raise InsufficientFundsError(
                    self.fee,
                    output.value + share,
                    f"Output {i} cannot absorb its share of the {self.fee} sat fee",
                )

    def fund(self) -> MutableTransaction:
        """
        Select coins and add change.

        Raises:
            FeeExceededError: If the fee estimate exceeds ``max_fee``
            InsufficientFundsError: If the coins cannot cover outputs and fee
        """
        self.select()

        if self.subtract_fee and self.tx.outputs:
            self._subtract_fee()

        change_value = self.total - self.output_value - self.fee
        if change_value > 0:
            change = TxOut(change_value, self.change_script)
            if change.is_dust():
                logger.debug(f"Dropping dust change of {change_value} sats")
                self.fee += change_value
            else:
                self.tx.outputs.append(change)
                self.tx.change_index = len(self.tx.outputs) - 1

        logger.debug(
            f"Funded with {len(self.chosen)} coin(s) totalling {self.total} sats, "
            f"fee {self.fee} sats"
        )
        return self.tx
