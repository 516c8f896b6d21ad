"""
Transaction signing.
"""

from __future__ import annotations

from kmcore.bip32 import HDKey, seed_to_bytes
from kmcore.errors import InvalidKeyError
from kmcore.networks import NetworkProfile
from kmcore.signing import SigningKey, sighash_strategy_for, sign_transaction
from kmcore.transaction import MutableTransaction, OutPoint
from loguru import logger

from kmwallet.config import KeyManagerConfig
from kmwallet.errors import ConfigError, MissingPrivateKeyError
from kmwallet.models import Branch, KeyRings


class SignerMixin:
    """Mixin signing transactions that spend wallet coins.

    Expects the host class to provide ``config``, ``network``, ``master_path``,
    ``rings``, ``resolve_path()`` and ``_keys_changed()``.
    """

    # Declared for mypy -- actually set by the host class __init__
    config: KeyManagerConfig
    network: NetworkProfile
    master_path: str
    rings: KeyRings
    _seed: str | bytes
    _passphrase: str

    def _keys_changed(self) -> None:
        raise NotImplementedError

    def resolve_path(self, prevout: OutPoint) -> tuple[Branch, int]:
        raise NotImplementedError

    def _master_from_seed(self) -> HDKey:
        try:
            root = HDKey.from_seed(seed_to_bytes(self._seed, self._passphrase))
        except InvalidKeyError as e:
            raise ConfigError(f"Invalid wallet seed: {e}") from e
        return root.derive(self.master_path)

    def _ensure_master_private_key(self) -> HDKey:
        master = self.rings.master
        if master.priv_key is None:
            if not self._seed:
                raise MissingPrivateKeyError("No master private key or seed to sign with")
            master.priv_key = self._master_from_seed()
            logger.info("Derived master private key from seed")
            self._keys_changed()
        return master.priv_key

    def _branch_private_key(self, branch: Branch) -> HDKey:
        ring = self.rings.for_branch(branch)
        if ring.priv_key is None:
            ring.priv_key = self._ensure_master_private_key().derive_child(int(branch))
            self._keys_changed()
        return ring.priv_key

    def _sign(self, tx: MutableTransaction) -> int:
        self._ensure_master_private_key()

        nested = self.config.scheme.nested_witness
        keys = []
        for inp in tx.inputs:
            branch, index = self.resolve_path(inp.prevout)
            leaf = self._branch_private_key(branch).derive_child(index)
            keys.append(SigningKey(leaf, nested=nested, witness=nested))

        signed = sign_transaction(tx, keys, sighash_strategy_for(self.network))
        if signed < len(tx.inputs):
            logger.warning(f"Signed {signed} of {len(tx.inputs)} inputs of {tx.txid}")
        else:
            logger.info(f"Signed all {signed} input(s) of {tx.txid}")
        return signed
