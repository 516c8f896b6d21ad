"""
Key manager configuration.
"""

from __future__ import annotations

from typing import Any

from kmcore.errors import NetworkError
from kmcore.networks import NetworkProfile, get_network
from pydantic import BaseModel, Field, field_validator

from kmwallet.errors import ConfigError
from kmwallet.models import DerivationScheme

DEFAULT_GAP_LIMIT = 10


class KeyManagerConfig(BaseModel):
    """
    Scalar construction options for :class:`~kmwallet.key_manager.KeyManager`.

    Unknown derivation schemes and networks raise :class:`ConfigError`
    directly; out-of-range numbers surface as pydantic validation errors.
    """

    network: NetworkProfile
    scheme: DerivationScheme = DerivationScheme.BIP32
    account: int = Field(default=0, ge=0, lt=0x80000000, description="BIP44/49 account index")
    gap_limit: int = Field(
        default=DEFAULT_GAP_LIMIT,
        ge=1,
        description="Unused addresses kept available past the last used one",
    )

    model_config = {"frozen": True}

    @field_validator("network", mode="before")
    @classmethod
    def resolve_network(cls, v: Any) -> NetworkProfile:
        try:
            return get_network(v)
        except NetworkError as e:
            raise ConfigError(str(e)) from e

    @field_validator("scheme", mode="before")
    @classmethod
    def validate_scheme(cls, v: Any) -> DerivationScheme:
        if isinstance(v, DerivationScheme):
            return v
        try:
            return DerivationScheme(str(v).lower())
        except ValueError:
            raise ConfigError(f"Unknown bip type: {v}") from None
