"""
Tests for the key manager settings module.
"""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from pydantic import ValidationError

from kmwallet.config import KeyManagerConfig
from kmwallet.errors import ConfigError
from kmwallet.models import DerivationScheme
from kmwallet.settings import KeyManagerSettings, get_config_path, get_settings, reset_settings


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[Path, None, None]:
    """Point settings at an empty temp config and clear KM_* variables."""
    for name in ("KM_NETWORK", "KM_SCHEME", "KM_ACCOUNT", "KM_GAP_LIMIT", "KM_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    config_path = tmp_path / "config.toml"
    monkeypatch.setenv("KM_CONFIG_FILE", str(config_path))
    reset_settings()
    yield config_path
    reset_settings()


class TestDefaults:
    def test_defaults(self) -> None:
        settings = KeyManagerSettings()
        assert settings.network == "mainnet"
        assert settings.scheme is DerivationScheme.BIP44
        assert settings.account == 0
        assert settings.gap_limit == 10
        assert settings.log_level == "INFO"

    def test_default_config_path(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("KM_CONFIG_FILE")
        monkeypatch.setenv("HOME", str(tmp_path))
        assert get_config_path() == tmp_path / ".km-wallet" / "config.toml"


class TestSources:
    def test_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("KM_NETWORK", "testnet")
        monkeypatch.setenv("KM_SCHEME", "bip49")
        monkeypatch.setenv("KM_GAP_LIMIT", "5")

        settings = KeyManagerSettings()
        assert settings.network == "testnet"
        assert settings.scheme is DerivationScheme.BIP49
        assert settings.gap_limit == 5

    def test_toml_file(self, isolated_settings: Path) -> None:
        isolated_settings.write_text('network = "regtest"\nscheme = "bip32"\naccount = 3\n')

        settings = KeyManagerSettings()
        assert settings.network == "regtest"
        assert settings.scheme is DerivationScheme.BIP32
        assert settings.account == 3

    def test_priority(self, isolated_settings: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        isolated_settings.write_text('network = "regtest"\ngap_limit = 7\naccount = 2\n')
        monkeypatch.setenv("KM_NETWORK", "testnet")
        monkeypatch.setenv("KM_GAP_LIMIT", "4")

        settings = KeyManagerSettings(gap_limit=20)
        assert settings.gap_limit == 20
        assert settings.network == "testnet"
        assert settings.account == 2

    def test_invalid_toml(self, isolated_settings: Path) -> None:
        isolated_settings.write_text("network = \n")
        with pytest.raises(ConfigError):
            KeyManagerSettings()


class TestValidation:
    def test_log_level_normalized(self) -> None:
        assert KeyManagerSettings(log_level="debug").log_level == "DEBUG"

    def test_invalid_log_level(self) -> None:
        with pytest.raises(ValidationError):
            KeyManagerSettings(log_level="LOUD")

    def test_gap_limit_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            KeyManagerSettings(gap_limit=0)

    def test_to_config(self) -> None:
        config = KeyManagerSettings(network="testnet", scheme="bip49", account=1).to_config()
        assert isinstance(config, KeyManagerConfig)
        assert config.network.name == "testnet"
        assert config.network.coin_type == 1
        assert config.scheme is DerivationScheme.BIP49

    def test_to_config_unknown_network(self) -> None:
        with pytest.raises(ConfigError):
            KeyManagerSettings(network="dogecoin").to_config()


class TestGlobalSettings:
    def test_cached_until_reset(self, monkeypatch: pytest.MonkeyPatch) -> None:
        first = get_settings()
        monkeypatch.setenv("KM_NETWORK", "signet")
        assert get_settings() is first
        assert first.network == "mainnet"

        reset_settings()
        assert get_settings().network == "signet"

    def test_overrides_replace_cache(self) -> None:
        get_settings()
        assert get_settings(account=4).account == 4
        assert get_settings().account == 4
