"""
Command line interface for inspecting key manager wallets.

Commands:
    km-wallet addresses    Print the receive and change address pools
    km-wallet xpub         Print the master and branch extended public keys
    km-wallet script-hash  Compute the Electrum script hash of an address
    km-wallet networks     List registered network profiles
"""

from __future__ import annotations

import asyncio
import sys
from typing import Annotated

import typer
from kmcore.bitcoin import address_to_script_hash
from kmcore.errors import PrimitiveError
from kmcore.networks import list_networks
from loguru import logger

from kmwallet.errors import KeyManagerError
from kmwallet.key_manager import KeyManager
from kmwallet.models import Branch, DerivationScheme
from kmwallet.settings import KeyManagerSettings, get_settings, reset_settings

app = typer.Typer(
    name="km-wallet",
    help="HD key manager wallet inspection",
    add_completion=False,
)

MnemonicOption = Annotated[
    str,
    typer.Option("--mnemonic", "-m", envvar="KM_MNEMONIC", help="BIP39 mnemonic or base64 seed"),
]
NetworkOption = Annotated[
    str | None, typer.Option("--network", "-n", help="Network name (default from settings)")
]
SchemeOption = Annotated[
    DerivationScheme | None, typer.Option("--scheme", "-s", help="Derivation scheme")
]
AccountOption = Annotated[int | None, typer.Option("--account", "-a", help="Account index")]
GapLimitOption = Annotated[int | None, typer.Option("--gap-limit", "-g", help="Address gap limit")]
LogLevelOption = Annotated[
    str | None, typer.Option("--log-level", "-l", help="Log level (default from settings)")
]


def setup_logging(level: str = "INFO") -> None:
    """
    Configure loguru logging with consistent format.

    Args:
        level: Log level (TRACE, DEBUG, INFO, WARNING, ERROR)
    """
    logger.remove()
    logger.add(
        sys.stderr,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        ),
        level=level.upper(),
        colorize=True,
    )


def setup_cli(log_level: str | None = None) -> KeyManagerSettings:
    """Reset the settings cache, configure logging and return the settings."""
    reset_settings()
    settings = get_settings()
    setup_logging(log_level if log_level is not None else settings.log_level)
    return settings


def _load_manager(
    settings: KeyManagerSettings,
    mnemonic: str,
    network: str | None,
    scheme: DerivationScheme | None,
    account: int | None,
    gap_limit: int | None,
    passphrase: str = "",
) -> KeyManager:
    try:
        manager = KeyManager(
            network=network or settings.network,
            scheme=(scheme or settings.scheme).value,
            account=account if account is not None else settings.account,
            gap_limit=gap_limit if gap_limit is not None else settings.gap_limit,
            seed=mnemonic,
            passphrase=passphrase,
        )
        asyncio.run(manager.load())
    except KeyManagerError as e:
        logger.error(str(e))
        raise typer.Exit(1) from e
    return manager


@app.command()
def addresses(
    mnemonic: MnemonicOption,
    network: NetworkOption = None,
    scheme: SchemeOption = None,
    account: AccountOption = None,
    gap_limit: GapLimitOption = None,
    passphrase: Annotated[
        str, typer.Option("--passphrase", help="BIP39 passphrase", envvar="KM_PASSPHRASE")
    ] = "",
    log_level: LogLevelOption = None,
) -> None:
    """Derive the wallet's address pool and print it with derivation paths."""
    settings = setup_cli(log_level)
    manager = _load_manager(settings, mnemonic, network, scheme, account, gap_limit, passphrase)

    branches = [Branch.RECEIVE]
    if manager.config.scheme is not DerivationScheme.BIP32:
        branches.append(Branch.CHANGE)

    for branch in branches:
        typer.echo(f"{branch.name.lower()}:")
        for address in manager.addresses(branch):
            path = manager.get_address_path(address.display_address)
            typer.echo(f"  {path:<24} {address.display_address}  {address.script_hash}")


@app.command()
def xpub(
    mnemonic: MnemonicOption,
    network: NetworkOption = None,
    scheme: SchemeOption = None,
    account: AccountOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Print the master and branch extended public keys."""
    settings = setup_cli(log_level)
    manager = _load_manager(settings, mnemonic, network, scheme, account, None)

    typer.echo(f"master  {manager.master_path:<16} {manager.get_xpub()}")
    typer.echo(f"receive {manager.master_path + '/0':<16} {manager.get_xpub(Branch.RECEIVE)}")
    if manager.config.scheme is not DerivationScheme.BIP32:
        typer.echo(f"change  {manager.master_path + '/1':<16} {manager.get_xpub(Branch.CHANGE)}")


@app.command("script-hash")
def script_hash(
    address: Annotated[str, typer.Argument(help="Address to hash")],
    network: NetworkOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Compute the Electrum protocol script hash of an address."""
    settings = setup_cli(log_level)
    try:
        typer.echo(address_to_script_hash(address, network or settings.network))
    except PrimitiveError as e:
        logger.error(str(e))
        raise typer.Exit(1) from e


@app.command()
def networks() -> None:
    """List registered network profiles."""
    for name in list_networks():
        typer.echo(name)


def main() -> None:
    """Entry point for the ``km-wallet`` console script."""
    app()


if __name__ == "__main__":
    main()
