"""
txledger CLI - Command Line Interface for the UTXO ledger core

Main entry point for all CLI commands.
"""

import json
import logging
from pathlib import Path

import click
from pydantic import ValidationError

from txledger.core.config import load_config
from txledger.utils.logger import setup_logging, get_logger

logger = get_logger("cli")


def _load_or_fail(path: str):
    from txledger.utils.loader import load_epoch_file

    try:
        return load_epoch_file(Path(path))
    except ValidationError as e:
        raise click.ClickException(f"Invalid epoch file {path}:\n{e}")


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--config", "config_path", default=None, type=click.Path(exists=True, dir_okay=False),
              help="JSON config file")
@click.version_option(version="0.1.0")
@click.pass_context
def cli(ctx, debug, config_path):
    """txledger - UTXO transaction validation and epoch processing"""
    try:
        config = load_config(config_path)
    except ValueError as e:
        raise click.ClickException(str(e))

    level = logging.DEBUG if debug else getattr(logging, config.log_level, logging.INFO)
    setup_logging(level=level, log_dir=str(config.log_dir), log_to_file=config.log_to_file)

    ctx.ensure_object(dict)
    ctx.obj["config"] = config


# =============================================================================
# Key Commands
# =============================================================================


@cli.command("keygen")
def keygen():
    """Generate a new secp256k1 key pair"""
    from txledger.crypto import generate_keypair

    kp = generate_keypair()
    click.echo(f"Private key: 0x{kp.private_key_hex}")
    click.echo(f"Public key:  0x{kp.public_key_hex}")
    click.echo(f"Address:     {kp.address}")


# =============================================================================
# Epoch Commands
# =============================================================================


@cli.command("check")
@click.argument("epoch_file", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def check(ctx, epoch_file):
    """Check each transaction against the initial pool (nothing is applied)"""
    from txledger.core.state import TxHandler
    from txledger.crypto import bytes_to_hex

    data = _load_or_fail(epoch_file)
    handler = TxHandler(data.to_pool(), config=ctx.obj["config"])

    for i, tx in enumerate(data.to_transactions()):
        reason = handler.check_tx(tx)
        click.echo(f"  [{i}] {bytes_to_hex(tx.tx_hash)}  {reason.name}")


@cli.command("epoch")
@click.argument("epoch_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--output", "-o", type=click.Path(dir_okay=False), default=None,
              help="Write the resulting pool (and the accepted txs) as an epoch file for the next round")
@click.pass_context
def epoch(ctx, epoch_file, output):
    """Apply one epoch of transactions and print the accepted ones"""
    from txledger.core.state import TxHandler
    from txledger.crypto import bytes_to_hex
    from txledger.utils.loader import pool_to_json, transaction_to_json

    data = _load_or_fail(epoch_file)
    handler = TxHandler(data.to_pool(), config=ctx.obj["config"])
    candidates = data.to_transactions()

    accepted = handler.handle_txs(candidates)

    click.echo(f"Accepted {len(accepted)} of {len(candidates)} transactions:")
    for tx in accepted:
        click.echo(f"  {bytes_to_hex(tx.tx_hash)}")

    pool = handler.get_utxo_pool()
    click.echo(f"Pool: {len(pool)} UTXOs, total value {pool.total_value()}")
    for utxo in pool.get_all_utxo():
        out = pool.get_tx_output(utxo)
        click.echo(f"  {bytes_to_hex(utxo.tx_hash)}:{utxo.index}  {out.value}")

    if output:
        result = {
            "pool": pool_to_json(pool),
            "txs": [],
            "accepted": [transaction_to_json(tx) for tx in accepted],
        }
        Path(output).write_text(json.dumps(result, indent=2))
        click.echo(f"Wrote resulting pool to {output}")
        logger.info(f"Epoch result written to {output}")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
