#!/usr/bin/env python3
"""
CPDEX Command Line Interface

Drives a local exchange whose state (registry, pools, ledger balances, nonces)
lives in a JSON state file. Every mutating command is submitted as a
DexTransaction through the state manager and the state is saved afterwards.

Usage:
    cpdex init [--caller ID] [--fee-numerator N] [--fee-denominator D] ...
    cpdex create-pool <token_a> <token_b> [--sender ID]
    cpdex faucet <account> <asset> <amount>
    cpdex deposit <pool> <amount_a> <amount_b> --owner ID
    cpdex withdraw <pool> <lp_amount> --owner ID
    cpdex swap <pool> <amount> <source> <destination> --owner ID [--min-out N]
    cpdex quote <pool> <amount> <source> <destination>
    cpdex collect-fees <pool> [--caller ID]
    cpdex pool [<pool>]
    cpdex balance <account> <asset>

<pool> is either a pool id or an ordered pair written TOKEN_A:TOKEN_B.
"""

import json
from typing import Any, Dict, Optional

import click

from .. import __version__
from ..config import load_config
from ..exceptions import DexException
from ..exchange.ledger import InMemoryLedger
from ..exchange.pool import Pool
from ..exchange.state_manager import DexStateManager
from ..exchange.transactions import DexOpType, DexTransaction
from ..logger import configure_logging


class ExchangeContext:
    """Config plus the loaded state manager, shared by all commands."""

    def __init__(self, config, state_file: str) -> None:
        self.config = config
        self.state_file = state_file
        exchange = config.exchange
        self.manager = DexStateManager.load(
            state_file,
            admin=exchange.admin,
            allow_reinitialize=exchange.allow_reinitialize,
            strict_fee_collection=exchange.strict_fee_collection,
        )

    @property
    def engine(self):
        return self.manager.engine

    @property
    def ledger(self) -> InMemoryLedger:
        return self.manager.engine.ledger

    def save(self) -> None:
        self.manager.save(self.state_file)

    def resolve_pool(self, ref: str) -> Pool:
        if ":" in ref:
            token_a, token_b = ref.split(":", 1)
            pool = self.engine.find_pool(token_a, token_b)
            if pool is None:
                raise click.ClickException(f"No pool for pair {ref}")
            return pool
        try:
            return self.engine.get_pool(ref)
        except DexException as e:
            raise click.ClickException(str(e))

    def submit(self, op_type: DexOpType, sender: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """Run one transaction; persist on success, raise ClickException on failure."""
        tx = DexTransaction(
            op_type=op_type,
            sender=sender,
            nonce=self.manager.get_nonce(sender),
            params=params,
        )
        result = self.manager.process_transaction(tx)
        if not result.success:
            raise click.ClickException(result.error)
        self.save()
        return result.data


pass_exchange = click.make_pass_decorator(ExchangeContext)


def format_id(value: str, short: bool = False) -> str:
    """Format a derived id for display."""
    if short and len(value) > 20:
        return f"{value[:10]}...{value[-6:]}"
    return value


@click.group()
@click.version_option(version=__version__, prog_name="cpdex")
@click.option("--config", "-c", "config_path", type=click.Path(), default=None,
              help="Path to config.toml (default: $CPDEX_CONFIG or ./config.toml)")
@click.option("--state-file", "-s", type=click.Path(), default=None,
              help="Exchange state file (overrides [storage] state_file)")
@click.option("--log-level", type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"],
              case_sensitive=False), default=None, help="Logging level")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], state_file: Optional[str],
        log_level: Optional[str]):
    """CPDEX Constant-Product Exchange

    Create pools, provide liquidity, swap and collect protocol fees against a
    local state file.
    """
    try:
        config = load_config(config_path)
    except DexException as e:
        raise click.ClickException(f"Invalid configuration: {e}")

    configure_logging(
        log_level=log_level or config.logging.level,
        log_file=config.logging.file or None,
        console_output=config.logging.console_output,
        file_output=config.logging.file_output,
    )
    try:
        ctx.obj = ExchangeContext(config, state_file or config.storage.state_file)
    except (DexException, ValueError) as e:
        raise click.ClickException(f"Failed to load state: {e}")


@cli.command("init")
@click.option("--caller", default=None, help="Acting identity (default: configured admin)")
@click.option("--fee-numerator", type=int, default=None)
@click.option("--fee-denominator", type=int, default=None)
@click.option("--protocol-fee-percentage", type=int, default=None)
@click.option("--fee-collector", default=None)
@pass_exchange
def init_cmd(ex: ExchangeContext, caller, fee_numerator, fee_denominator,
             protocol_fee_percentage, fee_collector):
    """Initialize the exchange registry (admin only).

    Unset options fall back to the [exchange] section of the config.
    """
    cfg = ex.config.exchange
    data = ex.submit(DexOpType.INITIALIZE, caller or cfg.admin, {
        "fee_numerator": fee_numerator if fee_numerator is not None else cfg.fee_numerator,
        "fee_denominator": fee_denominator if fee_denominator is not None else cfg.fee_denominator,
        "protocol_fee_percentage": (
            protocol_fee_percentage if protocol_fee_percentage is not None
            else cfg.protocol_fee_percentage
        ),
        "fee_collector": fee_collector or cfg.fee_collector,
    })
    click.echo(click.style("✓ Exchange initialized", fg="green"))
    click.echo(f"Fee:           {data['fee_numerator']}/{data['fee_denominator']}")
    click.echo(f"Protocol fee:  {data['protocol_fee_percentage']}%")
    click.echo(f"Fee collector: {data['fee_collector']}")


@cli.command("create-pool")
@click.argument("token_a")
@click.argument("token_b")
@click.option("--sender", default="anonymous", help="Acting identity")
@pass_exchange
def create_pool_cmd(ex: ExchangeContext, token_a: str, token_b: str, sender: str):
    """Create a pool for the ordered pair TOKEN_A / TOKEN_B."""
    data = ex.submit(DexOpType.CREATE_POOL, sender, {"token_a": token_a, "token_b": token_b})
    click.echo(click.style("✓ Pool created", fg="green"))
    click.echo(f"Pool id:  {data['pool_id']}")
    click.echo(f"Pair:     {data['pair']}")
    click.echo(f"LP asset: {data['lp_asset_id']}")


@cli.command("faucet")
@click.argument("account")
@click.argument("asset")
@click.argument("amount", type=int)
@pass_exchange
def faucet_cmd(ex: ExchangeContext, account: str, asset: str, amount: int):
    """Mint AMOUNT of a plain ASSET to ACCOUNT (local testing)."""
    try:
        with ex.ledger.transaction():
            ex.ledger.ensure_account(account, asset)
            ex.ledger.mint(asset, account, amount)
    except DexException as e:
        raise click.ClickException(str(e))
    ex.save()
    click.echo(f"Minted {amount} {asset} to {account}")


@cli.command("deposit")
@click.argument("pool_ref")
@click.argument("amount_a", type=int)
@click.argument("amount_b", type=int)
@click.option("--owner", required=True, help="Depositing identity")
@pass_exchange
def deposit_cmd(ex: ExchangeContext, pool_ref: str, amount_a: int, amount_b: int, owner: str):
    """Deposit AMOUNT_A of token A and AMOUNT_B of token B."""
    pool = ex.resolve_pool(pool_ref)
    data = ex.submit(DexOpType.DEPOSIT_LIQUIDITY, owner, {
        "pool_id": pool.pool_id, "token_a_amount": amount_a, "token_b_amount": amount_b,
    })
    click.echo(f"Minted {data['lp_minted']} LP tokens")


@cli.command("withdraw")
@click.argument("pool_ref")
@click.argument("lp_amount", type=int)
@click.option("--owner", required=True, help="Withdrawing identity")
@pass_exchange
def withdraw_cmd(ex: ExchangeContext, pool_ref: str, lp_amount: int, owner: str):
    """Burn LP_AMOUNT shares for the proportional reserves."""
    pool = ex.resolve_pool(pool_ref)
    data = ex.submit(DexOpType.WITHDRAW_LIQUIDITY, owner, {
        "pool_id": pool.pool_id, "lp_amount": lp_amount,
    })
    click.echo(
        f"Received {data['token_a_amount']} {pool.token_a_id} "
        f"and {data['token_b_amount']} {pool.token_b_id}"
    )


@cli.command("swap")
@click.argument("pool_ref")
@click.argument("amount", type=int)
@click.argument("source")
@click.argument("destination")
@click.option("--owner", required=True, help="Swapping identity")
@click.option("--min-out", type=int, default=0, show_default=True,
              help="Minimum acceptable output")
@pass_exchange
def swap_cmd(ex: ExchangeContext, pool_ref: str, amount: int, source: str,
             destination: str, owner: str, min_out: int):
    """Swap AMOUNT of SOURCE for DESTINATION."""
    pool = ex.resolve_pool(pool_ref)
    data = ex.submit(DexOpType.SWAP, owner, {
        "pool_id": pool.pool_id,
        "input_amount": amount,
        "minimum_output_amount": min_out,
        "source_asset": source,
        "destination_asset": destination,
    })
    click.echo(f"Swapped {amount} {source} for {data['output_amount']} {destination}")


@cli.command("quote")
@click.argument("pool_ref")
@click.argument("amount", type=int)
@click.argument("source")
@click.argument("destination")
@pass_exchange
def quote_cmd(ex: ExchangeContext, pool_ref: str, amount: int, source: str, destination: str):
    """Price a swap without executing it."""
    pool = ex.resolve_pool(pool_ref)
    try:
        quote = ex.engine.quote_swap(pool.pool_id, amount, source, destination)
    except DexException as e:
        raise click.ClickException(str(e))
    click.echo(f"Output:       {quote.output_amount} {destination}")
    click.echo(f"Total fee:    {quote.total_fee} {source}")
    click.echo(f"Protocol fee: {quote.protocol_fee} {source}")
    click.echo(f"Price impact: {quote.price_impact * 100:.4f}%")


@cli.command("collect-fees")
@click.argument("pool_ref")
@click.option("--caller", default=None, help="Acting identity (default: configured admin)")
@pass_exchange
def collect_fees_cmd(ex: ExchangeContext, pool_ref: str, caller: Optional[str]):
    """Send a pool's accrued protocol fees to the fee collector."""
    pool = ex.resolve_pool(pool_ref)
    data = ex.submit(DexOpType.COLLECT_FEES, caller or ex.config.exchange.admin, {
        "pool_id": pool.pool_id,
    })
    click.echo(
        f"Collected {data['token_a_amount']} {pool.token_a_id} "
        f"and {data['token_b_amount']} {pool.token_b_id}"
    )


@cli.command("pool")
@click.argument("pool_ref", required=False)
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
@pass_exchange
def pool_cmd(ex: ExchangeContext, pool_ref: Optional[str], as_json: bool):
    """Show one pool, or list all pools."""
    if pool_ref is None:
        pools = ex.engine.get_all_pools()
        if not pools:
            click.echo("No pools")
            return
        for pool in pools:
            reserve_a, reserve_b = ex.engine.get_reserves(pool.pool_id)
            click.echo(
                f"{format_id(pool.pool_id, short=True)}  {pool.pair:<20} "
                f"{reserve_a} / {reserve_b}  L={pool.total_liquidity}"
            )
        return

    info = ex.engine.get_pool_info(ex.resolve_pool(pool_ref).pool_id)
    if as_json:
        click.echo(json.dumps(info, indent=2, sort_keys=True))
        return
    click.echo(click.style(f"Pool {info['token_a_id']}:{info['token_b_id']}", fg="cyan", bold=True))
    click.echo(f"  Id:              {info['pool_id']}")
    click.echo(f"  Reserves:        {info['reserve_a']} / {info['reserve_b']}")
    click.echo(f"  Total liquidity: {info['total_liquidity']}")
    click.echo(f"  Price (B per A): {info['price'] if info['price'] is not None else '-'}")
    click.echo(f"  Fee:             {info['fee_numerator']}/{info['fee_denominator']}")
    click.echo(
        f"  Protocol fees:   {info['protocol_fees_token_a']} / {info['protocol_fees_token_b']}"
    )


@cli.command("balance")
@click.argument("account")
@click.argument("asset")
@pass_exchange
def balance_cmd(ex: ExchangeContext, account: str, asset: str):
    """Show ACCOUNT's balance of ASSET (an asset id or a pool's LP via POOL:lp)."""
    if asset.endswith(":lp"):
        asset = ex.resolve_pool(asset[:-3]).lp_asset_id
    click.echo(str(ex.ledger.balance_of(account, asset)))


def main():
    cli()


if __name__ == "__main__":
    main()
