#!/usr/bin/env python3
"""
slotwatch CLI - pay for the configured streams and watch them live.

Signing is external: SLOTWATCH_SIGNER (or --signer) names a `module:factory`
that returns an object with `async sign(*, scheme, network, message) -> str`.
"""
import argparse
import asyncio
import importlib
import logging
import os
import sys
import time
from typing import Optional

from rich.console import Console, Group
from rich.live import Live
from rich.logging import RichHandler
from rich.prompt import Confirm
from rich.table import Table

from slotwatch.amounts import format_decimal_amount
from slotwatch.config import SLOTWATCH_LOG_LEVEL, SLOTWATCH_SIGNER, ClientConfig, load_config
from slotwatch.errors import ConfigurationError, SlotwatchError
from slotwatch.mints import MintRegistry, pair_key, parse_list, parse_pair_list
from slotwatch.payments import PaymentAuthority, Signer
from slotwatch.pool_lookup import PoolLookupClient
from slotwatch.streams import ChargeSummary, SessionManager
from slotwatch.token_registry import load_token_labels
from slotwatch.watchlist import WatchlistCoordinator, normalize

console = Console()
logger = logging.getLogger("slotwatch")


def configure_logging(level: str) -> None:
  logging.basicConfig(
    level=level.upper(),
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(console=console, rich_tracebacks=True)],
  )


def load_signer(target: str) -> Signer:
  """Import `module:factory` and call the factory to get a signer."""
  module_name, sep, attr = target.partition(":")
  if not module_name or not sep or not attr:
    raise ConfigurationError("SLOTWATCH_SIGNER must look like 'package.module:factory'")
  try:
    module = importlib.import_module(module_name)
  except ImportError as exc:
    raise ConfigurationError(f"cannot import signer module {module_name}: {exc}") from exc
  factory = getattr(module, attr, None)
  if factory is None:
    raise ConfigurationError(f"{module_name} has no attribute {attr}")
  signer = factory()
  if not callable(getattr(signer, "sign", None)):
    raise ConfigurationError(f"{target} did not return a signer")
  return signer


class SlotwatchCLI:
  """Charge confirmation plus a live summary of every stream."""

  def __init__(self, config: ClientConfig, registry: MintRegistry, signer: Signer):
    self.config = config
    self.registry = registry
    self.signer = signer

  async def run(self, *, assume_yes: bool = False, duration: Optional[float] = None, refresh: float = 1.0) -> None:
    authority = PaymentAuthority(self.signer, self.config.x402.http_base)
    lookup = PoolLookupClient(self.config.lookup_base)
    coordinator = WatchlistCoordinator(self.registry, lookup)
    manager: Optional[SessionManager] = None
    try:
      manager = SessionManager(self.config, authority, coordinator, self.registry)
      summary = await manager.preview_charges()
      self.print_charges(summary)
      if not assume_yes and not Confirm.ask("Continue?"):
        console.print("[yellow]Cancelled[/]")
        return

      failures = await manager.start()
      for stream_id, exc in failures.items():
        console.print(f"[red]{stream_id.value}: {exc}[/]")
      if failures and len(failures) == len(manager.sessions):
        console.print("[red]No stream could be opened[/]")
        return

      await self.watch(manager, duration, refresh)
    finally:
      if manager is not None:
        await manager.stop()
      else:
        coordinator.close()
      await lookup.aclose()
      await authority.aclose()

  async def watch(self, manager: SessionManager, duration: Optional[float], refresh: float) -> None:
    started = time.monotonic()
    with Live(self.build_dashboard(manager), console=console, refresh_per_second=4) as live:
      while duration is None or time.monotonic() - started < duration:
        await asyncio.sleep(refresh)
        live.update(self.build_dashboard(manager))

  def print_charges(self, summary: ChargeSummary) -> None:
    table = Table(title="Stream Charges (per stream)", show_header=True, header_style="bold cyan")
    table.add_column("Stream", style="cyan")
    table.add_column("Charge", justify="right")
    for row in summary.rows:
      table.add_row(row.stream.value, row.display)
    table.add_section()
    table.add_row("[bold]Total[/]", f"[bold]{summary.total}[/]")
    console.print(table)

  def build_dashboard(self, manager: SessionManager) -> Group:
    decimals = self.config.x402.asset_decimals

    prices = Table(title="Prices", show_header=True, header_style="bold cyan")
    prices.add_column("Pair", style="cyan")
    prices.add_column("Price", justify="right")
    prices.add_column("Change", justify="right")
    prices.add_column("Dex", style="dim")
    for key in self.config.pairs:
      data = manager.store.get_price(key)
      if data is None:
        continue
      change = "" if data.change_pct is None else f"{data.change_pct:+.2f}%"
      color = "green" if (data.change_pct or 0) >= 0 else "red"
      prices.add_row(data.pair_label, f"{data.price:.6g}", f"[{color}]{change}[/]", data.dex)

    stats = manager.store.stats()
    totals = Table(title="Flow", show_header=False)
    totals.add_column("Metric", style="dim")
    totals.add_column("Value", justify="right")
    totals.add_row("Swaps", str(stats.total_swaps))
    totals.add_row("Swaps/min", str(stats.swaps_per_minute))
    totals.add_row("Alerts", str(stats.total_swap_alerts))
    totals.add_row("Alerts/min", str(stats.alerts_per_minute))
    totals.add_row("Notional USD", f"{stats.total_notional_usd:,.2f}")
    if stats.largest_swap_usd is not None:
      totals.add_row("Largest swap USD", f"{stats.largest_swap_usd:,.2f}")

    streams = Table(title="Streams", show_header=True, header_style="bold cyan")
    streams.add_column("Stream", style="cyan")
    streams.add_column("State")
    streams.add_column("Accounts", justify="right")
    streams.add_column("Mints", justify="right")
    streams.add_column("Spend", justify="right")
    streams.add_column("Last error", style="red")
    for stream_id, state in manager.runtime_state().items():
      if not state["enabled"]:
        label = "[dim]disabled[/]"
      elif state["connected"]:
        label = "[green]connected[/]"
      else:
        label = "[yellow]disconnected[/]"
      spend = manager.ledger.total_for(stream_id)
      spend_text = (
        f"{format_decimal_amount(spend.amount, decimals)} {self.registry.format_asset(spend.asset)}" if spend else "-"
      )
      streams.add_row(
        stream_id.value,
        label,
        str(state["watched_accounts"]),
        str(state["watched_mints"]),
        spend_text,
        str(state["last_error"] or ""),
      )

    return Group(prices, totals, streams)


async def run(args: argparse.Namespace) -> None:
  registry = MintRegistry.from_env(os.getenv("KNOWN_MINTS"), os.getenv("MINT_LABELS"))
  token_labels = await load_token_labels(
    parse_list(os.getenv("TOKEN_LIST_URLS")),
    parse_list(os.getenv("TOKEN_LIST_PATHS")),
  )
  registry = registry.with_labels(token_labels)
  if token_labels:
    logger.info("Loaded %d token labels", len(token_labels))

  watch_mints = normalize(registry.resolve(mint) for mint in parse_list(os.getenv("WATCH_MINTS")))
  configured_pairs = [
    pair_key(registry.resolve(base), registry.resolve(quote))
    for base, quote in parse_pair_list(os.getenv("PRICE_TICKER_PAIRS"))
  ]
  config = load_config(
    watch_mints=watch_mints,
    pairs=configured_pairs or registry.default_pairs(),
    pair_filters=configured_pairs,
  )

  target = args.signer or SLOTWATCH_SIGNER
  if not target:
    raise ConfigurationError("No signer configured. Set SLOTWATCH_SIGNER or pass --signer module:factory.")
  cli = SlotwatchCLI(config, registry, load_signer(target))
  await cli.run(assume_yes=args.yes, duration=args.duration, refresh=args.refresh)


def main() -> None:
  """Main entry point."""
  parser = argparse.ArgumentParser(description="slotwatch - paid live market-data streams")
  parser.add_argument("--signer", default=None, help="Signer factory as module:callable")
  parser.add_argument("--yes", "-y", action="store_true", help="Skip the charge confirmation prompt")
  parser.add_argument("--duration", type=float, default=None, help="Stop after this many seconds")
  parser.add_argument("--refresh", type=float, default=1.0, help="Dashboard refresh interval in seconds")
  parser.add_argument("--log-level", default=SLOTWATCH_LOG_LEVEL, help="Logging level")
  args = parser.parse_args()

  configure_logging(args.log_level)
  try:
    asyncio.run(run(args))
  except SlotwatchError as e:
    console.print(f"[red]Error: {e}[/]")
    sys.exit(1)
  except KeyboardInterrupt:
    console.print("\n[yellow]Stopped[/]")


if __name__ == "__main__":
  main()
