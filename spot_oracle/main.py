#!/usr/bin/env python3
"""Spot Oracle.

Fetches spot prices from multiple providers, aggregates them into a median
index, stores the full evidence bundle and anchors its fingerprint on the
ledger. Anchored fingerprints can be verified against the stored evidence.

Configure via CLI arguments or environment variables (see --help).
"""

import argparse
import asyncio
import json
import logging
import os
import sys

from .src.BundleStore import BundleStoreError, FileBundleStore
from .src.LedgerAnchorHttp import DEFAULT_EXPLORER_URL, LedgerAnchorHttp
from .src.OracleConfig import OracleConfig
from .src.ProviderCollector import ProviderCollector
from .src.SpotOracle import SpotOracle
from .src.Verifier import VerificationResult, VerificationStatus
from .src.fetchers import BaseFetcher, get_available_fetchers, get_fetcher

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def parse_api_keys(api_key_str: str | None) -> dict[str, str]:
    """Parse comma-separated API key string into a dictionary.

    Format: provider1=key1,provider2=key2
    Example: coingecko=demo:abc123,coinmarketcap=xyz789

    Several CoinMarketCap keys are given via API_KEY_COINMARKETCAP instead,
    since commas separate providers here.

    :param api_key_str: Comma-separated API key string.
    :returns: Dict mapping provider names to API keys.
    """
    if not api_key_str:
        return {}

    api_keys = {}
    for item in api_key_str.split(","):
        item = item.strip()
        if "=" in item:
            provider, key = item.split("=", 1)
            api_keys[provider.strip().lower()] = key.strip()
    return api_keys


def parse_env_api_keys() -> dict[str, str]:
    """Parse API keys from individual environment variables.

    Looks for: API_KEY_COINGECKO, API_KEY_COINMARKETCAP, etc.

    :returns: Dict mapping provider names to API keys.
    """
    api_keys = {}
    for key, value in os.environ.items():
        if key.startswith("API_KEY_") and value:
            api_keys[key[len("API_KEY_"):].lower()] = value
    return api_keys


def _split(value: str | None) -> list[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


def build_config(args: argparse.Namespace) -> OracleConfig:
    """Build the oracle configuration from parsed arguments."""
    api_keys = parse_env_api_keys()
    api_keys.update(parse_api_keys(args.api_keys))
    return OracleConfig(
        network=args.network,
        asset=args.asset,
        quote=args.quote,
        display_assets=_split(args.display_assets),
        providers=_split(args.providers),
        api_keys=api_keys,
        interval_seconds=args.interval,
        jitter_seconds=args.jitter,
        outlier_threshold_ratio=args.outlier_threshold,
        min_valid_sources=args.min_sources,
        fetch_timeout=args.fetch_timeout,
        anchor_timeout=args.anchor_timeout,
        store_dir=args.store_dir,
        explorer_url=args.explorer_url,
        submit_url=args.submit_url,
    )


def build_anchor(config: OracleConfig) -> LedgerAnchorHttp:
    """Create the HTTP ledger anchor for the configured network.

    :raises ValueError: If the network has no known explorer and none is given.
    """
    if config.explorer_url:
        return LedgerAnchorHttp(
            config.explorer_url,
            submit_url=config.submit_url,
            timeout=config.anchor_timeout,
        )
    return LedgerAnchorHttp.for_network(
        config.network, submit_url=config.submit_url, timeout=config.anchor_timeout
    )


def build_oracle(config: OracleConfig, with_collector: bool = True) -> SpotOracle:
    """Wire the oracle from its configuration.

    :raises ValueError: If a provider is unknown or the configuration is invalid.
    """
    collector = None
    if with_collector:
        fetchers = {
            name: get_fetcher(
                name, api_key=config.api_keys.get(name), timeout=config.fetch_timeout
            )
            for name in config.providers
        }
        collector = ProviderCollector(fetchers, fetch_timeout=config.fetch_timeout)
    return SpotOracle(
        config,
        collector=collector,
        anchor=build_anchor(config),
        store=FileBundleStore(config.store_dir),
    )


def log_banner(config: OracleConfig) -> None:
    logger.info("=" * 60)
    logger.info("Spot Oracle - Evidence-Anchored Price Index")
    logger.info("=" * 60)
    logger.info(f"Network:           {config.network}")
    logger.info(f"Asset:             {config.asset}/{config.quote}")
    if config.display_assets:
        logger.info(f"Display Assets:    {', '.join(config.display_assets)}")
    logger.info(f"Providers:         {', '.join(config.providers)}")
    logger.info(f"Min Sources:       {config.min_valid_sources}")
    logger.info(f"Outlier Threshold: {config.outlier_threshold_ratio * 100:g}%")
    logger.info(f"Interval:          {config.interval_seconds}s +/- {config.jitter_seconds}s")
    logger.info(f"Fetch Timeout:     {config.fetch_timeout}s")
    logger.info(f"Store:             {config.store_dir}")
    logger.info(f"Anchoring:         {config.submit_url or 'disabled (read-only)'}")
    if config.api_keys:
        logger.info(f"API Keys:          {', '.join(config.api_keys.keys())}")
    logger.info("=" * 60)


def print_report(result: VerificationResult) -> None:
    """Print a human-readable verification report."""
    print(f"Transaction:  {result.tx_id}")
    print(f"Network:      {result.network}")
    print(f"Status:       {result.status.value}")
    print(f"Stage:        {result.stage.value}")
    if result.block_time:
        print(f"Block time:   {result.block_time}")
    if result.decoded is not None:
        d = result.decoded
        print(f"Payload:      p={d.p} n={d.n} d={d.d} h={d.h}")
    if result.recomputed_hash:
        print(f"Recomputed:   {result.recomputed_hash}")
    if result.bundle_summary:
        print(f"Tick:         {result.bundle_summary.get('tick_id')}")
        print(f"Sources used: {result.bundle_summary.get('sources_used')}")
    if result.index_reproducible is not None:
        print(f"Reproducible: {result.index_reproducible}")
    if result.error:
        print(f"Error:        {result.error}")


async def _run(oracle: SpotOracle) -> None:
    try:
        await oracle.run_forever()
    finally:
        await oracle.stop()
        await BaseFetcher.close_shared_client()


async def _tick(oracle: SpotOracle) -> int:
    try:
        outcome = await oracle.run_tick()
    finally:
        await oracle.stop()
        await BaseFetcher.close_shared_client()
    print(json.dumps(
        {
            "hash_prefix": outcome.hash_prefix,
            "full_hash": outcome.full_hash,
            "txid": outcome.tx_id,
            "anchor_status": outcome.anchor_status.value,
            "anchor_error": outcome.anchor_error,
            "stored": outcome.stored,
            "index": outcome.index.to_dict(),
        },
        indent=2,
    ))
    return 0 if outcome.stored else 1


async def _verify(oracle: SpotOracle, tx_id: str) -> VerificationResult:
    try:
        return await oracle.verify(tx_id)
    finally:
        await oracle.stop()


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the Spot Oracle CLI."""
    available_providers = get_available_fetchers()

    parser = argparse.ArgumentParser(
        description="Spot Oracle: multi-provider price index with anchored evidence",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Available providers:
  {', '.join(available_providers)}

Examples:
  # Run the oracle loop, anchoring through a local signing daemon
  python -m spot_oracle.main run --asset kas --submit-url http://localhost:8090

  # Run a single tick without anchoring
  python -m spot_oracle.main tick --asset btc --display-assets eth,kas

  # Verify an anchoring transaction against the local store
  python -m spot_oracle.main verify <txid> --json

Environment variables (CLI args take precedence):
  NETWORK, ASSET, QUOTE, DISPLAY_ASSETS, PROVIDERS, INTERVAL_SECONDS,
  JITTER_SECONDS, OUTLIER_THRESHOLD_RATIO, MIN_VALID_SOURCES, FETCH_TIMEOUT,
  ANCHOR_TIMEOUT, STORE_DIR, EXPLORER_URL, SUBMIT_URL, API_KEYS,
  API_KEY_COINGECKO, API_KEY_COINMARKETCAP
""",
    )

    parser.add_argument(
        "--network",
        type=str,
        help=f"Ledger network ({', '.join(DEFAULT_EXPLORER_URL)})",
        default=os.environ.get("NETWORK") or "testnet-10",
    )

    parser.add_argument(
        "--asset",
        type=str,
        help="Asset whose index is anchored (default: BTC)",
        default=os.environ.get("ASSET") or "BTC",
    )

    parser.add_argument(
        "--quote",
        type=str,
        help="Quote currency (default: USD)",
        default=os.environ.get("QUOTE") or "USD",
    )

    parser.add_argument(
        "--display-assets",
        dest="display_assets",
        type=str,
        help="Comma-separated assets aggregated for display only (e.g., eth,kas)",
        default=os.environ.get("DISPLAY_ASSETS") or "",
    )

    parser.add_argument(
        "--providers",
        type=str,
        help=f"Comma-separated providers. Available: {', '.join(available_providers)}",
        default=os.environ.get("PROVIDERS") or "coingecko,coinmarketcap",
    )

    parser.add_argument(
        "--interval",
        type=int,
        help="Seconds between ticks (default: 60)",
        default=int(os.environ.get("INTERVAL_SECONDS") or "60"),
    )

    parser.add_argument(
        "--jitter",
        type=int,
        help="Max random deviation of each interval in seconds (default: 5)",
        default=int(os.environ.get("JITTER_SECONDS") or "5"),
    )

    parser.add_argument(
        "--outlier-threshold",
        dest="outlier_threshold",
        type=float,
        help="Max relative deviation from the median before exclusion (default: 0.01)",
        default=float(os.environ.get("OUTLIER_THRESHOLD_RATIO") or "0.01"),
    )

    parser.add_argument(
        "--min-sources",
        dest="min_sources",
        type=int,
        help="Sources required for an OK index (default: 2)",
        default=int(os.environ.get("MIN_VALID_SOURCES") or "2"),
    )

    parser.add_argument(
        "--fetch-timeout",
        dest="fetch_timeout",
        type=float,
        help="Timeout per provider request in seconds (default: 10.0)",
        default=float(os.environ.get("FETCH_TIMEOUT") or "10.0"),
    )

    parser.add_argument(
        "--anchor-timeout",
        dest="anchor_timeout",
        type=float,
        help="Timeout for ledger requests in seconds (default: 30.0)",
        default=float(os.environ.get("ANCHOR_TIMEOUT") or "30.0"),
    )

    parser.add_argument(
        "--store-dir",
        dest="store_dir",
        type=str,
        help="Directory of the bundle store (default: proofs)",
        default=os.environ.get("STORE_DIR") or "proofs",
    )

    parser.add_argument(
        "--explorer-url",
        dest="explorer_url",
        type=str,
        help="Explorer API base URL (default: per network)",
        default=os.environ.get("EXPLORER_URL"),
    )

    parser.add_argument(
        "--submit-url",
        dest="submit_url",
        type=str,
        help="Signing daemon base URL; anchoring is disabled without it",
        default=os.environ.get("SUBMIT_URL"),
    )

    parser.add_argument(
        "--api-keys",
        dest="api_keys",
        type=str,
        help="Comma-separated API keys (e.g., coingecko=demo:abc,coinmarketcap=xyz)",
        default=os.environ.get("API_KEYS"),
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("run", help="Run the tick loop (default)")
    subparsers.add_parser("tick", help="Run a single tick and print the outcome")
    verify_parser = subparsers.add_parser(
        "verify", help="Verify an anchoring transaction"
    )
    verify_parser.add_argument("txid", help="Transaction id (64 hex chars)")
    verify_parser.add_argument(
        "--json", action="store_true", help="Print the full report as JSON"
    )
    subparsers.add_parser("latest", help="Print the latest published bundle pointer")

    args = parser.parse_args(argv)
    command = args.command or "run"

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    config = build_config(args)

    invalid_providers = [p for p in config.providers if p not in available_providers]
    if invalid_providers:
        parser.error(
            f"Unknown providers: {invalid_providers}. "
            f"Available: {', '.join(available_providers)}"
        )
    try:
        config.validate()
    except ValueError as e:
        parser.error(str(e))

    if command == "latest":
        try:
            pointer = FileBundleStore(config.store_dir).get_latest_pointer()
        except BundleStoreError as e:
            logger.error(f"Failed to read latest pointer: {e}")
            sys.exit(1)
        if pointer is None:
            print("No bundle published yet")
            sys.exit(1)
        print(json.dumps(pointer.to_dict(), indent=2))
        return

    try:
        oracle = build_oracle(config, with_collector=command in ("run", "tick"))
    except ValueError as e:
        parser.error(str(e))

    if command == "verify":
        result = asyncio.run(_verify(oracle, args.txid))
        if args.json:
            print(json.dumps(result.to_dict(), indent=2))
        else:
            print_report(result)
        passed = result.status in (VerificationStatus.PASSED, VerificationStatus.PARTIAL)
        sys.exit(0 if passed else 1)

    log_banner(config)

    try:
        if command == "tick":
            sys.exit(asyncio.run(_tick(oracle)))
        asyncio.run(_run(oracle))
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
