"""
Main script to rank wallets by router swap activity over a historical window
"""
import argparse
import dataclasses
import logging

from config import load_config
from solana_rpc_client import ConfigurationError
from solana_trading_service import get_top_wallets, report_from_progress

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Rank wallets by swap count and approximate USDC PnL")
    parser.add_argument("--config", default="config.json", help="Path to the JSON config file")
    parser.add_argument("--data-dir", help="Override data_dir from the config")
    parser.add_argument(
        "--report-only",
        action="store_true",
        help="Rebuild the CSV/JSON report from the persisted wallet map without RPC calls",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO)",
    )
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level, format='%(asctime)s - %(levelname)s - %(message)s')

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1
    if args.data_dir:
        config = dataclasses.replace(config, data_dir=args.data_dir)

    try:
        if args.report_only:
            summary = report_from_progress(config)
        else:
            summary = get_top_wallets(config)
    except Exception:
        logger.exception("FATAL")
        return 1

    status = "Done" if summary.completed else "Partial run (time limit reached)"
    print(f"\n{status}. Files written:")
    for path in summary.paths.all():
        if path.exists():
            print(f"  - {path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
