"""
Solana Trading Service Module
Provides high-level functions that run the top-wallet pipeline phase by phase
"""
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

from checkpoint_store import JsonlCheckpointStore
from config import Config
from report_builder import RankedRow, rank_wallets, write_csv, write_json
from solana_rpc_client import EndpointPool, SolanaRPCClient
from swap_collector import SignatureCollector, TimeBudget, TransactionCollector
from wallet_aggregator import WalletAggregator, WalletStat

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArtifactPaths:
    signatures: List[Path]
    transactions: List[Path]
    progress: Path
    csv: Path
    json: Path

    @classmethod
    def for_config(cls, config: Config) -> "ArtifactPaths":
        run = config.run_name
        return cls(
            signatures=[config.data_path(f"{run}_sigs_h1.jsonl"), config.data_path(f"{run}_sigs_h2.jsonl")],
            transactions=[config.data_path(f"{run}_txns_h1.jsonl"), config.data_path(f"{run}_txns_h2.jsonl")],
            progress=config.data_path("wallet_swaps_progress.json"),
            csv=config.data_path(f"top_wallets_{run}.csv"),
            json=config.data_path(f"top_wallets_{run}.json"),
        )

    def all(self) -> List[Path]:
        return [*self.signatures, *self.transactions, self.progress, self.csv, self.json]


@dataclass
class RunSummary:
    paths: ArtifactPaths
    completed: bool = True
    top: List[RankedRow] = field(default_factory=list)


def build_client(config: Config, sleep: Callable[[float], None] = time.sleep) -> SolanaRPCClient:
    return SolanaRPCClient(
        EndpointPool(config.rpc_urls),
        base_delay_ms=config.per_tx_delay_ms,
        max_backoff_ms=config.max_backoff_ms,
        timeout=config.request_timeout_s,
        commitment=config.commitment,
        sleep=sleep,
    )


def collect_swaps(config: Config, client: SolanaRPCClient, budget: TimeBudget,
                  sleep: Callable[[float], None] = time.sleep) -> bool:
    """
    Run the signature phase then the transaction phase for both half-windows

    Returns:
        bool: False if any phase stopped early on the time budget
    """
    paths = ArtifactPaths.for_config(config)
    windows = config.half_windows()

    signatures = SignatureCollector(
        client, config.program_id, budget,
        page_limit=config.page_limit, page_delay_ms=config.page_delay_ms, sleep=sleep,
    )
    transactions = TransactionCollector(client, budget, per_tx_delay_ms=config.per_tx_delay_ms, sleep=sleep)

    completed = True
    for window, sig_path in zip(windows, paths.signatures):
        result = signatures.collect(window, JsonlCheckpointStore(sig_path))
        completed = completed and result.completed
    for sig_path, tx_path in zip(paths.signatures, paths.transactions):
        result = transactions.collect(JsonlCheckpointStore(sig_path), JsonlCheckpointStore(tx_path))
        completed = completed and result.completed
    return completed


def aggregate_wallets(config: Config) -> Dict[str, WalletStat]:
    paths = ArtifactPaths.for_config(config)
    aggregator = WalletAggregator(paths.progress, config.tracked_mint)
    return aggregator.run([JsonlCheckpointStore(p) for p in paths.transactions])


def build_report(config: Config, stats: Dict[str, WalletStat]) -> List[RankedRow]:
    paths = ArtifactPaths.for_config(config)
    top = rank_wallets(stats, top_n=config.top_n, decimals=config.mint_decimals)
    write_csv(top, paths.csv)
    write_json(top, paths.json)
    logger.info(f"[Report] wrote top {len(top)} wallets")
    return top


def report_from_progress(config: Config) -> RunSummary:
    """Rebuild the ranked artifacts from the persisted wallet map without any RPC calls."""
    paths = ArtifactPaths.for_config(config)
    stats = WalletAggregator(paths.progress, config.tracked_mint).load()
    return RunSummary(paths=paths, top=build_report(config, stats))


def get_top_wallets(
    config: Config,
    client: Optional[SolanaRPCClient] = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> RunSummary:
    """
    Main function to collect swaps and rank wallets for the configured window

    Budget exhaustion is not an error: collection stops early and aggregation
    and reporting still run over whatever was checkpointed.

    Args:
        config: Validated run configuration
        client: Optional RPC client; built from config when omitted
        clock: Monotonic clock in seconds for the time budget
        sleep: Sleep function for throttling and backoff
    """
    budget = TimeBudget(config.max_minutes, clock=clock)
    owns_client = client is None
    if client is None:
        client = build_client(config, sleep=sleep)

    try:
        completed = collect_swaps(config, client, budget, sleep=sleep)
    finally:
        if owns_client:
            client.close()

    if not completed:
        logger.warning(f"Time budget of {config.max_minutes} min reached; results are partial, rerun to resume")

    stats = aggregate_wallets(config)
    top = build_report(config, stats)
    return RunSummary(paths=ArtifactPaths.for_config(config), completed=completed, top=top)
