"""
Swap Collector Module
Walks the router program's signature history into checkpoint logs and
resolves the full transactions behind them
"""
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from checkpoint_store import JsonlCheckpointStore, SignatureRecord, TransactionRecord
from config import Window
from solana_rpc_client import SolanaRPCClient, RPCError

logger = logging.getLogger(__name__)


class TimeBudget:
    """Wall-clock budget shared by every phase of a run."""

    def __init__(self, max_minutes: float, clock: Callable[[], float] = time.monotonic):
        self.max_minutes = max_minutes
        self.clock = clock
        self.started = clock()

    def elapsed_minutes(self) -> float:
        return (self.clock() - self.started) / 60

    def exhausted(self) -> bool:
        return self.elapsed_minutes() >= self.max_minutes


@dataclass(frozen=True)
class CollectionResult:
    total: int
    added: int
    completed: bool


def _iso(ts: int) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class SignatureCollector:
    def __init__(
        self,
        client: SolanaRPCClient,
        program_id: str,
        budget: TimeBudget,
        page_limit: int = 1000,
        page_delay_ms: int = 150,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.program_id = program_id
        self.budget = budget
        self.page_limit = page_limit
        self.page_delay_ms = page_delay_ms
        self.sleep = sleep

    def collect(self, window: Window, store: JsonlCheckpointStore) -> CollectionResult:
        """
        Page backward through the program history, keeping signatures in the window

        History comes newest first, so the first signature older than
        window.start ends the walk. A non-empty store resumes from its last
        appended signature instead of the newest tip.

        Args:
            window: Inclusive [start, end] block time range
            store: Signature log owned by this collection

        Returns:
            CollectionResult; completed is False when the budget ran out
        """
        label = f"[Sigs {window.name}]"
        logger.info(f"{label} target {_iso(window.start)}..{_iso(window.end)}")

        existing = store.load_all()
        seen = {o["signature"] for o in existing}
        before: Optional[str] = None
        if existing:
            before = existing[-1]["signature"]
            logger.info(f"{label} resuming after {before}, already have {len(existing)}")

        added = 0
        while True:
            if self.budget.exhausted():
                logger.warning(f"{label} TIME LIMIT reached; checkpointed {len(seen)}")
                return CollectionResult(total=len(seen), added=added, completed=False)

            page = self.client.get_signatures_for_address(self.program_id, limit=self.page_limit, before=before)
            if not page:
                break

            keep_paging = True
            for item in page:
                block_time = item.get("blockTime")
                if not block_time:
                    continue
                if block_time < window.start:
                    keep_paging = False
                    break
                if block_time > window.end:
                    continue
                signature = item["signature"]
                if signature in seen:
                    continue
                store.append(SignatureRecord(signature, int(block_time)).to_dict())
                seen.add(signature)
                added += 1

            if not keep_paging:
                break
            before = page[-1].get("signature")
            if not before:
                break
            logger.info(f"{label} page done, kept {len(seen)} so far, next before={before}")
            self.sleep(self.page_delay_ms / 1000)

        logger.info(f"{label} total kept = {len(seen)} ({added} new)")
        return CollectionResult(total=len(seen), added=added, completed=True)


class TransactionCollector:
    def __init__(
        self,
        client: SolanaRPCClient,
        budget: TimeBudget,
        per_tx_delay_ms: int = 250,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.budget = budget
        self.per_tx_delay_ms = per_tx_delay_ms
        self.sleep = sleep

    def collect(self, signatures: JsonlCheckpointStore, transactions: JsonlCheckpointStore) -> CollectionResult:
        """
        Resolve every collected signature that has no transaction record yet

        A signature whose lookup fails with a non-retryable error, or which the
        node no longer has, is logged and skipped; it is retried on the next run.
        """
        label = f"[Tx {signatures.path.name}]"
        done = {o["signature"] for o in transactions.load_all()}
        pending = [
            SignatureRecord.from_dict(o) for o in signatures.load_all() if o["signature"] not in done
        ]
        logger.info(f"{label} {len(done)} already resolved, {len(pending)} pending")

        added = 0
        skipped = 0
        for record in pending:
            if self.budget.exhausted():
                logger.warning(f"{label} TIME LIMIT; saved {added}")
                return CollectionResult(total=len(done), added=added, completed=False)
            if record.signature in done:
                continue

            try:
                tx = self.client.get_transaction(record.signature)
            except RPCError as e:
                logger.warning(f"getTransaction fail {record.signature}: {e}")
                tx = None
                skipped += 1
            else:
                if tx is None:
                    logger.warning(f"getTransaction returned no transaction for {record.signature}")
                    skipped += 1

            if tx is not None:
                transactions.append(TransactionRecord(record.signature, record.block_time, tx).to_dict())
                done.add(record.signature)
                added += 1
            self.sleep(self.per_tx_delay_ms / 1000)

        logger.info(f"{label} new fetched = {added}, skipped = {skipped}")
        return CollectionResult(total=len(done), added=added, completed=True)
