"""
Per-wallet swap aggregation

Attributes each resolved swap to its fee payer and folds an approximate
stablecoin PnL from the fee payer's token balance deltas.
"""
import json
import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from checkpoint_store import JsonlCheckpointStore, TransactionRecord

logger = logging.getLogger(__name__)


class DeltaStatus(Enum):
    COUNTED = "counted"
    NO_MATCH = "no_match"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class TokenDelta:
    amount: int
    status: DeltaStatus
    reason: str = ""


@dataclass
class WalletStat:
    wallet: str
    swaps: int
    pnl_base_units: int
    first_ts: int
    last_ts: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "swaps": self.swaps,
            "pnl_base_units": self.pnl_base_units,
            "first_ts": self.first_ts,
            "last_ts": self.last_ts,
        }

    @classmethod
    def from_dict(cls, wallet: str, data: Dict[str, Any]) -> "WalletStat":
        return cls(
            wallet=wallet,
            swaps=int(data["swaps"]),
            pnl_base_units=int(data["pnl_base_units"]),
            first_ts=int(data["first_ts"]),
            last_ts=int(data["last_ts"]),
        )


def fee_payer(tx: Any) -> Optional[str]:
    """Return the first required signer of the transaction, or None if it cannot be determined."""
    if not isinstance(tx, dict):
        return None
    transaction = tx.get("transaction")
    message = transaction.get("message") if isinstance(transaction, dict) else None
    if not isinstance(message, dict):
        return None
    keys = message.get("accountKeys") or []
    header = message.get("header") or {}
    required = header.get("numRequiredSignatures") if isinstance(header, dict) else None
    if not isinstance(required, int) or required <= 0 or not isinstance(keys, list) or not keys:
        return None

    first = keys[0]
    # jsonParsed encoding returns {"pubkey": ..., "signer": ...} objects
    if isinstance(first, dict):
        first = first.get("pubkey")
    return first if isinstance(first, str) and first else None


def _malformed(reason: str) -> TokenDelta:
    return TokenDelta(amount=0, status=DeltaStatus.MALFORMED, reason=reason)


def token_delta_for_wallet(tx: Any, wallet: str, mint: str) -> TokenDelta:
    """
    Sum (post - pre) base units of `mint` over token accounts owned by `wallet`

    Accounts are joined by accountIndex across preTokenBalances and
    postTokenBalances; a side with no entry counts as zero (account opened or
    closed within the transaction). Never raises: malformed input yields a
    zero MALFORMED delta with the reason.
    """
    if not isinstance(tx, dict):
        return _malformed("transaction is not an object")
    meta = tx.get("meta")
    if not isinstance(meta, dict):
        return _malformed("missing meta")

    accounts: Dict[int, Dict[str, Any]] = {}
    for side, key in (("pre", "preTokenBalances"), ("post", "postTokenBalances")):
        balances = meta.get(key)
        if balances is None:
            balances = []
        if not isinstance(balances, list):
            return _malformed(f"{key} is not a list")
        for entry in balances:
            if not isinstance(entry, dict):
                return _malformed(f"{key} entry is not an object")
            index = entry.get("accountIndex")
            if not isinstance(index, int):
                return _malformed(f"{key} entry without accountIndex")
            account = accounts.setdefault(index, {"owner": None, "mint": None})
            account[side] = entry.get("uiTokenAmount")
            account["owner"] = account["owner"] or entry.get("owner")
            account["mint"] = account["mint"] or entry.get("mint")

    delta = 0
    matched = False
    for index, account in sorted(accounts.items()):
        if account["mint"] != mint or not account["owner"] or account["owner"] != wallet:
            continue
        amounts = []
        for side in ("pre", "post"):
            if side not in account:
                amounts.append(0)
                continue
            ui_amount = account[side]
            if not isinstance(ui_amount, dict):
                return _malformed(f"account {index} {side} entry without uiTokenAmount")
            raw = ui_amount.get("amount")
            try:
                amounts.append(int(raw))
            except (TypeError, ValueError):
                return _malformed(f"account {index} {side} amount is not an integer string: {raw!r}")
        delta += amounts[1] - amounts[0]
        matched = True

    if not matched:
        return TokenDelta(amount=0, status=DeltaStatus.NO_MATCH)
    return TokenDelta(amount=delta, status=DeltaStatus.COUNTED)


def fold(stats: Dict[str, WalletStat], wallet: str, block_time: int, delta: int) -> WalletStat:
    stat = stats.get(wallet)
    if stat is None:
        stat = stats[wallet] = WalletStat(wallet, 0, 0, block_time, block_time)
    stat.swaps += 1
    stat.pnl_base_units += delta
    stat.first_ts = min(stat.first_ts, block_time)
    stat.last_ts = max(stat.last_ts, block_time)
    return stat


@dataclass(frozen=True)
class AggregationSummary:
    transactions: int
    attributed: int
    unattributed: int
    duplicates: int
    malformed: int
    wallets: int


class WalletAggregator:
    def __init__(self, progress_path: Union[str, Path], mint: str):
        self.progress_path = Path(progress_path)
        self.mint = mint
        self.last_summary: Optional[AggregationSummary] = None

    def aggregate(self, records: Iterable[TransactionRecord]) -> Dict[str, WalletStat]:
        """
        Recompute the wallet map from scratch over every record

        Each signature is folded at most once even if it shows up in more than
        one log, so re-running over unchanged logs gives the same map.
        """
        stats: Dict[str, WalletStat] = {}
        seen = set()
        total = unattributed = duplicates = malformed = 0
        for record in records:
            total += 1
            if record.signature in seen:
                duplicates += 1
                continue
            seen.add(record.signature)

            wallet = fee_payer(record.payload)
            if not wallet:
                unattributed += 1
                continue
            delta = token_delta_for_wallet(record.payload, wallet, self.mint)
            if delta.status is DeltaStatus.MALFORMED:
                malformed += 1
                logger.debug(f"Malformed token balances in {record.signature}: {delta.reason}")
            fold(stats, wallet, record.block_time, delta.amount)

        self.last_summary = AggregationSummary(
            transactions=total,
            attributed=total - unattributed - duplicates,
            unattributed=unattributed,
            duplicates=duplicates,
            malformed=malformed,
            wallets=len(stats),
        )
        return stats

    def run(self, stores: List[JsonlCheckpointStore]) -> Dict[str, WalletStat]:
        records = [TransactionRecord.from_dict(o) for store in stores for o in store.load_all()]
        stats = self.aggregate(records)
        self.save(stats)
        summary = self.last_summary
        logger.info(
            f"[Aggregate] {summary.transactions} transactions -> {summary.wallets} wallets "
            f"({summary.unattributed} without fee payer, {summary.duplicates} duplicates, "
            f"{summary.malformed} with malformed token balances)"
        )
        return stats

    def save(self, stats: Dict[str, WalletStat]) -> None:
        """Replace the persisted map via a temp file and os.replace."""
        self.progress_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.progress_path.with_name(self.progress_path.name + ".tmp")
        payload = {wallet: stat.to_dict() for wallet, stat in stats.items()}
        tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        os.replace(tmp_path, self.progress_path)

    def load(self) -> Dict[str, WalletStat]:
        if not self.progress_path.exists():
            return {}
        raw = json.loads(self.progress_path.read_text(encoding="utf-8"))
        return {wallet: WalletStat.from_dict(wallet, data) for wallet, data in raw.items()}
