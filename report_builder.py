"""Ranked top-wallet artifacts built from the wallet map."""
import csv
import json
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

from wallet_aggregator import WalletStat

CSV_COLUMNS = ["wallet", "swaps", "est_pnl_usd", "first_ts", "last_ts"]


@dataclass(frozen=True)
class RankedRow:
    wallet: str
    swaps: int
    est_pnl_usd: float
    first_ts: Optional[int]
    last_ts: Optional[int]


def to_decimal(base_units: int, decimals: int = 6) -> float:
    return round(base_units / (10 ** decimals), 2)


def rank_wallets(stats: Dict[str, WalletStat], top_n: int = 15, decimals: int = 6) -> List[RankedRow]:
    """Order by swap count, then PnL, both descending; wallet address breaks exact ties."""
    ordered = sorted(stats.values(), key=lambda s: (-s.swaps, -s.pnl_base_units, s.wallet))
    return [
        RankedRow(
            wallet=s.wallet,
            swaps=s.swaps,
            est_pnl_usd=to_decimal(s.pnl_base_units, decimals),
            first_ts=s.first_ts or None,
            last_ts=s.last_ts or None,
        )
        for s in ordered[:top_n]
    ]


def write_csv(rows: List[RankedRow], path: Union[str, Path]) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(CSV_COLUMNS)
        for row in rows:
            writer.writerow([row.wallet, row.swaps, row.est_pnl_usd, row.first_ts, row.last_ts])


def write_json(rows: List[RankedRow], path: Union[str, Path], generated_at: Optional[int] = None) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "generated_at": generated_at if generated_at is not None else int(time.time() * 1000),
        "top": [asdict(row) for row in rows],
    }
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
