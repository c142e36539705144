"""
Append-only JSON Lines checkpoint logs

The store is a dumb durable log: it never deduplicates. Collectors rebuild
their seen-set from load_all() once at startup and only append unseen keys.
"""
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Union

logger = logging.getLogger(__name__)


class CheckpointCorruptError(RuntimeError):
    """Raised when a checkpoint log has an unreadable line other than a torn tail."""


@dataclass(frozen=True)
class SignatureRecord:
    signature: str
    block_time: int

    def to_dict(self) -> Dict[str, Any]:
        return {"signature": self.signature, "blockTime": self.block_time}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SignatureRecord":
        return cls(signature=data["signature"], block_time=int(data["blockTime"]))


@dataclass(frozen=True)
class TransactionRecord:
    signature: str
    block_time: int
    payload: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {"signature": self.signature, "blockTime": self.block_time, "tx": self.payload}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransactionRecord":
        return cls(signature=data["signature"], block_time=int(data["blockTime"]), payload=data.get("tx"))


class JsonlCheckpointStore:
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load_all(self) -> List[Dict[str, Any]]:
        """
        Read every record in the log, oldest append first

        A final line without a trailing newline that fails to parse is the
        remains of an interrupted append; it is truncated off the file so the
        next append starts on a clean line.

        Raises:
            CheckpointCorruptError: an unparsable line anywhere else
        """
        if not self.path.exists():
            return []

        raw = self.path.read_bytes()
        records = []
        offset = 0
        for line in raw.splitlines(keepends=True):
            line_start = offset
            offset += len(line)
            text = line.strip()
            if not text:
                continue
            try:
                records.append(json.loads(text))
            except ValueError as e:
                is_torn_tail = offset == len(raw) and not line.endswith(b"\n")
                if not is_torn_tail:
                    raise CheckpointCorruptError(f"{self.path}: unreadable record at byte {line_start}") from e
                logger.warning(f"{self.path}: dropping partial record left by an interrupted write")
                with open(self.path, "r+b") as f:
                    f.truncate(line_start)
                return records
        if raw and not raw.endswith(b"\n"):
            with open(self.path, "ab") as f:
                f.write(b"\n")
        return records

    def append(self, item: Dict[str, Any]) -> None:
        """Durably append one record; callers must not append a key they have already seen."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(json.dumps(item, separators=(",", ":")) + "\n")
            f.flush()
