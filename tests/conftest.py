import json
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
import pytest

from solana_rpc_client import EndpointPool, SolanaRPCClient

URLS = ["https://rpc-a.test", "https://rpc-b.test", "https://rpc-c.test"]
PROGRAM = "JUP4Fb2cqiRUcaTHdrPC8h2gNsA2ETXiPDD33WcGuJB"


def rpc_result(result: Any, request_id: int = 1) -> httpx.Response:
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": request_id, "result": result})


def rpc_error(code: int, message: str = "error") -> httpx.Response:
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": code, "message": message}})


class FakeRPC:
    """Records requests and answers them with a handler."""

    def __init__(self, handler: Callable[[str, Dict[str, Any]], httpx.Response]):
        self.handler = handler
        self.requests: List[Tuple[str, Dict[str, Any]]] = []
        self.sleeps: List[float] = []

    def _transport(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        url = str(request.url).rstrip("/")
        self.requests.append((url, body))
        return self.handler(url, body)

    def client(self, urls: Optional[List[str]] = None, base_delay_ms: int = 100, max_backoff_ms: int = 800):
        http = httpx.Client(transport=httpx.MockTransport(self._transport))
        return SolanaRPCClient(
            EndpointPool(urls or URLS),
            base_delay_ms=base_delay_ms,
            max_backoff_ms=max_backoff_ms,
            http_client=http,
            sleep=self.sleeps.append,
        )

    def calls(self, method: str) -> List[Dict[str, Any]]:
        return [body for _, body in self.requests if body["method"] == method]


class ProgramHistory:
    """A newest-first signature history served through getSignaturesForAddress paging."""

    def __init__(self, items: List[Tuple[str, Optional[int]]]):
        self.items = [{"signature": sig, "blockTime": t, "err": None} for sig, t in items]

    def page(self, options: Dict[str, Any]) -> List[Dict[str, Any]]:
        start = 0
        before = options.get("before")
        if before:
            start = next(i for i, item in enumerate(self.items) if item["signature"] == before) + 1
        return self.items[start:start + options["limit"]]


def swap_tx(signer: str, others=("B", "C"), pre=None, post=None, required: int = 1) -> Dict[str, Any]:
    return {
        "blockTime": 0,
        "meta": {"err": None, "preTokenBalances": pre or [], "postTokenBalances": post or []},
        "transaction": {
            "message": {
                "accountKeys": [signer, *others],
                "header": {"numRequiredSignatures": required},
            },
            "signatures": ["sig"],
        },
    }


def token_balance(index: int, owner: str, mint: str, amount: str) -> Dict[str, Any]:
    return {"accountIndex": index, "owner": owner, "mint": mint, "uiTokenAmount": {"amount": amount, "decimals": 6}}


class ManualClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture(autouse=True)
def no_rpc_env(monkeypatch):
    monkeypatch.delenv("SOLANA_RPC_URLS", raising=False)
