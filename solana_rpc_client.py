from solana.rpc.commitment import Commitment, Finalized
from typing import List, Dict, Any, Optional, Callable
import json
import logging
import time

import httpx

logger = logging.getLogger(__name__)

# Jupiter aggregator router program
JUP_ROUTER_PROGRAM_ID = "JUP4Fb2cqiRUcaTHdrPC8h2gNsA2ETXiPDD33WcGuJB"

RATE_LIMIT_STATUS_CODE = 429
RPC_RATE_LIMIT_CODE = -32005
# JSON-RPC reserves -32099..-32000 for server errors
RPC_SERVER_ERROR_MIN = -32099
RPC_SERVER_ERROR_MAX = -32000
MALFORMED_BODY_PREVIEW = 200


class ConfigurationError(RuntimeError):
    """Raised when configuration is invalid."""


class RPCError(RuntimeError):
    """Raised when the Solana RPC returns a non-retryable error response."""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        super().__init__(message)
        self.code = code
        self.data = data


class RPCMalformedResponseError(RPCError):
    """Raised when the RPC body cannot be read as a JSON-RPC response."""

    def __init__(self, message: str, body: str):
        super().__init__(f"{message} body={body[:MALFORMED_BODY_PREVIEW]}")
        self.body = body[:MALFORMED_BODY_PREVIEW]


class _RetryableFailure(Exception):
    """Internal marker for failures that rotate the endpoint and back off."""


def is_retryable_rpc_error(code: Any) -> bool:
    if not isinstance(code, int):
        return False
    return code == RPC_RATE_LIMIT_CODE or RPC_SERVER_ERROR_MIN <= code <= RPC_SERVER_ERROR_MAX


def backoff_ms(attempt: int, base_delay_ms: int, max_backoff_ms: int) -> int:
    """Exponential backoff for the given zero-based attempt, capped at max_backoff_ms."""
    return min(max_backoff_ms, base_delay_ms * (2 ** attempt))


class EndpointPool:
    """Ordered RPC endpoints with a rotation cursor shared by every caller."""

    def __init__(self, rpc_urls: List[str]):
        if not rpc_urls:
            raise ConfigurationError("No RPC URLs configured")
        self.rpc_urls = list(rpc_urls)
        self.index = 0

    def current(self) -> str:
        return self.rpc_urls[self.index]

    def advance(self) -> None:
        self.index = (self.index + 1) % len(self.rpc_urls)

    def __len__(self) -> int:
        return len(self.rpc_urls)


class SolanaRPCClient:
    def __init__(
        self,
        pool: EndpointPool,
        base_delay_ms: int = 250,
        max_backoff_ms: int = 8000,
        timeout: Optional[float] = 30.0,
        commitment: Commitment = Finalized,
        http_client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the JSON-RPC client

        Args:
            pool: Endpoint pool; rotated on every retryable failure
            base_delay_ms: Backoff for the first retry, doubled per attempt
            max_backoff_ms: Ceiling for a single backoff sleep
            timeout: Per-request timeout in seconds (None disables it)
            commitment: Commitment level sent with every query
            http_client: Optional preconfigured httpx client (used by tests)
            sleep: Sleep function taking seconds
        """
        self.pool = pool
        self.base_delay_ms = base_delay_ms
        self.max_backoff_ms = max_backoff_ms
        self.commitment = commitment
        self.sleep = sleep
        self.http = http_client or httpx.Client(timeout=timeout)
        self._request_id = 0
        logger.info(f"Initialized Solana RPC Client with endpoint: {self.pool.current()}")

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self) -> None:
        self.http.close()

    def call(self, method: str, params: List[Any]) -> Any:
        """
        Issue a JSON-RPC call, retrying transient failures until it succeeds

        Retryable failures rotate the endpoint pool once and sleep for
        min(max_backoff, base_delay * 2**attempt). There is no retry cap; the
        callers' wall-clock budget bounds the run.

        Returns:
            The `result` member of the response (may be None)
        """
        attempt = 0
        while True:
            url = self.pool.current()
            try:
                return self._send(url, method, params)
            except _RetryableFailure as e:
                delay = backoff_ms(attempt, self.base_delay_ms, self.max_backoff_ms)
                self.pool.advance()
                logger.warning(
                    f"{method} failed on {url} ({e}); retrying on {self.pool.current()} "
                    f"in {delay}ms (attempt {attempt + 1})"
                )
                self.sleep(delay / 1000)
                attempt += 1

    def _send(self, url: str, method: str, params: List[Any]) -> Any:
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        try:
            response = self.http.post(url, json=payload)
        except httpx.UnsupportedProtocol as e:
            raise ConfigurationError(f"Unsupported RPC URL {url}: {e}") from e
        except httpx.TransportError as e:
            raise _RetryableFailure(f"{type(e).__name__}: {e}") from e

        if response.status_code >= 500 or response.status_code == RATE_LIMIT_STATUS_CODE:
            raise _RetryableFailure(f"HTTP {response.status_code}")

        body = response.text
        try:
            parsed = json.loads(body)
        except ValueError as e:
            raise RPCMalformedResponseError(f"Bad JSON from RPC: {e}", body) from e
        if not isinstance(parsed, dict) or ("result" not in parsed and "error" not in parsed):
            raise RPCMalformedResponseError("Not a JSON-RPC response", body)

        error = parsed.get("error")
        if error is not None:
            code = error.get("code") if isinstance(error, dict) else None
            if is_retryable_rpc_error(code):
                raise _RetryableFailure(f"RPC error {code}")
            raise RPCError(f"RPC error: {json.dumps(error)}", code=code,
                           data=error.get("data") if isinstance(error, dict) else None)

        return parsed["result"]

    def get_signatures_for_address(
        self, address: str, limit: int = 1000, before: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Fetch up to `limit` signatures for `address`, newest first, older than `before`."""
        options: Dict[str, Any] = {"limit": limit, "commitment": self.commitment}
        if before:
            options["before"] = before
        return self.call("getSignaturesForAddress", [address, options]) or []

    def get_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        """Fetch the full JSON-encoded transaction, or None if the node does not have it."""
        return self.call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "json",
                    "maxSupportedTransactionVersion": 0,
                    "commitment": self.commitment,
                },
            ],
        )
