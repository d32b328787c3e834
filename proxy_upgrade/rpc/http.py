from __future__ import annotations

"""
HTTP JSON-RPC client (sync) for Ethereum-style nodes.

- Uses httpx.
- Makes exactly one attempt per request. Submitting a transaction is not
  idempotent, so retrying is left to the operator.
- Friendly to unit tests (respx) and mocks.

Example:
    from proxy_upgrade.rpc.http import RpcClient
    with RpcClient("http://localhost:8545") as rpc:
        print(int(rpc.request("eth_blockNumber"), 16))
"""

import json
import time
from dataclasses import dataclass, field
from itertools import count
from typing import Any, Dict, Iterator, Mapping, Optional, Sequence, Union

import httpx

from ..errors import JsonRpcCode, RpcError, from_jsonrpc_error
from ..version import user_agent

JSON = Union[dict, list, str, int, float, bool, None]
Params = Union[Sequence[Any], Mapping[str, Any], None]

_TRANSPORT_ERROR = -32098


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class RpcClient:
    """Synchronous JSON-RPC 2.0 client over HTTP."""

    url: str
    timeout: float = 30.0
    headers: Optional[Mapping[str, str]] = None
    _id_counter: Iterator[int] = field(default_factory=lambda: count(start=_now_ms()))
    _client: Optional[httpx.Client] = field(init=False, default=None)

    def __post_init__(self) -> None:
        merged_headers: Dict[str, str] = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": user_agent(),
        }
        if self.headers:
            merged_headers.update(dict(self.headers))
        self._client = httpx.Client(timeout=self.timeout, headers=merged_headers)

    # --- context manager -------------------------------------------------

    def __enter__(self) -> "RpcClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        self.close()

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    # --- public API ------------------------------------------------------

    def request(self, method: str, params: Params = None) -> JSON:
        """Perform a single JSON-RPC request and return `result` or raise RpcError."""
        payload = self._make_payload(method, params)
        return self._send_once(method, payload)

    # --- internals -------------------------------------------------------

    def _make_payload(self, method: str, params: Params) -> Dict[str, Any]:
        if params is None:
            params = []
        elif isinstance(params, Mapping):
            params = dict(params)
        elif isinstance(params, Sequence) and not isinstance(params, (str, bytes, bytearray)):
            params = list(params)
        else:
            # Coerce single param into positional list
            params = [params]  # type: ignore[list-item]
        return {"jsonrpc": "2.0", "id": next(self._id_counter), "method": method, "params": params}

    def _send_once(self, method: str, payload: Dict[str, Any]) -> JSON:
        if self._client is None:
            raise RpcError("client is closed", method=method)
        body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
        try:
            r = self._client.post(self.url, content=body)
        except httpx.HTTPError as e:
            raise RpcError("network error", method=method, code=_TRANSPORT_ERROR, data=str(e)) from e

        # Avoid raise_for_status() to keep error body visible below
        try:
            resp = r.json()
        except ValueError as e:
            raise RpcError(
                "non-JSON response from RPC",
                method=method,
                code=JsonRpcCode.INTERNAL_ERROR,
                data=r.text[:256],
                http_status=r.status_code,
            ) from e

        if not isinstance(resp, dict):
            raise RpcError(
                "invalid JSON-RPC response type",
                method=method,
                code=JsonRpcCode.INTERNAL_ERROR,
                data=type(resp).__name__,
                http_status=r.status_code,
            )
        if resp.get("error") is not None:
            raise from_jsonrpc_error(resp["error"], method=method, http_status=r.status_code)
        if r.status_code >= 400:
            raise RpcError(f"HTTP {r.status_code}", method=method, http_status=r.status_code)
        if "result" not in resp:
            raise RpcError("malformed JSON-RPC response", method=method, code=JsonRpcCode.INTERNAL_ERROR, data=resp)
        return resp["result"]


__all__ = ["RpcClient"]
