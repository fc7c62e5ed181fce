"""
JSON-RPC helpers for sources that read contract state through a node.

Mixed into BaseSource subclasses; expects `self.rpc_url` and the base
class's _make_request().
"""

import logging
from typing import Any, Union

from nft_inventory.exceptions import FetchError, InventoryError, RateLimitError
from nft_inventory.retry import RATE_LIMIT_MARKERS


logger = logging.getLogger(__name__)

RpcOutcome = Union[Any, InventoryError]


class JsonRpcMixin:
    """eth_call and JSON-RPC batching over _make_request()."""

    rpc_url: str
    _request_id: int = 0

    def _next_request_id(self) -> int:
        """Get next JSON-RPC request ID."""
        self._request_id += 1
        return self._request_id

    def _payload(self, method: str, params: list[Any]) -> dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "id": self._next_request_id(),
            "method": method,
            "params": params,
        }

    def _rpc_error(self, error: Any) -> InventoryError:
        """Map a JSON-RPC error object to an inventory exception."""
        if isinstance(error, dict):
            message = str(error.get("message", "Unknown error"))
            code = error.get("code")
        else:
            message, code = str(error), None

        if code == 429 or any(marker in message.lower() for marker in RATE_LIMIT_MARKERS):
            return RateLimitError(
                message=f"RPC rate limited: {message}",
                source_name=self.name,
            )
        return FetchError(
            message=f"RPC error: {message}",
            source_name=self.name,
            request_url=self.rpc_url,
            context={"code": code} if code is not None else None,
        )

    async def _rpc_call(self, method: str, params: list[Any]) -> Any:
        """Make a single JSON-RPC call and return its result."""
        data = await self._make_request("POST", self.rpc_url, json_body=self._payload(method, params))

        if not isinstance(data, dict):
            raise FetchError(
                message="Malformed RPC response",
                source_name=self.name,
                request_url=self.rpc_url,
            )
        if "error" in data:
            error = self._rpc_error(data["error"])
            self._on_error(error)
            raise error
        return data.get("result")

    async def _rpc_batch(self, calls: list[tuple[str, list[Any]]]) -> list[RpcOutcome]:
        """
        Send several calls in one JSON-RPC batch.

        Returns one entry per call, in call order: the result, or the
        InventoryError describing that call's failure. Only a failure of
        the batch as a whole raises.
        """
        if not calls:
            return []

        payloads = [self._payload(method, params) for method, params in calls]
        data = await self._make_request("POST", self.rpc_url, json_body=payloads)

        if isinstance(data, dict) and "error" in data:
            error = self._rpc_error(data["error"])
            self._on_error(error)
            raise error
        if not isinstance(data, list):
            raise FetchError(
                message="Malformed RPC batch response",
                source_name=self.name,
                request_url=self.rpc_url,
            )

        by_id = {item.get("id"): item for item in data if isinstance(item, dict)}
        outcomes: list[RpcOutcome] = []
        for payload in payloads:
            item = by_id.get(payload["id"])
            if item is None:
                outcomes.append(FetchError(
                    message=f"Missing batch response for id {payload['id']}",
                    source_name=self.name,
                    request_url=self.rpc_url,
                ))
            elif "error" in item:
                outcomes.append(self._rpc_error(item["error"]))
            else:
                outcomes.append(item.get("result"))
        return outcomes

    async def eth_call(self, to: str, data: str, block: str = "latest") -> str:
        """Execute a read-only contract call and return the raw hex result."""
        result = await self._rpc_call("eth_call", [{"to": to, "data": data}, block])
        if not isinstance(result, str):
            raise FetchError(
                message="eth_call returned no data",
                source_name=self.name,
                request_url=self.rpc_url,
            )
        return result

    async def eth_call_batch(
        self,
        calls: list[tuple[str, str]],
        block: str = "latest",
    ) -> list[RpcOutcome]:
        """Batch several eth_call requests given as (to, data) pairs."""
        return await self._rpc_batch([
            ("eth_call", [{"to": to, "data": data}, block])
            for to, data in calls
        ])
