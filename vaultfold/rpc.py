import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

import aiohttp

from . import abi
from .errors import UpstreamUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContractCall:
    to: str
    data: str

    @classmethod
    def build(cls, to: str, selector: str, *args: Union[int, str]) -> "ContractCall":
        return cls(abi.normalize_address(to), abi.encode_call(selector, *args))


@dataclass(frozen=True)
class CallResult:
    success: bool
    data: Optional[str] = None
    error: Optional[str] = None

    def uint(self, index: int = 0) -> Optional[int]:
        if not self.success:
            return None
        return abi.decode_uint256(self.data, index)

    def address(self, index: int = 0) -> Optional[str]:
        if not self.success:
            return None
        return abi.decode_address(self.data, index)


def block_tag(block: Optional[int]) -> str:
    return "latest" if block is None else hex(block)


class RPCClient:
    def __init__(
        self,
        url: str,
        max_retries: int = 5,
        timeout_sec: int = 12,
        batch_size: int = 50,
    ):
        self.url = url
        self.max_retries = max_retries
        self.batch_size = batch_size
        self.timeout = aiohttp.ClientTimeout(total=timeout_sec)
        self._session: Optional[aiohttp.ClientSession] = None
        self._id = 1
        self.block_ts_cache: Dict[int, int] = {}

    async def __aenter__(self) -> "RPCClient":
        self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._session:
            await self._session.close()

    async def _post(self, payload: Any) -> Any:
        if not self._session:
            raise RuntimeError("RPC session is not initialized")
        async with self._session.post(self.url, json=payload) as resp:
            return await resp.json(content_type=None)

    def _next_id(self) -> int:
        i = self._id
        self._id += 1
        return i

    async def _post_with_retry(self, payload: Any, what: str) -> Any:
        backoff = 0.5
        for attempt in range(1, self.max_retries + 1):
            try:
                return await self._post(payload)
            except Exception as e:
                if attempt >= self.max_retries:
                    raise UpstreamUnavailable(f"{what} failed after {attempt} attempts: {e}") from e
                logger.debug("%s attempt %d failed: %s", what, attempt, e)
                await asyncio.sleep(backoff)
                backoff *= 2
        raise UpstreamUnavailable(f"{what} was never attempted")

    async def call(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": self._next_id(), "method": method, "params": params}
        data = await self._post_with_retry(payload, method)
        if not isinstance(data, dict):
            raise UpstreamUnavailable(f"RPC {method} returned a malformed body: {data!r}")
        if "error" in data:
            raise UpstreamUnavailable(f"RPC error: {data['error']}")
        return data.get("result")

    async def get_block_by_number(self, block_number: int) -> Optional[Dict[str, Any]]:
        return await self.call("eth_getBlockByNumber", [hex(block_number), False])

    async def get_latest_block_number(self) -> int:
        result = await self.call("eth_blockNumber", [])
        return int(result, 16)

    async def get_logs(
        self,
        from_block: int,
        to_block: int,
        address: Optional[str] = None,
        topics: Optional[List[Any]] = None,
    ) -> List[Dict[str, Any]]:
        f: Dict[str, Any] = {"fromBlock": hex(from_block), "toBlock": hex(to_block)}
        if address:
            f["address"] = address
        if topics:
            f["topics"] = topics
        result = await self.call("eth_getLogs", [f])
        return result or []

    async def eth_call(self, to: str, data: str, block: Optional[int] = None) -> str:
        return await self.call("eth_call", [{"to": to, "data": data}, block_tag(block)])

    async def read_uint(
        self, to: str, selector: str, *args: Union[int, str], block: Optional[int] = None
    ) -> int:
        out = await self.eth_call(to, abi.encode_call(selector, *args), block)
        return abi.decode_uint256(out)

    async def read_address(
        self, to: str, selector: str, *args: Union[int, str], block: Optional[int] = None
    ) -> str:
        out = await self.eth_call(to, abi.encode_call(selector, *args), block)
        return abi.decode_address(out)

    async def batch_call(
        self, calls: Sequence[ContractCall], block: Optional[int] = None
    ) -> List[CallResult]:
        """Multicall: one round trip per chunk, each call succeeding or failing on its own."""
        results: List[CallResult] = []
        tag = block_tag(block)
        for start in range(0, len(calls), self.batch_size):
            chunk = calls[start:start + self.batch_size]
            ids = [self._next_id() for _ in chunk]
            payload = [
                {
                    "jsonrpc": "2.0",
                    "id": i,
                    "method": "eth_call",
                    "params": [{"to": c.to, "data": c.data}, tag],
                }
                for i, c in zip(ids, chunk)
            ]
            data = await self._post_with_retry(payload, "eth_call batch")
            if isinstance(data, dict):
                raise UpstreamUnavailable(f"RPC batch rejected: {data.get('error')}")
            if not isinstance(data, list):
                raise UpstreamUnavailable(f"RPC batch returned a malformed body: {data!r}")
            by_id = {item.get("id"): item for item in data if isinstance(item, dict)}
            for i in ids:
                item = by_id.get(i)
                if item is None:
                    results.append(CallResult(False, error="missing from batch response"))
                elif "error" in item:
                    results.append(CallResult(False, error=str(item["error"])))
                else:
                    out = item.get("result")
                    if not out or out == "0x":
                        results.append(CallResult(False, error="empty return data"))
                    else:
                        results.append(CallResult(True, data=out))
        return results

    async def get_block_timestamp(self, block_number: int) -> int:
        cached = self.block_ts_cache.get(block_number)
        if cached is not None:
            return cached
        block = await self.get_block_by_number(block_number)
        if not block:
            raise UpstreamUnavailable(f"block {block_number} not found")
        ts = int(block["timestamp"], 16)
        self.block_ts_cache[block_number] = ts
        if len(self.block_ts_cache) > 5000:
            oldest = sorted(self.block_ts_cache.keys())[:1000]
            for b in oldest:
                self.block_ts_cache.pop(b, None)
        return ts

    async def estimate_block_at(self, target_ts: int) -> int:
        """Highest block whose timestamp is <= target_ts."""
        latest = await self.get_latest_block_number()
        first_ts = await self.get_block_timestamp(0)
        if target_ts <= first_ts:
            return 0
        latest_ts = await self.get_block_timestamp(latest)
        if target_ts >= latest_ts:
            return latest

        low = 0
        high = latest
        while low < high:
            mid = (low + high + 1) // 2
            mid_ts = await self.get_block_timestamp(mid)
            if mid_ts <= target_ts:
                low = mid
            else:
                high = mid - 1
        return low
