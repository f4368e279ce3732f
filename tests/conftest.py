"""Shared test fixtures: a scripted chain reader, market feeds and sqlite storage."""

from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import pytest

from vaultfold import abi
from vaultfold.cache import TTLCache
from vaultfold.events import EventLog
from vaultfold.market import CurveMarket
from vaultfold.numeric import ExactDecimal
from vaultfold.rpc import RPCClient
from vaultfold.storage import Storage

Answer = Union[None, int, str, List[int], Callable[[str], Any]]

VAULT = "0x" + "a1" * 20
STRATEGY_A = "0x" + "5a" * 20
STRATEGY_B = "0x" + "5b" * 20
STRATEGY_C = "0x" + "5c" * 20
ASSET = "0x" + "ee" * 20
GAUGE = "0x" + "9a" * 20


def word(value: Union[int, str]) -> str:
    if isinstance(value, str):
        return abi.encode_address(value)
    return abi.encode_uint256(value)


def ret(*values: Union[int, str]) -> str:
    return "0x" + "".join(word(v) for v in values)


def ret_string(text: str) -> str:
    raw = text.encode("utf-8").hex()
    padded = raw + "0" * (-len(raw) % 64)
    return "0x" + abi.encode_uint256(32) + abi.encode_uint256(len(text)) + padded


class FakeRPC(RPCClient):
    """RPCClient whose transport answers from a script instead of the network.

    ``on(to, selector, answer)`` scripts an eth_call: an int or address becomes one
    word, a list several words, a callable gets the calldata args, None reverts.
    """

    def __init__(self, latest: int = 1000, start_time: int = 1_700_000_000, block_secs: int = 12):
        super().__init__("http://fake.rpc", max_retries=1, batch_size=4)
        self.latest = latest
        self.start_time = start_time
        self.block_secs = block_secs
        self.answers: Dict[Tuple[str, str], Answer] = {}
        self.logs: List[Dict[str, Any]] = []
        self.requests: List[Dict[str, Any]] = []
        self.call_block = latest

    def on(self, to: str, selector: str, answer: Answer) -> "FakeRPC":
        self.answers[(to.lower(), selector)] = answer
        return self

    def timestamp(self, block: int) -> int:
        return self.start_time + block * self.block_secs

    async def _post(self, payload: Any) -> Any:
        if isinstance(payload, list):
            return [self._answer(p) for p in payload]
        return self._answer(payload)

    def _answer(self, req: Dict[str, Any]) -> Dict[str, Any]:
        self.requests.append(req)
        method = req["method"]
        params = req["params"]
        if method == "eth_blockNumber":
            return self._ok(req, hex(self.latest))
        if method == "eth_getBlockByNumber":
            n = int(params[0], 16)
            if n > self.latest:
                return self._ok(req, None)
            return self._ok(req, {"number": params[0], "timestamp": hex(self.timestamp(n))})
        if method == "eth_getLogs":
            f = params[0]
            lo, hi = int(f["fromBlock"], 16), int(f["toBlock"], 16)
            found = [
                log for log in self.logs
                if lo <= int(log["blockNumber"], 16) <= hi
                and log["address"].lower() == f.get("address", log["address"]).lower()
            ]
            return self._ok(req, found)
        if method == "eth_call":
            tag = params[1]
            self.call_block = self.latest if tag == "latest" else int(tag, 16)
            return self._eth_call(req, params[0]["to"], params[0]["data"])
        return {"jsonrpc": "2.0", "id": req["id"], "error": {"message": f"no {method}"}}

    def _eth_call(self, req: Dict[str, Any], to: str, data: str) -> Dict[str, Any]:
        answer = self.answers.get((to.lower(), data[:10]))
        if callable(answer):
            answer = answer(data[10:])
        if answer is None:
            return {"jsonrpc": "2.0", "id": req["id"], "error": {"message": "execution reverted"}}
        if isinstance(answer, list):
            return self._ok(req, ret(*answer))
        if isinstance(answer, str) and answer.startswith("0x") and len(answer) != 42:
            return self._ok(req, answer)
        return self._ok(req, ret(answer))

    @staticmethod
    def _ok(req: Dict[str, Any], result: Any) -> Dict[str, Any]:
        return {"jsonrpc": "2.0", "id": req["id"], "result": result}


class FakePrices:
    def __init__(self, prices: Optional[Dict[str, str]] = None):
        self.prices = {k.lower(): ExactDecimal(v) for k, v in (prices or {}).items()}

    async def get_price(self, chain_id: int, token: str, timestamp: Optional[int] = None):
        return self.prices.get(token.lower())


class FakeCurveMarket(CurveMarket):
    """CurveMarket answering GETs from canned JSON keyed by URL prefix."""

    def __init__(self, cfg, responses: Dict[str, Any]):
        super().__init__(None, TTLCache(), cfg)
        self.responses = responses
        self.urls: List[str] = []

    async def _get_json(self, url: str) -> Any:
        self.urls.append(url)
        for prefix, body in self.responses.items():
            if url.startswith(prefix):
                return body
        return {}


def make_event(
    signature: str,
    block: int,
    index: int = 0,
    address: str = VAULT,
    **args: Any,
) -> EventLog:
    return EventLog(
        chain_id=1,
        address=address,
        signature=signature,
        block_number=block,
        log_index=index,
        block_time=1_700_000_000 + block * 12,
        args=args,
    )


@pytest.fixture
def rpc() -> FakeRPC:
    return FakeRPC()


@pytest.fixture
def storage(tmp_path) -> Storage:
    s = Storage(str(tmp_path / "db" / "vaultfold.db"))
    yield s
    s.close()


@pytest.fixture
def raw_config() -> Dict[str, Any]:
    return {
        "RPC_URLS": {"1": "http://localhost:8545"},
        "SQLITE_PATH": "./data/test.db",
        "LOG_LEVEL": "debug",
        "CRV_GAUGE_REGISTRY_URL": "https://curve.test/gauges",
        "CRV_POOLS_URL": "https://curve.test/pools",
        "CURVE_SUBGRAPH_URL": "https://curve.test/subgraph",
        "FRAX_POOLS_URL": "https://frax.test/pools",
        "PRICES_URL": "https://prices.test",
    }
