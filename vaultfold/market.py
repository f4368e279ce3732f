import asyncio
import functools
import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

import aiohttp

from .abi import normalize_address
from .cache import TTLCache
from .config import AppConfig
from .constants import CURVE_CHAIN_NAMES, LLAMA_CHAIN_NAMES
from .errors import UpstreamUnavailable, ValidationError
from .numeric import ExactDecimal

logger = logging.getLogger(__name__)

# keeps JSON prices and APYs out of binary floats
_loads = functools.partial(json.loads, parse_float=Decimal)


def to_exact(value: Any) -> ExactDecimal:
    if value is None:
        return ExactDecimal(0)
    if isinstance(value, float):
        return ExactDecimal(repr(value))
    try:
        return ExactDecimal(value if isinstance(value, (int, Decimal)) else str(value))
    except ValidationError:
        logger.warning("unparseable market value %r, using 0", value)
        return ExactDecimal(0)


def _lower(v: Any) -> str:
    return str(v or "").lower()


def _obj(v: Any) -> Dict[str, Any]:
    return v if isinstance(v, dict) else {}


class HttpSource:
    def __init__(self, session: aiohttp.ClientSession, cache: TTLCache):
        self.session = session
        self.cache = cache

    async def _get_json(self, url: str) -> Any:
        try:
            async with self.session.get(url) as resp:
                if resp.status != 200:
                    raise UpstreamUnavailable(f"GET {url} returned {resp.status}")
                return await resp.json(content_type=None, loads=_loads)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise UpstreamUnavailable(f"GET {url} failed: {e!r}") from e
        except ValueError as e:
            raise UpstreamUnavailable(f"GET {url} returned malformed JSON: {e}") from e

    async def get_json(self, url: str) -> Any:
        return await self.cache.wrap(("GET", url), functools.partial(self._get_json, url))


@dataclass
class CurveMarketData:
    gauges: List[Dict[str, Any]] = field(default_factory=list)
    pools: List[Dict[str, Any]] = field(default_factory=list)
    subgraph: List[Dict[str, Any]] = field(default_factory=list)
    frax_pools: List[Dict[str, Any]] = field(default_factory=list)

    def gauge_for(self, asset: str) -> Optional[Dict[str, Any]]:
        a = asset.lower()
        for g in self.gauges:
            if _lower(g.get("swap_token")) == a or _lower(g.get("swap")) == a:
                return g
        return None

    def pool_for(self, asset: str) -> Optional[Dict[str, Any]]:
        a = asset.lower()
        return next((p for p in self.pools if _lower(p.get("lpTokenAddress")) == a), None)

    def frax_pool_for(self, asset: str) -> Optional[Dict[str, Any]]:
        a = asset.lower()
        return next(
            (p for p in self.frax_pools if _lower(p.get("underlyingTokenAddress")) == a), None
        )

    def subgraph_item_for(self, swap: Optional[str]) -> Optional[Dict[str, Any]]:
        if not swap:
            return None
        s = swap.lower()
        return next((i for i in self.subgraph if _lower(i.get("address")) == s), None)


class CurveMarket(HttpSource):
    def __init__(self, session: aiohttp.ClientSession, cache: TTLCache, cfg: AppConfig):
        super().__init__(session, cache)
        self.cfg = cfg

    async def gauges(self, chain_id: int) -> List[Dict[str, Any]]:
        if not self.cfg.crv_gauge_registry_url:
            return []
        raw = await self.get_json(f"{self.cfg.crv_gauge_registry_url}?blockchainId={chain_id}")
        data = _obj(raw).get("data") or {}
        return list(data.values()) if isinstance(data, dict) else list(data)

    async def pools(self, chain_id: int) -> List[Dict[str, Any]]:
        if not self.cfg.crv_pools_url:
            return []
        raw = await self.get_json(f"{self.cfg.crv_pools_url.rstrip('/')}/{chain_id}")
        return list(_obj(_obj(raw).get("data")).get("poolData") or [])

    async def subgraph(self, chain_id: int) -> List[Dict[str, Any]]:
        name = CURVE_CHAIN_NAMES.get(chain_id)
        if not name:
            return []
        raw = await self.get_json(f"{self.cfg.curve_subgraph_url}/{name}")
        return list(_obj(_obj(raw).get("data")).get("poolList") or [])

    async def frax_pools(self) -> List[Dict[str, Any]]:
        raw = await self.get_json(self.cfg.frax_pools_url)
        pools = _obj(_obj(raw).get("pools")).get("augmentedPoolData") or []
        return [p for p in pools if p.get("type", "convex") == "convex"]

    async def load(self, chain_id: int) -> CurveMarketData:
        """Every feed is optional; a failing feed leaves its list empty."""
        data = CurveMarketData()
        for name, fetch in (
            ("gauges", functools.partial(self.gauges, chain_id)),
            ("pools", functools.partial(self.pools, chain_id)),
            ("subgraph", functools.partial(self.subgraph, chain_id)),
            ("frax_pools", self.frax_pools),
        ):
            try:
                setattr(data, name, await fetch())
            except UpstreamUnavailable as e:
                logger.warning("curve %s feed unavailable for chain %s: %s", name, chain_id, e)
        return data


class PriceService(HttpSource):
    """Historical USD token prices by address and time."""

    def __init__(self, session: aiohttp.ClientSession, cache: TTLCache, cfg: AppConfig):
        super().__init__(session, cache)
        self.cfg = cfg

    async def get_price(
        self, chain_id: int, token: str, timestamp: Optional[int] = None
    ) -> Optional[ExactDecimal]:
        chain = LLAMA_CHAIN_NAMES.get(chain_id)
        if not chain:
            return None
        coin = f"{chain}:{normalize_address(token)}"
        if timestamp:
            url = f"{self.cfg.prices_url}/prices/historical/{timestamp}/{coin}"
        else:
            url = f"{self.cfg.prices_url}/prices/current/{coin}"
        try:
            raw = await self.get_json(url)
        except UpstreamUnavailable as e:
            logger.warning("price unavailable for %s: %s", coin, e)
            return None
        entry = _obj(_obj(_obj(raw).get("coins")).get(coin))
        if entry.get("price") is None:
            return None
        price = to_exact(entry["price"])
        return price if price > 0 else None
