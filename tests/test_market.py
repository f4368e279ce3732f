"""Tests for market-data lookups and the price service."""

import asyncio
import json
from decimal import Decimal

import pytest

from vaultfold.cache import TTLCache
from vaultfold.config import parse_config
from vaultfold.errors import UpstreamUnavailable
from vaultfold.market import CurveMarket, CurveMarketData, PriceService, to_exact
from vaultfold.numeric import ExactDecimal

from conftest import ASSET, GAUGE, FakeCurveMarket


class ScriptedPrices(PriceService):
    def __init__(self, cfg, body):
        super().__init__(None, TTLCache(), cfg)
        self.body = body
        self.urls = []

    async def _get_json(self, url):
        self.urls.append(url)
        if isinstance(self.body, Exception):
            raise self.body
        return self.body


def test_to_exact():
    assert to_exact(Decimal("1.5")) == ExactDecimal("1.5")
    assert to_exact(0.1) == ExactDecimal("0.1")
    assert to_exact(None) == 0
    assert to_exact("n/a") == 0


def test_lookups_are_case_insensitive():
    data = CurveMarketData(
        gauges=[{"swap_token": ASSET.upper().replace("0X", "0x"), "gauge": GAUGE}],
        pools=[{"lpTokenAddress": ASSET}],
        frax_pools=[{"underlyingTokenAddress": ASSET}],
        subgraph=[{"address": GAUGE}],
    )
    assert data.gauge_for(ASSET)["gauge"] == GAUGE
    assert data.pool_for(ASSET) is not None
    assert data.frax_pool_for(ASSET) is not None
    assert data.subgraph_item_for(GAUGE.upper().replace("0X", "0x")) is not None
    assert data.subgraph_item_for(None) is None


def test_failed_feed_leaves_list_empty(raw_config):
    class Flaky(FakeCurveMarket):
        async def _get_json(self, url):
            if "subgraph" in url:
                raise UpstreamUnavailable("down")
            return await super()._get_json(url)

    market = Flaky(parse_config(raw_config), {"https://curve.test/pools": {"data": {"poolData": [{"lpTokenAddress": ASSET}]}}})
    data = asyncio.run(market.load(1))
    assert data.subgraph == []
    assert len(data.pools) == 1
    assert data.gauges == []


def test_historical_price(raw_config):
    coin = f"ethereum:{ASSET}"
    prices = ScriptedPrices(parse_config(raw_config), {"coins": {coin: {"price": Decimal("1.0001")}}})
    price = asyncio.run(prices.get_price(1, ASSET, 1_700_000_000))
    assert price == ExactDecimal("1.0001")
    assert prices.urls == [f"https://prices.test/prices/historical/1700000000/{coin}"]


def test_price_missing_or_unavailable(raw_config):
    cfg = parse_config(raw_config)
    assert asyncio.run(ScriptedPrices(cfg, {"coins": {}}).get_price(1, ASSET, 1)) is None
    assert asyncio.run(ScriptedPrices(cfg, UpstreamUnavailable("503")).get_price(1, ASSET, 1)) is None
    assert asyncio.run(ScriptedPrices(cfg, {}).get_price(424242, ASSET, 1)) is None


class StubResponse:
    def __init__(self, status=200, text="{}", fail=None):
        self.status = status
        self.text = text
        self.fail = fail

    async def __aenter__(self):
        if self.fail is not None:
            raise self.fail
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def json(self, content_type=None, loads=json.loads):
        return loads(self.text)


class StubSession:
    def __init__(self, **response):
        self.response = response
        self.urls = []

    def get(self, url):
        self.urls.append(url)
        return StubResponse(**self.response)


@pytest.mark.parametrize(
    "response",
    [
        {"fail": asyncio.TimeoutError()},
        {"text": "<html>bad gateway</html>"},
        {"text": "[1, 2, 3]"},
        {"status": 502},
    ],
)
def test_bad_feeds_degrade_to_empty(raw_config, response):
    cfg = parse_config(raw_config)
    session = StubSession(**response)
    data = asyncio.run(CurveMarket(session, TTLCache(), cfg).load(1))
    assert data == CurveMarketData()
    assert len(session.urls) == 4
    assert asyncio.run(PriceService(session, TTLCache(), cfg).get_price(1, ASSET)) is None


def test_live_price_parses_decimal(raw_config):
    coin = f"ethereum:{ASSET}"
    session = StubSession(text=json.dumps({"coins": {coin: {"price": 0.999}}}))
    price = asyncio.run(PriceService(session, TTLCache(), parse_config(raw_config)).get_price(1, ASSET))
    assert price == ExactDecimal("0.999")
    assert session.urls == [f"https://prices.test/prices/current/{coin}"]
