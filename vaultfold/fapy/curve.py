import asyncio
import logging
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional, Tuple

from .. import abi
from ..composition import CompositionRecord
from ..constants import (
    CURVE_BOOST_FLOOR,
    HARVEST_PERIODS,
    MAINNET,
    MAINNET_DEFAULT_BOOST,
    SECONDS_PER_YEAR,
    YEARN_VOTER,
)
from ..numeric import ONE, ZERO, ExactDecimal, ExactInt, apr_to_apy, normalize
from ..rpc import ContractCall
from .common import FapyContext, bps, net_of_fees

logger = logging.getLogger(__name__)


@dataclass
class StrategyAPY:
    type: str
    net_apy: ExactDecimal = ZERO
    boost: ExactDecimal = ZERO
    pool_apy: ExactDecimal = ZERO
    boosted_apr: ExactDecimal = ZERO
    base_apr: ExactDecimal = ZERO
    cvx_apr: ExactDecimal = ZERO
    rewards_apy: ExactDecimal = ZERO
    keep_crv: ExactDecimal = ZERO

    def weighted(self, w: ExactDecimal) -> "StrategyAPY":
        values = {f.name: getattr(self, f.name) * w for f in fields(self) if f.name != "type"}
        return StrategyAPY(type=self.type, **values)


@dataclass(frozen=True)
class CurveInputs:
    """Gauge-level figures shared by every strategy of one vault."""

    gauge: str
    base_apr: ExactDecimal
    base_apy: ExactDecimal
    reward_apy: ExactDecimal
    pool_apy: ExactDecimal
    pool_price: ExactDecimal
    base_asset_price: ExactDecimal


def _gauge_int(gauge: Dict[str, Any], section: str, key: str) -> ExactInt:
    raw = (gauge.get(section) or {}).get(key)
    if raw is None:
        return ExactInt(0)
    return ExactInt(str(raw))


def pool_price(gauge: Dict[str, Any]) -> ExactDecimal:
    return normalize(_gauge_int(gauge, "swap_data", "virtual_price"), 18)


def rewards_apy(pool: Optional[Dict[str, Any]]) -> ExactDecimal:
    total = ZERO
    for reward in (pool or {}).get("gaugeRewards") or []:
        total += ExactDecimal(str(reward.get("APY") or 0)) / 100
    return total


def pool_weekly_apy(item: Optional[Dict[str, Any]]) -> ExactDecimal:
    return ExactDecimal(str((item or {}).get("latestWeeklyApy") or 0)) / 100


def gauge_base_apr(
    gauge: Dict[str, Any],
    crv_price: ExactDecimal,
    pool_price_: ExactDecimal,
    base_asset_price: ExactDecimal,
) -> Tuple[ExactDecimal, ExactDecimal]:
    inflation_rate = normalize(_gauge_int(gauge, "gauge_controller", "inflation_rate"), 18)
    gauge_weight = normalize(_gauge_int(gauge, "gauge_controller", "gauge_relative_weight"), 18)
    working_supply = normalize(_gauge_int(gauge, "gauge_data", "working_supply"), 18)

    apr = inflation_rate * gauge_weight
    apr = apr * (ExactDecimal(SECONDS_PER_YEAR) / working_supply)
    apr = apr * (ExactDecimal(CURVE_BOOST_FLOOR) / pool_price_)
    apr = apr * crv_price
    apr = apr / base_asset_price
    return apr, apr_to_apy(apr, HARVEST_PERIODS)


async def get_curve_boost(ctx: FapyContext, voter: Optional[str], gauge: str) -> ExactDecimal:
    fallback = ExactDecimal(MAINNET_DEFAULT_BOOST if ctx.chain_id == MAINNET else 1)
    if not voter:
        return fallback
    working, balance = await ctx.rpc.batch_call(
        [
            ContractCall.build(gauge, abi.WORKING_BALANCES_SELECTOR, voter),
            ContractCall.build(gauge, abi.BALANCE_OF_SELECTOR, voter),
        ],
        ctx.block_number,
    )
    balance_raw = balance.uint()
    if not balance_raw:
        return fallback
    return normalize(working.uint() or 0, 18) / (
        ExactDecimal(CURVE_BOOST_FLOOR) * normalize(balance_raw, 18)
    )


async def curve_keep_crv(ctx: FapyContext, strategy: str) -> ExactDecimal:
    keep, keep_percentage = await ctx.rpc.batch_call(
        [
            ContractCall.build(strategy, abi.KEEP_CRV_SELECTOR),
            ContractCall.build(strategy, abi.KEEP_CRV_PERCENTAGE_SELECTOR),
        ],
        ctx.block_number,
    )
    # older strategies expose only one of the two
    return bps(ExactInt((keep.uint() or 0) + (keep_percentage.uint() or 0)))


async def curve_strategy_apy(
    ctx: FapyContext, record: CompositionRecord, inputs: CurveInputs, management_fee: ExactDecimal
) -> StrategyAPY:
    boost, keep_crv = await asyncio.gather(
        get_curve_boost(ctx, YEARN_VOTER.get(ctx.chain_id), inputs.gauge),
        curve_keep_crv(ctx, record.strategy),
    )
    crv_apy = inputs.base_apy * boost + inputs.reward_apy
    gross = inputs.base_apy * boost * (ONE - keep_crv) + inputs.reward_apy + inputs.pool_apy
    return StrategyAPY(
        type="crv",
        net_apy=net_of_fees(gross, bps(record.debt.performance_fee), management_fee),
        boost=boost,
        pool_apy=inputs.pool_apy,
        boosted_apr=crv_apy,
        base_apr=inputs.base_apy,
        rewards_apy=inputs.reward_apy,
        keep_crv=keep_crv,
    )
