import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from .. import abi
from ..composition import CompositionRecord
from ..constants import (
    CONVEX_VOTER,
    CRV_TOKEN,
    CVX_BOOSTER,
    CVX_CLIFF_COUNT,
    CVX_CLIFF_SIZE,
    CVX_MAX_SUPPLY,
    CVX_TOKEN,
    HARVEST_PERIODS,
    SECONDS_PER_YEAR,
    SECONDS_PER_YEAR_FLAT,
)
from ..errors import UpstreamUnavailable, ValidationError
from ..numeric import ONE, ZERO, ExactDecimal, apr_to_apy, normalize
from ..rpc import ContractCall
from .common import FapyContext, bps, first_success, net_of_fees, read_price
from .curve import CurveInputs, StrategyAPY, get_curve_boost

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CvxPoolAPY:
    crv_apr: ExactDecimal = ZERO
    cvx_apr: ExactDecimal = ZERO
    crv_apy: ExactDecimal = ZERO
    cvx_apy: ExactDecimal = ZERO


async def reward_pid(ctx: FapyContext, strategy: str) -> Optional[int]:
    def attempt(selector: str):
        async def read() -> int:
            return await ctx.rpc.read_uint(strategy, selector, block=ctx.block_number)
        return read

    return await first_success(
        [
            ("PID", attempt(abi.PID_SELECTOR)),
            ("ID", attempt(abi.ID_SELECTOR)),
            ("fraxPid", attempt(abi.FRAX_PID_SELECTOR)),
        ],
        f"convex pid {strategy}",
    )


async def booster_reward_pool(ctx: FapyContext, strategy: str) -> Optional[str]:
    booster = CVX_BOOSTER.get(ctx.chain_id)
    if not booster:
        return None
    pid = await reward_pid(ctx, strategy)
    if pid is None:
        return None
    try:
        info = await ctx.rpc.eth_call(
            booster, abi.encode_call(abi.POOL_INFO_SELECTOR, pid), ctx.block_number
        )
        # poolInfo: lptoken, token, gauge, crvRewards, stash, shutdown
        return abi.decode_address(info, 3)
    except (UpstreamUnavailable, ValidationError) as e:
        logger.warning("booster poolInfo(%s) failed for %s: %s", pid, strategy, e)
        return None


async def cvx_for_crv(ctx: FapyContext, crv_amount: ExactDecimal) -> ExactDecimal:
    """CVX minted for a CRV amount under the Convex cliff emission schedule."""
    token = CVX_TOKEN.get(ctx.chain_id)
    if not token:
        return ZERO
    try:
        supply_raw = await ctx.rpc.read_uint(token, abi.TOTAL_SUPPLY_SELECTOR, block=ctx.block_number)
    except (UpstreamUnavailable, ValidationError) as e:
        logger.warning("cvx totalSupply unavailable: %s", e)
        return ZERO
    supply = normalize(supply_raw, 18)
    cliff = supply / normalize(CVX_CLIFF_SIZE, 18)
    if cliff >= CVX_CLIFF_COUNT:
        return ZERO
    earned = crv_amount * (ExactDecimal(CVX_CLIFF_COUNT) - cliff) / CVX_CLIFF_COUNT
    till_max = normalize(CVX_MAX_SUPPLY, 18) - supply
    return till_max if earned > till_max else earned


async def cvx_pool_apy(
    ctx: FapyContext, reward_pool: Optional[str], base_asset_price: ExactDecimal
) -> CvxPoolAPY:
    if not reward_pool:
        return CvxPoolAPY()
    rate, supply = await ctx.rpc.batch_call(
        [
            ContractCall.build(reward_pool, abi.REWARD_RATE_SELECTOR),
            ContractCall.build(reward_pool, abi.TOTAL_SUPPLY_SELECTOR),
        ],
        ctx.block_number,
    )
    if not rate.success or not supply.success:
        logger.warning("reward pool %s unreadable: %s %s", reward_pool, rate.error, supply.error)
        return CvxPoolAPY()

    virtual_supply = normalize(supply.uint(), 18) * base_asset_price
    crv_per_underlying = ZERO
    if virtual_supply > 0:
        crv_per_underlying = normalize(rate.uint(), 18) / virtual_supply
    crv_per_year = crv_per_underlying * SECONDS_PER_YEAR_FLAT

    cvx_per_year, crv_price, cvx_price = await asyncio.gather(
        cvx_for_crv(ctx, crv_per_year),
        read_price(ctx, CRV_TOKEN.get(ctx.chain_id)),
        read_price(ctx, CVX_TOKEN.get(ctx.chain_id)),
    )
    crv_apr = crv_per_year * (crv_price or ZERO)
    cvx_apr = cvx_per_year * (cvx_price or ZERO)
    return CvxPoolAPY(
        crv_apr=crv_apr,
        cvx_apr=cvx_apr,
        crv_apy=apr_to_apy(crv_apr, HARVEST_PERIODS),
        cvx_apy=apr_to_apy(cvx_apr, HARVEST_PERIODS),
    )


async def _extra_reward_apr(
    ctx: FapyContext,
    virtual_pool: str,
    base_asset_price: ExactDecimal,
    pool_price: ExactDecimal,
) -> ExactDecimal:
    finish, token, rate, supply = await ctx.rpc.batch_call(
        [
            ContractCall.build(virtual_pool, abi.PERIOD_FINISH_SELECTOR),
            ContractCall.build(virtual_pool, abi.REWARD_TOKEN_SELECTOR),
            ContractCall.build(virtual_pool, abi.REWARD_RATE_SELECTOR),
            ContractCall.build(virtual_pool, abi.TOTAL_SUPPLY_SELECTOR),
        ],
        ctx.block_number,
    )
    if not all(r.success for r in (finish, token, rate, supply)):
        return ZERO
    if finish.uint() < ctx.block_time:
        return ZERO
    price = await read_price(ctx, token.address())
    if not price:
        return ZERO
    top = normalize(rate.uint(), 18) * SECONDS_PER_YEAR * price
    bottom = pool_price * base_asset_price * normalize(supply.uint(), 18)
    return top / bottom


async def extra_rewards_apy(
    ctx: FapyContext,
    reward_pool: Optional[str],
    base_asset_price: ExactDecimal,
    pool_price: ExactDecimal,
) -> ExactDecimal:
    if not reward_pool:
        return ZERO
    try:
        length = await ctx.rpc.read_uint(
            reward_pool, abi.EXTRA_REWARDS_LENGTH_SELECTOR, block=ctx.block_number
        )
    except (UpstreamUnavailable, ValidationError) as e:
        logger.debug("extraRewardsLength on %s failed: %s", reward_pool, e)
        return ZERO
    if length == 0:
        return ZERO
    pools = await ctx.rpc.batch_call(
        [ContractCall.build(reward_pool, abi.EXTRA_REWARDS_SELECTOR, i) for i in range(length)],
        ctx.block_number,
    )
    aprs = await asyncio.gather(
        *[
            _extra_reward_apr(ctx, p.address(), base_asset_price, pool_price)
            for p in pools
            if p.success
        ]
    )
    total = ZERO
    for apr in aprs:
        total += apr
    return apr_to_apy(total, HARVEST_PERIODS)


async def convex_keep_crv(ctx: FapyContext, strategy: str) -> ExactDecimal:
    async def read(to: str, selector: str) -> int:
        return await ctx.rpc.read_uint(to, selector, block=ctx.block_number)

    try:
        use_local = await read(strategy, abi.USE_LOCAL_CRV_SELECTOR)
    except (UpstreamUnavailable, ValidationError):
        return ZERO

    if use_local:
        local = await first_success(
            [
                ("keepCVX", lambda: read(strategy, abi.KEEP_CVX_SELECTOR)),
                ("localKeepCRV", lambda: read(strategy, abi.LOCAL_KEEP_CRV_SELECTOR)),
            ],
            f"local keepCRV {strategy}",
        )
        return bps(local or 0)

    try:
        curve_global = await ctx.rpc.read_address(
            strategy, abi.CURVE_GLOBAL_SELECTOR, block=ctx.block_number
        )
    except (UpstreamUnavailable, ValidationError):
        return ZERO
    if abi.is_zero_address(curve_global):
        return ZERO
    keep = await first_success(
        [("keepCRV", lambda: read(curve_global, abi.KEEP_CRV_SELECTOR))],
        f"global keepCRV {curve_global}",
    )
    return bps(keep or 0)


async def convex_strategy_apy(
    ctx: FapyContext,
    record: CompositionRecord,
    inputs: CurveInputs,
    management_fee: ExactDecimal,
) -> StrategyAPY:
    reward_pool = await booster_reward_pool(ctx, record.strategy)
    boost, keep_crv, pool_apy, extra_apy = await asyncio.gather(
        get_curve_boost(ctx, CONVEX_VOTER.get(ctx.chain_id), inputs.gauge),
        convex_keep_crv(ctx, record.strategy),
        cvx_pool_apy(ctx, reward_pool, inputs.base_asset_price),
        extra_rewards_apy(ctx, reward_pool, inputs.base_asset_price, inputs.pool_price),
    )
    gross = pool_apy.crv_apy * (ONE - keep_crv) + extra_apy + inputs.pool_apy + pool_apy.cvx_apy
    return StrategyAPY(
        type="cvx",
        net_apy=net_of_fees(gross, bps(record.debt.performance_fee), management_fee),
        boost=boost,
        pool_apy=inputs.pool_apy,
        boosted_apr=pool_apy.crv_apr,
        base_apr=inputs.base_apy,
        cvx_apr=pool_apy.cvx_apr,
        rewards_apy=inputs.reward_apy,
        keep_crv=keep_crv,
    )


async def frax_strategy_apy(
    ctx: FapyContext,
    record: CompositionRecord,
    inputs: CurveInputs,
    management_fee: ExactDecimal,
    frax_pool: Optional[dict],
) -> Optional[StrategyAPY]:
    if not frax_pool:
        logger.warning("no frax pool for strategy %s, skipping", record.strategy)
        return None
    base = await convex_strategy_apy(ctx, record, inputs, management_fee)
    min_apr = ExactDecimal(str((frax_pool.get("totalRewardAprs") or {}).get("min") or 0)) / 100
    base.type = "frax"
    base.net_apy += min_apr
    base.rewards_apy += min_apr
    return base
