import asyncio
import logging
from typing import Optional

from .. import abi
from ..composition import VaultState
from ..constants import MONTH_SECONDS, WEEK_SECONDS
from ..errors import UpstreamUnavailable, ValidationError
from ..numeric import ONE, ZERO, ExactDecimal, apy_from_pps, normalize
from .common import FapyContext, ForwardAPY, bps

logger = logging.getLogger(__name__)

TYPE = "v2:averaged"


async def read_pps(ctx: FapyContext, vault: VaultState, block: Optional[int]) -> ExactDecimal:
    try:
        raw = await ctx.rpc.read_uint(vault.address, abi.PRICE_PER_SHARE_SELECTOR, block=block)
    except (UpstreamUnavailable, ValidationError) as e:
        logger.debug("pricePerShare for %s at %s unavailable: %s", vault.address, block, e)
        return ZERO
    return normalize(raw, vault.decimals)


async def pps_at(ctx: FapyContext, vault: VaultState, timestamp: int) -> ExactDecimal:
    if vault.activation and timestamp < vault.activation:
        return ZERO
    block = await ctx.rpc.estimate_block_at(timestamp)
    return await read_pps(ctx, vault, block)


async def compute_v2_forward_apy(ctx: FapyContext, vault: VaultState) -> ForwardAPY:
    today, week_ago, month_ago = await asyncio.gather(
        read_pps(ctx, vault, ctx.block_number),
        pps_at(ctx, vault, ctx.block_time - WEEK_SECONDS),
        pps_at(ctx, vault, ctx.block_time - MONTH_SECONDS),
    )
    if today.is_zero():
        logger.warning("vault %s has no price per share at %s", vault.address, ctx.block_number)
        return ForwardAPY.empty(TYPE)

    weekly = apy_from_pps(today, week_ago, 7)
    monthly = apy_from_pps(today, month_ago, 30)
    inception = apy_from_pps(today, ONE, 365)
    return ForwardAPY(
        type=TYPE,
        net_apy=monthly,
        composite={
            "weeklyNetAPY": weekly,
            "monthlyNetAPY": monthly,
            "inceptionNetAPY": inception,
            "pricePerShare": today,
            "weekAgoPricePerShare": week_ago,
            "monthAgoPricePerShare": month_ago,
            "performanceFee": bps(vault.performance_fee),
            "managementFee": bps(vault.management_fee),
        },
    )
