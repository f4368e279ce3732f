import asyncio
import logging
from typing import Optional

from .. import abi
from ..composition import CompositionRecord
from ..constants import DAILY_PERIODS, PRISMA_TOKEN, SECONDS_PER_YEAR_FLAT
from ..errors import UpstreamUnavailable, ValidationError
from ..numeric import ZERO, ExactDecimal, apr_to_apy, normalize
from ..rpc import ContractCall
from .common import FapyContext, read_price
from .convex import convex_strategy_apy
from .curve import CurveInputs, StrategyAPY

logger = logging.getLogger(__name__)


async def prisma_receiver(ctx: FapyContext, vault: str) -> Optional[str]:
    try:
        receiver = await ctx.rpc.read_address(
            vault, abi.PRISMA_RECEIVER_SELECTOR, block=ctx.block_number
        )
    except (UpstreamUnavailable, ValidationError) as e:
        logger.debug("prismaReceiver on %s failed: %s", vault, e)
        return None
    return None if abi.is_zero_address(receiver) else receiver


async def prisma_apy(ctx: FapyContext, receiver: str) -> ExactDecimal:
    rate, supply, lp_token = await ctx.rpc.batch_call(
        [
            ContractCall.build(receiver, abi.PRISMA_REWARD_RATE_SELECTOR, abi.ZERO_ADDRESS, 0),
            ContractCall.build(receiver, abi.TOTAL_SUPPLY_SELECTOR),
            ContractCall.build(receiver, abi.LP_TOKEN_SELECTOR),
        ],
        ctx.block_number,
    )
    if not (rate.success and supply.success and lp_token.success):
        logger.warning("prisma receiver %s unreadable", receiver)
        return ZERO
    prisma_price, lp_price = await asyncio.gather(
        read_price(ctx, PRISMA_TOKEN),
        read_price(ctx, lp_token.address()),
    )
    staked_value = normalize(supply.uint(), 18) * (lp_price or ZERO)
    apr = normalize(rate.uint(), 18) * (prisma_price or ZERO) * SECONDS_PER_YEAR_FLAT / staked_value
    return apr_to_apy(apr, DAILY_PERIODS)


async def prisma_strategy_apy(
    ctx: FapyContext,
    record: CompositionRecord,
    inputs: CurveInputs,
    management_fee: ExactDecimal,
) -> Optional[StrategyAPY]:
    receiver = await prisma_receiver(ctx, record.vault)
    if receiver is None:
        logger.warning("vault %s has no prisma receiver, skipping %s", record.vault, record.strategy)
        return None
    base, extra = await asyncio.gather(
        convex_strategy_apy(ctx, record, inputs, management_fee),
        prisma_apy(ctx, receiver),
    )
    base.type = "prisma"
    base.net_apy += extra
    base.rewards_apy += extra
    return base
