import asyncio
import logging
from typing import Dict, List, Mapping, Optional

from ..composition import CompositionRecord, VaultState, debt_ratio_bps
from ..constants import CRV_TOKEN
from ..errors import UpstreamUnavailable, ValidationError
from ..market import CurveMarketData, to_exact
from ..numeric import ZERO, ExactDecimal
from ..things import StrategyFamily, classify_family
from .common import FapyContext, ForwardAPY, bps, read_price, weight
from .convex import convex_strategy_apy, frax_strategy_apy
from .curve import (
    CurveInputs,
    StrategyAPY,
    curve_strategy_apy,
    gauge_base_apr,
    pool_price,
    pool_weekly_apy,
    rewards_apy,
)
from .prisma import prisma_strategy_apy

logger = logging.getLogger(__name__)

COMPONENTS = (
    ("netAPY", "net_apy"),
    ("boost", "boost"),
    ("poolAPY", "pool_apy"),
    ("boostedAPR", "boosted_apr"),
    ("baseAPR", "base_apr"),
    ("cvxAPR", "cvx_apr"),
    ("rewardsAPY", "rewards_apy"),
    ("keepCRV", "keep_crv"),
)


def _result(type_: str, total: StrategyAPY) -> ForwardAPY:
    return ForwardAPY(
        type=type_,
        net_apy=total.net_apy,
        composite={name: getattr(total, attr) for name, attr in COMPONENTS},
    )


async def build_inputs(
    ctx: FapyContext, gauge: Dict, market: CurveMarketData, asset: str
) -> CurveInputs:
    base_asset_price = to_exact(gauge.get("lpTokenPrice"))
    price = pool_price(gauge)
    crv_price = await read_price(ctx, CRV_TOKEN.get(ctx.chain_id))
    if crv_price is None:
        logger.warning("no CRV price on chain %s, gauge emissions count as 0", ctx.chain_id)
    base_apr, base_apy = gauge_base_apr(gauge, crv_price or ZERO, price, base_asset_price)
    return CurveInputs(
        gauge=str(gauge.get("gauge") or ""),
        base_apr=base_apr,
        base_apy=base_apy,
        reward_apy=rewards_apy(market.pool_for(asset)),
        pool_apy=pool_weekly_apy(market.subgraph_item_for(gauge.get("swap"))),
        pool_price=price,
        base_asset_price=base_asset_price,
    )


async def _strategy_apy(
    ctx: FapyContext,
    record: CompositionRecord,
    family: StrategyFamily,
    inputs: CurveInputs,
    management_fee: ExactDecimal,
    frax_pool: Optional[Dict],
) -> Optional[StrategyAPY]:
    try:
        if family is StrategyFamily.PRISMA:
            return await prisma_strategy_apy(ctx, record, inputs, management_fee)
        if family is StrategyFamily.FRAX:
            return await frax_strategy_apy(ctx, record, inputs, management_fee, frax_pool)
        if family is StrategyFamily.CONVEX:
            return await convex_strategy_apy(ctx, record, inputs, management_fee)
        return await curve_strategy_apy(ctx, record, inputs, management_fee)
    except (UpstreamUnavailable, ValidationError) as e:
        logger.warning("strategy %s of vault %s skipped: %s", record.strategy, record.vault, e)
        return None


async def compute_curve_forward_apy(
    ctx: FapyContext,
    vault: VaultState,
    records: List[CompositionRecord],
    market: CurveMarketData,
    families: Mapping[str, StrategyFamily],
    management_fee_bps=None,
) -> ForwardAPY:
    asset = vault.asset
    gauge = market.gauge_for(asset) if asset else None
    if gauge is None:
        logger.info("no curve gauge for vault %s asset %s", vault.address, asset)
        return _result("crv", StrategyAPY(type="crv"))

    inputs = await build_inputs(ctx, gauge, market, asset)
    frax_pool = market.frax_pool_for(asset)
    management_fee = bps(management_fee_bps if management_fee_bps is not None else vault.management_fee)

    jobs = []
    weights = []
    for r in records:
        ratio = debt_ratio_bps(r, vault.total_assets)
        if ratio.is_zero():
            continue
        family = families.get(r.strategy) or classify_family(r.name)
        jobs.append(_strategy_apy(ctx, r, family, inputs, management_fee, frax_pool))
        weights.append(weight(ratio))
    results = await asyncio.gather(*jobs)

    types = []
    total = StrategyAPY(type="")
    for res, w in zip(results, weights):
        if res is None:
            continue
        types.append(res.type)
        part = res.weighted(w)
        for _, attr in COMPONENTS:
            setattr(total, attr, getattr(total, attr) + getattr(part, attr))
    return _result("".join(types) or "crv", total)
