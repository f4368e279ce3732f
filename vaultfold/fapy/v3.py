import asyncio
import logging
from typing import List, Optional, Tuple

from .. import abi
from ..composition import CompositionRecord, VaultState, debt_ratio_bps
from ..constants import FRESH_VAULT_WEIGHT, V3_APR_ORACLE, WEEKLY_PERIODS
from ..numeric import ONE, ZERO, ExactDecimal, apr_to_apy, normalize
from .common import FapyContext, ForwardAPY, bps, first_success, weight

logger = logging.getLogger(__name__)

TYPE = "v3:onchainOracle"


async def read_oracle_apr(ctx: FapyContext, strategy: str) -> Optional[ExactDecimal]:
    async def strategy_apr() -> ExactDecimal:
        raw = await ctx.rpc.read_uint(
            V3_APR_ORACLE, abi.GET_STRATEGY_APR_SELECTOR, strategy, 0, block=ctx.block_number
        )
        return normalize(raw, 18)

    async def current_apr() -> ExactDecimal:
        raw = await ctx.rpc.read_uint(
            V3_APR_ORACLE, abi.GET_CURRENT_APR_SELECTOR, strategy, block=ctx.block_number
        )
        return normalize(raw, 18)

    return await first_success(
        [("getStrategyApr", strategy_apr), ("getCurrentApr", current_apr)],
        f"oracle apr {strategy}",
    )


async def _weighted(
    ctx: FapyContext, record: CompositionRecord, w: ExactDecimal
) -> Optional[Tuple[ExactDecimal, ExactDecimal]]:
    apr = await read_oracle_apr(ctx, record.strategy)
    if apr is None:
        logger.warning(
            "no oracle apr for strategy %s of vault %s, skipping", record.strategy, record.vault
        )
        return None
    net = apr * (ONE - bps(record.debt.performance_fee))
    return apr * w, net * w


async def compute_v3_forward_apy(
    ctx: FapyContext, vault: VaultState, records: List[CompositionRecord]
) -> ForwardAPY:
    if not records:
        return ForwardAPY.empty(TYPE)

    if vault.total_assets.is_zero():
        # freshly seeded vault: first strategy only, at a fixed weight
        parts = [await _weighted(ctx, records[0], ExactDecimal(FRESH_VAULT_WEIGHT))]
    else:
        jobs = []
        for r in records:
            ratio = debt_ratio_bps(r, vault.total_assets)
            if ratio.is_zero():
                continue
            jobs.append(_weighted(ctx, r, weight(ratio)))
        parts = await asyncio.gather(*jobs)

    gross = ZERO
    net = ZERO
    for part in parts:
        if part is None:
            continue
        gross += part[0]
        net += part[1]

    net_apy = apr_to_apy(net, WEEKLY_PERIODS)
    return ForwardAPY(
        type=TYPE,
        net_apy=net_apy,
        composite={
            "v3OracleCurrentAPR": apr_to_apy(gross, WEEKLY_PERIODS),
            "v3OracleStratRatioAPR": net_apy,
        },
    )
