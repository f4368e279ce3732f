import logging
from typing import Dict, List, Optional

from ..composition import CompositionRecord, Status, VaultState, read_fees_bps
from ..market import CurveMarketData
from ..things import StrategyDefaults, StrategyFamily, classify_family, is_curve_name
from .common import FapyContext, ForwardAPY
from .crv_like import compute_curve_forward_apy
from .v2 import compute_v2_forward_apy
from .v3 import compute_v3_forward_apy

logger = logging.getLogger(__name__)


def strategy_families(ctx: FapyContext, records: List[CompositionRecord]) -> Dict[str, StrategyFamily]:
    """Stored family per strategy, falling back to the composition name."""
    stored = {}
    if ctx.storage is not None and records:
        things = ctx.storage.get_things(ctx.chain_id, [r.strategy for r in records], "strategy")
        stored = {
            a: t.defaults.family
            for a, t in things.items()
            if isinstance(t.defaults, StrategyDefaults) and t.defaults.family is not StrategyFamily.NONE
        }
    return {r.strategy: stored.get(r.strategy) or classify_family(r.name) for r in records}


def is_curve_like(
    vault_name: Optional[str],
    records: List[CompositionRecord],
    families: Dict[str, StrategyFamily],
) -> bool:
    if is_curve_name(vault_name):
        return True
    return any(
        families[r.strategy].marks_curve_vault for r in records if r.status is Status.ACTIVE
    )


async def load_market(ctx: FapyContext) -> CurveMarketData:
    if ctx.market is None:
        return CurveMarketData()
    return await ctx.market.load(ctx.chain_id)


async def compute_forward_apy(
    ctx: FapyContext,
    vault: VaultState,
    records: List[CompositionRecord],
    vault_name: Optional[str] = None,
) -> ForwardAPY:
    families = strategy_families(ctx, records)
    if is_curve_like(vault_name, records, families):
        fees = await read_fees_bps(ctx.rpc, vault, ctx.block_number)
        market = await load_market(ctx)
        logger.debug("vault %s priced with the curve family", vault.address)
        return await compute_curve_forward_apy(
            ctx, vault, records, market, families, fees["managementFee"]
        )
    if vault.v3:
        return await compute_v3_forward_apy(ctx, vault, records)
    return await compute_v2_forward_apy(ctx, vault)
