import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Tuple, TypeVar

from ..constants import MAX_BPS
from ..errors import UpstreamUnavailable, ValidationError
from ..numeric import ONE, ZERO, ExactDecimal, ExactInt, normalize
from ..rpc import RPCClient

logger = logging.getLogger(__name__)

T = TypeVar("T")

Attempt = Tuple[str, Callable[[], Awaitable[T]]]


@dataclass
class ForwardAPY:
    type: str
    net_apy: ExactDecimal = ZERO
    composite: Dict[str, ExactDecimal] = field(default_factory=dict)

    @classmethod
    def empty(cls, type_: str) -> "ForwardAPY":
        return cls(type=type_)


@dataclass(frozen=True)
class FapyContext:
    chain_id: int
    rpc: RPCClient
    prices: Any
    block_time: int
    block_number: Optional[int] = None
    market: Any = None
    storage: Any = None


async def first_success(attempts: Sequence[Attempt], what: str) -> Optional[T]:
    """Run attempts in order and return the first value read without error."""
    for name, attempt in attempts:
        try:
            return await attempt()
        except (UpstreamUnavailable, ValidationError) as e:
            logger.debug("%s: attempt %s failed: %s", what, name, e)
    return None


def bps(value: ExactInt) -> ExactDecimal:
    return normalize(value, 4)


def weight(debt_ratio_bps: ExactInt) -> ExactDecimal:
    return ExactDecimal(debt_ratio_bps) / MAX_BPS


def net_of_fees(gross: ExactDecimal, performance_fee: ExactDecimal, management_fee: ExactDecimal) -> ExactDecimal:
    net = gross * (ONE - performance_fee)
    if net > management_fee:
        return net - management_fee
    return ZERO


async def read_price(ctx: FapyContext, token: Optional[str]) -> Optional[ExactDecimal]:
    if not token:
        return None
    return await ctx.prices.get_price(ctx.chain_id, token, ctx.block_time)
