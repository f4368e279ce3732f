import logging
import math
from decimal import Decimal
from typing import Any, List, Optional

from .fapy.common import ForwardAPY
from .numeric import Accuracy, ExactDecimal, ExactInt
from .storage import OutputRow

logger = logging.getLogger(__name__)

FAPY_LABEL = "fapy"


def coerce_value(value: Any) -> Optional[float]:
    """Exact numbers become doubles here and nowhere else; non-finite values become None."""
    if value is None:
        return None
    if isinstance(value, (ExactDecimal, ExactInt)):
        f, accuracy = value.to_float()
        if accuracy is not Accuracy.EXACT:
            logger.debug("%s stored as %r (%s)", value, f, accuracy.value)
    elif isinstance(value, (int, float, Decimal)):
        f = float(value)
    else:
        return None
    if math.isnan(f) or math.isinf(f):
        return None
    return f


def decompose(
    result: ForwardAPY,
    chain_id: int,
    address: str,
    block_number: int,
    block_time: int,
    label: str = FAPY_LABEL,
) -> List[OutputRow]:
    components = dict(result.composite)
    components["netAPY"] = result.net_apy
    rows = []
    for component in sorted(components):
        value = coerce_value(components[component])
        if value is None:
            logger.warning("dropping non-finite %s for %s:%s", component, chain_id, address)
            continue
        rows.append(
            OutputRow(
                chain_id=chain_id,
                address=address.lower(),
                label=label,
                component=component,
                value=value,
                block_number=block_number,
                block_time=block_time,
            )
        )
    return rows
