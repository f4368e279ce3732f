from .common import FapyContext, ForwardAPY
from .engine import compute_forward_apy

__all__ = ["FapyContext", "ForwardAPY", "compute_forward_apy"]
