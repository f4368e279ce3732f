class VaultfoldError(Exception):
    pass


class ValidationError(VaultfoldError, ValueError):
    """Malformed input: decoded event args, config values, numeric literals."""


class UpstreamUnavailable(VaultfoldError, RuntimeError):
    """An RPC or HTTP source failed after retries."""


class NotFound(VaultfoldError, LookupError):
    pass


class ComputeInconsistency(VaultfoldError, ArithmeticError):
    """A derived value fell outside its domain (negative ratio, non-finite APY)."""
