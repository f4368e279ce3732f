"""Identity records for on-chain entities, one typed payload per label."""

from dataclasses import asdict, dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, Optional, Type, Union

from .abi import normalize_address
from .errors import ValidationError


class StrategyFamily(str, Enum):
    CURVE = "curve"
    CONVEX = "convex"
    FRAX = "frax"
    PRISMA = "prisma"
    NONE = "none"

    @property
    def marks_curve_vault(self) -> bool:
        # only curve and convex names identify a curve vault on their own
        return self in (StrategyFamily.CURVE, StrategyFamily.CONVEX)


CURVE_MARKERS = ("curve", "convex", "crv")


def is_curve_name(name: Optional[str]) -> bool:
    n = (name or "").lower()
    return "ajna-" not in n and any(k in n for k in CURVE_MARKERS)


def classify_family(name: Optional[str]) -> StrategyFamily:
    n = (name or "").lower()
    if "ajna-" in n:
        return StrategyFamily.NONE
    if "prisma" in n:
        return StrategyFamily.PRISMA
    if "frax" in n:
        return StrategyFamily.FRAX
    if not is_curve_name(n):
        return StrategyFamily.NONE
    if "convex" in n and "curve" not in n:
        return StrategyFamily.CONVEX
    return StrategyFamily.CURVE


def parse_api_version(version: Optional[str]) -> tuple:
    parts = []
    for p in str(version or "0").split("."):
        digits = "".join(ch for ch in p if ch.isdigit())
        parts.append(int(digits or 0))
    return tuple(parts)


def is_v3(api_version: Optional[str]) -> bool:
    return parse_api_version(api_version)[:1] >= (3,)


@dataclass(frozen=True)
class VaultDefaults:
    api_version: str = "0.0.0"
    asset: Optional[str] = None
    decimals: int = 18
    registry: Optional[str] = None
    inception_block: int = 0
    inception_time: int = 0
    v3: bool = False
    yearn: bool = False


@dataclass(frozen=True)
class StrategyDefaults:
    api_version: str = "0.0.0"
    vault: Optional[str] = None
    name: Optional[str] = None
    family: StrategyFamily = StrategyFamily.NONE
    inception_block: int = 0
    inception_time: int = 0


@dataclass(frozen=True)
class Erc20Defaults:
    name: Optional[str] = None
    symbol: Optional[str] = None
    decimals: int = 18


@dataclass(frozen=True)
class AccountantDefaults:
    vault: Optional[str] = None
    inception_block: int = 0


@dataclass(frozen=True)
class StakingPoolDefaults:
    vault: Optional[str] = None
    reward_token: Optional[str] = None
    inception_block: int = 0


@dataclass(frozen=True)
class RiskDefaults:
    risk_level: int = 0


ThingDefaults = Union[
    VaultDefaults,
    StrategyDefaults,
    Erc20Defaults,
    AccountantDefaults,
    StakingPoolDefaults,
    RiskDefaults,
]

DEFAULTS_BY_LABEL: Dict[str, Type[Any]] = {
    "vault": VaultDefaults,
    "strategy": StrategyDefaults,
    "erc20": Erc20Defaults,
    "accountant": AccountantDefaults,
    "stakingPool": StakingPoolDefaults,
    "risk": RiskDefaults,
}

_ADDRESS_FIELDS = {"asset", "registry", "vault", "reward_token"}

# camelCase keys as they arrive from registry/ingest payloads
_ALIASES = {
    "apiVersion": "api_version",
    "inceptionBlock": "inception_block",
    "inceptionTime": "inception_time",
    "rewardToken": "reward_token",
    "riskLevel": "risk_level",
}


def _coerce_field(name: str, ftype: Any, value: Any) -> Any:
    if value is None:
        return None
    if name in _ADDRESS_FIELDS:
        return normalize_address(value)
    if name == "family":
        try:
            return StrategyFamily(value)
        except ValueError as e:
            raise ValidationError(f"unknown strategy family: {value}") from e
    if ftype in (int, "int"):
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"{name} must be an integer, got {value!r}") from e
    if ftype in (bool, "bool"):
        return bool(value)
    return str(value)


def parse_defaults(label: str, raw: Optional[Dict[str, Any]]) -> ThingDefaults:
    cls = DEFAULTS_BY_LABEL.get(label)
    if cls is None:
        raise ValidationError(f"unknown thing label: {label}")
    raw = {_ALIASES.get(k, k): v for k, v in (raw or {}).items()}
    kwargs: Dict[str, Any] = {}
    for f in fields(cls):
        if f.name in raw:
            kwargs[f.name] = _coerce_field(f.name, f.type, raw[f.name])
    if cls is StrategyDefaults and "family" not in kwargs:
        kwargs["family"] = classify_family(kwargs.get("name"))
    if cls is VaultDefaults and "v3" not in kwargs:
        kwargs["v3"] = is_v3(kwargs.get("api_version"))
    return cls(**kwargs)


@dataclass(frozen=True)
class Thing:
    chain_id: int
    address: str
    label: str
    defaults: ThingDefaults = field(default_factory=VaultDefaults)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self.defaults)
        if "family" in d:
            d["family"] = d["family"].value
        return {
            "chainId": self.chain_id,
            "address": self.address,
            "label": self.label,
            "defaults": d,
        }


def parse_thing(raw: Dict[str, Any]) -> Thing:
    try:
        chain_id = int(raw["chainId"])
        address = normalize_address(raw["address"])
        label = str(raw["label"])
    except KeyError as e:
        raise ValidationError(f"thing is missing {e}") from e
    return Thing(chain_id, address, label, parse_defaults(label, raw.get("defaults")))


def merge_things(existing: Thing, incoming: Thing) -> Thing:
    """Idempotent upsert: non-default incoming values overwrite, others keep."""
    if (existing.chain_id, existing.address, existing.label) != (
        incoming.chain_id,
        incoming.address,
        incoming.label,
    ):
        raise ValidationError("cannot merge different things")
    blank = type(incoming.defaults)()
    updates = {
        f.name: getattr(incoming.defaults, f.name)
        for f in fields(incoming.defaults)
        if getattr(incoming.defaults, f.name) != getattr(blank, f.name)
    }
    return replace(existing, defaults=replace(existing.defaults, **updates))
