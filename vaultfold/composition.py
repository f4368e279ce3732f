import asyncio
import logging
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from . import abi
from .cache import TTLCache
from .constants import MAX_BPS, WITHDRAWAL_QUEUE_SIZE
from .errors import ValidationError
from .numeric import ExactDecimal, ExactInt
from .projector import ProjectedMembership
from .rpc import CallResult, ContractCall, RPCClient
from .storage import Snapshot, Storage
from .things import parse_api_version

logger = logging.getLogger(__name__)

# v2 vaults up to this version expose an older strategies() layout
LEGACY_V2_API = (0, 3, 1)


class Status(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    UNALLOCATED = "unallocated"


def classify_status(has_debt: bool, in_queue: bool) -> Status:
    if has_debt:
        return Status.ACTIVE
    if in_queue:
        return Status.INACTIVE
    return Status.UNALLOCATED


def _int(raw: Any) -> ExactInt:
    if raw is None:
        return ExactInt(0)
    if isinstance(raw, (ExactInt, int)):
        return ExactInt(raw)
    return ExactInt(str(raw))


@dataclass(frozen=True)
class VaultState:
    address: str
    api_version: str = "0.0.0"
    decimals: int = 18
    asset: Optional[str] = None
    total_assets: ExactInt = ExactInt(0)
    price_per_share: ExactInt = ExactInt(0)
    performance_fee: ExactInt = ExactInt(0)
    management_fee: ExactInt = ExactInt(0)
    default_queue: tuple = ()
    role_manager: Optional[str] = None
    accountant: Optional[str] = None
    activation: int = 0

    @property
    def v3(self) -> bool:
        return parse_api_version(self.api_version)[:1] >= (3,)

    @classmethod
    def from_snapshot(cls, snap: Snapshot) -> "VaultState":
        s = snap.snapshot
        asset = s.get("asset") or s.get("token")
        queue = s.get("get_default_queue") or []
        if not isinstance(queue, list):
            raise ValidationError(f"get_default_queue must be a list for {snap.address}")
        return cls(
            address=abi.normalize_address(snap.address),
            api_version=str(s.get("apiVersion") or "0.0.0"),
            decimals=int(s.get("decimals") or 18),
            asset=abi.normalize_address(asset) if asset else None,
            total_assets=_int(s.get("totalAssets")),
            price_per_share=_int(s.get("pricePerShare")),
            performance_fee=_int(s.get("performanceFee")),
            management_fee=_int(s.get("managementFee")),
            default_queue=tuple(abi.normalize_address(q) for q in queue),
            role_manager=s.get("role_manager") or None,
            accountant=s.get("accountant") or None,
            activation=int(s.get("activation") or 0),
        )


@dataclass(frozen=True)
class StrategyDebt:
    strategy: str
    performance_fee: ExactInt = ExactInt(0)
    activation: ExactInt = ExactInt(0)
    last_report: ExactInt = ExactInt(0)
    debt_ratio: ExactInt = ExactInt(0)
    total_debt: ExactInt = ExactInt(0)
    total_gain: ExactInt = ExactInt(0)
    total_loss: ExactInt = ExactInt(0)
    current_debt: ExactInt = ExactInt(0)
    max_debt: ExactInt = ExactInt(0)
    target_debt_ratio: ExactInt = ExactInt(0)
    max_debt_ratio: ExactInt = ExactInt(0)


@dataclass(frozen=True)
class CompositionRecord:
    vault: str
    strategy: str
    name: str
    status: Status
    debt: StrategyDebt
    v3: bool = False
    latest_report_apr: Optional[ExactDecimal] = None
    risk_level: Optional[int] = None

    @property
    def has_debt(self) -> bool:
        return has_debt(self.debt, self.v3)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["status"] = self.status.value
        return d


def has_debt(debt: StrategyDebt, v3: bool) -> bool:
    return (debt.current_debt if v3 else debt.total_debt) > 0


def debt_ratio_bps(record: CompositionRecord, total_assets: ExactInt) -> ExactInt:
    """Share of vault assets held by the strategy, in basis points."""
    if not record.v3:
        ratio = record.debt.debt_ratio
    elif total_assets.is_zero():
        ratio = ExactInt(0)
    else:
        ratio = (record.debt.current_debt * MAX_BPS).div(total_assets)
    if ratio.is_negative():
        logger.warning(
            "negative debt ratio %s for %s in %s, clamping to 0", ratio, record.strategy, record.vault
        )
        return ExactInt(0)
    return ratio


@dataclass
class StrategyMeta:
    display_names: Dict[str, str] = field(default_factory=dict)
    risk_levels: Dict[str, int] = field(default_factory=dict)
    snapshots: Dict[str, Snapshot] = field(default_factory=dict)


class MetaSource:
    """Batched strategy metadata, one lookup per kind for a whole vault."""

    def __init__(self, storage: Storage, cache: Optional[TTLCache] = None):
        self.storage = storage
        self.cache = cache or TTLCache()

    async def display_names(self, chain_id: int, addresses: Sequence[str]) -> Dict[str, str]:
        key = ("display_names", chain_id, tuple(addresses))
        return await self.cache.wrap(key, self._fetch_display_names(chain_id, addresses))

    async def risk_levels(self, chain_id: int, addresses: Sequence[str]) -> Dict[str, int]:
        key = ("risk_levels", chain_id, tuple(addresses))
        return await self.cache.wrap(key, self._fetch_risk_levels(chain_id, addresses))

    async def strategy_snapshots(self, chain_id: int, addresses: Sequence[str]) -> Dict[str, Snapshot]:
        key = ("strategy_snapshots", chain_id, tuple(addresses))
        return await self.cache.wrap(key, self._fetch_snapshots(chain_id, addresses))

    def _fetch_display_names(self, chain_id: int, addresses: Sequence[str]):
        async def fetch() -> Dict[str, str]:
            return self.storage.get_display_names(chain_id, addresses)
        return fetch

    def _fetch_risk_levels(self, chain_id: int, addresses: Sequence[str]):
        async def fetch() -> Dict[str, int]:
            things = self.storage.get_things(chain_id, addresses, "risk")
            return {a: t.defaults.risk_level for a, t in things.items()}
        return fetch

    def _fetch_snapshots(self, chain_id: int, addresses: Sequence[str]):
        async def fetch() -> Dict[str, Snapshot]:
            return self.storage.get_snapshots(chain_id, addresses)
        return fetch

    async def fetch_all(self, chain_id: int, addresses: Sequence[str]) -> StrategyMeta:
        names, risks, snaps = await asyncio.gather(
            self.display_names(chain_id, addresses),
            self.risk_levels(chain_id, addresses),
            self.strategy_snapshots(chain_id, addresses),
        )
        return StrategyMeta(display_names=names, risk_levels=risks, snapshots=snaps)


def _latest_report_apr(snap: Optional[Snapshot]) -> Optional[ExactDecimal]:
    if snap is None:
        return None
    detail = snap.hook.get("lastReportDetail") or {}
    net = (detail.get("apr") or {}).get("net")
    if net is None:
        return None
    try:
        return ExactDecimal(str(net))
    except ValidationError:
        logger.warning("unparseable lastReportDetail apr %r for %s", net, snap.address)
        return None


def build_composition(
    vault: str,
    strategies: Sequence[str],
    queue: Sequence[str],
    debts: Dict[str, StrategyDebt],
    meta: StrategyMeta,
    v3: bool,
) -> List[CompositionRecord]:
    queued = {q.lower() for q in queue}
    records: List[CompositionRecord] = []
    for strategy in strategies:
        strategy = strategy.lower()
        debt = debts.get(strategy) or StrategyDebt(strategy)
        snap = meta.snapshots.get(strategy)
        name = (
            meta.display_names.get(strategy)
            or (snap.snapshot.get("name") if snap else None)
            or "Unknown"
        )
        records.append(
            CompositionRecord(
                vault=vault.lower(),
                strategy=strategy,
                name=str(name),
                status=classify_status(has_debt(debt, v3), strategy in queued),
                debt=debt,
                v3=v3,
                latest_report_apr=_latest_report_apr(snap),
                risk_level=meta.risk_levels.get(strategy),
            )
        )
    return records


async def read_v2_withdrawal_queue(
    rpc: RPCClient, vault: str, block: Optional[int] = None
) -> List[str]:
    calls = [
        ContractCall.build(vault, abi.WITHDRAWAL_QUEUE_SELECTOR, i)
        for i in range(WITHDRAWAL_QUEUE_SIZE)
    ]
    queue: List[str] = []
    for r in await rpc.batch_call(calls, block):
        addr = r.address()
        if addr and not abi.is_zero_address(addr):
            queue.append(addr)
    return queue


async def read_v2_debts(
    rpc: RPCClient,
    vault: str,
    strategies: Sequence[str],
    api_version: str,
    block: Optional[int] = None,
) -> Dict[str, StrategyDebt]:
    if parse_api_version(api_version) <= LEGACY_V2_API:
        return {}
    calls = [ContractCall.build(vault, abi.STRATEGIES_SELECTOR, s) for s in strategies]
    debts: Dict[str, StrategyDebt] = {}
    for s, r in zip(strategies, await rpc.batch_call(calls, block)):
        if not r.success:
            logger.warning("strategies(%s) failed on %s: %s", s, vault, r.error)
            continue
        w = abi.decode_uint_tuple(r.data, 9)
        debts[s.lower()] = StrategyDebt(
            strategy=s.lower(),
            performance_fee=ExactInt(w[0]),
            activation=ExactInt(w[1]),
            debt_ratio=ExactInt(w[2]),
            last_report=ExactInt(w[5]),
            total_debt=ExactInt(w[6]),
            total_gain=ExactInt(w[7]),
            total_loss=ExactInt(w[8]),
        )
    return debts


def _uint_or_zero(r: CallResult, index: int = 0) -> ExactInt:
    v = r.uint(index)
    return ExactInt(v or 0)


async def read_v3_debts(
    rpc: RPCClient,
    vault: str,
    strategies: Sequence[str],
    debt_allocator: Optional[str] = None,
    block: Optional[int] = None,
) -> Dict[str, StrategyDebt]:
    per_strategy = 4 if debt_allocator else 2
    calls: List[ContractCall] = []
    for s in strategies:
        calls.append(ContractCall.build(vault, abi.STRATEGIES_SELECTOR, s))
        calls.append(ContractCall.build(s, abi.PERFORMANCE_FEE_SELECTOR))
        if debt_allocator:
            calls.append(ContractCall.build(debt_allocator, abi.GET_STRATEGY_TARGET_RATIO_SELECTOR, s))
            calls.append(ContractCall.build(debt_allocator, abi.GET_STRATEGY_MAX_RATIO_SELECTOR, s))
    results = await rpc.batch_call(calls, block)

    debts: Dict[str, StrategyDebt] = {}
    for i, s in enumerate(strategies):
        chunk = results[i * per_strategy:(i + 1) * per_strategy]
        params = chunk[0]
        if not params.success:
            logger.warning("strategies(%s) failed on %s: %s", s, vault, params.error)
            continue
        w = abi.decode_uint_tuple(params.data, 4)
        debts[s.lower()] = StrategyDebt(
            strategy=s.lower(),
            activation=ExactInt(w[0]),
            last_report=ExactInt(w[1]),
            current_debt=ExactInt(w[2]),
            max_debt=ExactInt(w[3]),
            performance_fee=_uint_or_zero(chunk[1]),
            target_debt_ratio=_uint_or_zero(chunk[2]) if debt_allocator else ExactInt(0),
            max_debt_ratio=_uint_or_zero(chunk[3]) if debt_allocator else ExactInt(0),
        )
    return debts


async def read_fees_bps(
    rpc: RPCClient, vault: VaultState, block: Optional[int] = None
) -> Dict[str, ExactInt]:
    """Vault management/performance fees in bps; v3 reads them from the accountant."""
    if not vault.v3:
        return {
            "managementFee": vault.management_fee,
            "performanceFee": vault.performance_fee,
        }
    if vault.accountant and not abi.is_zero_address(vault.accountant):
        calls = [
            ContractCall.build(vault.accountant, abi.GET_VAULT_CONFIG_SELECTOR, vault.address),
            ContractCall.build(vault.accountant, abi.DEFAULT_CONFIG_SELECTOR),
        ]
        custom, default = await rpc.batch_call(calls, block)
        for r in (custom, default):
            if r.success:
                return {"managementFee": _uint_or_zero(r, 0), "performanceFee": _uint_or_zero(r, 1)}
        logger.warning("accountant %s has no fee config for %s", vault.accountant, vault.address)
    return {"managementFee": ExactInt(0), "performanceFee": vault.performance_fee}


async def read_queue(rpc: RPCClient, vault: VaultState, block: Optional[int] = None) -> List[str]:
    if vault.v3:
        return list(vault.default_queue)
    return await read_v2_withdrawal_queue(rpc, vault.address, block)


async def compose_vault(
    rpc: RPCClient,
    meta_source: MetaSource,
    chain_id: int,
    vault: VaultState,
    membership: ProjectedMembership,
    block: Optional[int] = None,
    queue: Optional[Sequence[str]] = None,
) -> List[CompositionRecord]:
    strategies = membership.strategies
    if queue is None:
        queue = await read_queue(rpc, vault, block)
    if vault.v3:
        debts_task = read_v3_debts(rpc, vault.address, strategies, membership.debt_allocator, block)
    else:
        debts_task = read_v2_debts(rpc, vault.address, strategies, vault.api_version, block)
    debts, meta = await asyncio.gather(debts_task, meta_source.fetch_all(chain_id, strategies))
    return build_composition(vault.address, strategies, queue, debts, meta, vault.v3)


def build_vault_snapshot_hook(
    membership: ProjectedMembership,
    records: Sequence[CompositionRecord],
    queue: Sequence[str],
) -> Dict[str, Any]:
    return {
        "strategies": list(membership.strategies),
        "roles": dict(membership.roles),
        "debt_allocator": membership.debt_allocator,
        "debts": {r.strategy: asdict(r.debt) for r in records},
        "composition": [r.to_dict() for r in records],
        "withdrawal_queue": [q.lower() for q in queue],
    }
