"""Queue handler bodies: extract logs, rebuild a vault snapshot, price a vault."""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from . import abi
from .composition import (
    CompositionRecord,
    MetaSource,
    VaultState,
    build_vault_snapshot_hook,
    compose_vault,
    read_queue,
)
from .config import AppConfig
from .errors import NotFound, UpstreamUnavailable, ValidationError
from .events import V2_MEMBERSHIP_EVENTS, V3_MEMBERSHIP_EVENTS
from .extract import LogExtractor
from .fapy import FapyContext, ForwardAPY, compute_forward_apy
from .outputs import decompose
from .projector import ProjectedMembership, project_membership
from .rpc import CallResult, ContractCall, RPCClient
from .storage import Snapshot, Storage
from .things import StrategyDefaults, Thing, classify_family, is_v3, parse_thing

logger = logging.getLogger(__name__)

DEFAULT_EXTRACT_EVENTS = V2_MEMBERSHIP_EVENTS + V3_MEMBERSHIP_EVENTS + ("RoleSet", "NewDebtAllocator")


@dataclass
class JobContext:
    cfg: AppConfig
    storage: Storage
    rpc_for: Callable[[int], RPCClient]
    meta_source: MetaSource
    prices: Any = None
    market: Any = None


def _target(payload: Dict[str, Any]) -> Tuple[int, str]:
    try:
        return int(payload["chainId"]), abi.normalize_address(payload["address"])
    except KeyError as e:
        raise ValidationError(f"job payload is missing {e}") from e
    except (TypeError, ValueError) as e:
        raise ValidationError(f"bad chainId in job payload: {payload.get('chainId')!r}") from e


async def _block(rpc: RPCClient, payload: Dict[str, Any]) -> Tuple[int, int]:
    block = payload.get("blockNumber")
    if block is None:
        block = await rpc.get_latest_block_number()
    block = int(block)
    return block, await rpc.get_block_timestamp(block)


VAULT_FIELDS = [
    ("name", abi.NAME_SELECTOR),
    ("apiVersion", abi.API_VERSION_SELECTOR),
    ("decimals", abi.DECIMALS_SELECTOR),
    ("totalAssets", abi.TOTAL_ASSETS_SELECTOR),
    ("pricePerShare", abi.PRICE_PER_SHARE_SELECTOR),
    ("performanceFee", abi.PERFORMANCE_FEE_SELECTOR),
    ("managementFee", abi.MANAGEMENT_FEE_SELECTOR),
    ("token", abi.TOKEN_SELECTOR),
    ("asset", abi.ASSET_SELECTOR),
]

V3_VAULT_FIELDS = [
    ("get_default_queue", abi.GET_DEFAULT_QUEUE_SELECTOR),
    ("role_manager", abi.ROLE_MANAGER_SELECTOR),
    ("accountant", abi.ACCOUNTANT_SELECTOR),
]


def _decode_field(key: str, r: CallResult) -> Any:
    if key in ("name", "apiVersion"):
        return abi.decode_string(r.data)
    if key == "get_default_queue":
        return abi.decode_address_array(r.data)
    if key in ("token", "asset", "role_manager", "accountant"):
        return r.address()
    if key == "decimals":
        return r.uint()
    return str(r.uint())


async def _read_fields(
    rpc: RPCClient, address: str, block: Optional[int], calls: List[Tuple[str, str]]
) -> Dict[str, Any]:
    results = await rpc.batch_call([ContractCall.build(address, sel) for _, sel in calls], block)
    fields: Dict[str, Any] = {}
    for (key, _), r in zip(calls, results):
        if not r.success:
            continue
        try:
            fields[key] = _decode_field(key, r)
        except ValidationError as e:
            logger.debug("%s on %s undecodable: %s", key, address, e)
    return fields


async def read_vault_fields(rpc: RPCClient, address: str, block: Optional[int]) -> Dict[str, Any]:
    """Live fields of a vault; failed reads are left out.

    v3 vaults also report their default queue, role manager and accountant.
    """
    fields = await _read_fields(rpc, address, block, VAULT_FIELDS)
    if is_v3(fields.get("apiVersion")):
        v3 = await _read_fields(rpc, address, block, V3_VAULT_FIELDS)
        for key in ("role_manager", "accountant"):
            if abi.is_zero_address(v3.get(key)):
                v3.pop(key, None)
        fields.update(v3)
    return fields


async def refresh_vault_snapshot(
    storage: Storage, rpc: RPCClient, chain_id: int, address: str, block: int, block_time: int
) -> Snapshot:
    snap = storage.get_snapshot(chain_id, address)
    try:
        live = await read_vault_fields(rpc, address, block)
    except UpstreamUnavailable as e:
        if snap is None:
            raise NotFound(f"no snapshot for vault {chain_id}:{address}") from e
        logger.warning("live read of %s failed, using stored snapshot: %s", address, e)
        return snap
    if snap is None:
        if not live:
            raise NotFound(f"{chain_id}:{address} does not look like a vault")
        snap = Snapshot(chain_id, address)
    snap.snapshot = {**snap.snapshot, **live}
    snap.block_number = block
    snap.block_time = block_time
    storage.upsert_snapshot(snap)
    return snap


def project_vault(
    storage: Storage, chain_id: int, vault: VaultState, block: Optional[int] = None
) -> ProjectedMembership:
    names = V3_MEMBERSHIP_EVENTS if vault.v3 else V2_MEMBERSHIP_EVENTS
    membership_events = storage.query_logs(chain_id, vault.address, names, to_block=block)
    role_events = []
    allocator_events = []
    if vault.v3:
        role_events = storage.query_logs(chain_id, vault.address, ["RoleSet"], to_block=block)
        allocator_events = storage.query_logs_by_arg(
            chain_id, ["NewDebtAllocator"], "vault", vault.address, to_block=block
        )
    return project_membership(
        membership_events,
        role_events,
        allocator_events,
        vault.address,
        vault.v3,
        default_queue=vault.default_queue,
        role_manager=vault.role_manager,
    )


def record_strategies(storage: Storage, chain_id: int, records: List[CompositionRecord]) -> None:
    for r in records:
        if r.name == "Unknown":
            continue
        storage.upsert_thing(
            Thing(
                chain_id,
                r.strategy,
                "strategy",
                StrategyDefaults(vault=r.vault, name=r.name, family=classify_family(r.name)),
            )
        )


async def compose(
    ctx: JobContext, rpc: RPCClient, chain_id: int, vault: VaultState, block: Optional[int]
) -> Tuple[ProjectedMembership, List[str], List[CompositionRecord]]:
    membership = project_vault(ctx.storage, chain_id, vault, block)
    queue = await read_queue(rpc, vault, block)
    records = await compose_vault(rpc, ctx.meta_source, chain_id, vault, membership, block, queue)
    return membership, queue, records


async def extract_job(payload: Dict[str, Any], ctx: JobContext) -> int:
    chain_id, address = _target(payload)
    rpc = ctx.rpc_for(chain_id)
    to_block = payload.get("toBlock")
    if to_block is None:
        to_block = await rpc.get_latest_block_number()
    extractor = LogExtractor(ctx.storage, rpc, chain_id, ctx.cfg.backfill_chunk_blocks)
    return await extractor.extract(
        address,
        payload.get("events") or DEFAULT_EXTRACT_EVENTS,
        int(payload.get("fromBlock", 0)),
        int(to_block),
        payload.get("indexingKey", "events"),
    )


async def snapshot_job(payload: Dict[str, Any], ctx: JobContext) -> Dict[str, Any]:
    chain_id, address = _target(payload)
    rpc = ctx.rpc_for(chain_id)
    block, block_time = await _block(rpc, payload)
    snap = await refresh_vault_snapshot(ctx.storage, rpc, chain_id, address, block, block_time)
    vault = VaultState.from_snapshot(snap)
    membership, queue, records = await compose(ctx, rpc, chain_id, vault, block)
    record_strategies(ctx.storage, chain_id, records)
    hook = build_vault_snapshot_hook(membership, records, queue)
    ctx.storage.merge_hook(chain_id, address, hook)
    logger.info(
        "snapshot %s:%s at %d: %d strategies, %d active",
        chain_id, address, block, len(records), sum(1 for r in records if r.has_debt),
    )
    return hook


async def fapy_job(payload: Dict[str, Any], ctx: JobContext) -> ForwardAPY:
    chain_id, address = _target(payload)
    rpc = ctx.rpc_for(chain_id)
    snap = ctx.storage.get_snapshot(chain_id, address)
    if snap is None:
        raise NotFound(f"no snapshot for vault {chain_id}:{address}")
    block, block_time = await _block(rpc, payload)
    vault = VaultState.from_snapshot(snap)
    _, _, records = await compose(ctx, rpc, chain_id, vault, block)

    fctx = FapyContext(
        chain_id=chain_id,
        rpc=rpc,
        prices=ctx.prices,
        block_time=block_time,
        block_number=block,
        market=ctx.market,
        storage=ctx.storage,
    )
    result = await compute_forward_apy(fctx, vault, records, snap.snapshot.get("name"))
    n = ctx.storage.upsert_outputs(decompose(result, chain_id, address, block, block_time))
    logger.info("fapy %s:%s %s net %s (%d rows)", chain_id, address, result.type, result.net_apy, n)
    return result


async def thing_job(payload: Dict[str, Any], ctx: JobContext) -> Dict[str, Any]:
    thing = parse_thing(payload)
    return ctx.storage.upsert_thing(thing).to_dict()


HANDLERS: Dict[str, Callable[[Dict[str, Any], JobContext], Awaitable[Any]]] = {
    "extract": extract_job,
    "snapshot": snapshot_job,
    "fapy": fapy_job,
    "thing": thing_job,
}


async def handle(job_name: str, payload: Dict[str, Any], ctx: JobContext) -> Any:
    handler = HANDLERS.get(job_name)
    if handler is None:
        raise ValidationError(f"unknown job: {job_name}")
    try:
        return await handler(payload, ctx)
    except NotFound as e:
        logger.info("%s skipped: %s", job_name, e)
        return None

