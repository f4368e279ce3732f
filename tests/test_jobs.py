"""End-to-end handler tests over stored logs and a scripted chain."""

import asyncio

import pytest

from vaultfold import abi
from vaultfold.composition import MetaSource, VaultState, read_fees_bps
from vaultfold.config import parse_config
from vaultfold.constants import ROLE_MANAGER, V3_APR_ORACLE
from vaultfold.errors import ValidationError
from vaultfold.jobs import JobContext, handle
from vaultfold.numeric import ExactDecimal, apr_to_apy
from vaultfold.outputs import FAPY_LABEL

from conftest import ASSET, STRATEGY_A, STRATEGY_B, STRATEGY_C, VAULT, FakePrices, make_event, ret_string


@pytest.fixture
def ctx(rpc, storage, raw_config):
    return JobContext(
        cfg=parse_config(raw_config),
        storage=storage,
        rpc_for=lambda chain_id: rpc,
        meta_source=MetaSource(storage),
        prices=FakePrices(),
    )


@pytest.fixture
def v3_vault(rpc, storage):
    storage.insert_logs(
        [
            make_event("StrategyChanged", 10, strategy=STRATEGY_A, change_type=1),
            make_event("StrategyChanged", 11, strategy=STRATEGY_B, change_type=1),
            make_event("StrategyChanged", 12, strategy=STRATEGY_C, change_type=1),
            make_event("StrategyChanged", 13, strategy=STRATEGY_C, change_type=2),
        ]
    )
    rpc.on(VAULT, abi.NAME_SELECTOR, ret_string("USDC yVault"))
    rpc.on(VAULT, abi.API_VERSION_SELECTOR, ret_string("3.0.2"))
    rpc.on(VAULT, abi.DECIMALS_SELECTOR, 6)
    rpc.on(VAULT, abi.TOTAL_ASSETS_SELECTOR, 1000)
    rpc.on(VAULT, abi.PRICE_PER_SHARE_SELECTOR, 1_050_000)
    rpc.on(VAULT, abi.ASSET_SELECTOR, ASSET)

    debts = {STRATEGY_A: 600, STRATEGY_B: 400}
    rpc.on(VAULT, abi.STRATEGIES_SELECTOR, lambda args: [1, 2, debts[abi.decode_topic_address(args)], 10 ** 9])
    rpc.on(STRATEGY_A, abi.PERFORMANCE_FEE_SELECTOR, 1000)
    rpc.on(STRATEGY_B, abi.PERFORMANCE_FEE_SELECTOR, 0)

    aprs = {STRATEGY_A: 10 ** 17, STRATEGY_B: 5 * 10 ** 16}
    rpc.on(V3_APR_ORACLE, abi.GET_STRATEGY_APR_SELECTOR, lambda args: aprs[abi.decode_topic_address(args[:64])])
    return VAULT


def test_snapshot_job_projects_and_composes(ctx, v3_vault, storage):
    hook = asyncio.run(handle("snapshot", {"chainId": 1, "address": v3_vault}, ctx))
    assert hook["strategies"] == [STRATEGY_A, STRATEGY_B]
    assert [c["status"] for c in hook["composition"]] == ["active", "active"]
    snap = storage.get_snapshot(1, v3_vault)
    assert snap.snapshot["apiVersion"] == "3.0.2"
    assert snap.snapshot["asset"] == ASSET
    assert snap.hook["debts"][STRATEGY_A]["current_debt"] == "600"
    assert snap.block_number == 1000


def test_fapy_job_prices_v3_vault_and_stores_outputs(ctx, v3_vault, storage):
    asyncio.run(handle("snapshot", {"chainId": 1, "address": v3_vault}, ctx))
    result = asyncio.run(handle("fapy", {"chainId": 1, "address": v3_vault}, ctx))

    assert result.type == "v3:onchainOracle"
    assert result.net_apy == apr_to_apy(ExactDecimal("0.074"), 52)
    rows = storage.query_outputs(1, v3_vault, FAPY_LABEL)
    assert {r.component for r in rows} == {"netAPY", "v3OracleCurrentAPR", "v3OracleStratRatioAPR"}


def test_missing_vault_short_circuits(ctx):
    assert asyncio.run(handle("fapy", {"chainId": 1, "address": VAULT}, ctx)) is None
    assert asyncio.run(handle("snapshot", {"chainId": 1, "address": VAULT}, ctx)) is None


def test_thing_job_upserts(ctx, storage):
    out = asyncio.run(
        handle("thing", {"chainId": 1, "address": STRATEGY_A, "label": "strategy", "defaults": {"name": "StrategyCurveX"}}, ctx)
    )
    assert out["defaults"]["family"] == "curve"
    assert storage.get_thing(1, STRATEGY_A, "strategy") is not None


def test_bad_jobs_raise(ctx):
    with pytest.raises(ValidationError):
        asyncio.run(handle("compact", {}, ctx))
    with pytest.raises(ValidationError):
        asyncio.run(handle("fapy", {"address": VAULT}, ctx))


def address_array(*addresses):
    body = "".join(abi.encode_address(a) for a in addresses)
    return "0x" + abi.encode_uint256(32) + abi.encode_uint256(len(addresses)) + body


def test_v3_snapshot_reads_queue_roles_and_accountant(ctx, v3_vault, rpc, storage):
    queued_only = "0x" + "5d" * 20
    role_manager = "0x" + "7e" * 20
    accountant = "0x" + "ac" * 20
    debts = {STRATEGY_A: 600, STRATEGY_B: 0, queued_only: 0}
    rpc.on(v3_vault, abi.STRATEGIES_SELECTOR, lambda args: [1, 2, debts[abi.decode_topic_address(args)], 10 ** 9])
    rpc.on(v3_vault, abi.GET_DEFAULT_QUEUE_SELECTOR, address_array(STRATEGY_A, STRATEGY_B, queued_only))
    rpc.on(v3_vault, abi.ROLE_MANAGER_SELECTOR, role_manager)
    rpc.on(v3_vault, abi.ACCOUNTANT_SELECTOR, accountant)
    rpc.on(accountant, abi.GET_VAULT_CONFIG_SELECTOR, None)
    rpc.on(accountant, abi.DEFAULT_CONFIG_SELECTOR, [100, 1000, 0, 0, 0, 0])

    hook = asyncio.run(handle("snapshot", {"chainId": 1, "address": v3_vault}, ctx))

    assert hook["strategies"] == [STRATEGY_A, STRATEGY_B, queued_only]
    assert [c["status"] for c in hook["composition"]] == ["active", "inactive", "inactive"]
    assert hook["withdrawal_queue"] == [STRATEGY_A, STRATEGY_B, queued_only]
    assert hook["roles"][role_manager] & ROLE_MANAGER

    snap = storage.get_snapshot(1, v3_vault)
    assert snap.snapshot["get_default_queue"] == [STRATEGY_A, STRATEGY_B, queued_only]
    assert snap.snapshot["accountant"] == accountant
    fees = asyncio.run(read_fees_bps(rpc, VaultState.from_snapshot(snap)))
    assert fees == {"managementFee": 100, "performanceFee": 1000}


def test_v3_snapshot_drops_zero_role_manager(ctx, v3_vault, rpc, storage):
    rpc.on(v3_vault, abi.ROLE_MANAGER_SELECTOR, abi.ZERO_ADDRESS)
    rpc.on(v3_vault, abi.GET_DEFAULT_QUEUE_SELECTOR, address_array())
    hook = asyncio.run(handle("snapshot", {"chainId": 1, "address": v3_vault}, ctx))
    assert hook["roles"] == {}
    snap = storage.get_snapshot(1, v3_vault)
    assert "role_manager" not in snap.snapshot
    assert snap.snapshot["get_default_queue"] == []
