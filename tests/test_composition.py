"""Tests for strategy composition: status, names, debts and live reads."""

import asyncio

from vaultfold import abi
from vaultfold.composition import (
    MetaSource,
    Status,
    StrategyDebt,
    StrategyMeta,
    VaultState,
    build_composition,
    build_vault_snapshot_hook,
    classify_status,
    compose_vault,
    debt_ratio_bps,
    read_fees_bps,
    read_v2_debts,
)
from vaultfold.numeric import ExactDecimal, ExactInt
from vaultfold.projector import ProjectedMembership
from vaultfold.storage import Snapshot
from vaultfold.things import RiskDefaults, Thing

from conftest import STRATEGY_A, STRATEGY_B, STRATEGY_C, VAULT


def test_classify_status():
    assert classify_status(True, False) is Status.ACTIVE
    assert classify_status(True, True) is Status.ACTIVE
    assert classify_status(False, True) is Status.INACTIVE
    assert classify_status(False, False) is Status.UNALLOCATED


def test_build_composition_names_and_status():
    meta = StrategyMeta(
        display_names={STRATEGY_A: "Curve Lender"},
        snapshots={
            STRATEGY_B: Snapshot(
                1, STRATEGY_B, snapshot={"name": "StrategyB"},
                hook={"lastReportDetail": {"apr": {"net": "0.042"}}},
            )
        },
        risk_levels={STRATEGY_A: 2},
    )
    debts = {
        STRATEGY_A: StrategyDebt(STRATEGY_A, total_debt=ExactInt(100)),
        STRATEGY_B: StrategyDebt(STRATEGY_B),
    }
    records = build_composition(VAULT, [STRATEGY_A, STRATEGY_B, STRATEGY_C], [STRATEGY_B], debts, meta, v3=False)
    by = {r.strategy: r for r in records}
    assert by[STRATEGY_A].name == "Curve Lender"
    assert by[STRATEGY_A].status is Status.ACTIVE
    assert by[STRATEGY_A].risk_level == 2
    assert by[STRATEGY_B].name == "StrategyB"
    assert by[STRATEGY_B].status is Status.INACTIVE
    assert by[STRATEGY_B].latest_report_apr == ExactDecimal("0.042")
    assert by[STRATEGY_C].name == "Unknown"
    assert by[STRATEGY_C].status is Status.UNALLOCATED
    assert by[STRATEGY_C].debt.total_debt == 0


def test_v3_status_uses_current_debt():
    debts = {STRATEGY_A: StrategyDebt(STRATEGY_A, total_debt=ExactInt(5))}
    [record] = build_composition(VAULT, [STRATEGY_A], [], debts, StrategyMeta(), v3=True)
    assert record.status is Status.UNALLOCATED


def test_debt_ratio_bps_v3_and_clamp():
    debts = {
        STRATEGY_A: StrategyDebt(STRATEGY_A, current_debt=ExactInt(250)),
        STRATEGY_B: StrategyDebt(STRATEGY_B, current_debt=ExactInt(-1)),
    }
    a, b = build_composition(VAULT, [STRATEGY_A, STRATEGY_B], [], debts, StrategyMeta(), v3=True)
    assert debt_ratio_bps(a, ExactInt(1000)) == 2500
    assert debt_ratio_bps(a, ExactInt(0)) == 0
    assert debt_ratio_bps(b, ExactInt(1000)) == 0


def test_vault_state_from_snapshot():
    snap = Snapshot(
        1, VAULT,
        snapshot={"apiVersion": "3.0.2", "asset": STRATEGY_C, "totalAssets": "1000", "get_default_queue": [STRATEGY_A]},
    )
    vault = VaultState.from_snapshot(snap)
    assert vault.v3
    assert vault.total_assets == 1000
    assert vault.default_queue == (STRATEGY_A,)


def test_read_v2_debts_skips_legacy_api(rpc):
    debts = asyncio.run(read_v2_debts(rpc, VAULT, [STRATEGY_A], "0.3.1"))
    assert debts == {}
    assert rpc.requests == []


def test_compose_v2_vault(rpc, storage):
    rpc.on(VAULT, abi.WITHDRAWAL_QUEUE_SELECTOR, lambda args: STRATEGY_A if int(args, 16) == 0 else None)
    rpc.on(VAULT, abi.STRATEGIES_SELECTOR, lambda args: (
        [1000, 1, 6000, 0, 0, 77, 500, 3, 0] if abi.decode_topic_address(args) == STRATEGY_A else [1000, 1, 0, 0, 0, 5, 0, 0, 0]
    ))
    storage.set_display_name(1, STRATEGY_A, "StrategyCurveTriCrypto")
    storage.upsert_thing(Thing(1, STRATEGY_A, "risk", RiskDefaults(risk_level=3)))
    vault = VaultState(VAULT, api_version="0.4.6")
    membership = ProjectedMembership(strategies=[STRATEGY_A, STRATEGY_B])

    records = asyncio.run(compose_vault(rpc, MetaSource(storage), 1, vault, membership))
    a, b = records
    assert a.status is Status.ACTIVE
    assert a.debt.debt_ratio == 6000
    assert a.debt.last_report == 77
    assert a.name == "StrategyCurveTriCrypto"
    assert a.risk_level == 3
    assert b.status is Status.UNALLOCATED

    hook = build_vault_snapshot_hook(membership, records, [STRATEGY_A])
    assert hook["withdrawal_queue"] == [STRATEGY_A]
    assert hook["composition"][0]["status"] == "active"
    storage.merge_hook(1, VAULT, hook)
    assert storage.get_snapshot(1, VAULT).hook["debts"][STRATEGY_A]["total_debt"] == "500"


def test_v3_fees_from_accountant(rpc):
    accountant = "0x" + "ac" * 20
    rpc.on(accountant, abi.GET_VAULT_CONFIG_SELECTOR, None)
    rpc.on(accountant, abi.DEFAULT_CONFIG_SELECTOR, [100, 1000, 0, 0, 0, 0])
    vault = VaultState(VAULT, api_version="3.0.2", accountant=accountant)
    fees = asyncio.run(read_fees_bps(rpc, vault))
    assert fees == {"managementFee": ExactInt(100), "performanceFee": ExactInt(1000)}
