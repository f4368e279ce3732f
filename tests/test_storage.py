"""Tests for the sqlite stores."""

import pytest

from vaultfold.errors import ValidationError
from vaultfold.numeric import ExactInt
from vaultfold.storage import Snapshot, Storage
from vaultfold.strides import Stride

from conftest import STRATEGY_A, STRATEGY_B, VAULT, make_event


def test_logs_are_deduplicated_and_ordered(storage):
    events = [
        make_event("StrategyAdded", 20, 1, strategy=STRATEGY_B),
        make_event("StrategyAdded", 10, 0, strategy=STRATEGY_A),
    ]
    assert storage.insert_logs(events) == 2
    assert storage.insert_logs(events) == 0
    stored = storage.query_logs(1, VAULT, ["StrategyAdded"])
    assert [e.order_key for e in stored] == [(10, 0), (20, 1)]
    assert stored[0].arg_address("strategy") == STRATEGY_A
    assert storage.query_logs(1, VAULT, ["StrategyAdded"], to_block=15)[0].block_number == 10


def test_query_logs_by_arg(storage):
    factory = "0x" + "fa" * 20
    storage.insert_logs(
        [
            make_event("NewDebtAllocator", 5, address=factory, allocator=STRATEGY_A, vault=VAULT),
            make_event("NewDebtAllocator", 6, address=factory, allocator=STRATEGY_B, vault=STRATEGY_A),
        ]
    )
    found = storage.query_logs_by_arg(1, ["NewDebtAllocator"], "vault", VAULT.upper().replace("0X", "0x"))
    assert [e.args["allocator"] for e in found] == [STRATEGY_A]
    assert storage.query_logs_by_arg(1, ["NewDebtAllocator"], "vault", VAULT, to_block=4) == []
    assert storage.query_logs_by_arg(1, ["NewDebtAllocator"], "vault", STRATEGY_B) == []
    with pytest.raises(ValidationError):
        storage.query_logs_by_arg(1, ["NewDebtAllocator"], "vault') OR 1=1 --", VAULT)


def test_snapshot_hook_merge_keeps_snapshot(storage):
    storage.upsert_snapshot(Snapshot(1, VAULT, snapshot={"apiVersion": "0.4.6"}, hook={"a": 1}))
    storage.merge_hook(1, VAULT, {"b": ExactInt(2)})
    snap = storage.get_snapshot(1, VAULT)
    assert snap.snapshot == {"apiVersion": "0.4.6"}
    assert snap.hook == {"a": 1, "b": "2"}


def test_merge_hook_creates_missing_snapshot(storage):
    storage.merge_hook(1, VAULT, {"strategies": [STRATEGY_A]})
    assert storage.get_snapshot(1, VAULT).hook["strategies"] == [STRATEGY_A]


def test_strides_round_trip(storage):
    storage.set_strides(1, VAULT, "events", [Stride(0, 9), Stride(20, 29)])
    assert storage.get_strides(1, VAULT, "events") == [Stride(0, 9), Stride(20, 29)]
    assert storage.get_strides(1, VAULT, "other") == []


def test_display_names(storage):
    storage.set_display_name(1, STRATEGY_A, "Lender")
    assert storage.get_display_names(1, [STRATEGY_A, STRATEGY_B]) == {STRATEGY_A: "Lender"}


def test_in_memory_database():
    s = Storage(":memory:")
    s.set_display_name(1, VAULT, "v")
    assert s.get_display_names(1, [VAULT]) == {VAULT: "v"}
    s.close()
