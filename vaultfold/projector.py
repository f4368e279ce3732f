"""Fold ordered vault event logs into membership, roles and allocator state.

Every projection sorts its input by ``(block_number, log_index)`` first, so
the result depends on the ordering keys of the logs and never on the order
they were handed in.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from .abi import normalize_address
from .constants import ROLE_MANAGER
from .events import EventLog, ordered

logger = logging.getLogger(__name__)

CHANGE_TYPE_ADDED = 1
CHANGE_TYPE_REVOKED = 2


@dataclass
class ProjectedMembership:
    strategies: List[str] = field(default_factory=list)
    roles: Dict[str, int] = field(default_factory=dict)
    debt_allocator: Optional[str] = None


def _project_v2(events: List[EventLog]) -> List[str]:
    strategies: List[str] = []
    for e in events:
        if e.signature == "StrategyAdded":
            strategies.append(e.arg_address("strategy"))
        elif e.signature == "StrategyMigrated":
            # old version stays listed until its own StrategyRevoked
            strategies.append(e.arg_address("newVersion"))
        elif e.signature == "StrategyRevoked":
            revoked = e.arg_address("strategy")
            if revoked in strategies:
                strategies.remove(revoked)
    return strategies


def _project_v3(events: List[EventLog]) -> List[str]:
    strategies: List[str] = []
    for e in events:
        if e.signature != "StrategyChanged":
            continue
        strategy = e.arg_address("strategy")
        change_type = e.arg_int("change_type")
        if change_type & CHANGE_TYPE_ADDED:
            if strategy not in strategies:
                strategies.append(strategy)
        elif change_type & CHANGE_TYPE_REVOKED:
            if strategy in strategies:
                strategies.remove(strategy)
        else:
            logger.warning(
                "ignoring StrategyChanged with change_type %s at %s", change_type, e.order_key
            )
    return strategies


def project_strategy_membership(events: Iterable[EventLog], v3: bool) -> List[str]:
    evs = ordered(events)
    return _project_v3(evs) if v3 else _project_v2(evs)


def merge_default_queue(strategies: List[str], default_queue: Iterable[str]) -> List[str]:
    result = list(strategies)
    for s in default_queue:
        addr = normalize_address(s)
        if addr not in result:
            result.append(addr)
    return result


def project_role_assignments(
    events: Iterable[EventLog], role_manager: Optional[str] = None
) -> Dict[str, int]:
    roles: Dict[str, int] = {}
    for e in ordered(events):
        if e.signature != "RoleSet":
            continue
        roles[e.arg_address("account")] = e.arg_int("role")
    if role_manager:
        manager = normalize_address(role_manager)
        roles[manager] = roles.get(manager, 0) | ROLE_MANAGER
    return roles


def project_debt_allocator(events: Iterable[EventLog], vault: str) -> Optional[str]:
    target = normalize_address(vault)
    for e in ordered(events, descending=True):
        if e.signature != "NewDebtAllocator":
            continue
        if e.arg_address("vault") == target:
            return e.arg_address("allocator")
    return None


def project_membership(
    membership_events: Iterable[EventLog],
    role_events: Iterable[EventLog],
    allocator_events: Iterable[EventLog],
    vault: str,
    v3: bool,
    default_queue: Iterable[str] = (),
    role_manager: Optional[str] = None,
) -> ProjectedMembership:
    strategies = project_strategy_membership(membership_events, v3)
    if v3:
        strategies = merge_default_queue(strategies, default_queue)
        return ProjectedMembership(
            strategies=strategies,
            roles=project_role_assignments(role_events, role_manager),
            debt_allocator=project_debt_allocator(allocator_events, vault),
        )
    return ProjectedMembership(strategies=strategies)
