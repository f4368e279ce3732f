from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from . import abi
from .errors import ValidationError

STRATEGY_ADDED_TOPIC0 = "0x5a6abd2af9fe6c0554fa08649e2d86e4393ff19dc304d072d38d295c9291d4dc"
STRATEGY_ADDED_LEGACY_TOPIC0 = "0x5ec27a4fa537fc86d0d17d84e0ee3172c9d253c78cc4ab5c69ee99c5f7084f51"
STRATEGY_MIGRATED_TOPIC0 = "0x100b69bb6b504e1252e36b375233158edee64d071b399e2f81473a695fd1b021"
STRATEGY_REVOKED_TOPIC0 = "0x4201c688d84c01154d321afa0c72f1bffe9eef53005c9de9d035074e71e9b32a"
STRATEGY_CHANGED_TOPIC0 = "0xde8ff765a5c5dad48d27bc9faa99836fb81f3b07c9dc62cfe005475d6b83a2ca"
ROLE_SET_TOPIC0 = "0x78557646b1d8efa2cd49740d66df5aca39eb610ca8ca0e1ccac08979b6b2c46e"
NEW_DEBT_ALLOCATOR_TOPIC0 = "0xb87aa110ff22ca00092bbab091c1b6464f413dcfe6391c7fcfc0454f8e1989cb"


@dataclass(frozen=True)
class EventSpec:
    name: str
    topic0: str
    indexed: Tuple[Tuple[str, str], ...]
    data: Tuple[Tuple[str, str], ...] = ()


EVENT_SPECS: Dict[str, EventSpec] = {
    s.topic0: s
    for s in (
        EventSpec(
            "StrategyAdded",
            STRATEGY_ADDED_TOPIC0,
            (("strategy", "address"),),
            (
                ("debtRatio", "uint256"),
                ("minDebtPerHarvest", "uint256"),
                ("maxDebtPerHarvest", "uint256"),
                ("performanceFee", "uint256"),
            ),
        ),
        EventSpec(
            "StrategyAdded",
            STRATEGY_ADDED_LEGACY_TOPIC0,
            (("strategy", "address"),),
            (("debtRatio", "uint256"), ("rateLimit", "uint256"), ("performanceFee", "uint256")),
        ),
        EventSpec(
            "StrategyMigrated",
            STRATEGY_MIGRATED_TOPIC0,
            (("oldVersion", "address"), ("newVersion", "address")),
        ),
        EventSpec("StrategyRevoked", STRATEGY_REVOKED_TOPIC0, (("strategy", "address"),)),
        EventSpec(
            "StrategyChanged",
            STRATEGY_CHANGED_TOPIC0,
            (("strategy", "address"), ("change_type", "uint256")),
        ),
        EventSpec("RoleSet", ROLE_SET_TOPIC0, (("account", "address"), ("role", "uint256"))),
        EventSpec(
            "NewDebtAllocator",
            NEW_DEBT_ALLOCATOR_TOPIC0,
            (("allocator", "address"), ("vault", "address")),
        ),
    )
}

V2_MEMBERSHIP_EVENTS = ("StrategyAdded", "StrategyMigrated", "StrategyRevoked")
V3_MEMBERSHIP_EVENTS = ("StrategyChanged",)


def topics_for(names: Iterable[str]) -> List[str]:
    wanted = set(names)
    return [t for t, s in EVENT_SPECS.items() if s.name in wanted]


@dataclass(frozen=True)
class EventLog:
    chain_id: int
    address: str
    signature: str
    block_number: int
    log_index: int
    block_time: int = 0
    transaction_hash: str = ""
    topic0: str = ""
    args: Dict[str, Any] = field(default_factory=dict)

    @property
    def order_key(self) -> Tuple[int, int]:
        return (self.block_number, self.log_index)

    def arg_address(self, key: str) -> str:
        if key not in self.args:
            raise ValidationError(f"{self.signature} at {self.order_key} is missing arg {key}")
        return abi.normalize_address(self.args[key])

    def arg_int(self, key: str) -> int:
        if key not in self.args:
            raise ValidationError(f"{self.signature} at {self.order_key} is missing arg {key}")
        value = self.args[key]
        try:
            return int(value, 0) if isinstance(value, str) else int(value)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"{self.signature} arg {key} is not an integer: {value!r}") from e


def ordered(events: Iterable[EventLog], descending: bool = False) -> List[EventLog]:
    return sorted(events, key=lambda e: e.order_key, reverse=descending)


def _decode_value(kind: str, word: str) -> Any:
    if kind == "address":
        return abi.decode_topic_address(word)
    return int(word, 16)


def decode_log(chain_id: int, raw: Dict[str, Any], block_time: int = 0) -> Optional[EventLog]:
    """Decode one eth_getLogs entry; unknown topics give None."""
    topics = raw.get("topics") or []
    if not topics:
        return None
    spec = EVENT_SPECS.get(topics[0].lower())
    if spec is None:
        return None
    if len(topics) != len(spec.indexed) + 1:
        raise ValidationError(
            f"{spec.name} expects {len(spec.indexed)} indexed topics, got {len(topics) - 1}"
        )
    args: Dict[str, Any] = {}
    for (name, kind), topic in zip(spec.indexed, topics[1:]):
        args[name] = _decode_value(kind, topic)
    words = abi.split_words(raw.get("data"))
    if len(words) < len(spec.data):
        raise ValidationError(f"{spec.name} data has {len(words)} words, wants {len(spec.data)}")
    for (name, kind), word in zip(spec.data, words):
        args[name] = _decode_value(kind, word)
    return EventLog(
        chain_id=chain_id,
        address=abi.normalize_address(raw["address"]),
        signature=spec.name,
        block_number=abi.parse_hex_int(raw.get("blockNumber")),
        log_index=abi.parse_hex_int(raw.get("logIndex")),
        block_time=block_time,
        transaction_hash=str(raw.get("transactionHash") or "").lower(),
        topic0=spec.topic0,
        args=args,
    )
