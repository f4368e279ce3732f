from typing import Any, List, Optional, Union

from .errors import ValidationError

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# erc20 / vault
DECIMALS_SELECTOR = "0x313ce567"
TOTAL_SUPPLY_SELECTOR = "0x18160ddd"
BALANCE_OF_SELECTOR = "0x70a08231"
TOTAL_ASSETS_SELECTOR = "0x01e1d114"
PRICE_PER_SHARE_SELECTOR = "0x99530b06"
API_VERSION_SELECTOR = "0x25829410"
STRATEGIES_SELECTOR = "0x39ebf823"
PERFORMANCE_FEE_SELECTOR = "0x87788782"
MANAGEMENT_FEE_SELECTOR = "0xa6f7f5d6"
WITHDRAWAL_QUEUE_SELECTOR = "0xc822adda"
NAME_SELECTOR = "0x06fdde03"
TOKEN_SELECTOR = "0xfc0c546a"
ASSET_SELECTOR = "0x38d52e0f"

# v3 vault
GET_DEFAULT_QUEUE_SELECTOR = "0xa9bbf1cc"
ROLE_MANAGER_SELECTOR = "0x79b98917"
ACCOUNTANT_SELECTOR = "0x4fb3ccc5"

# v3 debt allocator / apr oracle
GET_STRATEGY_TARGET_RATIO_SELECTOR = "0x0b90938b"
GET_STRATEGY_MAX_RATIO_SELECTOR = "0x18043a36"
GET_STRATEGY_APR_SELECTOR = "0x4d060e36"
GET_CURRENT_APR_SELECTOR = "0x59d8703d"

# v3 accountant
GET_VAULT_CONFIG_SELECTOR = "0xde1eb9a3"
DEFAULT_CONFIG_SELECTOR = "0x9e09ed5f"

# curve gauge / yearn curve strategies
WORKING_BALANCES_SELECTOR = "0x13ecb1ca"
KEEP_CRV_SELECTOR = "0x7fef901a"
KEEP_CRV_PERCENTAGE_SELECTOR = "0x2de231be"
USE_LOCAL_CRV_SELECTOR = "0x1a0deb6b"  # uselLocalCRV(), misspelled on chain
KEEP_CVX_SELECTOR = "0x4b31217e"
LOCAL_KEEP_CRV_SELECTOR = "0x73fd827f"
CURVE_GLOBAL_SELECTOR = "0xd5347401"

# convex booster / reward pools
PID_SELECTOR = "0x5eaec0e4"
ID_SELECTOR = "0xb3cea217"
FRAX_PID_SELECTOR = "0x70799be7"
POOL_INFO_SELECTOR = "0x1526fe27"
REWARD_RATE_SELECTOR = "0x7b0a47ee"
EXTRA_REWARDS_LENGTH_SELECTOR = "0xd55a23f4"
EXTRA_REWARDS_SELECTOR = "0x40c35446"
PERIOD_FINISH_SELECTOR = "0xebe2b12b"
REWARD_TOKEN_SELECTOR = "0xf7c618c1"

# prisma
PRISMA_RECEIVER_SELECTOR = "0xb4ef5af4"
PRISMA_REWARD_RATE_SELECTOR = "0xbd4bfed8"
LP_TOKEN_SELECTOR = "0x5fcbd285"


def normalize_address(addr: str) -> str:
    if not isinstance(addr, str):
        raise ValidationError(f"address must be a string, got: {type(addr)}")
    addr = addr.strip().lower()
    if not addr.startswith("0x") or len(addr) != 42:
        raise ValidationError(f"invalid address format: {addr}")
    try:
        int(addr[2:], 16)
    except ValueError as e:
        raise ValidationError(f"invalid address format: {addr}") from e
    return addr


def topic_address(addr: str) -> str:
    return "0x" + ("0" * 24) + normalize_address(addr)[2:]


def parse_hex_int(value: Optional[str]) -> int:
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    return int(value, 16)


def decode_topic_address(topic: str) -> str:
    topic = topic.lower()
    if topic.startswith("0x"):
        topic = topic[2:]
    return "0x" + topic[-40:]


def encode_uint256(value: int) -> str:
    if value < 0:
        value = (1 << 256) + value
    return hex(value)[2:].zfill(64)


def encode_address(addr: str) -> str:
    return normalize_address(addr)[2:].zfill(64)


def encode_call(selector: str, *args: Union[int, str]) -> str:
    """ABI-encode a call with static (uint/int/address) arguments."""
    words = []
    for a in args:
        if isinstance(a, str):
            words.append(encode_address(a))
        else:
            words.append(encode_uint256(int(a)))
    return selector + "".join(words)


def split_words(data: Optional[str]) -> List[str]:
    if not data or data == "0x":
        return []
    body = data[2:] if data.startswith("0x") else data
    return [body[i:i + 64] for i in range(0, len(body) - len(body) % 64, 64)]


def _word(data: Optional[str], index: int) -> str:
    words = split_words(data)
    if index >= len(words):
        raise ValidationError(f"return data too short: wanted word {index}, got {len(words)}")
    return words[index]


def decode_uint256(data: Optional[str], index: int = 0) -> int:
    return int(_word(data, index), 16)


def decode_address(data: Optional[str], index: int = 0) -> str:
    return "0x" + _word(data, index)[-40:]


def decode_uint_tuple(data: Optional[str], count: int) -> List[int]:
    return [decode_uint256(data, i) for i in range(count)]


def decode_address_array(data: Optional[str]) -> List[str]:
    words = split_words(data)
    if not words:
        raise ValidationError("return data too short for an address array")
    offset = int(words[0], 16) // 32
    if offset >= len(words):
        raise ValidationError(f"array offset {offset} past end of return data")
    length = int(words[offset], 16)
    if offset + 1 + length > len(words):
        raise ValidationError(f"address array of {length} overruns return data")
    return ["0x" + w[-40:] for w in words[offset + 1: offset + 1 + length]]


def decode_string(data: Optional[str]) -> str:
    words = split_words(data)
    if len(words) < 2:
        raise ValidationError("return data too short for a string")
    offset = int(words[0], 16) // 32
    length = int(words[offset], 16)
    body = "".join(words[offset + 1:])
    return bytes.fromhex(body[: length * 2]).decode("utf-8", errors="replace")


def is_zero_address(addr: Any) -> bool:
    return not addr or str(addr).lower() == ZERO_ADDRESS
