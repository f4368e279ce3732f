from typing import Dict

from .numeric import ExactDecimal

MAINNET = 1

SECONDS_PER_YEAR = 31556952
SECONDS_PER_YEAR_FLAT = 31536000
WEEK_SECONDS = 7 * 24 * 60 * 60
MONTH_SECONDS = 30 * 24 * 60 * 60

MAX_BPS = 10000

# Harvests every 15 days, compounded over a year.
HARVEST_PERIODS = ExactDecimal(365) / 15
WEEKLY_PERIODS = 52
DAILY_PERIODS = 365

CURVE_BOOST_FLOOR = "0.4"
MAINNET_DEFAULT_BOOST = "2.5"
FRESH_VAULT_WEIGHT = "0.9"

# one bit above the fourteen roles a v3 vault defines
ROLE_MANAGER = 1 << 14

CVX_CLIFF_SIZE = 10 ** 23
CVX_CLIFF_COUNT = 1000
CVX_MAX_SUPPLY = 10 ** 26

WITHDRAWAL_QUEUE_SIZE = 20

YEARN_VOTER: Dict[int, str] = {
    1: "0xf147b8125d2ef93fb6965db97d6746952a133934",
    10: "0xea3a15df68fcdbe44fdb0db675b2b3a14a148b26",
    250: "0x72a34abafab09b15e7191822a679f28e067c4a16",
    42161: "0x6346282db8323a54e840c6c772b4399c9c655c0d",
}

CONVEX_VOTER: Dict[int, str] = {
    1: "0x989aeb4d175e16225e39e87d0d97a3360524ad80",
}

CVX_BOOSTER: Dict[int, str] = {
    1: "0xf403c135812408bfbe8713b5a23a04b3d48aae31",
}

CRV_TOKEN: Dict[int, str] = {
    1: "0xd533a949740bb3306d119cc777fa900ba034cd52",
    10: "0x0994206dfe8de6ec6920ff4d779b0d950605fb53",
    137: "0x172370d5cd63279efa6d502dab29171933a610af",
    250: "0x1e4f97b9f9f913c46f1632781732927b9019c68b",
    42161: "0x11cdb42b0eb46d95f990bedd4695a6e3fa034978",
}

CVX_TOKEN: Dict[int, str] = {
    1: "0x4e3fbd56cd56c3e72c1403e103b45db9da5b9d2b",
}

PRISMA_TOKEN = "0xda47862a83dac0c112ba89c6abc2159b95afd71c"

V3_APR_ORACLE = "0x1981ad9f44f2ea9add2dc4ad7d075c102c70af92"

CURVE_CHAIN_NAMES: Dict[int, str] = {
    1: "ethereum",
    10: "optimism",
    137: "polygon",
    250: "fantom",
    42161: "arbitrum",
}

LLAMA_CHAIN_NAMES: Dict[int, str] = {
    1: "ethereum",
    10: "optimism",
    100: "xdai",
    137: "polygon",
    146: "sonic",
    250: "fantom",
    8453: "base",
    42161: "arbitrum",
}
