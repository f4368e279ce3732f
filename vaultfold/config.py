import json
from dataclasses import dataclass
from typing import Dict

from .errors import ValidationError

LOG_LEVELS = {"debug", "info", "warning", "error"}


@dataclass
class AppConfig:
    rpc_urls: Dict[int, str]
    sqlite_path: str
    log_level: str
    max_rpc_retries: int
    rpc_timeout_sec: int
    rpc_batch_size: int
    cache_ttl_sec: int
    backfill_chunk_blocks: int
    crv_gauge_registry_url: str
    crv_pools_url: str
    curve_subgraph_url: str
    frax_pools_url: str
    prices_url: str

    def rpc_url(self, chain_id: int) -> str:
        url = self.rpc_urls.get(chain_id)
        if not url:
            raise ValidationError(f"no RPC_URLS entry for chain {chain_id}")
        return url


def load_config(path: str) -> AppConfig:
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    return parse_config(raw)


def parse_config(raw: dict) -> AppConfig:
    rpc_urls_raw = raw.get("RPC_URLS") or {}
    if not isinstance(rpc_urls_raw, dict) or not rpc_urls_raw:
        raise ValidationError("RPC_URLS must be a non-empty object of chain id -> url")
    rpc_urls: Dict[int, str] = {}
    for chain, url in rpc_urls_raw.items():
        try:
            chain_id = int(chain)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"RPC_URLS key is not a chain id: {chain}") from e
        url = str(url).strip()
        if not url:
            raise ValidationError(f"RPC_URLS[{chain}] is empty")
        rpc_urls[chain_id] = url

    log_level = str(raw.get("LOG_LEVEL", "info")).lower()
    if log_level not in LOG_LEVELS:
        raise ValidationError(f"LOG_LEVEL must be one of {sorted(LOG_LEVELS)}")

    max_rpc_retries = int(raw.get("MAX_RPC_RETRIES", 5))
    if max_rpc_retries <= 0:
        raise ValidationError("MAX_RPC_RETRIES must be >= 1")
    cache_ttl_sec = int(raw.get("CACHE_TTL_SEC", 300))
    if cache_ttl_sec < 0:
        raise ValidationError("CACHE_TTL_SEC must be >= 0")
    backfill_chunk_blocks = int(raw.get("BACKFILL_CHUNK_BLOCKS", 10000))
    if backfill_chunk_blocks <= 0:
        raise ValidationError("BACKFILL_CHUNK_BLOCKS must be >= 1")
    rpc_batch_size = int(raw.get("RPC_BATCH_SIZE", 50))
    if rpc_batch_size <= 0:
        raise ValidationError("RPC_BATCH_SIZE must be >= 1")

    return AppConfig(
        rpc_urls=rpc_urls,
        sqlite_path=str(raw.get("SQLITE_PATH", "./data/vaultfold.db")),
        log_level=log_level,
        max_rpc_retries=max_rpc_retries,
        rpc_timeout_sec=int(raw.get("RPC_TIMEOUT_SEC", 12)),
        rpc_batch_size=rpc_batch_size,
        cache_ttl_sec=cache_ttl_sec,
        backfill_chunk_blocks=backfill_chunk_blocks,
        crv_gauge_registry_url=str(raw.get("CRV_GAUGE_REGISTRY_URL", "")).strip(),
        crv_pools_url=str(raw.get("CRV_POOLS_URL", "")).strip(),
        curve_subgraph_url=str(
            raw.get("CURVE_SUBGRAPH_URL", "https://api.curve.fi/api/getSubgraphData")
        ).rstrip("/"),
        frax_pools_url=str(
            raw.get("FRAX_POOLS_URL", "https://frax.convexfinance.com/api/frax/pools")
        ),
        prices_url=str(raw.get("PRICES_URL", "https://coins.llama.fi")).rstrip("/"),
    )
