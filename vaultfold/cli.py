import argparse
import asyncio
import contextlib
import json
import logging
from typing import Any, Dict

import aiohttp

from .cache import TTLCache
from .composition import MetaSource
from .config import AppConfig, load_config
from .errors import VaultfoldError
from .jobs import JobContext, handle
from .market import CurveMarket, PriceService
from .rpc import RPCClient
from .storage import Storage, dumps

logger = logging.getLogger("vaultfold")


def _payload(args: argparse.Namespace) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"chainId": args.chain_id, "address": args.address}
    if getattr(args, "block", None) is not None:
        payload["blockNumber"] = args.block
    if args.command == "extract":
        payload["fromBlock"] = args.from_block
        if args.to_block is not None:
            payload["toBlock"] = args.to_block
        if args.events:
            payload["events"] = args.events.split(",")
    return payload


async def main_async(cfg: AppConfig, command: str, payload: Dict[str, Any]) -> Any:
    cache = TTLCache(cfg.cache_ttl_sec)
    storage = Storage(cfg.sqlite_path)
    async with contextlib.AsyncExitStack() as stack:
        session = await stack.enter_async_context(
            aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=cfg.rpc_timeout_sec))
        )
        clients: Dict[int, RPCClient] = {}
        for chain_id in cfg.rpc_urls:
            clients[chain_id] = await stack.enter_async_context(
                RPCClient(
                    cfg.rpc_url(chain_id),
                    max_retries=cfg.max_rpc_retries,
                    timeout_sec=cfg.rpc_timeout_sec,
                    batch_size=cfg.rpc_batch_size,
                )
            )

        def rpc_for(chain_id: int) -> RPCClient:
            if chain_id not in clients:
                cfg.rpc_url(chain_id)
            return clients[chain_id]

        ctx = JobContext(
            cfg=cfg,
            storage=storage,
            rpc_for=rpc_for,
            meta_source=MetaSource(storage, cache),
            prices=PriceService(session, cache, cfg),
            market=CurveMarket(session, cache, cfg),
        )
        try:
            return await handle(command, payload, ctx)
        finally:
            storage.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="vault event replay and forward APY")
    parser.add_argument(
        "--config",
        default="./config.json",
        help="config file path (default: ./config.json)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    extract = sub.add_parser("extract", help="fill missing event-log ranges for an address")
    extract.add_argument("--from-block", type=int, default=0)
    extract.add_argument("--to-block", type=int, default=None)
    extract.add_argument("--events", default="", help="comma separated event names")

    snapshot = sub.add_parser("snapshot", help="project and compose a vault")
    fapy = sub.add_parser("fapy", help="compute and store forward APY for a vault")
    for p in (snapshot, fapy):
        p.add_argument("--block", type=int, default=None)

    for p in (extract, snapshot, fapy):
        p.add_argument("--chain-id", type=int, required=True)
        p.add_argument("address")

    args = parser.parse_args()
    try:
        cfg = load_config(args.config)
    except (OSError, ValueError) as e:
        raise SystemExit(f"bad config {args.config}: {e}") from e

    logging.basicConfig(
        level=getattr(logging, cfg.log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        result = asyncio.run(main_async(cfg, args.command, _payload(args)))
    except KeyboardInterrupt:
        return
    except VaultfoldError as e:
        raise SystemExit(f"{args.command} failed: {e}") from e

    if result is None:
        logger.warning("%s produced nothing for %s", args.command, args.address)
        return
    if hasattr(result, "composite"):
        result = {"type": result.type, "netAPY": result.net_apy, "composite": result.composite}
    print(json.dumps(json.loads(dumps(result)), indent=2))


if __name__ == "__main__":
    main()
