import logging
from typing import Iterable, List

from . import strides
from .abi import normalize_address
from .events import decode_log, topics_for
from .rpc import RPCClient
from .storage import Storage
from .strides import Stride

logger = logging.getLogger(__name__)


class LogExtractor:
    """Pulls event logs for block ranges not yet covered for an indexing key."""

    def __init__(self, storage: Storage, rpc: RPCClient, chain_id: int, chunk_blocks: int = 10000):
        self.storage = storage
        self.rpc = rpc
        self.chain_id = chain_id
        self.chunk_blocks = chunk_blocks

    def pending(self, address: str, indexing_key: str, from_block: int, to_block: int) -> List[Stride]:
        covered = self.storage.get_strides(self.chain_id, address, indexing_key)
        return strides.plan(from_block, to_block, covered)

    async def extract(
        self,
        address: str,
        event_names: Iterable[str],
        from_block: int,
        to_block: int,
        indexing_key: str = "events",
    ) -> int:
        address = normalize_address(address)
        topics = topics_for(event_names)
        inserted = 0
        for gap in self.pending(address, indexing_key, from_block, to_block):
            start = gap.from_block
            while start <= gap.to_block:
                end = min(start + self.chunk_blocks - 1, gap.to_block)
                inserted += await self._extract_chunk(address, topics, start, end)
                covered = self.storage.get_strides(self.chain_id, address, indexing_key)
                self.storage.set_strides(
                    self.chain_id, address, indexing_key, strides.add(Stride(start, end), covered)
                )
                start = end + 1
        logger.info(
            "extracted %d logs for %s:%s [%d, %d]",
            inserted, self.chain_id, address, from_block, to_block,
        )
        return inserted

    async def _extract_chunk(self, address: str, topics: List[str], start: int, end: int) -> int:
        raw_logs = await self.rpc.get_logs(start, end, address=address, topics=[topics])
        events = []
        for raw in raw_logs:
            if raw.get("removed"):
                continue
            block_number = int(raw["blockNumber"], 16)
            block_time = await self.rpc.get_block_timestamp(block_number)
            event = decode_log(self.chain_id, raw, block_time)
            if event is not None:
                events.append(event)
        return self.storage.insert_logs(events)

    def rollback(self, address: str, indexing_key: str, end_block: int) -> None:
        covered = self.storage.get_strides(self.chain_id, address, indexing_key)
        self.storage.set_strides(
            self.chain_id, address, indexing_key, strides.rollback(covered, end_block)
        )
