import json
import sqlite3
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import ValidationError
from .events import EventLog
from .numeric import ExactDecimal, ExactInt
from .strides import Stride
from .things import Thing, merge_things, parse_thing


def _json_default(v: Any) -> Any:
    if isinstance(v, (ExactDecimal, ExactInt)):
        return str(v)
    if isinstance(v, Enum):
        return v.value
    raise TypeError(f"not JSON serializable: {type(v).__name__}")


def dumps(v: Any) -> str:
    return json.dumps(v, default=_json_default, sort_keys=True)


@dataclass
class Snapshot:
    chain_id: int
    address: str
    snapshot: Dict[str, Any] = field(default_factory=dict)
    hook: Dict[str, Any] = field(default_factory=dict)
    block_number: int = 0
    block_time: int = 0


@dataclass(frozen=True)
class OutputRow:
    chain_id: int
    address: str
    label: str
    component: str
    value: Optional[float]
    block_number: int
    block_time: int

    @property
    def series_time(self) -> int:
        return self.block_time


class Storage:
    def __init__(self, db_path: str):
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(db_path)
        self.conn.row_factory = sqlite3.Row
        self._init_schema()

    def close(self) -> None:
        self.conn.close()

    def _init_schema(self) -> None:
        cur = self.conn.cursor()
        cur.executescript(
            """
            PRAGMA journal_mode=WAL;
            PRAGMA synchronous=NORMAL;

            CREATE TABLE IF NOT EXISTS things (
                chain_id INTEGER NOT NULL,
                address TEXT NOT NULL,
                label TEXT NOT NULL,
                defaults TEXT NOT NULL,
                PRIMARY KEY(chain_id, address, label)
            );

            CREATE TABLE IF NOT EXISTS evmlogs (
                chain_id INTEGER NOT NULL,
                address TEXT NOT NULL,
                signature TEXT NOT NULL,
                topic0 TEXT NOT NULL,
                block_number INTEGER NOT NULL,
                log_index INTEGER NOT NULL,
                block_time INTEGER NOT NULL,
                transaction_hash TEXT NOT NULL,
                args TEXT NOT NULL,
                UNIQUE(chain_id, address, block_number, log_index)
            );
            CREATE INDEX IF NOT EXISTS idx_evmlogs_sig
                ON evmlogs(chain_id, signature, block_number, log_index);

            CREATE TABLE IF NOT EXISTS snapshots (
                chain_id INTEGER NOT NULL,
                address TEXT NOT NULL,
                snapshot TEXT NOT NULL,
                hook TEXT NOT NULL,
                block_number INTEGER NOT NULL,
                block_time INTEGER NOT NULL,
                PRIMARY KEY(chain_id, address)
            );

            CREATE TABLE IF NOT EXISTS outputs (
                chain_id INTEGER NOT NULL,
                address TEXT NOT NULL,
                label TEXT NOT NULL,
                component TEXT NOT NULL,
                value REAL,
                block_number INTEGER NOT NULL,
                block_time INTEGER NOT NULL,
                series_time INTEGER NOT NULL,
                PRIMARY KEY(chain_id, address, label, component, series_time)
            );

            CREATE TABLE IF NOT EXISTS strides (
                chain_id INTEGER NOT NULL,
                address TEXT NOT NULL,
                indexing_key TEXT NOT NULL,
                strides TEXT NOT NULL,
                PRIMARY KEY(chain_id, address, indexing_key)
            );

            CREATE TABLE IF NOT EXISTS meta (
                chain_id INTEGER NOT NULL,
                address TEXT NOT NULL,
                display_name TEXT,
                PRIMARY KEY(chain_id, address)
            );
            """
        )
        self.conn.commit()

    def upsert_thing(self, thing: Thing) -> Thing:
        existing = self.get_thing(thing.chain_id, thing.address, thing.label)
        merged = merge_things(existing, thing) if existing else thing
        self.conn.execute(
            """
            INSERT INTO things(chain_id, address, label, defaults) VALUES (?, ?, ?, ?)
            ON CONFLICT(chain_id, address, label) DO UPDATE SET defaults=excluded.defaults
            """,
            (merged.chain_id, merged.address, merged.label, dumps(merged.to_dict()["defaults"])),
        )
        self.conn.commit()
        return merged

    def get_thing(self, chain_id: int, address: str, label: str) -> Optional[Thing]:
        row = self.conn.execute(
            "SELECT * FROM things WHERE chain_id=? AND address=? AND label=?",
            (chain_id, address.lower(), label),
        ).fetchone()
        if not row:
            return None
        return self._thing_from_row(row)

    def get_things(self, chain_id: int, addresses: Sequence[str], label: str) -> Dict[str, Thing]:
        if not addresses:
            return {}
        marks = ",".join("?" for _ in addresses)
        rows = self.conn.execute(
            f"SELECT * FROM things WHERE chain_id=? AND label=? AND address IN ({marks})",
            (chain_id, label, *[a.lower() for a in addresses]),
        ).fetchall()
        return {r["address"]: self._thing_from_row(r) for r in rows}

    def list_things(self, label: str, chain_id: Optional[int] = None) -> List[Thing]:
        if chain_id is None:
            rows = self.conn.execute(
                "SELECT * FROM things WHERE label=? ORDER BY chain_id, address", (label,)
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM things WHERE label=? AND chain_id=? ORDER BY address",
                (label, chain_id),
            ).fetchall()
        return [self._thing_from_row(r) for r in rows]

    def _thing_from_row(self, row: sqlite3.Row) -> Thing:
        return parse_thing(
            {
                "chainId": row["chain_id"],
                "address": row["address"],
                "label": row["label"],
                "defaults": json.loads(row["defaults"]),
            }
        )

    def insert_logs(self, events: Iterable[EventLog]) -> int:
        cur = self.conn.cursor()
        inserted = 0
        cur.execute("BEGIN")
        try:
            for e in events:
                cur.execute(
                    """
                    INSERT OR IGNORE INTO evmlogs(
                        chain_id, address, signature, topic0, block_number, log_index,
                        block_time, transaction_hash, args
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        e.chain_id,
                        e.address,
                        e.signature,
                        e.topic0,
                        e.block_number,
                        e.log_index,
                        e.block_time,
                        e.transaction_hash,
                        dumps(e.args),
                    ),
                )
                inserted += cur.rowcount
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return inserted

    def query_logs(
        self,
        chain_id: int,
        address: Optional[str],
        signatures: Sequence[str],
        from_block: Optional[int] = None,
        to_block: Optional[int] = None,
        arg_equals: Optional[Tuple[str, str]] = None,
    ) -> List[EventLog]:
        where = ["chain_id=?"]
        params: List[Any] = [chain_id]
        if address:
            where.append("address=?")
            params.append(address.lower())
        if signatures:
            where.append(f"signature IN ({','.join('?' for _ in signatures)})")
            params.extend(signatures)
        if from_block is not None:
            where.append("block_number>=?")
            params.append(from_block)
        if to_block is not None:
            where.append("block_number<=?")
            params.append(to_block)
        if arg_equals is not None:
            name, value = arg_equals
            if not name.isidentifier():
                raise ValidationError(f"bad event argument name: {name!r}")
            where.append("lower(json_extract(args, ?))=?")
            params.extend([f"$.{name}", str(value).lower()])
        rows = self.conn.execute(
            f"SELECT * FROM evmlogs WHERE {' AND '.join(where)} ORDER BY block_number, log_index",
            params,
        ).fetchall()
        return [
            EventLog(
                chain_id=r["chain_id"],
                address=r["address"],
                signature=r["signature"],
                block_number=r["block_number"],
                log_index=r["log_index"],
                block_time=r["block_time"],
                transaction_hash=r["transaction_hash"],
                topic0=r["topic0"],
                args=json.loads(r["args"]),
            )
            for r in rows
        ]

    def query_logs_by_arg(
        self,
        chain_id: int,
        signatures: Sequence[str],
        arg: str,
        value: str,
        to_block: Optional[int] = None,
    ) -> List[EventLog]:
        return self.query_logs(chain_id, None, signatures, to_block=to_block, arg_equals=(arg, value))

    def get_snapshot(self, chain_id: int, address: str) -> Optional[Snapshot]:
        found = self.get_snapshots(chain_id, [address])
        return found.get(address.lower())

    def get_snapshots(self, chain_id: int, addresses: Sequence[str]) -> Dict[str, Snapshot]:
        if not addresses:
            return {}
        marks = ",".join("?" for _ in addresses)
        rows = self.conn.execute(
            f"SELECT * FROM snapshots WHERE chain_id=? AND address IN ({marks})",
            (chain_id, *[a.lower() for a in addresses]),
        ).fetchall()
        return {
            r["address"]: Snapshot(
                chain_id=r["chain_id"],
                address=r["address"],
                snapshot=json.loads(r["snapshot"]),
                hook=json.loads(r["hook"]),
                block_number=r["block_number"],
                block_time=r["block_time"],
            )
            for r in rows
        }

    def upsert_snapshot(self, snap: Snapshot) -> None:
        self.conn.execute(
            """
            INSERT INTO snapshots(chain_id, address, snapshot, hook, block_number, block_time)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(chain_id, address) DO UPDATE SET
                snapshot=excluded.snapshot,
                hook=excluded.hook,
                block_number=excluded.block_number,
                block_time=excluded.block_time
            """,
            (
                snap.chain_id,
                snap.address.lower(),
                dumps(snap.snapshot),
                dumps(snap.hook),
                snap.block_number,
                snap.block_time,
            ),
        )
        self.conn.commit()

    def merge_hook(self, chain_id: int, address: str, hook: Dict[str, Any]) -> None:
        snap = self.get_snapshot(chain_id, address) or Snapshot(chain_id, address.lower())
        merged = dict(snap.hook)
        merged.update(json.loads(dumps(hook)))
        snap.hook = merged
        self.upsert_snapshot(snap)

    def upsert_outputs(self, rows: Iterable[OutputRow]) -> int:
        cur = self.conn.cursor()
        n = 0
        cur.execute("BEGIN")
        try:
            for o in rows:
                cur.execute(
                    """
                    INSERT INTO outputs(
                        chain_id, address, label, component, value,
                        block_number, block_time, series_time
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(chain_id, address, label, component, series_time) DO UPDATE SET
                        value=excluded.value,
                        block_number=excluded.block_number,
                        block_time=excluded.block_time
                    """,
                    (
                        o.chain_id,
                        o.address.lower(),
                        o.label,
                        o.component,
                        o.value,
                        o.block_number,
                        o.block_time,
                        o.series_time,
                    ),
                )
                n += 1
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return n

    def query_outputs(
        self, chain_id: int, address: str, label: str, series_time: Optional[int] = None
    ) -> List[OutputRow]:
        sql = "SELECT * FROM outputs WHERE chain_id=? AND address=? AND label=?"
        params: List[Any] = [chain_id, address.lower(), label]
        if series_time is not None:
            sql += " AND series_time=?"
            params.append(series_time)
        rows = self.conn.execute(sql + " ORDER BY series_time, component", params).fetchall()
        return [
            OutputRow(
                chain_id=r["chain_id"],
                address=r["address"],
                label=r["label"],
                component=r["component"],
                value=r["value"],
                block_number=r["block_number"],
                block_time=r["block_time"],
            )
            for r in rows
        ]

    def get_strides(self, chain_id: int, address: str, indexing_key: str) -> List[Stride]:
        row = self.conn.execute(
            "SELECT strides FROM strides WHERE chain_id=? AND address=? AND indexing_key=?",
            (chain_id, address.lower(), indexing_key),
        ).fetchone()
        if not row:
            return []
        return [Stride.from_dict(s) for s in json.loads(row["strides"])]

    def set_strides(
        self, chain_id: int, address: str, indexing_key: str, strides: Sequence[Stride]
    ) -> None:
        self.conn.execute(
            """
            INSERT INTO strides(chain_id, address, indexing_key, strides) VALUES (?, ?, ?, ?)
            ON CONFLICT(chain_id, address, indexing_key) DO UPDATE SET strides=excluded.strides
            """,
            (chain_id, address.lower(), indexing_key, json.dumps([s.to_dict() for s in strides])),
        )
        self.conn.commit()

    def set_display_name(self, chain_id: int, address: str, display_name: str) -> None:
        self.conn.execute(
            """
            INSERT INTO meta(chain_id, address, display_name) VALUES (?, ?, ?)
            ON CONFLICT(chain_id, address) DO UPDATE SET display_name=excluded.display_name
            """,
            (chain_id, address.lower(), display_name),
        )
        self.conn.commit()

    def get_display_names(self, chain_id: int, addresses: Sequence[str]) -> Dict[str, str]:
        if not addresses:
            return {}
        marks = ",".join("?" for _ in addresses)
        rows = self.conn.execute(
            f"SELECT address, display_name FROM meta WHERE chain_id=? AND address IN ({marks})",
            (chain_id, *[a.lower() for a in addresses]),
        ).fetchall()
        return {r["address"]: r["display_name"] for r in rows if r["display_name"]}
