# src/storder/keystore.py
from __future__ import annotations

import os
import random
import sqlite3
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, Optional

from algosdk.encoding import encode_address

from storder.crypto.sig import generate_secret_key, split_secret_key


def _now_ms() -> int:
    return int(time.time() * 1000)


def _env_int(name: str, default: int) -> int:
    try:
        raw = str(os.environ.get(name, "")).strip()
        return int(raw) if raw else int(default)
    except ValueError:
        return int(default)


@dataclass(frozen=True)
class KeyRecord:
    name: str
    address: str
    secret_key: bytes = field(repr=False)
    created_ts_ms: int = 0


class SqliteKeystore:
    """Named-wallet keystore on a single SQLite file.

    Table: wallet_keys(name PRIMARY KEY, address, secret_hex, created_ts_ms)

    Guarantees:
      - get_or_create() is stable: one key per name, generated on first use.
      - Two processes racing on the same name end up with the same key
        (INSERT OR IGNORE then re-read under the write lock).
      - The file is created with 0600 permissions where the OS allows it.
    """

    SCHEMA_VERSION = 1

    def __init__(self, *, path: str) -> None:
        self.path = str(path)

    def ensure_parent_dir(self) -> None:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        self.ensure_parent_dir()
        fresh = not Path(self.path).exists()

        connect_timeout_s = float(_env_int("STORDER_SQLITE_CONNECT_TIMEOUT_MS", 10_000)) / 1000.0
        con = sqlite3.connect(
            self.path,
            timeout=connect_timeout_s,
            isolation_level=None,  # we manage BEGIN/COMMIT ourselves
            check_same_thread=False,
        )
        con.row_factory = sqlite3.Row

        if fresh:
            try:
                os.chmod(self.path, 0o600)
            except OSError:
                pass

        con.execute("PRAGMA journal_mode=WAL;")
        con.execute("PRAGMA synchronous=FULL;")
        con.execute(f"PRAGMA busy_timeout={int(connect_timeout_s * 1000)};")
        return con

    def init_schema(self) -> None:
        with self.write_tx() as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS meta (
                  key TEXT PRIMARY KEY,
                  value TEXT NOT NULL
                );
                """
            )
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS wallet_keys (
                  name TEXT PRIMARY KEY,
                  address TEXT NOT NULL UNIQUE,
                  secret_hex TEXT NOT NULL,
                  created_ts_ms INTEGER NOT NULL
                );
                """
            )

            row = con.execute("SELECT value FROM meta WHERE key='schema_version' LIMIT 1;").fetchone()
            if row is None:
                con.execute("INSERT INTO meta(key, value) VALUES('schema_version', ?);", (str(self.SCHEMA_VERSION),))
            else:
                try:
                    v = int(str(row["value"]))
                except ValueError:
                    v = 0
                if v != self.SCHEMA_VERSION:
                    raise RuntimeError(
                        f"keystore schema_version mismatch: have={v} want={self.SCHEMA_VERSION}. "
                        "Refuse to open to avoid corrupting keys."
                    )

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        con = self._connect()
        try:
            yield con
        finally:
            con.close()

    @staticmethod
    def _is_locked_error(e: Exception) -> bool:
        msg = str(e).lower()
        return ("database is locked" in msg) or ("database is busy" in msg)

    @contextmanager
    def write_tx(self) -> Iterator[sqlite3.Connection]:
        """Write transaction with bounded retry on writer-lock contention."""
        deadline_ts = _now_ms() + max(250, _env_int("STORDER_SQLITE_WRITE_DEADLINE_MS", 10_000))
        base_sleep = 0.005
        max_sleep = 0.25

        with self.connection() as con:
            attempt = 0
            while True:
                try:
                    con.execute("BEGIN IMMEDIATE;")
                    break
                except sqlite3.OperationalError as e:
                    if not self._is_locked_error(e) or _now_ms() >= deadline_ts:
                        raise
                    sleep_s = min(max_sleep, base_sleep * (2.0 ** min(attempt, 8)))
                    time.sleep(sleep_s * (0.5 + random.random()))
                    attempt += 1

            try:
                yield con
                con.execute("COMMIT;")
            except Exception:
                con.execute("ROLLBACK;")
                raise

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> KeyRecord:
        return KeyRecord(
            name=str(row["name"]),
            address=str(row["address"]),
            secret_key=bytes.fromhex(str(row["secret_hex"])),
            created_ts_ms=int(row["created_ts_ms"]),
        )

    def get(self, name: str) -> Optional[KeyRecord]:
        n = (name or "").strip()
        if not n:
            raise ValueError("wallet name must be non-empty")
        with self.connection() as con:
            row = con.execute(
                "SELECT name, address, secret_hex, created_ts_ms FROM wallet_keys WHERE name=? LIMIT 1;",
                (n,),
            ).fetchone()
        return self._row_to_record(row) if row is not None else None

    def get_or_create(self, name: str) -> KeyRecord:
        n = (name or "").strip()
        if not n:
            raise ValueError("wallet name must be non-empty")

        existing = self.get(n)
        if existing is not None:
            return existing

        sk = generate_secret_key()
        _, pub = split_secret_key(sk)
        addr = encode_address(pub)

        with self.write_tx() as con:
            con.execute(
                """
                INSERT OR IGNORE INTO wallet_keys(name, address, secret_hex, created_ts_ms)
                VALUES(?, ?, ?, ?);
                """,
                (n, addr, sk.hex(), _now_ms()),
            )
            row = con.execute(
                "SELECT name, address, secret_hex, created_ts_ms FROM wallet_keys WHERE name=? LIMIT 1;",
                (n,),
            ).fetchone()
        if row is None:
            raise RuntimeError(f"keystore insert for {n!r} did not persist")
        return self._row_to_record(row)

    def names(self) -> List[str]:
        with self.connection() as con:
            rows = con.execute("SELECT name FROM wallet_keys ORDER BY name ASC;").fetchall()
        return [str(r["name"]) for r in rows]
