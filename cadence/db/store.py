"""
Checkpoint stores.

The engine depends only on an asynchronous key-value contract:

    await store.load(key) -> bytes | None
    await store.save(key, blob) -> None

Three implementations:
- MemoryStore: dict-backed, for tests and ephemeral use
- JsonFileStore: one file per key under a directory (~/.cadence/store)
- SqlStore: SQLAlchemy table kv_store, sync engine driven from a worker thread

Every I/O failure surfaces as PersistenceError.
"""

from __future__ import annotations

import asyncio
import hashlib
import re
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Protocol, runtime_checkable

from loguru import logger
from sqlalchemy import create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from cadence.core.config import Settings
from cadence.core.errors import PersistenceError
from cadence.db.models import Base, KeyValueRecord

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


@runtime_checkable
class Store(Protocol):
    """Opaque asynchronous key-value contract."""

    async def load(self, key: str) -> bytes | None: ...

    async def save(self, key: str, blob: bytes) -> None: ...


class MemoryStore:
    """Dict-backed store."""

    def __init__(self):
        self.data: dict[str, bytes] = {}

    async def load(self, key: str) -> bytes | None:
        return self.data.get(key)

    async def save(self, key: str, blob: bytes) -> None:
        self.data[key] = bytes(blob)


class JsonFileStore:
    """
    One file per key.

    Keys contain '|' separators and arbitrary item names, so file names are
    a sanitised prefix plus a short hash of the full key.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory).expanduser()
        self.directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:12]
        stem = _UNSAFE.sub("_", key)[:80]
        return self.directory / f"{stem}-{digest}.json"

    async def load(self, key: str) -> bytes | None:
        path = self.path_for(key)
        try:
            return await asyncio.to_thread(_read_bytes, path)
        except OSError as e:
            raise PersistenceError(key, f"read failed: {e}") from e

    async def save(self, key: str, blob: bytes) -> None:
        path = self.path_for(key)
        try:
            await asyncio.to_thread(_write_atomic, path, blob)
        except OSError as e:
            raise PersistenceError(key, f"write failed: {e}") from e


def _read_bytes(path: Path) -> bytes | None:
    if not path.exists():
        return None
    return path.read_bytes()


def _write_atomic(path: Path, blob: bytes) -> None:
    tmp = path.with_suffix(".tmp")
    tmp.write_bytes(blob)
    tmp.replace(path)


class SqlStore:
    """Key-value table via SQLAlchemy (SQLite or any other backend)."""

    def __init__(self, database_url: str, echo: bool = False):
        if database_url.startswith("sqlite:///") and not database_url.endswith(":memory:"):
            db_path = Path(database_url.removeprefix("sqlite:///")).expanduser()
            db_path.parent.mkdir(parents=True, exist_ok=True)
            database_url = f"sqlite:///{db_path}"
        self.engine = create_engine(database_url, echo=echo, pool_pre_ping=True)
        self.SessionLocal = sessionmaker(bind=self.engine, autocommit=False, autoflush=False)
        Base.metadata.create_all(bind=self.engine)
        logger.info(f"SqlStore initialized at {self.engine.url.render_as_string(hide_password=True)}")

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Provide a transactional scope around a series of operations."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:  # Intentionally broad - rollback on any error before re-raising
            session.rollback()
            raise
        finally:
            session.close()

    def _load_sync(self, key: str) -> bytes | None:
        with self.session_scope() as session:
            return session.scalar(select(KeyValueRecord.value).where(KeyValueRecord.key == key))

    def _save_sync(self, key: str, blob: bytes) -> None:
        with self.session_scope() as session:
            record = session.get(KeyValueRecord, key)
            if record is None:
                session.add(KeyValueRecord(key=key, value=blob))
            else:
                record.value = blob

    async def load(self, key: str) -> bytes | None:
        try:
            return await asyncio.to_thread(self._load_sync, key)
        except SQLAlchemyError as e:
            raise PersistenceError(key, f"load failed: {e}") from e

    async def save(self, key: str, blob: bytes) -> None:
        try:
            await asyncio.to_thread(self._save_sync, key, bytes(blob))
        except SQLAlchemyError as e:
            raise PersistenceError(key, f"save failed: {e}") from e

    def close(self) -> None:
        self.engine.dispose()


def create_store(settings: Settings) -> Store:
    """Build the store selected by settings.store_backend."""
    if settings.store_backend == "json":
        return JsonFileStore(settings.store_path)
    if settings.store_backend == "sql":
        return SqlStore(settings.database_url, echo=settings.log_level == "DEBUG")
    return MemoryStore()


# ─── Keys ───────────────────────────────────────────────────────────────────


def confidence_key(user_id: str) -> str:
    return f"{user_id}|confidence"


def temporal_key(user_id: str) -> str:
    return f"{user_id}|temporal"


def goals_key(user_id: str) -> str:
    return f"{user_id}|goals"


def card_key(user_id: str, mood: str, tense: str, person: str, item: str) -> str:
    return f"{user_id}|{mood}|{tense}|{person}|{item}"
