"""
Persistence collaborator for the learning state
The engine depends only on the four LearningStore primitives:
    get(key) / put(key, record) / append(log, record) / query_recent(log, key, n)

Backends:
- MemoryStore: process-local dicts (tests, ephemeral runs)
- SqlStore: SQLite (or any SQLAlchemy URL) with one key-value table and one log table
"""
import copy
import threading
import time
from abc import ABC, abstractmethod
from collections import defaultdict
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import orjson
import structlog
from sqlalchemy import create_engine, Column, Integer, String, Float, Text, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, declarative_base

from oddsflow.config.settings import settings

logger = structlog.get_logger(__name__)

Base = declarative_base()


class StoreError(Exception):
    """Base error for persistence failures"""


class StoreUnavailableError(StoreError):
    """Backend could not be reached or refused the operation"""


class LearningStore(ABC):
    """Key-value records plus append-only logs"""
    
    @abstractmethod
    def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Return the record stored under key, or None"""
    
    @abstractmethod
    def put(self, key: str, record: Dict[str, Any]) -> None:
        """Insert or replace the record under key"""
    
    @abstractmethod
    def append(self, log: str, record: Dict[str, Any]) -> None:
        """Append record to log. record["key"] (if present) is the filter key"""
    
    @abstractmethod
    def query_recent(self, log: str, key: Optional[str], n: int) -> List[Dict[str, Any]]:
        """
        Return the n most recent records of log, oldest first.
        key=None reads across all keys.
        """


class MemoryStore(LearningStore):
    """In-memory LearningStore"""
    
    def __init__(self):
        self._records: Dict[str, Dict[str, Any]] = {}
        self._logs: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        self._lock = threading.Lock()
    
    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._records.get(key)
            return copy.deepcopy(record) if record is not None else None
    
    def put(self, key: str, record: Dict[str, Any]) -> None:
        with self._lock:
            self._records[key] = copy.deepcopy(record)
    
    def append(self, log: str, record: Dict[str, Any]) -> None:
        with self._lock:
            self._logs[log].append(copy.deepcopy(record))
    
    def query_recent(self, log: str, key: Optional[str], n: int) -> List[Dict[str, Any]]:
        if n <= 0:
            return []
        with self._lock:
            entries = self._logs.get(log, [])
            if key is not None:
                entries = [e for e in entries if e.get("key") == key]
            return [copy.deepcopy(e) for e in entries[-n:]]


class KVRecord(Base):
    """SQL table for key-value records"""
    __tablename__ = "kv_records"
    
    key = Column(String, primary_key=True)
    payload = Column(Text, nullable=False)
    updated_at = Column(Float)


class LogRecord(Base):
    """SQL table for append-only logs"""
    __tablename__ = "log_records"
    
    id = Column(Integer, primary_key=True, autoincrement=True)
    log = Column(String, index=True)
    key = Column(String, index=True, nullable=True)
    payload = Column(Text, nullable=False)
    ts = Column(Float, index=True)


class SqlStore(LearningStore):
    """
    SQLAlchemy-backed LearningStore
    Payloads are stored as orjson-encoded text
    """
    
    def __init__(self, url: Optional[str] = None, db_path: Optional[Path] = None):
        if url is None:
            db_path = db_path or settings.DB_PATH
            db_path.parent.mkdir(parents=True, exist_ok=True)
            url = f"sqlite:///{db_path}"
        self.url = url
        try:
            self._engine = create_engine(url, echo=False)
            Base.metadata.create_all(self._engine)
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"cannot open store {url}: {e}") from e
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        logger.info("sql_store_initialized", url=url)
    
    def get(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            with self._session_factory() as session:
                row = session.get(KVRecord, key)
                return orjson.loads(row.payload) if row is not None else None
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"get {key} failed: {e}") from e
    
    def put(self, key: str, record: Dict[str, Any]) -> None:
        try:
            with self._session_factory() as session:
                session.merge(KVRecord(
                    key=key,
                    payload=orjson.dumps(record).decode(),
                    updated_at=time.time(),
                ))
                session.commit()
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"put {key} failed: {e}") from e
    
    def append(self, log: str, record: Dict[str, Any]) -> None:
        try:
            with self._session_factory() as session:
                session.add(LogRecord(
                    log=log,
                    key=record.get("key"),
                    payload=orjson.dumps(record).decode(),
                    ts=time.time(),
                ))
                session.commit()
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"append {log} failed: {e}") from e
    
    def query_recent(self, log: str, key: Optional[str], n: int) -> List[Dict[str, Any]]:
        if n <= 0:
            return []
        stmt = select(LogRecord.payload).where(LogRecord.log == log)
        if key is not None:
            stmt = stmt.where(LogRecord.key == key)
        stmt = stmt.order_by(LogRecord.id.desc()).limit(n)
        try:
            with self._session_factory() as session:
                rows = session.execute(stmt).scalars().all()
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"query {log} failed: {e}") from e
        return [orjson.loads(p) for p in reversed(rows)]
    
    def dispose(self) -> None:
        self._engine.dispose()


class KeyedLocks:
    """
    One lock per key, so read-modify-write cycles on the same key are
    serialized while different keys proceed independently.
    An entry lives only while some caller holds or waits on it.
    """

    def __init__(self):
        self._locks: Dict[str, list] = {}   # key -> [lock, holders]
        self._guard = threading.Lock()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


# Singleton instance
_store: Optional[LearningStore] = None


def get_store() -> LearningStore:
    """Get or create the SQL store singleton"""
    global _store
    if _store is None:
        _store = SqlStore()
    return _store
