from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import Column, DateTime, LargeBinary, String, create_engine, delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .errors import PersistenceFailure

Base = declarative_base()


class SessionEntryModel(Base):
    __tablename__ = "session_entries"
    key = Column(String, primary_key=True)
    value = Column(LargeBinary, nullable=False)
    updated_at = Column(DateTime)


class KeyValueRepository:
    """
    Abstract key/value persistence boundary for session state. Keys are
    namespaced by the caller; values are opaque bytes. All methods are
    synchronous to keep the interface minimal.
    """

    def get(self, key: str) -> Optional[bytes]:
        raise NotImplementedError

    def set(self, key: str, value: bytes) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def keys(self, prefix: str = "") -> List[str]:
        raise NotImplementedError


class InMemoryKeyValueRepository(KeyValueRepository):
    """
    Simple in-memory store for local runs and tests. Stores copies of the
    values so callers cannot mutate persisted state behind its back.
    """

    def __init__(self):
        self.entries: Dict[str, bytes] = {}

    def get(self, key: str) -> Optional[bytes]:
        value = self.entries.get(key)
        return bytes(value) if value is not None else None

    def set(self, key: str, value: bytes) -> None:
        self.entries[key] = bytes(value)

    def delete(self, key: str) -> None:
        self.entries.pop(key, None)

    def keys(self, prefix: str = "") -> List[str]:
        return sorted(k for k in self.entries if k.startswith(prefix))


class SqlAlchemyKeyValueRepository(KeyValueRepository):
    """
    SQL-backed repository using SQLAlchemy. Works with SQLite/Postgres URLs.
    Backend errors surface as PersistenceFailure.
    """

    def __init__(self, database_url: str):
        self.engine = create_engine(database_url, future=True)
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False, future=True)

    def _session(self) -> Session:
        return self.SessionLocal()

    def get(self, key: str) -> Optional[bytes]:
        try:
            with self._session() as session:
                model = session.get(SessionEntryModel, key)
                return bytes(model.value) if model else None
        except SQLAlchemyError as exc:
            raise PersistenceFailure(f"Failed to read {key}: {exc}") from exc

    def set(self, key: str, value: bytes) -> None:
        try:
            with self._session() as session:
                model = SessionEntryModel(key=key, value=value, updated_at=datetime.now(timezone.utc))
                session.merge(model)
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceFailure(f"Failed to write {key}: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            with self._session() as session:
                session.execute(delete(SessionEntryModel).where(SessionEntryModel.key == key))
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceFailure(f"Failed to delete {key}: {exc}") from exc

    def keys(self, prefix: str = "") -> List[str]:
        try:
            with self._session() as session:
                stmt = select(SessionEntryModel.key).where(SessionEntryModel.key.startswith(prefix, autoescape=True))
                return sorted(session.execute(stmt).scalars().all())
        except SQLAlchemyError as exc:
            raise PersistenceFailure(f"Failed to list keys under {prefix!r}: {exc}") from exc
