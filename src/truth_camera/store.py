# SPDX-License-Identifier: Apache-2.0
# Copyright (C) 2024-2026 The Birthmark Standard Foundation

"""
Local proof history.

Every confirmed submission is recorded here keyed by its digest, so the
CLI can list what this device has anchored without querying the chain.
The registry remains the source of truth; this is a convenience index.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import BigInteger, CHAR, Column, DateTime, Integer, String, create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .hashing import normalize_digest
from .models import ProofRecord

Base = declarative_base()


class ProofRow(Base):
    """One confirmed submission made from this device."""

    __tablename__ = "proofs"

    digest = Column(CHAR(64), primary_key=True)
    submitter = Column(String(42), nullable=False, index=True)
    timestamp = Column(BigInteger, nullable=False)  # Chain time
    tx_ref = Column(String(66), nullable=True)
    block_number = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), nullable=False)

    def to_record(self) -> ProofRecord:
        return ProofRecord(
            digest=self.digest,
            submitter=self.submitter,
            timestamp=self.timestamp,
            tx_ref=self.tx_ref,
            block_number=self.block_number,
        )


class ProofStore(ABC):
    @abstractmethod
    def save(self, record: ProofRecord) -> None:
        """Insert or update the record for ``record.digest``."""

    @abstractmethod
    def find_by_key(self, digest: str) -> Optional[ProofRecord]:
        ...

    @abstractmethod
    def list_recent(self, limit: int = 20) -> list[ProofRecord]:
        ...


class MemoryProofStore(ProofStore):
    def __init__(self):
        self._records: dict[str, ProofRecord] = {}

    def save(self, record: ProofRecord) -> None:
        self._records[normalize_digest(record.digest)] = record

    def find_by_key(self, digest: str) -> Optional[ProofRecord]:
        return self._records.get(normalize_digest(digest))

    def list_recent(self, limit: int = 20) -> list[ProofRecord]:
        records = sorted(self._records.values(), key=lambda r: r.timestamp, reverse=True)
        return records[:limit]


class SqlProofStore(ProofStore):
    """
    SQLAlchemy-backed proof history.

    Args:
        url: Database URL (e.g. ``sqlite:///./data/proofs.db``)
    """

    def __init__(self, url: str, echo: bool = False):
        if url.startswith("sqlite:///") and not url.startswith("sqlite:///:memory:"):
            Path(url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)
        self.engine = create_engine(url, echo=echo)
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def save(self, record: ProofRecord) -> None:
        digest = normalize_digest(record.digest)
        with self.session() as db:
            row = db.get(ProofRow, digest)
            if row is None:
                row = ProofRow(digest=digest)
                db.add(row)
            row.submitter = record.submitter
            row.timestamp = record.timestamp
            row.tx_ref = record.tx_ref
            row.block_number = record.block_number

    def find_by_key(self, digest: str) -> Optional[ProofRecord]:
        with self.session() as db:
            row = db.get(ProofRow, normalize_digest(digest))
            return row.to_record() if row else None

    def list_recent(self, limit: int = 20) -> list[ProofRecord]:
        with self.session() as db:
            rows = (
                db.query(ProofRow)
                .order_by(ProofRow.timestamp.desc())
                .limit(limit)
                .all()
            )
            return [row.to_record() for row in rows]

    def close(self) -> None:
        self.engine.dispose()
