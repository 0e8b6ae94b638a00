"""
Idempotency ledger for relayed bridge events.

Every cross-chain action is recorded here once it is confirmed on the
destination chain. Rows are keyed by (source chain id, relay key) and are
only ever inserted, never updated or deleted.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from sqlalchemy import DateTime, Integer, String, create_engine, event, select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.sql import func

logger = logging.getLogger(__name__)

# Settlement reference stored when the destination contract had already
# applied the action and no transaction of ours settled it.
IDEMPOTENT_SETTLEMENT = "IDEMPOTENT"


class Base(DeclarativeBase):
    pass


class ProcessedEvent(Base):
    """
    Records a source event whose cross-chain action has been settled.

    The composite primary key guarantees at most one row per relay key and
    chain, which is what makes `mark_processed` an insert-if-absent.
    """
    __tablename__ = "processed_events"

    chain_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    relay_key: Mapped[str] = mapped_column(String(128), primary_key=True)
    settlement_ref: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"ProcessedEvent(chain_id={self.chain_id}, relay_key={self.relay_key!r}, "
            f"settlement_ref={self.settlement_ref!r})"
        )


def _enable_sqlite_wal(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=FULL")
    cursor.close()


class IdempotencyLedger:
    """Durable record of relayed events backed by a SQLite file."""

    def __init__(self, db_path: str):
        """
        Open (and create if needed) the ledger database.

        Args:
            db_path: Filesystem path of the SQLite database file
        """
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self.engine: Engine = create_engine(f"sqlite:///{db_path}")
        event.listen(self.engine, "connect", _enable_sqlite_wal)
        Base.metadata.create_all(self.engine)

        self._session_factory = sessionmaker(self.engine, expire_on_commit=False)
        self._closed = False

        logger.info(f"Connected to ledger database at {db_path}")

    def has_processed(self, chain_id: int, relay_key: str) -> bool:
        """
        Check whether a source event has already been relayed.

        Args:
            chain_id: Chain ID where the source event was emitted
            relay_key: Relay key of the source event (e.g. "LOCK-7")

        Returns:
            True if a ledger row exists for the key

        Raises:
            SQLAlchemyError: If the database cannot be read
        """
        stmt = select(ProcessedEvent.relay_key).where(
            ProcessedEvent.chain_id == chain_id,
            ProcessedEvent.relay_key == relay_key,
        )
        with self._session_factory() as session:
            return session.execute(stmt).first() is not None

    def mark_processed(self, chain_id: int, relay_key: str, settlement_ref: str) -> None:
        """
        Record a source event as relayed.

        Inserting a key that already exists is a no-op; the first settlement
        reference is kept.

        Args:
            chain_id: Chain ID where the source event was emitted
            relay_key: Relay key of the source event
            settlement_ref: Destination transaction hash, or IDEMPOTENT_SETTLEMENT

        Raises:
            SQLAlchemyError: If the row cannot be durably written
        """
        stmt = (
            insert(ProcessedEvent)
            .values(chain_id=chain_id, relay_key=relay_key, settlement_ref=settlement_ref)
            .on_conflict_do_nothing(index_elements=["chain_id", "relay_key"])
        )
        with self._session_factory.begin() as session:
            session.execute(stmt)

        logger.debug(f"Ledger: marked ({chain_id}, {relay_key}) -> {settlement_ref}")

    def get_settlement_ref(self, chain_id: int, relay_key: str) -> str | None:
        """Return the recorded settlement reference, or None if not processed."""
        stmt = select(ProcessedEvent.settlement_ref).where(
            ProcessedEvent.chain_id == chain_id,
            ProcessedEvent.relay_key == relay_key,
        )
        with self._session_factory() as session:
            return session.execute(stmt).scalar_one_or_none()

    def count(self) -> int:
        """Number of recorded events."""
        stmt = select(func.count()).select_from(ProcessedEvent)
        with self._session_factory() as session:
            return session.execute(stmt).scalar_one()

    def close(self) -> None:
        """Release the database handle."""
        if self._closed:
            return
        self.engine.dispose()
        self._closed = True
        logger.info("Ledger database closed")
