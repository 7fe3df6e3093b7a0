"""
SQL-backed checkpoint store for the oplog tailer.

One row per deployment (service = sink database name) holding the packed
timestamp of the last oplog entry handed to the dispatcher.
"""

from sqlalchemy import Column, String, DateTime, BigInteger, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.exc import SQLAlchemyError, OperationalError
from datetime import datetime, timezone
from typing import Optional
import threading
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from ...errors import CheckpointError
from ...monitoring.metrics import checkpoint_saves_total, checkpoint_loads_total, checkpoint_timestamp
from ...utils.logging import get_logger

logger = get_logger(__name__)

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class CheckpointRecord(Base):
    """
    Checkpoint row.

    Stores:
    - service: Deployment identity (sink database name)
    - timestamp: Packed oplog timestamp, see core.bson_convert.timestamp_to_int
    - updated_at: Last update time
    """
    __tablename__ = "oplog_sync_checkpoints"

    service = Column(String(255), primary_key=True)
    timestamp = Column(BigInteger, nullable=False, default=0)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)


_transient = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=2),
    retry=retry_if_exception_type(OperationalError),
    reraise=True
)


class CheckpointStore:
    """
    Durable checkpoint persistence.

    Features:
    - Lives in the sink database, next to the replicated tables
    - Automatic retry on transient (OperationalError) failures
    - Session per call, safe to share between threads

    Example:
        >>> store = CheckpointStore(sink.engine)
        >>> store.save_checkpoint("shop", 7056425925335875585)
        >>> store.load_checkpoint("shop")
        7056425925335875585
    """

    def __init__(self, engine: Engine):
        """
        Initialize checkpoint store.

        Args:
            engine: SQLAlchemy engine of the sink database

        Raises:
            CheckpointError: If the checkpoint table cannot be created
        """
        self.engine = engine
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False)

        try:
            Base.metadata.create_all(self.engine)
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("CheckpointStore initialized successfully")
        except SQLAlchemyError as e:
            logger.error(f"Failed to initialize CheckpointStore: {e}")
            raise CheckpointError(f"Database connection failed: {e}") from e

    @_transient
    def _read(self, service: str) -> Optional[int]:
        session: Session = self.SessionLocal()
        try:
            record = session.get(CheckpointRecord, service)
            return None if record is None else int(record.timestamp)
        finally:
            session.close()

    @_transient
    def _write(self, service: str, timestamp: int) -> None:
        session: Session = self.SessionLocal()
        try:
            with session.begin():
                record = session.get(CheckpointRecord, service, with_for_update=True)
                if record is None:
                    session.add(CheckpointRecord(service=service, timestamp=timestamp))
                else:
                    record.timestamp = timestamp
                    record.updated_at = _utcnow()
        finally:
            session.close()

    def load_checkpoint(self, service: str) -> Optional[int]:
        """
        Load the checkpoint of a deployment.

        Returns:
            Packed timestamp, or None when nothing was stored yet

        Raises:
            CheckpointError: If the read fails after retries
        """
        try:
            value = self._read(service)
        except SQLAlchemyError as e:
            checkpoint_loads_total.labels(status='error').inc()
            logger.error(f"Database error loading checkpoint: {e}", extra={"service": service})
            raise CheckpointError(f"Database error: {e}") from e

        checkpoint_loads_total.labels(status='success' if value is not None else 'not_found').inc()
        logger.debug(f"Loaded checkpoint for {service}: {value}", extra={"service": service})
        return value

    def save_checkpoint(self, service: str, timestamp: int) -> None:
        """
        Save checkpoint (upsert).

        Raises:
            CheckpointError: If the write fails after retries
        """
        try:
            self._write(service, int(timestamp))
        except SQLAlchemyError as e:
            checkpoint_saves_total.labels(status='error').inc()
            raise CheckpointError(f"Database error: {e}") from e
        checkpoint_saves_total.labels(status='success').inc()

    def delete_checkpoint(self, service: str) -> None:
        """Delete the checkpoint of a deployment (forces a replay from the start)."""
        session: Optional[Session] = None
        try:
            session = self.SessionLocal()
            with session.begin():
                record = session.get(CheckpointRecord, service)
                if record is not None:
                    session.delete(record)
                    logger.info(f"Deleted checkpoint for {service}", extra={"service": service})
        except SQLAlchemyError as e:
            raise CheckpointError(f"Database error: {e}") from e
        finally:
            if session:
                session.close()


class Checkpoint:
    """
    In-memory checkpoint of one deployment, persisted on every advance.

    The value only moves forward. A failed write is logged and the in-memory
    value advances anyway: the stream never stalls on the checkpoint table,
    at the price of replaying a few entries after a crash.
    """

    def __init__(self, store: CheckpointStore, service: str, value: int = 0):
        self.store = store
        self.service = service
        self._value = int(value or 0)
        self._lock = threading.Lock()
        checkpoint_timestamp.set(self._value)

    @classmethod
    def load(cls, store: CheckpointStore, service: str) -> 'Checkpoint':
        """Read the stored value (0 when none) into a new Checkpoint."""
        value = store.load_checkpoint(service)
        logger.info(
            f"Checkpoint for {service} is {value or 0}",
            extra={"service": service, "checkpoint": value or 0, "stored": value is not None}
        )
        return cls(store, service, value or 0)

    @property
    def value(self) -> int:
        return self._value

    def advance(self, timestamp: int) -> bool:
        """
        Move the checkpoint forward and persist it.

        Returns:
            False when ``timestamp`` is not ahead of the current value
        """
        with self._lock:
            if timestamp <= self._value:
                return False
            self._value = timestamp
        checkpoint_timestamp.set(timestamp)

        try:
            self.store.save_checkpoint(self.service, timestamp)
        except CheckpointError as e:
            logger.error(
                f"Failed to save checkpoint: {e}",
                extra={"service": self.service, "checkpoint": timestamp}
            )
        return True

    def reset(self, timestamp: int) -> None:
        """Set the checkpoint unconditionally (full import captures a fresh position)."""
        with self._lock:
            self._value = int(timestamp)
        checkpoint_timestamp.set(self._value)
        self.store.save_checkpoint(self.service, self._value)
