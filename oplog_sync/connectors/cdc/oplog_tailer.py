"""
MongoDB oplog tailing with checkpointed resume.

Must implement:
1. Open a tailable cursor on local.oplog.rs filtered by namespace set and
   a timestamp lower bound (the checkpoint)
2. Skip no-op entries and the boundary entry equal to the start checkpoint
3. Advance the checkpoint, then dispatch each change, in log order
4. Stop cleanly when the restart signal of the session fires
5. Report how the cycle ended so the orchestration loop can reconnect
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional
import threading

from pymongo.errors import PyMongoError

from ...errors import UnknownOperationError
from ...monitoring.metrics import events_skipped_total, tail_cycles_total
from ...utils.logging import get_logger
from .checkpoint_store import Checkpoint
from .events import ChangeEvent, OperationKind, decode_entry

logger = get_logger(__name__)


@dataclass
class TailConfig:
    """Configuration for the oplog tailer."""
    max_idle_retries: int = 60 * 60 * 24  # Empty polls before the cycle is closed
    retry_interval: float = 1.0  # Seconds between empty polls
    await_time_ms: int = 1000  # Server-side await per getMore

    def __post_init__(self):
        """Validate configuration values."""
        if self.max_idle_retries <= 0:
            raise ValueError("max_idle_retries must be positive")
        if self.retry_interval < 0:
            raise ValueError("retry_interval must be non-negative")
        if self.await_time_ms <= 0:
            raise ValueError("await_time_ms must be positive")


class TailerState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    RESTARTING = "restarting"
    CLOSING = "closing"
    FAILED = "failed"


class TailOutcome(Enum):
    """How a tail cycle ended."""
    RESTARTED = "restarted"  # Restart signal fired
    CLOSED = "closed"  # Cursor ended without error
    FAILED = "failed"  # Source error


class RestartSignal:
    """
    Cancellation token of one tail session.

    Fired by the orchestration loop when the tailed namespace set changes
    (or on shutdown). The session checks it before every entry and while
    idle, then closes its cursor and returns.
    """

    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def fire(self, reason: str = "restart") -> None:
        if not self._event.is_set():
            self.reason = reason
        self._event.set()

    @property
    def fired(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)


class OplogTailer:
    """
    Runs tail cycles over the oplog.

    One cycle = one cursor over a fixed namespace set, from the checkpoint
    value at cycle start. The checkpoint is advanced before each dispatch:
    an entry may be applied again after a crash, never silently dropped
    while the process is alive.

    Thread Safety: NOT thread-safe. One cycle runs at a time.

    Example:
        >>> tailer = OplogTailer(source, checkpoint, TailConfig())
        >>> outcome = tailer.run_cycle(["shop.users"], dispatcher.dispatch, RestartSignal())
    """

    def __init__(self, source, checkpoint: Checkpoint, config: Optional[TailConfig] = None):
        """
        Args:
            source: MongoSource (or compatible) providing oplog cursors
            checkpoint: Checkpoint advanced as entries are dispatched
            config: Tail configuration
        """
        if not hasattr(source, 'open_oplog_cursor'):
            raise TypeError("source must provide open_oplog_cursor")

        self.source = source
        self.checkpoint = checkpoint
        self.config = config or TailConfig()
        self.state = TailerState.IDLE

    def run_cycle(
        self,
        namespaces: Iterable[str],
        dispatch: Callable[[ChangeEvent], None],
        signal: RestartSignal
    ) -> TailOutcome:
        """
        Stream one tail cycle (blocking call).

        Args:
            namespaces: ``db.collection`` names to follow
            dispatch: Called with every change, in log order. Exceptions it
                raises (sink write failures) propagate to the caller.
            signal: Restart signal of this session

        Returns:
            TailOutcome describing how the cycle ended
        """
        namespaces = sorted(namespaces)
        start_ts = self.checkpoint.value
        self.state = TailerState.CONNECTING

        if not namespaces:
            # Nothing to tail yet: idle until imports land or shutdown
            logger.info("No datasets to tail, waiting for restart signal")
            self.state = TailerState.STREAMING
            signal.wait()
            return self._finish(TailOutcome.RESTARTED)

        logger.info(
            f"Begin to watch {len(namespaces)} namespaces (from {start_ts})",
            extra={"namespaces": namespaces, "checkpoint": start_ts}
        )

        client = None
        cursor = None
        try:
            client = self.source.connect_oplog()
            cursor = self.source.open_oplog_cursor(
                client, namespaces, start_ts, self.config.await_time_ms
            )
            self.state = TailerState.STREAMING
            return self._stream(cursor, start_ts, dispatch, signal)

        except PyMongoError as e:
            logger.warning(
                f"Oplog cursor failed: {e}",
                extra={"error": str(e), "error_type": type(e).__name__}
            )
            self.state = TailerState.FAILED
            return self._finish(TailOutcome.FAILED)

        finally:
            if cursor is not None:
                cursor.close()
            if client is not None:
                client.close()

    def _stream(
        self,
        cursor,
        start_ts: int,
        dispatch: Callable[[ChangeEvent], None],
        signal: RestartSignal
    ) -> TailOutcome:
        idle_polls = 0
        while True:
            if signal.fired:
                logger.info(f"Restart signal received ({signal.reason})")
                self.state = TailerState.RESTARTING
                return self._finish(TailOutcome.RESTARTED)

            if not cursor.alive:
                logger.info("Stream closed")
                self.state = TailerState.CLOSING
                return self._finish(TailOutcome.CLOSED)

            received = False
            for entry in cursor:
                received = True
                self._handle(entry, start_ts, dispatch)
                if signal.fired:
                    break

            if received or signal.fired:
                idle_polls = 0
                continue

            idle_polls += 1
            if idle_polls > self.config.max_idle_retries:
                logger.info(
                    f"No oplog activity after {self.config.max_idle_retries} polls, reopening cursor",
                    extra={"idle_polls": idle_polls}
                )
                self.state = TailerState.CLOSING
                return self._finish(TailOutcome.CLOSED)
            signal.wait(self.config.retry_interval)

    def _handle(self, entry, start_ts: int, dispatch: Callable[[ChangeEvent], None]) -> None:
        try:
            event = decode_entry(entry)
        except UnknownOperationError as e:
            logger.warning(str(e), extra={"op": e.op, "namespace": e.namespace})
            events_skipped_total.labels(reason='unknown_op').inc()
            return

        if event.kind is OperationKind.NOOP:
            events_skipped_total.labels(reason='noop').inc()
            return
        if event.timestamp == start_ts:
            # Boundary entry already handled before the restart
            events_skipped_total.labels(reason='replay').inc()
            return

        self.checkpoint.advance(event.timestamp)
        dispatch(event)

    def _finish(self, outcome: TailOutcome) -> TailOutcome:
        tail_cycles_total.labels(outcome=outcome.value).inc()
        return outcome
