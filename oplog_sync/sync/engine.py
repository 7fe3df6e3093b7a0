"""
Replication engine.

Owns the tailed dataset set and the checkpoint, runs tail cycles back to
back, and folds freshly imported datasets into the tail through restarts.

Startup (``run``):
1. Reconcile configured Definitions against the sink schema
2. Tail unchanged datasets from the stored checkpoint right away
3. Recreate and bulk-load new/drifted datasets on background threads
4. Once the whole import batch is done, restart the tail over the
   enlarged set from the current checkpoint
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple
import threading

from ..connectors.cdc.checkpoint_store import Checkpoint, CheckpointStore
from ..connectors.cdc.oplog_tailer import OplogTailer, RestartSignal, TailConfig, TailOutcome
from ..errors import ImportFailedError, SinkWriteError
from ..etl.definitions import Definition
from ..etl.schema_compare import ReconcileResult, definitions_to_shapes, reconcile
from ..monitoring.metrics import import_failures_total, tailed_datasets
from ..utils.logging import CorrelationContext, get_logger
from .bulk_loader import BulkLoader
from .dispatcher import OpDispatcher

logger = get_logger(__name__)


@dataclass(frozen=True)
class TailGeneration:
    """Datasets covered by the tail, tagged with a generation number."""
    number: int = 0
    definitions: Tuple[Definition, ...] = ()

    @property
    def namespaces(self) -> List[str]:
        return [d.source_namespace for d in self.definitions]

    def extend(self, definitions: Iterable[Definition]) -> 'TailGeneration':
        """Next generation with ``definitions`` added (same name replaces)."""
        merged: Dict[str, Definition] = {d.name: d for d in self.definitions}
        for definition in definitions:
            merged[definition.name] = definition
        return TailGeneration(number=self.number + 1, definitions=tuple(merged.values()))


class SyncEngine:
    """
    Orchestration loop of the replicator.

    Thread model: ``run`` blocks the calling thread with the tail loop. A
    daemon thread coordinates each import batch and starts one daemon
    thread per dataset. Import threads never touch the tailed set; they
    queue a restart request which the loop folds in before its next cycle.

    Example:
        >>> engine = SyncEngine(source, sink, CheckpointStore(sink.engine), definitions)
        >>> engine.run()  # blocks until stop()
    """

    def __init__(
        self,
        source,
        sink,
        checkpoint_store: CheckpointStore,
        definitions: Iterable[Definition],
        prefix: str = "",
        tail_config: Optional[TailConfig] = None,
        import_batch_size: int = 100,
        start_from_latest: bool = False,
        service: Optional[str] = None
    ):
        """
        Args:
            source: MongoSource (or compatible)
            sink: SQLSink (or compatible)
            checkpoint_store: Durable checkpoint persistence
            definitions: Definitions of every configured dataset
            prefix: Sink table name prefix, stripped during reconciliation
            tail_config: Tailer configuration
            import_batch_size: Cursor batch size of bulk loads
            start_from_latest: Begin at the newest oplog entry when no
                checkpoint is stored
            service: Checkpoint key, defaults to the sink database name
        """
        self.source = source
        self.sink = sink
        self.checkpoint_store = checkpoint_store
        self.definitions: Tuple[Definition, ...] = tuple(definitions)
        self.prefix = prefix
        self.tail_config = tail_config or TailConfig()
        self.loader = BulkLoader(source, sink, batch_size=import_batch_size)
        self.start_from_latest = start_from_latest
        self.service = service or sink.database_name

        self.checkpoint: Optional[Checkpoint] = None
        self.generation = TailGeneration()
        self.import_thread: Optional[threading.Thread] = None

        self._lock = threading.Lock()
        self._pending: List[Definition] = []
        self._signal: Optional[RestartSignal] = None
        self._stopping = threading.Event()

    @property
    def is_running(self) -> bool:
        return self._signal is not None

    def reconcile(self) -> ReconcileResult:
        """Classify the configured datasets against the sink schema."""
        return reconcile(self.sink.get_schema(self.prefix), definitions_to_shapes(self.definitions))

    def run(self) -> None:
        """
        Replicate until ``stop`` is called (blocking call).

        Raises:
            CheckpointError: If the stored checkpoint cannot be read
            SinkWriteError: If a live change cannot be written
        """
        result = self.reconcile()
        by_name = {d.name: d for d in self.definitions}
        tail_ready = [by_name[s.name] for s in result.unchanged]
        needs_import = [by_name[s.name] for s in result.needs_import]

        self.checkpoint = self._load_checkpoint()
        self.generation = TailGeneration(definitions=tuple(tail_ready))
        self._tail_forever(imports=needs_import)

    def import_and_start(self) -> None:
        """
        Full re-import, then tail everything (blocking call).

        The newest oplog position is captured before the first table is
        recreated, so changes made during the copy are replayed afterwards.
        """
        latest = self.source.latest_oplog_timestamp()
        logger.info(
            f"Full import of {len(self.definitions)} datasets, oplog position {latest}",
            extra={"checkpoint": latest}
        )

        self.sink.create_tables(self.definitions)
        loaded = []
        for definition in self.definitions:
            try:
                self.loader.load(definition)
            except ImportFailedError as e:
                logger.error(
                    f"Dataset {definition.name} left out of replication: {e}",
                    extra={"dataset": definition.name, "loaded": e.loaded}
                )
                continue
            loaded.append(definition)

        self.checkpoint = Checkpoint(self.checkpoint_store, self.service)
        self.checkpoint.reset(latest)
        self.generation = TailGeneration(definitions=tuple(loaded))
        self._tail_forever()

    def start_imports(self, definitions: List[Definition]) -> threading.Thread:
        """Recreate and bulk-load ``definitions`` in the background."""
        thread = threading.Thread(
            target=self._run_imports,
            args=(list(definitions),),
            name="oplog-sync-imports"
        )
        thread.daemon = True
        thread.start()
        self.import_thread = thread
        return thread

    def request_restart(self, definitions: Iterable[Definition]) -> None:
        """Queue datasets for the tail and interrupt the running cycle."""
        definitions = list(definitions)
        if not definitions:
            return
        with self._lock:
            self._pending.extend(definitions)
            signal = self._signal
        logger.info(
            f"Restart requested for {len(definitions)} datasets",
            extra={"datasets": [d.name for d in definitions]}
        )
        if signal is not None:
            signal.fire("datasets imported")

    def stop(self) -> None:
        """Stop the tail loop after the current entry.

        Safe to call from a signal handler: takes no lock.
        """
        self._stopping.set()
        signal = self._signal
        if signal is not None:
            signal.fire("shutdown")

    def _load_checkpoint(self) -> Checkpoint:
        checkpoint = Checkpoint.load(self.checkpoint_store, self.service)
        if checkpoint.value == 0 and self.start_from_latest:
            latest = self.source.latest_oplog_timestamp()
            logger.info(f"No stored checkpoint, starting at newest oplog entry {latest}")
            checkpoint.reset(latest)
        return checkpoint

    def _run_imports(self, definitions: List[Definition]) -> None:
        names = [d.name for d in definitions]
        logger.info(f"Begin to import {len(definitions)} datasets", extra={"datasets": names})
        try:
            self.sink.create_tables(definitions)
        except SinkWriteError as e:
            for name in names:
                import_failures_total.labels(dataset=name).inc()
            logger.error(f"Import batch aborted: {e}", extra={"datasets": names})
            return

        loaded: List[Definition] = []
        loaded_lock = threading.Lock()
        threads = []
        for definition in definitions:
            thread = threading.Thread(
                target=self._import_one,
                args=(definition, loaded, loaded_lock),
                name=f"oplog-sync-import-{definition.name}"
            )
            thread.daemon = True
            thread.start()
            threads.append(thread)

        for thread in threads:
            thread.join()

        logger.info(
            f"Import batch done: {len(loaded)} of {len(definitions)} datasets loaded",
            extra={"loaded": [d.name for d in loaded]}
        )
        # Keep configuration order regardless of completion order
        self.request_restart([d for d in definitions if d in loaded])

    def _import_one(self, definition: Definition, loaded: List[Definition], lock: threading.Lock) -> None:
        try:
            self.loader.load(definition)
        except ImportFailedError as e:
            logger.error(
                f"Dataset {definition.name} will not be tailed: {e}",
                extra={"dataset": definition.name, "loaded": e.loaded}
            )
            return
        with lock:
            loaded.append(definition)

    def _next_session(self) -> Optional[Tuple[TailGeneration, RestartSignal]]:
        with self._lock:
            if self._pending:
                self.generation = self.generation.extend(self._pending)
                self._pending = []
            signal = RestartSignal()
            self._signal = signal
            generation = self.generation
        # stop() reads _signal after setting the flag, so checking the flag
        # after publishing the signal cannot miss a shutdown
        if self._stopping.is_set():
            self._signal = None
            return None
        return generation, signal

    def _tail_forever(self, imports: Optional[List[Definition]] = None) -> None:
        tailer = OplogTailer(self.source, self.checkpoint, self.tail_config)
        dispatcher: Optional[OpDispatcher] = None
        dispatcher_generation = -1
        cycle = 0

        try:
            while True:
                session = self._next_session()
                if session is None:
                    break
                generation, signal = session

                if dispatcher_generation != generation.number:
                    dispatcher = OpDispatcher(self.sink, generation.definitions)
                    dispatcher_generation = generation.number
                    tailed_datasets.set(len(generation.definitions))

                if imports:
                    # First session exists: the import batch can only restart it
                    self.start_imports(imports)
                    imports = None

                cycle += 1
                with CorrelationContext(f"cycle-{generation.number}-{cycle}"):
                    outcome = tailer.run_cycle(generation.namespaces, dispatcher.dispatch, signal)
                    logger.info(
                        f"Tail cycle ended: {outcome.value}",
                        extra={
                            "outcome": outcome.value,
                            "generation": generation.number,
                            "checkpoint": self.checkpoint.value
                        }
                    )
                if outcome is TailOutcome.FAILED:
                    logger.info("Reconnecting to the oplog")
        finally:
            self._signal = None
        logger.info("Replication stopped", extra={"checkpoint": self.checkpoint.value})
