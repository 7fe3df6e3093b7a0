"""
Command line entry point: ``oplog-sync``.

Modes:
    (default)          reconcile, tail, import new/drifted datasets in background
    --full-import      recreate and import every dataset, then tail
    --reconcile-only   print the reconciliation report as JSON and exit
    --reset-checkpoint delete the stored checkpoint and exit
"""

import argparse
import json
import signal
import sys
from typing import List, Optional

from prometheus_client import start_http_server

from .config import get_settings, load_collections
from .connectors.cdc.checkpoint_store import CheckpointStore
from .connectors.cdc.oplog_tailer import TailConfig
from .connectors.sql_sink import SQLSink
from .errors import SyncError
from .etl.definitions import create_definitions
from .etl.schema_compare import definitions_to_shapes, reconcile
from .mongodb.connection import MongoSource
from .sync.engine import SyncEngine
from .utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="oplog-sync",
        description="Replicate MongoDB collections into a SQL database by tailing the oplog"
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--full-import",
        action="store_true",
        help="Recreate and import every configured collection, then tail from the position captured before the import"
    )
    mode.add_argument(
        "--reconcile-only",
        action="store_true",
        help="Print which collections are new, drifted or unchanged and exit"
    )
    mode.add_argument(
        "--reset-checkpoint",
        action="store_true",
        help="Delete the stored oplog checkpoint so the next run replays from the start, then exit"
    )
    parser.add_argument(
        "--collections",
        default=None,
        help="YAML file mapping collection -> {field: type} (default: SYNC_COLLECTIONS_FILE)"
    )
    parser.add_argument(
        "--prefix",
        default=None,
        help="Sink table name prefix (default: SYNC_PREFIX)"
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level (default: LOG_LEVEL)"
    )
    return parser


def _install_signal_handlers(engine: SyncEngine) -> None:
    def signal_handler(signum, frame):
        logger.info(f"Received shutdown signal {signum}")
        engine.stop()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)


def main(argv: Optional[List[str]] = None) -> int:
    """Run the replicator. Returns the process exit status."""
    args = build_parser().parse_args(argv)
    settings = get_settings()

    configure_logging(args.log_level or settings.logging.level, settings.logging.json_format)

    prefix = settings.replication.prefix if args.prefix is None else args.prefix
    collections_file = args.collections or settings.replication.collections_file

    source = None
    sink = None
    try:
        collections = load_collections(collections_file)
        source = MongoSource(
            settings.source.uri,
            oplog_uri=settings.source.oplog_uri,
            server_selection_timeout=settings.source.server_selection_timeout
        )
        sink = SQLSink(
            settings.sink.url,
            pool_size=settings.sink.pool_size,
            max_overflow=settings.sink.max_overflow,
            pool_recycle=settings.sink.pool_recycle,
            string_length=settings.sink.string_length
        )
        definitions = create_definitions(
            collections,
            db_name=source.database_name,
            prefix=prefix,
            field_case=settings.replication.field_case
        )

        if args.reconcile_only:
            result = reconcile(sink.get_schema(prefix), definitions_to_shapes(definitions))
            print(json.dumps(result.to_report(), indent=2))
            return 0

        if args.reset_checkpoint:
            CheckpointStore(sink.engine).delete_checkpoint(sink.database_name)
            logger.info(f"Checkpoint of {sink.database_name} reset")
            return 0

        if settings.metrics.enabled:
            start_http_server(settings.metrics.port)
            logger.info(f"Metrics exporter listening on :{settings.metrics.port}")

        engine = SyncEngine(
            source,
            sink,
            CheckpointStore(sink.engine),
            definitions,
            prefix=prefix,
            tail_config=TailConfig(
                max_idle_retries=settings.replication.max_idle_retries,
                retry_interval=settings.replication.retry_interval,
                await_time_ms=settings.replication.await_time_ms
            ),
            import_batch_size=settings.source.import_batch_size,
            start_from_latest=settings.replication.start_from_latest
        )
        _install_signal_handlers(engine)

        if args.full_import:
            engine.import_and_start()
        else:
            engine.run()
        return 0

    except SyncError as e:
        logger.error(f"Replication failed: {e}", exc_info=True, extra={"error_type": type(e).__name__})
        return 1

    finally:
        if source is not None:
            source.close()
        if sink is not None:
            sink.close()


if __name__ == "__main__":
    sys.exit(main())
