"""
Bulk loader: full copy of one collection into its sink table.
"""

import time

from pymongo.errors import PyMongoError

from ..errors import ImportFailedError, SinkWriteError
from ..etl.definitions import Definition
from ..monitoring.metrics import import_failures_total, imported_documents_total
from ..utils.logging import CorrelationContext, get_logger
from .dispatcher import OpDispatcher

logger = get_logger(__name__)


class BulkLoader:
    """
    Streams every document of a collection through the dispatcher's insert path.

    Backpressure: documents are pulled from the source cursor one at a time
    and each insert completes before the next document is read, so at most
    one write per dataset is in flight and at most ``batch_size`` documents
    are buffered by the cursor.

    Example:
        >>> loader = BulkLoader(source, sink, batch_size=100)
        >>> loader.load(definition)
        3
    """

    def __init__(self, source, sink, batch_size: int = 100):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.source = source
        self.sink = sink
        self.batch_size = batch_size

    def load(self, definition: Definition) -> int:
        """
        Copy one collection.

        Args:
            definition: Definition of the collection; its table must exist

        Returns:
            Number of documents written

        Raises:
            ImportFailedError: When an insert fails. Documents already written
                stay in the sink.
        """
        dispatcher = OpDispatcher(self.sink, [definition])
        loaded = 0
        started = time.monotonic()

        with CorrelationContext(f"import-{definition.name}"):
            logger.info(f"Begin to import {definition.name}", extra={"dataset": definition.name})
            try:
                for document in self.source.iter_documents(definition.name, self.batch_size):
                    dispatcher.insert(definition, document)
                    loaded += 1
                    imported_documents_total.labels(dataset=definition.name).inc()
            except (SinkWriteError, PyMongoError) as e:
                import_failures_total.labels(dataset=definition.name).inc()
                logger.error(
                    f"Import of {definition.name} aborted after {loaded} documents: {e}",
                    extra={
                        "dataset": definition.name,
                        "loaded": loaded,
                        "error_type": type(e).__name__
                    }
                )
                raise ImportFailedError(str(e), dataset=definition.name, loaded=loaded) from e

            logger.info(
                f"Imported {loaded} documents into {definition.target_name}",
                extra={
                    "dataset": definition.name,
                    "loaded": loaded,
                    "elapsed_seconds": round(time.monotonic() - started, 3)
                }
            )
        return loaded
