"""
Prometheus metrics for the replication engine.
"""

from prometheus_client import Counter, Gauge

events_dispatched_total = Counter(
    'oplog_sync_events_dispatched_total',
    'Change events applied to the sink',
    ['namespace', 'operation']
)

events_skipped_total = Counter(
    'oplog_sync_events_skipped_total',
    'Oplog entries skipped by the tailer',
    ['reason']
)

tail_cycles_total = Counter(
    'oplog_sync_tail_cycles_total',
    'Finished tail cycles',
    ['outcome']
)

checkpoint_saves_total = Counter(
    'oplog_sync_checkpoint_saves_total',
    'Total checkpoint saves',
    ['status']
)

checkpoint_loads_total = Counter(
    'oplog_sync_checkpoint_loads_total',
    'Total checkpoint loads',
    ['status']
)

imported_documents_total = Counter(
    'oplog_sync_imported_documents_total',
    'Documents copied by bulk loads',
    ['dataset']
)

import_failures_total = Counter(
    'oplog_sync_import_failures_total',
    'Aborted bulk loads',
    ['dataset']
)

checkpoint_timestamp = Gauge(
    'oplog_sync_checkpoint_timestamp',
    'Current checkpoint (packed oplog timestamp)'
)

tailed_datasets = Gauge(
    'oplog_sync_tailed_datasets',
    'Datasets covered by the active tail generation'
)
