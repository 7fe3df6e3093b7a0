"""MongoDB source access: collection scans for bulk loads and oplog cursors for tailing."""

import threading
from typing import Any, Dict, Iterator, List, Optional

import pymongo
from pymongo import CursorType
from pymongo.collection import Collection
from pymongo.cursor import Cursor

from ..core.bson_convert import int_to_timestamp, timestamp_to_int
from ..utils.logging import get_logger

logger = get_logger(__name__)

OPLOG_COLLECTION = "oplog.rs"
DEFAULT_DATABASE = "test"


def _get_client(mongo_uri: str, **kwargs) -> pymongo.MongoClient:
    """Create a MongoClient from a URI. Caller is responsible for closing if needed.

    Importing pymongo.MongoClient at call time allows tests to monkeypatch
    `pymongo.MongoClient` (e.g., with mongomock) and have our code pick it up.
    """
    return pymongo.MongoClient(mongo_uri, **kwargs)


def _split_uri(uri: str):
    scheme, sep, rest = uri.partition("://")
    hosts, _, tail = rest.partition("/")
    database, qmark, query = tail.partition("?")
    return f"{scheme}{sep}{hosts}", database, f"{qmark}{query}"


def database_from_uri(uri: str) -> Optional[str]:
    """Database named in the URI path, if any. Does not resolve SRV records."""
    return _split_uri(uri)[1] or None


def derive_oplog_uri(uri: str) -> str:
    """Same server, database swapped for ``local`` (where oplog.rs lives)."""
    base, _, query = _split_uri(uri)
    return f"{base}/local{query}"


class MongoSource:
    """
    Source document store.

    One long-lived client serves collection scans (shared by import threads,
    MongoClient is thread-safe). Each tail cycle gets its own client so a
    restart can close the connection it was streaming on.
    """

    def __init__(
        self,
        uri: str,
        oplog_uri: Optional[str] = None,
        server_selection_timeout: int = 30
    ):
        self.uri = uri
        self.oplog_uri = oplog_uri or derive_oplog_uri(uri)
        self.database_name = database_from_uri(uri) or DEFAULT_DATABASE
        self.oplog_database = database_from_uri(self.oplog_uri) or 'local'
        self._client_options = {"serverSelectionTimeoutMS": server_selection_timeout * 1000}
        self._client: Optional[pymongo.MongoClient] = None
        self._lock = threading.Lock()

    @property
    def client(self) -> pymongo.MongoClient:
        with self._lock:
            if self._client is None:
                self._client = _get_client(self.uri, **self._client_options)
            return self._client

    def iter_documents(self, collection: str, batch_size: int = 100) -> Iterator[Dict[str, Any]]:
        """Iterate every document of a collection.

        The cursor fetches ``batch_size`` documents per round trip; the next
        batch is only requested once the consumer has pulled the current one.
        """
        coll: Collection = self.client[self.database_name][collection]
        cursor = coll.find({}, batch_size=batch_size)
        try:
            for doc in cursor:
                yield doc
        finally:
            cursor.close()

    def connect_oplog(self) -> pymongo.MongoClient:
        """New client dedicated to one tail cycle."""
        return _get_client(self.oplog_uri, **self._client_options)

    def oplog(self, client: pymongo.MongoClient) -> Collection:
        return client[self.oplog_database][OPLOG_COLLECTION]

    def open_oplog_cursor(
        self,
        client: pymongo.MongoClient,
        namespaces: List[str],
        after: int,
        await_time_ms: int = 1000
    ) -> Cursor:
        """
        Tailable cursor over entries of ``namespaces`` newer than ``after``.

        Options: tailable + await data, no server-side cursor timeout,
        oplog replay on the ``ts`` lower bound.
        """
        filters = {
            "ns": {"$in": list(namespaces)},
            "ts": {"$gt": int_to_timestamp(after)},
        }
        cursor = self.oplog(client).find(
            filters,
            cursor_type=CursorType.TAILABLE_AWAIT,
            no_cursor_timeout=True,
            oplog_replay=True
        )
        return cursor.max_await_time_ms(await_time_ms)

    def latest_oplog_timestamp(self) -> int:
        """Packed timestamp of the newest oplog entry, 0 when the oplog is empty."""
        client = self.connect_oplog()
        try:
            entry = self.oplog(client).find_one(sort=[("$natural", pymongo.DESCENDING)])
        finally:
            client.close()
        return timestamp_to_int(entry["ts"]) if entry else 0

    def close(self) -> None:
        with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None
