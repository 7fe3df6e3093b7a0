from .sql_sink import SQLSink

__all__ = ["SQLSink"]
