"""
oplog-sync: replicate a MongoDB database into a SQL database by tailing the oplog.
"""

__version__ = "0.1.0"
