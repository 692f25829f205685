"""
DISPATCH-CORE Store
SQLite persistence, atomic transactions, post-commit change feed and access control.
"""
from .access import Actor, authorize, load_actor
from .changefeed import ChangeEvent, ChangeFeed, get_change_feed, reset_change_feed
from .db import count, get_conn, new_id, query, query_one, transaction, utc_now
from .schema import ensure_schema, init_schema, reset_schema_flag

__all__ = [
    "Actor",
    "authorize",
    "load_actor",
    "ChangeEvent",
    "ChangeFeed",
    "get_change_feed",
    "reset_change_feed",
    "count",
    "get_conn",
    "new_id",
    "query",
    "query_one",
    "transaction",
    "utc_now",
    "ensure_schema",
    "init_schema",
    "reset_schema_flag",
]
