"""SQLite schema for the document store (code-first approach).

Every collection is a table of JSON documents keyed by a string id. Secondary
lookups go through expression indexes on ``json_extract``.
"""

import logging

import aiosqlite


logger = logging.getLogger(__name__)


# Central list of all collections in the schema
COLLECTIONS = [
    "users",
    "households",
    "invites",
    "tasks",
    "gem_transactions",
    "direct_messages",
    "kitchen_posts",
    "scheduled_notifications",
]

_TABLE_TEMPLATE = """
CREATE TABLE IF NOT EXISTS {name} (
    id TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    created TEXT NOT NULL,
    updated TEXT NOT NULL
)
"""

_INDEXES: dict[str, list[tuple[str, str]]] = {
    "invites": [("idx_invites_household", "household_id")],
    "tasks": [
        ("idx_tasks_household", "household_id"),
        ("idx_tasks_claimed_by", "claimed_by"),
        ("idx_tasks_due_date", "due_date"),
    ],
    "gem_transactions": [("idx_gem_transactions_user", "user_id")],
    "direct_messages": [("idx_direct_messages_household", "household_id")],
    "kitchen_posts": [("idx_kitchen_posts_household", "household_id")],
    "scheduled_notifications": [
        ("idx_scheduled_notifications_task", "task_id"),
        ("idx_scheduled_notifications_date", "reminder_date"),
    ],
}


def _index_sql(*, collection: str, index_name: str, field: str) -> str:
    return f"CREATE INDEX IF NOT EXISTS {index_name} ON {collection} (json_extract(data, '$.{field}'))"


async def create_tables(conn: aiosqlite.Connection) -> None:
    """Create every collection table and its indexes if they do not exist."""
    for collection in COLLECTIONS:
        await conn.execute(_TABLE_TEMPLATE.format(name=collection))
        for index_name, field in _INDEXES.get(collection, []):
            await conn.execute(_index_sql(collection=collection, index_name=index_name, field=field))

    logger.info("Document store schema ready", extra={"collections": len(COLLECTIONS)})
