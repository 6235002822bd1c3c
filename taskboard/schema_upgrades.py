"""Idempotent schema upgrades applied after metadata.create_all()."""
from __future__ import annotations

from sqlalchemy import inspect, text
from sqlalchemy.ext.asyncio import AsyncConnection

# Columns added to ``subtasks`` after the first deployments went out.
_SUBTASK_COLUMNS = {
    "deadline": ("DATETIME", "TIMESTAMP"),
    "updated_at": ("DATETIME", "TIMESTAMP DEFAULT CURRENT_TIMESTAMP"),
}


async def ensure_subtask_columns(conn: AsyncConnection) -> list[str]:
    """Add missing ``subtasks`` columns and return the names that were added."""

    existing = await conn.run_sync(
        lambda sync_conn: {col["name"] for col in inspect(sync_conn).get_columns("subtasks")}
    )

    added: list[str] = []
    for name, (sqlite_type, pg_type) in _SUBTASK_COLUMNS.items():
        if name in existing:
            continue
        if conn.dialect.name == "sqlite":
            # SQLite refuses non-constant defaults on ALTER TABLE ADD COLUMN.
            ddl = f"ALTER TABLE subtasks ADD COLUMN {name} {sqlite_type}"
        else:
            ddl = f"ALTER TABLE subtasks ADD COLUMN IF NOT EXISTS {name} {pg_type}"
        await conn.execute(text(ddl))
        added.append(name)
    return added
