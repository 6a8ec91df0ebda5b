"""Read queries over the family collections."""

from __future__ import annotations

import aiosqlite


async def list_todos(db: aiosqlite.Connection, limit: int = 50) -> list[dict]:
    """Most recently created todos first."""
    async with db.execute(
        "SELECT * FROM todos ORDER BY created_at DESC LIMIT ?", (limit,)
    ) as cursor:
        return [dict(r) for r in await cursor.fetchall()]


async def list_upcoming_events(
    db: aiosqlite.Connection, since: float, limit: int = 50
) -> list[dict]:
    """Events starting at or after ``since``, soonest first."""
    async with db.execute(
        "SELECT * FROM events WHERE start_date >= ? ORDER BY start_date ASC LIMIT ?",
        (since, limit),
    ) as cursor:
        return [dict(r) for r in await cursor.fetchall()]


async def list_groceries(db: aiosqlite.Connection, limit: int = 50) -> list[dict]:
    async with db.execute(
        "SELECT * FROM groceries ORDER BY created_at DESC LIMIT ?", (limit,)
    ) as cursor:
        return [dict(r) for r in await cursor.fetchall()]


async def list_documents(db: aiosqlite.Connection, limit: int = 50) -> list[dict]:
    async with db.execute(
        "SELECT * FROM documents ORDER BY created_at DESC LIMIT ?", (limit,)
    ) as cursor:
        return [dict(r) for r in await cursor.fetchall()]


async def list_family_members(db: aiosqlite.Connection) -> list[dict]:
    async with db.execute("SELECT id, name, email FROM family_members ORDER BY name") as cursor:
        return [dict(r) for r in await cursor.fetchall()]


async def ping(db: aiosqlite.Connection) -> None:
    async with db.execute("SELECT 1 FROM todos LIMIT 1") as cursor:
        await cursor.fetchone()
