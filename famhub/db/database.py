import logging
from pathlib import Path

import aiosqlite

from famhub.config import settings

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"


async def connect(database_path: str | None = None) -> aiosqlite.Connection:
    """Open a connection with row access by name and run pending migrations."""
    path = database_path or settings.database_path
    if path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)

    db = await aiosqlite.connect(path)
    db.row_factory = aiosqlite.Row

    if path != ":memory:":
        await db.execute("PRAGMA journal_mode=WAL")
    await db.execute("PRAGMA foreign_keys=ON")

    await run_migrations(db)
    logger.info("Database initialized at %s", path)
    return db


async def run_migrations(db: aiosqlite.Connection) -> None:
    if not MIGRATIONS_DIR.exists():
        return

    # Check current version
    try:
        async with db.execute("SELECT MAX(version) FROM schema_version") as cursor:
            row = await cursor.fetchone()
            current_version = row[0] if row and row[0] else 0
    except aiosqlite.OperationalError:
        current_version = 0

    # Find and apply pending migrations
    for mf in sorted(MIGRATIONS_DIR.glob("*.sql")):
        version = int(mf.stem.split("_")[0])
        if version > current_version:
            logger.info("Applying migration %s", mf.name)
            await db.executescript(mf.read_text())
            await db.commit()
            current_version = version

    logger.info("Migrations complete (at version %d)", current_version)
