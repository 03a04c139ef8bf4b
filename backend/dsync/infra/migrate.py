"""Apply SQL migrations from backend/migrations in filename order.

Usage: python -m dsync.infra.migrate
"""

from __future__ import annotations

import asyncio
import logging
import pathlib
from typing import List

import asyncpg

from dsync.settings import settings

LOGGER = logging.getLogger(__name__)

MIGRATIONS_DIR = pathlib.Path(__file__).resolve().parents[2] / "migrations"


async def apply_migrations(conn: asyncpg.Connection, directory: pathlib.Path = MIGRATIONS_DIR) -> List[str]:
	"""Run every migration whose version is not yet recorded; returns applied versions."""
	paths = sorted(directory.glob("*.sql"))
	if not paths:
		raise SystemExit("no migration files found")
	await conn.execute(
		"""
		CREATE TABLE IF NOT EXISTS schema_migrations (
			version TEXT PRIMARY KEY,
			applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
		)
		"""
	)
	applied = {row["version"] for row in await conn.fetch("SELECT version FROM schema_migrations")}
	done: List[str] = []
	for path in paths:
		version = path.name.split("_", 1)[0]
		if version in applied:
			continue
		async with conn.transaction():
			await conn.execute(path.read_text())
			await conn.execute("INSERT INTO schema_migrations (version) VALUES ($1)", version)
		LOGGER.info("applied migration", extra={"migration": path.name})
		done.append(version)
	return done


async def main() -> None:
	conn = await asyncpg.connect(settings.postgres_url)
	try:
		await apply_migrations(conn)
	finally:
		await conn.close()


if __name__ == "__main__":
	logging.basicConfig(level=settings.obs_log_level)
	asyncio.run(main())
