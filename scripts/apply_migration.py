"""Apply a SQL migration from the migrations/ directory.

Usage: python scripts/apply_migration.py 0001_relationships.sql
"""

from __future__ import annotations

import argparse
import asyncio
import pathlib
import sys

from socialgraph import obs
from socialgraph.infra.postgres import close_pool, get_pool

MIGRATIONS_DIR = pathlib.Path(__file__).resolve().parent.parent / "migrations"


def _parse_args() -> argparse.Namespace:
	parser = argparse.ArgumentParser(description="Apply a relationship core migration")
	parser.add_argument("filename", help="Migration file name inside migrations/")
	return parser.parse_args()


async def apply_migration(filename: str) -> None:
	path = MIGRATIONS_DIR / filename
	if not path.exists():
		raise SystemExit(f"Migration file not found: {path}")

	print(f"Applying migration: {filename}")
	sql = path.read_text(encoding="utf-8")
	pool = await get_pool()
	try:
		async with pool.acquire() as conn:
			async with conn.transaction():
				await conn.execute(sql)
	finally:
		await close_pool()
	print("Migration applied successfully.")


def main() -> None:
	args = _parse_args()
	obs.init()
	if sys.platform == "win32":
		asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
	asyncio.run(apply_migration(args.filename))


if __name__ == "__main__":
	main()
