"""Exit non-zero when the gateway models and the migrated database disagree."""

from __future__ import annotations

import argparse
import asyncio

from alembic.autogenerate import compare_metadata
from alembic.migration import MigrationContext
from sqlalchemy.ext.asyncio import create_async_engine

from gateway import models  # noqa: F401  # Ensure models are registered
from gateway.config import settings
from gateway.database import Base


def _diff_schema(connection) -> list[object]:
    context = MigrationContext.configure(connection, opts={"compare_type": True})
    return compare_metadata(context, Base.metadata)


async def check(url: str) -> int:
    engine = create_async_engine(url)
    try:
        async with engine.connect() as conn:
            diffs = await conn.run_sync(_diff_schema)
    finally:
        await engine.dispose()

    for diff in diffs:
        print(f"schema drift: {diff}")
    if diffs:
        print(f"{len(diffs)} difference(s); add a migration under alembic/versions.")
        return 1
    print("Gateway schema matches the models.")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--url", default=settings.database_url, help="Database URL to inspect")
    args = parser.parse_args()
    return asyncio.run(check(args.url))


if __name__ == "__main__":
    raise SystemExit(main())
