#!/usr/bin/env python3
"""
One-time setup script for the PostgreSQL policy store.
Enables pgvector and creates the plan, document and chunk tables.

Connection settings come from the POSTGRESQL_* environment variables
(a .env file is loaded automatically).

Prerequisites:
- PostgreSQL with the pgvector extension available
- Required packages: asyncpg, python-dotenv
"""

import argparse
import asyncio
import sys
from pathlib import Path

import asyncpg

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from policyrag.config import load_settings
from policyrag.database import render_schema_sql


async def create_schema(schema_name: str, dimensions: int, dry_run: bool) -> bool:
    settings = load_settings()
    db = settings.database
    sql = render_schema_sql(schema_name=schema_name, dimensions=dimensions)

    if dry_run:
        print(sql)
        return True

    if not db.host or not db.database:
        print("❌ POSTGRESQL_HOST and POSTGRESQL_DATABASE must be set")
        return False

    print("\n" + "=" * 60)
    print("Create Schema")
    print("=" * 60)
    print(f"⏳ Connecting to {db.host}...")

    try:
        conn = await asyncpg.connect(
            host=db.host,
            port=db.port,
            database=db.database,
            user=db.user,
            password=db.password,
            ssl=db.ssl_mode,
        )
    except (OSError, asyncpg.PostgresError) as e:
        print(f"❌ Connection failed: {e}")
        return False

    try:
        print(f"⏳ Creating schema '{schema_name}' (vector dimensions: {dimensions})...")
        await conn.execute(sql)

        version = await conn.fetchval("SELECT extversion FROM pg_extension WHERE extname = 'vector'")
        print(f"✅ pgvector extension version: {version}")

        tables = await conn.fetch(
            "SELECT table_name FROM information_schema.tables WHERE table_schema = $1 ORDER BY table_name",
            schema_name,
        )
        for row in tables:
            print(f"   ✓ {schema_name}.{row['table_name']}")
        return True
    except asyncpg.PostgresError as e:
        print(f"❌ Schema creation failed: {e}")
        return False
    finally:
        await conn.close()


def main():
    settings = load_settings()

    parser = argparse.ArgumentParser(description="Create the PostgreSQL schema for the policy store")
    parser.add_argument(
        "--schema",
        default=settings.database.schema or "policyrag",
        help="Schema name (default: POSTGRESQL_SCHEMA or 'policyrag')",
    )
    parser.add_argument(
        "--dimensions",
        type=int,
        default=settings.rag.embedding_dimensions,
        help="Embedding vector dimensions (default: EMBEDDING_DIMENSIONS)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the SQL instead of executing it",
    )
    args = parser.parse_args()

    ok = asyncio.run(create_schema(args.schema, args.dimensions, args.dry_run))
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
