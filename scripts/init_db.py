#!/usr/bin/env python3
"""
Database initialization script for the prior-authorization evaluation harness.

This script connects to PostgreSQL and runs all SQL migration files in the
sql/ directory, substituting the configured schema name.

Usage:
    python scripts/init_db.py
"""

import re
import sys
from pathlib import Path

import psycopg

from priorauth_eval.config import load_settings

project_root = Path(__file__).parent.parent

SCHEMA_TOKEN = "__SCHEMA__"
_SCHEMA_NAME_RE = re.compile(r"^[a-z_][a-z0-9_]{0,62}$")


def render_sql(sql_content: str, schema: str) -> str:
    """Substitute the schema placeholder after validating the identifier."""
    if not _SCHEMA_NAME_RE.match(schema):
        raise ValueError(f"Invalid schema name: {schema!r}")
    return sql_content.replace(SCHEMA_TOKEN, schema)


def run_sql_file(conn: psycopg.Connection, sql_file: Path, schema: str) -> None:
    """Execute a SQL file."""
    print(f"  Running {sql_file.name}...")

    sql_content = render_sql(sql_file.read_text(encoding="utf-8"), schema)

    try:
        with conn.cursor() as cur:
            cur.execute(sql_content)
        conn.commit()
        print(f"  ✓ {sql_file.name} completed")
    except Exception as e:
        conn.rollback()
        print(f"  ✗ Error in {sql_file.name}: {e}")
        raise


def init_database():
    """Initialize the evaluation schema."""
    print("=" * 60)
    print("Prior-Auth Eval - Database Initialization")
    print("=" * 60)

    settings = load_settings()
    schema = settings.clinic_schema

    sql_dir = project_root / "sql"
    sql_files = sorted(sql_dir.glob("*.sql"))
    if not sql_files:
        print(f"Error: No SQL files found in {sql_dir}")
        sys.exit(1)

    print(f"\nFound {len(sql_files)} SQL migration files:")
    for f in sql_files:
        print(f"  - {f.name}")

    conn_string = (
        f"postgresql://{settings.db_user}:{settings.db_password}"
        f"@{settings.db_host}:{settings.db_port}/{settings.db_name}"
    )
    print("\nConnecting to database...")
    print(f"  Host: {settings.db_host}")
    print(f"  Port: {settings.db_port}")
    print(f"  Database: {settings.db_name}")
    print(f"  Schema: {schema}")

    try:
        with psycopg.connect(conn_string) as conn:
            print("✓ Connected successfully\n")

            print("Running migrations:")
            for sql_file in sql_files:
                run_sql_file(conn, sql_file, schema)

            print("\nVerifying installation:")
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT tablename FROM pg_tables
                    WHERE schemaname = %s
                    ORDER BY tablename
                    """,
                    (schema,),
                )
                tables = [row[0] for row in cur.fetchall()]
                print(f"  ✓ Found {len(tables)} tables:")
                for table in tables:
                    print(f"    - {table}")

            print("\n" + "=" * 60)
            print("✓ Database initialization completed successfully!")
            print("=" * 60)

    except psycopg.OperationalError as e:
        print(f"\n✗ Connection failed: {e}")
        print("\nTroubleshooting:")
        print("  1. Check that PostgreSQL is running and reachable")
        print("  2. Verify DB_HOST, DB_PORT, DB_USER, DB_PASSWORD and DB_NAME")
        sys.exit(1)
    except ValueError as e:
        print(f"\n✗ {e}")
        sys.exit(1)


if __name__ == "__main__":
    init_database()
