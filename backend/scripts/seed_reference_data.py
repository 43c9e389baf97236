#!/usr/bin/env python3
"""
Seed reference data (departments, categories, staff users) from CSV files.

Uses asyncpg upserts so the script can be re-run after editing the CSVs.
"""

import asyncio
import csv
import json
import os
import sys
from pathlib import Path

import asyncpg
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "").replace("+asyncpg", "").replace("postgresql://", "postgres://")

DEFAULT_SEED_DIR = Path(__file__).parent / "seed"


def log(msg):
    """Print with flush for immediate output."""
    print(msg, flush=True)


def parse_bool(value: str | None, default: bool = False) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "y")


def blank_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def read_rows(path: Path) -> list[dict]:
    with open(path, "r", encoding="utf-8") as f:
        return list(csv.DictReader(f))


async def seed_departments(conn: asyncpg.Connection, rows: list[dict]) -> int:
    await conn.executemany(
        """
        INSERT INTO departments (id, name, code, email, is_active)
        VALUES ($1, $2, $3, $4, $5)
        ON CONFLICT (id) DO UPDATE SET
            name = EXCLUDED.name,
            code = EXCLUDED.code,
            email = EXCLUDED.email,
            is_active = EXCLUDED.is_active
        """,
        [
            (
                row["id"],
                row["name"],
                row["code"],
                blank_to_none(row.get("email")),
                parse_bool(row.get("is_active"), True),
            )
            for row in rows
        ],
    )
    return len(rows)


async def seed_categories(conn: asyncpg.Connection, rows: list[dict]) -> int:
    await conn.executemany(
        """
        INSERT INTO categories (id, name, code, sla_hours, default_priority, department_id, is_active)
        VALUES ($1, $2, $3, $4, $5, $6, $7)
        ON CONFLICT (id) DO UPDATE SET
            name = EXCLUDED.name,
            code = EXCLUDED.code,
            sla_hours = EXCLUDED.sla_hours,
            default_priority = EXCLUDED.default_priority,
            department_id = EXCLUDED.department_id,
            is_active = EXCLUDED.is_active
        """,
        [
            (
                row["id"],
                row["name"],
                row["code"],
                int(row.get("sla_hours") or 72),
                blank_to_none(row.get("default_priority")) or "medium",
                blank_to_none(row.get("department_id")),
                parse_bool(row.get("is_active"), True),
            )
            for row in rows
        ],
    )
    return len(rows)


async def seed_users(conn: asyncpg.Connection, rows: list[dict]) -> int:
    records = []
    for row in rows:
        preferences = {
            "email": parse_bool(row.get("email_notifications"), True),
            "sms": parse_bool(row.get("sms_notifications"), False),
            "push": parse_bool(row.get("push_notifications"), True),
            "in_app": True,
            "issue_updates": parse_bool(row.get("issue_updates"), True),
        }
        records.append(
            (
                row["id"],
                row["full_name"],
                blank_to_none(row.get("email")),
                blank_to_none(row.get("phone")),
                blank_to_none(row.get("role")) or "citizen",
                blank_to_none(row.get("department_id")),
                json.dumps(preferences),
            )
        )

    await conn.executemany(
        """
        INSERT INTO users (id, full_name, email, phone, role, department_id, notification_preferences)
        VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb)
        ON CONFLICT (id) DO UPDATE SET
            full_name = EXCLUDED.full_name,
            email = EXCLUDED.email,
            phone = EXCLUDED.phone,
            role = EXCLUDED.role,
            department_id = EXCLUDED.department_id,
            notification_preferences = EXCLUDED.notification_preferences
        """,
        records,
    )
    return len(records)


async def seed(seed_dir: Path):
    """Upsert departments, then categories, then users (foreign-key order)."""
    log("Connecting to database...")
    conn = await asyncpg.connect(DATABASE_URL)

    try:
        async with conn.transaction():
            count = await seed_departments(conn, read_rows(seed_dir / "departments.csv"))
            log(f"  Departments: {count}")
            count = await seed_categories(conn, read_rows(seed_dir / "categories.csv"))
            log(f"  Categories: {count}")
            count = await seed_users(conn, read_rows(seed_dir / "users.csv"))
            log(f"  Users: {count}")
    finally:
        await conn.close()

    log("Seeding complete!")


if __name__ == "__main__":
    seed_dir = Path(sys.argv[1]) if len(sys.argv) > 1 else DEFAULT_SEED_DIR

    missing = [
        name
        for name in ("departments.csv", "categories.csv", "users.csv")
        if not (seed_dir / name).exists()
    ]
    if missing:
        log(f"Error: missing seed files in {seed_dir}: {', '.join(missing)}")
        sys.exit(1)

    asyncio.run(seed(seed_dir))
