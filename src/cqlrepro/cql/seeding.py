"""Seed data for the reproduction.

Twelve users share the last name ``smith`` and get a random age in
``[20, 49]``. Each first name is its own partition, so the seeded rows span
twelve partitions and a full scan pages across all of them.
"""

from __future__ import annotations

import random
from typing import Any

from cassandra import ConsistencyLevel

from cqlrepro.core.errors import DatabaseError
from cqlrepro.core.logging import get_logger
from cqlrepro.cql.scanner import UserRecord

logger = get_logger(__name__)

DEFAULT_NAMES: tuple[str, ...] = (
    "bill",
    "mary",
    "bob",
    "june",
    "peter",
    "sally",
    "rich",
    "patty",
    "henry",
    "nancy",
    "george",
    "allie",
)
DEFAULT_LAST_NAME = "smith"
MIN_AGE = 20
MAX_AGE = 49


def build_users(
    names: tuple[str, ...] = DEFAULT_NAMES,
    last_name: str = DEFAULT_LAST_NAME,
    rng: random.Random | None = None,
) -> list[UserRecord]:
    """One record per first name with a random age."""
    rng = rng or random.Random()
    return [UserRecord(name, last_name, rng.randint(MIN_AGE, MAX_AGE)) for name in names]


def seed_users(session: Any, table: str, users: list[UserRecord]) -> int:
    """Insert ``users`` into ``table`` at QUORUM. Returns the number written."""
    try:
        insert = session.prepare(
            f"INSERT INTO {table} (first_name, last_name, age) VALUES (?, ?, ?)"
        )
        insert.consistency_level = ConsistencyLevel.QUORUM
        for user in users:
            session.execute(insert, (user.first_name, user.last_name, user.age))
    except Exception as exc:
        raise DatabaseError(f"Seeding {table} failed: {exc}", cause=exc).with_context(
            table=table
        ) from exc

    logger.info("seed.complete", table=table, rows=len(users))
    return len(users)


__all__ = ["DEFAULT_LAST_NAME", "DEFAULT_NAMES", "build_users", "seed_users"]
