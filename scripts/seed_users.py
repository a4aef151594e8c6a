#!/usr/bin/env python3
"""
Seed test accounts for local and staging environments.

Creates randomly named student accounts on the test email domain and,
optionally, an admin account (registration only ever creates students).

Usage:
    # 100 students (default), skipped if they already exist
    python3 scripts/seed_users.py

    # Fewer students with a fixed seed
    python3 scripts/seed_users.py --count 20 --seed 7

    # Also create or promote an admin
    python3 scripts/seed_users.py --admin-email admin@studio.example --admin-password 'S3cret!'

Requires DATABASE_URL (and the rest of the app settings) in the environment.
"""

import argparse
import asyncio
import logging
import random
import sys
from collections.abc import Sequence

from argon2 import PasswordHasher
from sqlalchemy import func, select

from app.db.models import User
from app.db.session import close_engines, get_session_factory
from app.models.api import UserRole

TEST_EMAIL_DOMAIN = "studiotest.com"
TEST_PASSWORD = "TestPassword123!"
BATCH_SIZE = 10

FIRST_NAMES = [
    "Alex", "Blake", "Casey", "Drew", "Ember", "Finley", "Gray", "Harper", "Iris", "Jordan",
    "Kai", "Logan", "Morgan", "Nova", "Ocean", "Parker", "Quinn", "River", "Sage", "Taylor",
]
LAST_NAMES = [
    "Smith", "Johnson", "Williams", "Brown", "Jones", "Garcia", "Miller", "Davis", "Rodriguez",
    "Martinez", "Hernandez", "Lopez", "Gonzalez", "Wilson", "Anderson", "Thomas", "Moore",
    "Jackson", "Martin", "Lee",
]

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def generate_user_fields(rng: random.Random) -> tuple[str, str]:
    """Random (name, email) on the test domain."""
    first = rng.choice(FIRST_NAMES)
    last = rng.choice(LAST_NAMES)
    suffix = rng.randint(0, 9999)
    return f"{first} {last}", f"{first.lower()}.{last.lower()}{suffix}@{TEST_EMAIL_DOMAIN}"


def generate_users(count: int, rng: random.Random) -> list[tuple[str, str]]:
    """`count` distinct (name, email) pairs."""
    users: dict[str, str] = {}
    while len(users) < count:
        name, email = generate_user_fields(rng)
        users.setdefault(email, name)
    return [(name, email) for email, name in users.items()]


def batched(items: Sequence[tuple[str, str]], size: int) -> list[Sequence[tuple[str, str]]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


async def seed_students(count: int, rng: random.Random) -> int:
    """Insert test students unless `count` of them already exist. Returns rows inserted."""
    factory = get_session_factory("write")
    async with factory() as session:
        result = await session.execute(
            select(func.count()).select_from(User).where(User.email.like(f"%@{TEST_EMAIL_DOMAIN}"))
        )
        existing = result.scalar_one()
        if existing >= count:
            logger.info(f"Already have {existing} test users, skipping")
            return 0

        # Hashing is slow; every seeded account shares the same password.
        password_hash = PasswordHasher().hash(TEST_PASSWORD)
        inserted = 0
        for batch in batched(generate_users(count - existing, rng), BATCH_SIZE):
            session.add_all(
                User(
                    name=name,
                    email=email,
                    password_hash=password_hash,
                    role=UserRole.USER.value,
                    enrolled_class_ids=[],
                    enrolled_course_ids=[],
                )
                for name, email in batch
            )
            await session.commit()
            inserted += len(batch)
            logger.info(f"Inserted {inserted}/{count - existing} users")
        return inserted


async def ensure_admin(email: str, password: str) -> None:
    """Create the admin account, or promote and reset an existing one."""
    email = email.strip().lower()
    factory = get_session_factory("write")
    async with factory() as session:
        result = await session.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()
        password_hash = PasswordHasher().hash(password)
        if user is None:
            session.add(
                User(
                    name="Administrator",
                    email=email,
                    password_hash=password_hash,
                    role=UserRole.ADMIN.value,
                    enrolled_class_ids=[],
                    enrolled_course_ids=[],
                )
            )
            logger.info(f"Created admin {email}")
        else:
            user.role = UserRole.ADMIN.value
            user.password_hash = password_hash
            logger.info(f"Promoted existing user {email} to admin")
        await session.commit()


async def run(args: argparse.Namespace) -> None:
    try:
        inserted = await seed_students(args.count, random.Random(args.seed))
        if inserted:
            logger.info(f"Seeded {inserted} test users with password {TEST_PASSWORD}")
        if args.admin_email:
            await ensure_admin(args.admin_email, args.admin_password)
    finally:
        await close_engines()


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed test accounts")
    parser.add_argument("--count", type=int, default=100, help="Number of test students")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for names")
    parser.add_argument("--admin-email", help="Create or promote this admin account")
    parser.add_argument("--admin-password", help="Password for the admin account")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    if args.admin_email and not args.admin_password:
        parser.error("--admin-password is required with --admin-email")

    try:
        asyncio.run(run(args))
    except Exception as e:
        logger.error(f"Seeding failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
