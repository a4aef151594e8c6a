"""
Tests for the test-account seeding script helpers.
"""

import importlib.util
import random
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent
SCRIPT_FILE = PROJECT_ROOT / "scripts" / "seed_users.py"

spec = importlib.util.spec_from_file_location("seed_users", str(SCRIPT_FILE))
assert spec is not None and spec.loader is not None
seed_users = importlib.util.module_from_spec(spec)
spec.loader.exec_module(seed_users)


class TestGenerateUsers:
    def test_emails_use_test_domain(self):
        for _, email in seed_users.generate_users(25, random.Random(1)):
            assert email.endswith("@studiotest.com")
            assert email == email.lower()

    def test_emails_are_distinct(self):
        users = seed_users.generate_users(200, random.Random(2))
        assert len({email for _, email in users}) == 200

    def test_seed_is_deterministic(self):
        assert seed_users.generate_users(5, random.Random(3)) == seed_users.generate_users(
            5, random.Random(3)
        )

    def test_batches_cover_everything(self):
        users = seed_users.generate_users(23, random.Random(4))
        batches = seed_users.batched(users, 10)
        assert [len(b) for b in batches] == [10, 10, 3]
