import time
import unittest
from unittest.mock import patch

from biocard.assets import TextAsset
from biocard.cleanup import TokenCleanupThread, sweep_expired_tokens
from biocard.db import AccountRole, InMemoryDbClient, TokenRecord


class TokenCleanupTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.account = self.db.create_account(
            "alice", "hash", "salt", AccountRole.USER, default_avatar=TextAsset()
        )

    def _issue(self, value, expires_at):
        self.db.issue_token(
            TokenRecord(
                token_value=value,
                account_id=self.account.id,
                created_at=0.0,
                expires_at=expires_at,
            ),
            max_live=10,
        )

    def test_sweep_removes_only_expired(self):
        self._issue("stale", 100.0)
        self._issue("fresh", 10_000.0)
        self.assertEqual(sweep_expired_tokens(self.db, now=500.0), 1)
        self.assertIsNone(self.db.get_token("stale"))
        self.assertIsNotNone(self.db.get_token("fresh"))
        self.assertEqual(sweep_expired_tokens(self.db, now=500.0), 0)

    def test_thread_sweeps_and_survives_errors(self):
        self._issue("stale", 1.0)
        calls = []
        original = self.db.delete_expired_tokens

        def flaky(now):
            calls.append(now)
            if len(calls) == 1:
                raise RuntimeError("database unavailable")
            return original(now)

        with patch.object(self.db, "delete_expired_tokens", side_effect=flaky):
            thread = TokenCleanupThread(self.db, interval_seconds=0.01)
            with self.assertLogs("biocard.cleanup", level="ERROR"):
                thread.start()
                deadline = time.time() + 5
                while self.db.get_token("stale") is not None and time.time() < deadline:
                    time.sleep(0.01)
                thread.stop()

        self.assertFalse(thread.is_alive())
        self.assertGreaterEqual(len(calls), 2)
        self.assertIsNone(self.db.get_token("stale"))


if __name__ == "__main__":
    unittest.main()
