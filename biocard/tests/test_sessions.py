import itertools
import threading
import unittest
from unittest.mock import patch

from sqlalchemy.exc import SQLAlchemyError

from biocard.assets import TextAsset
from biocard.config import Settings
from biocard.db import AccountRole, InMemoryDbClient
from biocard.passwords import hash_password
from biocard.sessions import ROOT_DEVICE_LABEL, SessionManager, extract_bearer_token

DAY = 24 * 60 * 60


class FakeClock:
    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SessionManagerTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.clock = FakeClock()
        self.sessions = SessionManager(self.db, Settings(), clock=self.clock)
        self.account = self.db.create_account(
            "alice", "hash", "salt", AccountRole.USER, default_avatar=TextAsset("👤")
        )

    def test_eleventh_token_evicts_the_first(self):
        tokens = []
        for _ in range(11):
            tokens.append(self.sessions.create_token(self.account))
            self.clock.advance(1)

        stored = [t.token_value for t in self.db.list_tokens(self.account.id)]
        self.assertEqual(len(stored), 10)
        self.assertNotIn(tokens[0], stored)
        self.assertEqual(stored, tokens[1:])

    def test_expired_token_is_deleted_on_validate(self):
        token = self.sessions.create_token(self.account)
        self.clock.advance(7 * DAY + 1)

        result = self.sessions.validate_token(token)
        self.assertFalse(result.valid)
        self.assertIsNone(result.account)
        self.assertIsNone(self.db.get_token(token))

    def test_validate_touches_last_used(self):
        token = self.sessions.create_token(self.account)
        self.clock.advance(60)
        valid, account = self.sessions.validate_token(token)
        self.assertTrue(valid)
        self.assertEqual(account.username, "alice")
        self.assertEqual(self.db.get_token(token).last_used, self.clock.now)

    def test_unknown_or_empty_token_is_invalid(self):
        self.assertFalse(self.sessions.validate_token("nope").valid)
        self.assertFalse(self.sessions.validate_token("").valid)
        self.assertFalse(self.sessions.validate_token(None).valid)

    def test_touch_failure_does_not_fail_validation(self):
        token = self.sessions.create_token(self.account)
        with patch.object(self.db, "touch_token", side_effect=SQLAlchemyError("busy")):
            with self.assertLogs("biocard.sessions", level="WARNING"):
                result = self.sessions.validate_token(token)
        self.assertTrue(result.valid)

    def test_invalidate_all_and_revoke(self):
        first = self.sessions.create_token(self.account)
        self.sessions.create_token(self.account)
        self.assertTrue(self.sessions.revoke_token(first))
        self.assertFalse(self.sessions.revoke_token(first))
        self.assertEqual(self.sessions.invalidate_all_tokens(self.account.id), 1)
        self.assertEqual(self.db.list_tokens(self.account.id), [])

    def test_root_tokens_are_labelled(self):
        root = self.db.create_account(
            "root", "hash", "salt", AccountRole.ROOT, default_avatar=TextAsset()
        )
        token = self.sessions.create_token(root)
        self.assertEqual(self.db.get_token(token).device_info, ROOT_DEVICE_LABEL)
        self.assertIsNone(
            self.db.get_token(self.sessions.create_token(self.account)).device_info
        )

    def test_admin_permission(self):
        self.assertFalse(SessionManager.has_admin_permission(self.account))
        self.account.role = AccountRole.ADMIN
        self.assertTrue(SessionManager.has_admin_permission(self.account))
        self.account.role = AccountRole.ROOT
        self.assertTrue(SessionManager.has_admin_permission(self.account))
        self.assertFalse(SessionManager.has_admin_permission(None))

    def test_authenticate(self):
        password_hash, salt = hash_password("s3cret")
        bob = self.db.create_account(
            "bob", password_hash, salt, AccountRole.USER, default_avatar=TextAsset()
        )
        self.clock.advance(100)

        self.assertIsNone(self.sessions.authenticate("bob", "wrong"))
        self.assertIsNone(self.sessions.authenticate("nobody", "s3cret"))
        self.assertIsNone(self.sessions.authenticate("alice", "s3cret"))
        account = self.sessions.authenticate("bob", "s3cret")
        self.assertEqual(account.id, bob.id)
        self.assertEqual(self.db.get_account(bob.id).last_login, self.clock.now)

    def test_extract_bearer_token(self):
        self.assertEqual(extract_bearer_token("Bearer abc"), "abc")
        self.assertIsNone(extract_bearer_token("Basic abc"))
        self.assertIsNone(extract_bearer_token("Bearer "))
        self.assertIsNone(extract_bearer_token(None))


class ConcurrentIssueTests(unittest.TestCase):
    def test_concurrent_issue_at_cap_evicts_once_per_excess_token(self):
        db = InMemoryDbClient()
        counter = itertools.count(1)
        sessions = SessionManager(db, Settings(), clock=lambda: float(next(counter)))
        account = db.create_account(
            "carol", "hash", "salt", AccountRole.USER, default_avatar=TextAsset()
        )
        originals = [sessions.create_token(account) for _ in range(10)]

        barrier = threading.Barrier(8)
        issued = []
        lock = threading.Lock()

        def issue():
            barrier.wait()
            token = sessions.create_token(account)
            with lock:
                issued.append(token)

        threads = [threading.Thread(target=issue) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        stored = {t.token_value for t in db.list_tokens(account.id)}
        self.assertEqual(len(stored), 10)
        self.assertTrue(set(issued) <= stored)
        self.assertEqual(set(originals) - stored, set(originals[:8]))


if __name__ == "__main__":
    unittest.main()
