import unittest
from unittest.mock import patch

from biocard.accounts import AccountService
from biocard.cache import CacheLayer
from biocard.config import Settings
from biocard.db import InMemoryDbClient
from biocard.profiles import ProfileRepository
from biocard.schemas import (
    Contact,
    ExportBundle,
    ProfilePatch,
    ProfileView,
    Project,
    UserExport,
)
from biocard.sessions import SessionManager


class ProfileRepositoryTests(unittest.TestCase):
    def setUp(self):
        settings = Settings()
        self.db = InMemoryDbClient()
        self.cache = CacheLayer()
        self.sessions = SessionManager(self.db, settings)
        self.profiles = ProfileRepository(self.db, self.cache)
        self.accounts = AccountService(self.db, self.sessions, self.profiles, settings)
        result = self.accounts.signup("alice", "pw1", "user")
        self.account, self.token = result.account, result.token

    def tearDown(self):
        self.cache.close()

    def test_signup_creates_default_profile(self):
        self.assertTrue(self.token)
        profile = self.profiles.get_profile("alice")
        self.assertIsNotNone(profile)
        self.assertEqual(profile.username, "alice")
        self.assertEqual(profile.avatar, "👤")
        self.assertEqual(profile.contacts, [])
        self.assertEqual(profile.social_links, [])
        self.assertEqual(profile.projects, [])
        self.assertEqual(profile.work_experiences, [])
        self.assertEqual(profile.school_experiences, [])
        self.assertEqual(profile.gallery, [])

    def test_lookup_is_case_insensitive(self):
        self.assertEqual(self.profiles.get_profile(" ALICE ").username, "alice")

    def test_update_is_visible_immediately(self):
        before = self.profiles.get_profile("alice")
        self.assertEqual(before.name, "")

        changed = before.model_copy(
            update={
                "name": "Alice",
                "contacts": [Contact(type="email", value="alice@example.com")],
                "projects": [Project(name="Card", url="https://example.com")],
            }
        )
        self.assertTrue(self.profiles.update_profile("alice", changed))

        after = self.profiles.get_profile("alice")
        self.assertEqual(after.name, "Alice")
        self.assertEqual([c.value for c in after.contacts], ["alice@example.com"])
        self.assertEqual(after.projects[0].url, "https://example.com")

    def test_update_missing_profile_returns_false(self):
        self.assertFalse(self.profiles.update_profile("nobody", ProfileView()))
        self.assertFalse(self.profiles.patch_profile("nobody", ProfilePatch(bio="x")))

    def test_patch_leaves_absent_collections_alone(self):
        self.profiles.patch_profile(
            "alice", ProfilePatch(contacts=[Contact(type="email", value="a@b.c")])
        )

        self.assertTrue(self.profiles.patch_profile("alice", ProfilePatch(bio="hello")))
        profile = self.profiles.get_profile("alice")
        self.assertEqual(profile.bio, "hello")
        self.assertEqual(len(profile.contacts), 1)

        self.assertTrue(self.profiles.patch_profile("alice", ProfilePatch(contacts=[])))
        profile = self.profiles.get_profile("alice")
        self.assertEqual(profile.contacts, [])
        self.assertEqual(profile.bio, "hello")

    def test_username_in_payload_never_renames(self):
        self.profiles.patch_profile("alice", ProfilePatch(username="mallory", name="A"))
        self.assertIsNone(self.profiles.get_profile("mallory"))
        self.assertEqual(self.profiles.get_profile("alice").name, "A")

    def test_failed_write_propagates_and_keeps_cache(self):
        self.profiles.get_profile("alice")
        with patch.object(self.db, "replace_profile", side_effect=RuntimeError("boom")):
            with self.assertLogs("biocard.profiles", level="ERROR"):
                with self.assertRaises(RuntimeError):
                    self.profiles.patch_profile("alice", ProfilePatch(bio="lost"))
        self.assertEqual(self.profiles.get_profile("alice").bio, "")

    def test_language_variants_own_their_collections(self):
        self.profiles.patch_profile(
            "alice",
            ProfilePatch(name="Alice", contacts=[Contact(type="email", value="a@b.c")]),
        )
        self.assertIsNone(self.profiles.get_profile("alice", "fr"))

        self.assertTrue(self.profiles.create_language_variant("alice", "fr"))
        self.assertFalse(self.profiles.create_language_variant("alice", "FR"))
        self.assertFalse(self.profiles.create_language_variant("nobody", "fr"))

        variant = self.profiles.get_profile("alice", "fr")
        self.assertEqual(variant.name, "Alice")
        self.assertEqual(variant.contacts, [])

        self.profiles.patch_profile("alice", ProfilePatch(name="Alicia"), language="fr")
        self.assertEqual(self.profiles.get_profile("alice", "fr").name, "Alicia")
        self.assertEqual(self.profiles.get_profile("alice").name, "Alice")

    def test_export_bundle(self):
        bundle = self.profiles.get_export_data(self.account, self.token)
        self.assertEqual(bundle.user.username, "alice")
        self.assertEqual(bundle.user.type, "user")
        self.assertEqual(bundle.user.token, self.token)
        self.assertEqual(bundle.profile.avatar, "👤")

    def test_import_with_other_username_is_rejected(self):
        bundle = ExportBundle(
            user=UserExport(username="bob", type="user"),
            profile=ProfileView(username="bob", name="Hijacked"),
        )
        with patch.object(self.db, "replace_profile", wraps=self.db.replace_profile) as spy:
            self.assertFalse(self.profiles.import_data("alice", bundle))
        spy.assert_not_called()
        self.assertEqual(self.profiles.get_profile("alice").name, "")

    def test_import_matches_case_insensitively(self):
        bundle = ExportBundle(
            user=UserExport(username="ALICE", type="user"),
            profile=ProfileView(username="ALICE", name="Imported"),
        )
        self.assertTrue(self.profiles.import_data("alice", bundle))
        profile = self.profiles.get_profile("alice")
        self.assertEqual(profile.name, "Imported")
        self.assertEqual(profile.username, "alice")


if __name__ == "__main__":
    unittest.main()
