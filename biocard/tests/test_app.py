import unittest
from unittest.mock import patch

from fastapi.testclient import TestClient

from biocard.app import create_app
from biocard.assets import TextAsset
from biocard.db import AccountRole, InMemoryDbClient
from biocard.dependencies import get_cache, get_db_client
from biocard.passwords import hash_password


class BioCardApiTests(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(create_app())
        db = get_db_client()
        if isinstance(db, InMemoryDbClient):
            db.reset()
        get_cache().clear()

    def _signup(self, username="alice", password="pw1", user_type="user"):
        response = self.client.post(
            "/api/signup/create",
            json={"username": username, "password": password, "type": user_type},
        )
        return response

    def _auth(self, token):
        return {"Authorization": f"Bearer {token}"}

    def _admin_token(self):
        password_hash, salt = hash_password("admin-pw")
        get_db_client().create_account(
            "admin", password_hash, salt, AccountRole.ADMIN, default_avatar=TextAsset()
        )
        response = self.client.post(
            "/api/signin", json={"username": "admin", "password": "admin-pw"}
        )
        self.assertEqual(response.status_code, 200)
        return response.json()["token"]

    def test_signup_and_default_profile(self):
        response = self._signup()
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["token"])

        profile = self.client.get("/api/user/alice")
        self.assertEqual(profile.status_code, 200)
        payload = profile.json()
        self.assertEqual(payload["username"], "alice")
        self.assertEqual(payload["userType"], "personal")
        self.assertEqual(payload["avatar"], "👤")
        self.assertEqual(payload["socialLinks"], [])

        self.assertEqual(self.client.get("/api/user/nobody").status_code, 404)

    def test_signup_errors(self):
        self._signup()
        self.assertEqual(self._signup().status_code, 409)
        self.assertEqual(self._signup("Alice").status_code, 409)
        self.assertEqual(self._signup("bob", user_type="root").status_code, 403)
        self.assertEqual(self._signup("bob", user_type="wizard").status_code, 400)
        self.assertEqual(self._signup("", "pw").status_code, 400)

    def test_signin(self):
        self._signup()
        ok = self.client.post("/api/signin", json={"username": "alice", "password": "pw1"})
        self.assertEqual(ok.status_code, 200)
        bad = self.client.post("/api/signin", json={"username": "alice", "password": "nope"})
        self.assertEqual(bad.status_code, 401)

    def test_update_and_patch_profile(self):
        token = self._signup().json()["token"]
        profile = self.client.get("/api/user/alice").json()
        profile["name"] = "Alice"
        profile["contacts"] = [{"type": "email", "value": "alice@example.com"}]
        profile["workExperiences"] = [{"company": "Acme", "startDate": "2020-01-01"}]

        self.assertEqual(
            self.client.post("/api/user/alice", json=profile).status_code, 401
        )
        response = self.client.post("/api/user/alice", json=profile, headers=self._auth(token))
        self.assertEqual(response.status_code, 200)

        updated = self.client.get("/api/user/alice").json()
        self.assertEqual(updated["name"], "Alice")
        self.assertEqual(updated["contacts"][0]["value"], "alice@example.com")
        self.assertEqual(updated["workExperiences"][0]["startDate"], "2020-01-01")

        response = self.client.patch(
            "/api/user/alice", json={"bio": "hi"}, headers=self._auth(token)
        )
        self.assertEqual(response.status_code, 200)
        patched = self.client.get("/api/user/alice").json()
        self.assertEqual(patched["bio"], "hi")
        self.assertEqual(len(patched["contacts"]), 1)

    def test_cannot_edit_someone_else(self):
        self._signup()
        other = self._signup("bob").json()["token"]
        response = self.client.patch(
            "/api/user/alice", json={"bio": "pwned"}, headers=self._auth(other)
        )
        self.assertEqual(response.status_code, 401)

    def test_language_variant(self):
        token = self._signup().json()["token"]
        response = self.client.post("/api/user/alice/languages/fr", headers=self._auth(token))
        self.assertEqual(response.status_code, 200)
        again = self.client.post("/api/user/alice/languages/fr", headers=self._auth(token))
        self.assertEqual(again.status_code, 409)

        self.client.patch(
            "/api/user/alice",
            params={"language": "fr"},
            json={"bio": "bonjour"},
            headers=self._auth(token),
        )
        self.assertEqual(
            self.client.get("/api/user/alice", params={"language": "fr"}).json()["bio"],
            "bonjour",
        )
        self.assertEqual(self.client.get("/api/user/alice").json()["bio"], "")

    def test_export_and_import(self):
        token = self._signup().json()["token"]
        bundle = self.client.get("/api/user/alice/export", headers=self._auth(token))
        self.assertEqual(bundle.status_code, 200)
        data = bundle.json()
        self.assertEqual(data["user"], {"username": "alice", "type": "user", "token": token})

        data["profile"]["name"] = "Imported"
        response = self.client.post(
            "/api/user/alice/import", json=data, headers=self._auth(token)
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.get("/api/user/alice").json()["name"], "Imported")

        data["user"]["username"] = "mallory"
        data["profile"]["name"] = "Mallory"
        response = self.client.post(
            "/api/user/alice/import", json=data, headers=self._auth(token)
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.client.get("/api/user/alice").json()["name"], "Imported")

    def test_logout_and_delete(self):
        token = self._signup().json()["token"]
        self.assertEqual(
            self.client.post("/api/logout", headers=self._auth(token)).status_code, 200
        )
        self.assertEqual(
            self.client.post("/api/logout", headers=self._auth(token)).status_code, 401
        )

        token = self.client.post(
            "/api/signin", json={"username": "alice", "password": "pw1"}
        ).json()["token"]
        response = self.client.post("/api/delete", json={"username": "bob", "token": token})
        self.assertEqual(response.status_code, 401)
        response = self.client.post("/api/delete", json={"username": "alice", "token": token})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.get("/api/user/alice").status_code, 404)

    def test_admin_user_management(self):
        admin_token = self._admin_token()
        user_token = self._signup().json()["token"]

        denied = self.client.post(
            "/api/admin/check-permission", json={"username": "alice", "token": user_token}
        )
        self.assertEqual(denied.status_code, 403)
        allowed = self.client.post(
            "/api/admin/check-permission", json={"username": "admin", "token": admin_token}
        )
        self.assertEqual(allowed.json(), {"success": True, "type": "admin"})

        created = self.client.post(
            "/api/admin/users",
            json={
                "username": "admin",
                "token": admin_token,
                "newUsername": "carol",
                "password": "pw",
                "type": "user",
            },
        )
        self.assertEqual(created.status_code, 200)
        self.assertTrue(created.json()["token"])

        listing = self.client.post(
            "/api/admin/users/list", json={"username": "admin", "token": admin_token}
        ).json()
        self.assertEqual(
            sorted(u["username"] for u in listing["users"]), ["admin", "alice", "carol"]
        )

        self.assertEqual(
            self.client.delete("/api/admin/users/carol", headers=self._auth(user_token)).status_code,
            403,
        )
        self.assertEqual(
            self.client.delete("/api/admin/users/admin", headers=self._auth(admin_token)).status_code,
            403,
        )
        self.assertEqual(
            self.client.delete("/api/admin/users/ghost", headers=self._auth(admin_token)).status_code,
            404,
        )
        self.assertEqual(
            self.client.delete("/api/admin/users/carol", headers=self._auth(admin_token)).status_code,
            200,
        )
        self.assertEqual(self.client.get("/api/user/carol").status_code, 404)

    def test_settings(self):
        self.assertEqual(self.client.get("/api/settings").json(), {"title": "OpenBioCard", "logo": ""})

        admin_token = self._admin_token()
        response = self.client.post(
            "/api/admin/settings/update",
            json={"username": "admin", "token": admin_token, "title": "My Cards", "logo": "🪪"},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.get("/api/settings").json(), {"title": "My Cards", "logo": "🪪"})

        blank = self.client.post(
            "/api/admin/settings/update",
            json={"username": "admin", "token": admin_token, "title": "  "},
        )
        self.assertEqual(blank.status_code, 400)
        current = self.client.post(
            "/api/admin/settings", json={"username": "admin", "token": admin_token}
        )
        self.assertEqual(current.json()["title"], "My Cards")

    def test_lifespan_runs_bootstrap(self):
        cache = get_cache()
        with patch.object(cache, "close", wraps=cache.close) as close:
            with TestClient(create_app()) as client:
                self.assertIsNotNone(get_db_client().get_system_settings())
                self.assertEqual(client.get("/api/settings").json()["title"], "OpenBioCard")

        close.assert_called_once_with()
        self.assertIsNot(get_cache(), cache)
        self.assertEqual(self.client.get("/api/settings").json()["title"], "OpenBioCard")


if __name__ == "__main__":
    unittest.main()
