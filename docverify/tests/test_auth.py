import unittest
from datetime import datetime, timedelta

from docverify.app.config import settings
from docverify.app.utils.mongo import mongo_manager
from docverify.tests.base import DocVerifyTestCase


class TestAuth(DocVerifyTestCase):

    def test_register_and_login(self):
        registered = self.register(email="Owner@Example.com ")
        self.assertEqual(registered["user"]["email"], "owner@example.com")
        self.assertNotIn("passwordHash", registered["user"])

        response = self.client.post("/api/auth/login", json={
            "email": "owner@example.com",
            "password": "s3cret-pass",
        })
        self.assertEqual(response.status_code, 200)
        data = response.json()["data"]
        self.assertTrue(data["token"])
        self.assertEqual(data["expiresInMinutes"], 30)

        stored = mongo_manager.users.find_one({"email": "owner@example.com"})
        self.assertNotEqual(stored["passwordHash"], "s3cret-pass")
        self.assertIsNotNone(stored["lastLogin"])

    def test_login_rejects_bad_credentials(self):
        self.register()
        response = self.client.post("/api/auth/login", json={
            "email": "issuer@example.com",
            "password": "wrong-password",
        })
        self.assertEqual(response.status_code, 401)
        self.assertFalse(response.json()["success"])

        response = self.client.post("/api/auth/login", json={
            "email": "nobody@example.com",
            "password": "s3cret-pass",
        })
        self.assertEqual(response.status_code, 401)

    def test_register_validation(self):
        self.register()
        duplicate = self.client.post("/api/auth/register", json={
            "name": "Again", "email": "issuer@example.com", "password": "s3cret-pass",
        })
        self.assertEqual(duplicate.status_code, 400)

        short = self.client.post("/api/auth/register", json={
            "name": "Short", "email": "short@example.com", "password": "abc",
        })
        self.assertEqual(short.status_code, 400)

        admin = self.client.post("/api/auth/register", json={
            "name": "Sneaky", "email": "sneaky@example.com", "password": "s3cret-pass", "role": "admin",
        })
        self.assertEqual(admin.status_code, 422)

    def test_suspended_user_cannot_login(self):
        self.register()
        mongo_manager.users.update_one({"email": "issuer@example.com"}, {"$set": {"status": "suspended"}})
        response = self.client.post("/api/auth/login", json={
            "email": "issuer@example.com",
            "password": "s3cret-pass",
        })
        self.assertEqual(response.status_code, 403)

    def test_me_and_logout(self):
        token = self.register()["token"]
        me = self.client.get("/api/auth/me", headers=self.auth(token))
        self.assertEqual(me.status_code, 200)
        self.assertEqual(me.json()["data"]["role"], "institution")

        self.assertEqual(self.client.post("/api/auth/logout", headers=self.auth(token)).status_code, 200)
        self.assertEqual(self.client.get("/api/auth/me", headers=self.auth(token)).status_code, 401)

    def test_missing_token(self):
        self.assertEqual(self.client.get("/api/auth/me").status_code, 401)
        self.assertEqual(self.client.get("/api/auth/me", headers=self.auth("bogus")).status_code, 401)

    def test_session_expires_after_inactivity(self):
        token = self.register()["token"]
        mongo_manager.sessions.update_one(
            {"token": token},
            {"$set": {"lastActivity": datetime.utcnow() - timedelta(minutes=31)}},
        )
        self.assertEqual(self.client.get("/api/auth/me", headers=self.auth(token)).status_code, 401)
        self.assertIsNone(mongo_manager.sessions.find_one({"token": token}))

    def test_activity_slides_the_session_window(self):
        token = self.register()["token"]
        mongo_manager.sessions.update_one(
            {"token": token},
            {"$set": {"lastActivity": datetime.utcnow() - timedelta(minutes=29)}},
        )
        self.assertEqual(self.client.get("/api/auth/me", headers=self.auth(token)).status_code, 200)

        session = mongo_manager.sessions.find_one({"token": token})
        self.assertLess(datetime.utcnow() - session["lastActivity"], timedelta(minutes=1))

    def test_idle_sessions_expire_through_ttl_index(self):
        indexes = mongo_manager.sessions.index_information()
        ttl = indexes["session_ttl"]
        self.assertEqual(ttl["key"], [("lastActivity", 1)])
        self.assertEqual(ttl["expireAfterSeconds"], settings.SESSION_TIMEOUT_MINUTES * 60)


if __name__ == '__main__':
    unittest.main()
