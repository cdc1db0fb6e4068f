import unittest
from unittest import mock

from docverify.app.config import settings
from docverify.app.utils.mongo import mongo_manager
from docverify.tests.base import DocVerifyTestCase, make_pdf


class TestVerification(DocVerifyTestCase):

    def setUp(self):
        super().setUp()
        self.token = self.register()["token"]
        self.issued = self.upload(self.token).json()["data"]
        self.certificate_id = self.issued["certificateId"]

    def stored(self):
        return mongo_manager.certificates.find_one({"certificateId": self.certificate_id})

    def test_basic_tier_without_key(self):
        response = self.client.post("/api/verify", json={"certificateId": self.certificate_id})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["status"], "valid")

        data = body["data"]
        self.assertFalse(data["fullAccess"])
        self.assertEqual(data["documentHash"], self.issued["documentHash"])
        self.assertIn("verificationSummary", data)
        self.assertIn("primaryDetails", data)
        for restricted in ("qrCode", "fullDetails", "accessKey", "filePath", "recipientName"):
            self.assertNotIn(restricted, data)

        self.assertEqual(self.stored()["verificationCount"], 1)
        self.assertEqual(self.stored()["fullAccessCount"], 0)
        self.assertIsNotNone(self.stored()["lastVerifiedAt"])

    def test_full_tier_with_access_key(self):
        response = self.client.post("/api/verify", json={
            "certificateId": self.certificate_id,
            "accessKey": self.issued["accessKey"],
        })
        data = response.json()["data"]
        self.assertTrue(data["fullAccess"])
        self.assertEqual(data["qrCode"], self.issued["qrCode"])
        self.assertIn("rawText", data["fullDetails"])
        self.assertNotIn("accessKey", data)

        self.assertEqual(self.stored()["verificationCount"], 1)
        self.assertEqual(self.stored()["fullAccessCount"], 1)

    def test_wrong_key_falls_back_to_basic_tier(self):
        response = self.client.post("/api/verify", json={
            "certificateId": self.certificate_id,
            "accessKey": "0000000000000000",
        })
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()["data"]["fullAccess"])
        self.assertNotIn("fullDetails", response.json()["data"])

    def test_unknown_and_missing_ids(self):
        response = self.client.post("/api/verify", json={"certificateId": "DOC-FFFFFFFF"})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["status"], "invalid")

        self.assertEqual(self.client.post("/api/verify", json={}).status_code, 400)

    def test_revoked_status(self):
        self.client.post(f"/api/certificates/{self.certificate_id}/revoke", headers=self.auth(self.token))
        response = self.client.post("/api/verify", json={"certificateId": self.certificate_id})
        self.assertEqual(response.json()["status"], "revoked")

    def test_quick_verify_is_cached(self):
        first = self.client.get(f"/api/verify/quick/{self.certificate_id}").json()
        second = self.client.get(f"/api/verify/quick/{self.certificate_id}").json()
        self.assertFalse(first["cached"])
        self.assertTrue(second["cached"])
        self.assertEqual(first["data"], second["data"])
        self.assertNotIn("fullDetails", second["data"])
        self.assertEqual(self.stored()["verificationCount"], 2)

        self.assertEqual(self.client.get("/api/verify/quick/DOC-FFFFFFFF").status_code, 404)

    def test_revocation_invalidates_quick_verify_cache(self):
        self.client.get(f"/api/verify/quick/{self.certificate_id}")
        self.client.post(f"/api/certificates/{self.certificate_id}/revoke", headers=self.auth(self.token))
        response = self.client.get(f"/api/verify/quick/{self.certificate_id}").json()
        self.assertFalse(response["cached"])
        self.assertEqual(response["status"], "revoked")

    def test_download(self):
        path = f"/api/download/{self.certificate_id}"
        self.assertEqual(self.client.get(path).status_code, 403)
        self.assertEqual(self.client.get(path, params={"accessKey": "WRONG"}).status_code, 403)

        response = self.client.get(path, params={"accessKey": self.issued["accessKey"]})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["content-type"], "application/pdf")
        self.assertEqual(response.content[:4], make_pdf()[:4])
        self.assertIn("attachment", response.headers["content-disposition"])
        self.assertEqual(self.stored()["downloadCount"], 1)

        missing = self.client.get("/api/download/DOC-FFFFFFFF", params={"accessKey": "X"})
        self.assertEqual(missing.status_code, 404)

    def test_record_removed_mid_verification_is_not_found(self):
        with mock.patch.object(mongo_manager, "update_by_field", return_value=None):
            response = self.client.post("/api/verify", json={"certificateId": self.certificate_id})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["status"], "invalid")

    def test_rate_limit_headers_and_rejection(self):
        saved = settings.VERIFY_RATE_LIMIT
        settings.VERIFY_RATE_LIMIT = 2
        try:
            first = self.client.post("/api/verify", json={"certificateId": self.certificate_id})
            self.client.post("/api/verify", json={"certificateId": self.certificate_id})
            blocked = self.client.post("/api/verify", json={"certificateId": self.certificate_id})
        finally:
            settings.VERIFY_RATE_LIMIT = saved

        self.assertEqual(first.headers["X-RateLimit-Limit"], "2")
        self.assertEqual(first.headers["X-RateLimit-Remaining"], "1")
        self.assertEqual(blocked.status_code, 429)
        self.assertEqual(blocked.headers["X-RateLimit-Remaining"], "0")
        self.assertIn("Retry-After", blocked.headers)
        self.assertEqual(self.stored()["verificationCount"], 2)


if __name__ == '__main__':
    unittest.main()
