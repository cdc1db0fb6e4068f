import asyncio
import unittest

from docverify.app.services.ai_service import DOCUMENT_SCHEMAS, ai_service
from docverify.tests.base import DocVerifyTestCase

CERTIFICATE_TEXT = (
    "Certificate of Excellence\n"
    "Issued by: Royal Society\n"
    "Date: 12/03/2024\n"
    "Awarded to: Ada Lovelace"
)


class TestAIFallbacks(DocVerifyTestCase):
    """No Gemini key is configured, so every call takes the pattern-based path."""

    def test_detect_type(self):
        self.assertFalse(ai_service.is_available())
        cases = {
            "Student ID card of the university": "student_id",
            "Invoice for services, payment due in 30 days": "bill",
            "Bachelor of Arts degree": "degree",
            "Fishing permit": "license",
            CERTIFICATE_TEXT: "certificate",
            "Meeting notes": "general",
        }
        for text, expected in cases.items():
            self.assertEqual(asyncio.run(ai_service.detect_document_type(text)), expected, text)

    def test_extract_fields(self):
        result = asyncio.run(ai_service.extract_fields(CERTIFICATE_TEXT))
        self.assertEqual(result["documentType"], "certificate")
        self.assertEqual(result["schema"], "Certificate")
        self.assertFalse(result["aiProcessed"])
        self.assertEqual(result["confidence"], 100)
        self.assertEqual(result["suggestions"], [])
        self.assertEqual(result["fields"]["recipientName"], {
            "value": "Ada Lovelace",
            "label": "Recipient Name",
            "extracted": True,
        })
        self.assertEqual(result["fields"]["issueDate"]["value"], "12/03/2024")
        self.assertFalse(result["fields"]["signatoryName"]["extracted"])

    def test_missing_required_fields_get_suggestions(self):
        result = asyncio.run(ai_service.extract_fields("Awarded to: Ada Lovelace", "certificate"))
        self.assertEqual(result["confidence"], 25)
        self.assertEqual(
            [suggestion["field"] for suggestion in result["suggestions"]],
            ["certificateTitle", "issuingOrganization", "issueDate"],
        )
        self.assertTrue(all(s["priority"] == "high" for s in result["suggestions"]))

    def test_suggestions_and_validation_without_ai(self):
        self.assertEqual(asyncio.run(ai_service.get_field_suggestions("institution", "Oxf")), [])
        fields = {"recipientName": "Ada"}
        self.assertEqual(
            asyncio.run(ai_service.validate_and_enhance(fields, "certificate")),
            {"valid": True, "enhanced": fields, "issues": []},
        )

    def test_summary_fallback(self):
        summary = asyncio.run(ai_service.generate_summary("one two three four", "degree"))
        self.assertEqual(
            summary,
            "This academic degree contains approximately 4 words. Manual review is recommended for detailed information.",
        )

    def test_schema_lookups(self):
        types = ai_service.get_supported_document_types()
        self.assertEqual([t["type"] for t in types], list(DOCUMENT_SCHEMAS))
        bill = next(t for t in types if t["type"] == "bill")
        self.assertEqual(bill["requiredFieldCount"], 5)
        self.assertEqual(bill["totalFieldCount"], 11)

        fields = ai_service.get_recommended_fields("license")
        self.assertEqual(fields["schemaName"], "License/Permit")
        self.assertEqual(fields["required"][1], {"name": "licenseNumber", "label": "License Number", "required": True})

    def test_endpoints(self):
        token = self.register()["token"]
        self.assertFalse(self.client.get("/api/ai/status").json()["data"]["available"])
        self.assertEqual(len(self.client.get("/api/ai/document-types").json()["data"]), 6)
        self.assertEqual(self.client.get("/api/ai/fields/unknown").status_code, 404)

        self.assertEqual(self.client.post("/api/ai/extract", json={"text": CERTIFICATE_TEXT}).status_code, 401)
        extracted = self.client.post("/api/ai/extract", json={"text": CERTIFICATE_TEXT}, headers=self.auth(token))
        self.assertEqual(extracted.status_code, 200)
        self.assertEqual(extracted.json()["data"]["documentType"], "certificate")
        self.assertTrue(extracted.json()["data"]["validation"]["valid"])

        empty = self.client.post("/api/ai/detect-type", json={"text": "  "}, headers=self.auth(token))
        self.assertEqual(empty.status_code, 400)

        summary = self.client.post("/api/ai/summary", json={"text": CERTIFICATE_TEXT}, headers=self.auth(token))
        self.assertIn("certificate", summary.json()["data"]["summary"])

        suggest = self.client.post(
            "/api/ai/suggest",
            json={"fieldName": "institution", "partialValue": "Ox"},
            headers=self.auth(token),
        )
        self.assertEqual(suggest.json()["data"]["suggestions"], [])


if __name__ == '__main__':
    unittest.main()
