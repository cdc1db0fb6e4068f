import unittest

from docverify.app.services.extraction_service import (
    calculate_confidence_score,
    detect_document_type,
    document_extractor,
    extract_full_details,
    extract_primary_fields,
    generate_content_hash,
    validate_integrity,
)

SAMPLE_TEXT = "Certificate No: AB-1234\nIssue Date: 12/03/2024\nName: John Smith"


class TestExtraction(unittest.TestCase):

    def test_detect_document_type(self):
        self.assertEqual(detect_document_type("Bachelor of Science"), "degree")
        self.assertEqual(detect_document_type("Driving licence permit"), "license")
        self.assertEqual(detect_document_type("Certificate of completion"), "certificate")
        self.assertEqual(detect_document_type("Lorem ipsum"), "general")

    def test_primary_fields(self):
        fields = extract_primary_fields(SAMPLE_TEXT)
        self.assertEqual(fields["name"], "John Smith")
        self.assertEqual(fields["documentNumber"], "AB-1234")
        self.assertEqual(fields["issueDate"], "12/03/2024")
        self.assertNotIn("expiryDate", fields)

    def test_pattern_without_group_uses_whole_match(self):
        fields = extract_primary_fields("Awarded with distinction")
        self.assertEqual(fields["grade"].lower(), "distinction")

    def test_full_details(self):
        details = extract_full_details(SAMPLE_TEXT + "\nSigned by: Mary Jones", {"title": "Scan"})
        self.assertEqual(details["structuredData"]["issue_date"], "12/03/2024")
        self.assertEqual(details["dates"], ["12/03/2024"])
        self.assertEqual(details["signatures"], ["Mary Jones"])
        self.assertEqual(details["lineCount"], 4)
        self.assertEqual(details["pdfMetadata"], {"title": "Scan"})

    def test_confidence_score(self):
        small = {"wordCount": 5, "lineCount": 2}
        self.assertEqual(calculate_confidence_score({"name": "x", "documentNumber": "y"}, small), 45)
        large = {"wordCount": 80, "lineCount": 20}
        self.assertEqual(calculate_confidence_score({"name": "x"}, large), 35)
        every_field = {
            field: "v" for field in (
                "name", "documentNumber", "issueDate", "issuingAuthority",
                "qualification", "expiryDate", "grade", "dateOfBirth",
            )
        }
        self.assertEqual(calculate_confidence_score(every_field, large), 100)

    def test_content_hash_and_integrity(self):
        data = {"name": "John Smith", "issueDate": "12/03/2024"}
        digest = generate_content_hash(data)
        self.assertEqual(len(digest), 64)
        self.assertTrue(validate_integrity(digest, data))
        self.assertFalse(validate_integrity(digest, {**data, "name": "Jane Smith"}))

    def test_analyze_text_builds_all_tiers(self):
        result = document_extractor.analyze_text(SAMPLE_TEXT)
        self.assertEqual(result.primaryDetails.fields["name"], "John Smith")
        self.assertEqual(result.verificationSummary.holderName, "John Smith")
        self.assertEqual(result.verificationSummary.validUntil, "Not specified")
        self.assertEqual(result.verificationSummary.integrityHash, result.primaryDetails.hash)
        self.assertEqual(result.fullDetails.rawText, SAMPLE_TEXT)

    def test_known_fields_override_patterns(self):
        result = document_extractor.analyze_text(
            SAMPLE_TEXT,
            document_type="certificate",
            known_fields={"name": "Ada Lovelace", "grade": ""},
        )
        self.assertEqual(result.primaryDetails.documentType, "certificate")
        self.assertEqual(result.primaryDetails.fields["name"], "Ada Lovelace")
        self.assertNotIn("grade", result.primaryDetails.fields)

    def test_empty_text_reports_not_detected(self):
        result = document_extractor.analyze_text("")
        self.assertEqual(result.verificationSummary.holderName, "Not detected")
        self.assertEqual(result.primaryDetails.documentType, "general")

    def test_unreadable_pdf_yields_empty_text(self):
        extracted = document_extractor.extract_text_from_pdf(b"not a pdf")
        self.assertEqual(extracted["text"], "")


if __name__ == '__main__':
    unittest.main()
