import unittest
from unittest import mock

from docverify.app.services.batch_service import (
    BatchValidationError,
    batch_service,
    parse_csv_records,
    record_hash,
)
from docverify.app.services.merkle import MerkleTree, hash_pair, normalize_hash, to_hex
from docverify.app.utils.mongo import mongo_manager
from docverify.tests.base import DocVerifyTestCase

RECORDS = [
    {"recipientName": "Ada Lovelace", "course": "Analytical Engines", "issueDate": "01/02/2024", "grade": "A"},
    {"recipientName": "Alan Turing", "course": "Computability", "issueDate": "01/02/2024"},
    {"recipientName": "Grace Hopper", "course": "Compilers", "issueDate": "01/02/2024", "recipientEmail": "grace@example.com"},
]
EXTRA_RECORD = {"recipientName": "Edsger Dijkstra", "course": "Structured Programming", "issueDate": "01/02/2024"}


class TestCsvParsing(unittest.TestCase):

    def test_parse_rows(self):
        content = "\ufeffrecipientName, course \nAda Lovelace, Engines\n\n,\nAlan Turing,Computability\n".encode("utf-8")
        self.assertEqual(parse_csv_records(content), [
            {"recipientName": "Ada Lovelace", "course": "Engines"},
            {"recipientName": "Alan Turing", "course": "Computability"},
        ])

    def test_missing_required_column(self):
        with self.assertRaises(ValueError):
            parse_csv_records(b"name,course\nAda,Engines\n")
        with self.assertRaises(ValueError):
            parse_csv_records(b"")


class TestBulkIssuance(DocVerifyTestCase):

    def setUp(self):
        super().setUp()
        self.token = self.register()["token"]

    def issue(self, records=RECORDS, title="Spring Cohort"):
        return self.client.post(
            "/api/certificates/bulk",
            headers=self.auth(self.token),
            json={"title": title, "records": records},
        )

    def test_issue_batch(self):
        response = self.issue()
        self.assertEqual(response.status_code, 201, response.text)
        batch = response.json()["data"]

        self.assertRegex(batch["batchId"], r"^BATCH-[0-9A-F]{12}$")
        self.assertEqual(batch["documentCount"], 3)
        self.assertEqual(batch["anchorStatus"], "not_anchored")
        self.assertEqual(len(batch["documents"]), 3)

        leaves = [record_hash(record, "Spring Cohort") for record in RECORDS]
        self.assertEqual(batch["documentHashes"], leaves)
        self.assertEqual(batch["merkleRoot"], MerkleTree(leaves).root)

        stored = mongo_manager.certificates.find_one({"certificateId": batch["documents"][0]["certificateId"]})
        self.assertEqual(stored["batchId"], batch["batchId"])
        self.assertEqual(stored["extractionStatus"], "completed")
        self.assertEqual(stored["primaryDetails"]["fields"]["name"], "Ada Lovelace")
        self.assertEqual(stored["primaryDetails"]["fields"]["qualification"], "Analytical Engines")
        self.assertEqual(stored["verificationSummary"]["holderName"], "Ada Lovelace")

    def test_invalid_rows_are_reported_together(self):
        records = [RECORDS[0], {"course": "No name"}, {"recipientName": "  "}, RECORDS[0]]
        response = self.issue(records)
        self.assertEqual(response.status_code, 400)
        errors = response.json()["data"]["errors"]
        self.assertEqual([error["row"] for error in errors], [2, 3, 4])
        self.assertEqual(mongo_manager.certificates.count_documents({}), 0)
        self.assertEqual(mongo_manager.batches.count_documents({}), 0)

    def test_empty_batch_rejected(self):
        self.assertEqual(self.issue([]).status_code, 400)

    def test_bulk_issued_documents_verify(self):
        batch = self.issue().json()["data"]
        document = batch["documents"][1]
        response = self.client.post("/api/verify", json={
            "certificateId": document["certificateId"],
            "accessKey": document["accessKey"],
        })
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["data"]["fullAccess"])
        self.assertEqual(response.json()["data"]["batchId"], batch["batchId"])

    def test_proof_and_inclusion(self):
        batch = self.issue().json()["data"]
        for document in batch["documents"]:
            proof = self.client.get(
                f"/api/blockchain/batches/{batch['batchId']}/proof/{document['certificateId']}"
            ).json()["data"]
            self.assertEqual(proof["merkleRoot"], batch["merkleRoot"])

            response = self.client.post("/api/blockchain/batches/verify", json={
                "batchId": batch["batchId"],
                "documentHash": document["documentHash"],
                "proof": proof["proof"],
            })
            result = response.json()["data"]
            self.assertTrue(result["verified"])
            self.assertEqual(result["certificateId"], document["certificateId"])
            self.assertIsNone(result["onChain"])

    def test_tampered_inclusion_fails(self):
        batch = self.issue().json()["data"]
        document = batch["documents"][0]
        proof = batch_service.proof(batch["batchId"], document["certificateId"])

        forged = record_hash({"recipientName": "Mallory"}, "Spring Cohort")
        result = batch_service.verify_inclusion(batch["batchId"], forged, proof["proof"])
        self.assertFalse(result["verified"])

        self.assertIsNone(batch_service.verify_inclusion("BATCH-000000000000", forged, []))

    def test_interior_node_is_not_a_document(self):
        batch = self.issue(RECORDS + [EXTRA_RECORD]).json()["data"]
        l0, l1, l2, l3 = [normalize_hash(leaf) for leaf in batch["documentHashes"]]

        node = to_hex(hash_pair(l0, l1))
        sibling = to_hex(hash_pair(l2, l3))
        self.assertTrue(MerkleTree.verify(node, [sibling], batch["merkleRoot"]))

        result = batch_service.verify_inclusion(batch["batchId"], node, [sibling])
        self.assertFalse(result["verified"])
        self.assertNotIn("certificateId", result)

    def test_inclusion_names_certificate_from_the_same_batch(self):
        self.issue()
        second = self.issue().json()["data"]
        document = second["documents"][0]
        proof = batch_service.proof(second["batchId"], document["certificateId"])

        result = batch_service.verify_inclusion(second["batchId"], document["documentHash"], proof["proof"])
        self.assertTrue(result["verified"])
        self.assertEqual(result["certificateId"], document["certificateId"])

    def test_failed_certificate_write_leaves_nothing_behind(self):
        issuer = mongo_manager.users.find_one({"email": "issuer@example.com"})
        save_many = mongo_manager.save_many

        def interrupted(collection_name, documents):
            save_many(collection_name, documents[:2])
            raise RuntimeError("write interrupted")

        with mock.patch.object(mongo_manager, "save_many", side_effect=interrupted):
            with self.assertRaises(RuntimeError):
                batch_service.issue_batch("Spring Cohort", RECORDS + [EXTRA_RECORD], issuer)

        self.assertEqual(mongo_manager.certificates.count_documents({}), 0)
        self.assertEqual(mongo_manager.batches.count_documents({}), 0)

    def test_failed_batch_write_removes_certificates(self):
        issuer = mongo_manager.users.find_one({"email": "issuer@example.com"})
        with mock.patch.object(mongo_manager, "save_document", side_effect=RuntimeError("write failed")):
            with self.assertRaises(RuntimeError):
                batch_service.issue_batch("Spring Cohort", RECORDS, issuer)

        self.assertEqual(mongo_manager.certificates.count_documents({}), 0)
        self.assertEqual(mongo_manager.batches.count_documents({}), 0)

    def test_unknown_batch_and_foreign_document(self):
        batch = self.issue().json()["data"]
        self.assertEqual(self.client.get("/api/blockchain/batches/BATCH-000000000000").status_code, 404)

        single = self.upload(self.token).json()["data"]
        response = self.client.get(f"/api/blockchain/batches/{batch['batchId']}/proof/{single['certificateId']}")
        self.assertEqual(response.status_code, 404)

        fetched = self.client.get(f"/api/blockchain/batches/{batch['batchId']}").json()["data"]
        self.assertEqual(fetched["certificateIds"], [d["certificateId"] for d in batch["documents"]])

    def test_csv_upload(self):
        content = b"recipientName,course\nAda Lovelace,Engines\nAlan Turing,Computability\n"
        response = self.client.post(
            "/api/certificates/bulk/csv",
            headers=self.auth(self.token),
            files={"file": ("cohort.csv", content, "text/csv")},
            data={"title": "CSV Cohort"},
        )
        self.assertEqual(response.status_code, 201, response.text)
        self.assertEqual(response.json()["data"]["documentCount"], 2)

        bad = self.client.post(
            "/api/certificates/bulk/csv",
            headers=self.auth(self.token),
            files={"file": ("cohort.csv", b"name\nAda\n", "text/csv")},
        )
        self.assertEqual(bad.status_code, 400)

    def test_validation_error_lists_rows(self):
        with self.assertRaises(BatchValidationError) as context:
            batch_service.validate_records([{"recipientName": "A"}, {}], "T")
        self.assertEqual(context.exception.errors, [{"row": 2, "error": "recipientName is required"}])


if __name__ == '__main__':
    unittest.main()
