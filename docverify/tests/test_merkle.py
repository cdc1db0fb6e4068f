import hashlib
import math
import unittest

from web3 import Web3

from docverify.app.services.merkle import ZERO_HASH, MerkleTree, hash_pair, normalize_hash, to_hex


def leaf(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


class TestMerkleTree(unittest.TestCase):

    def test_empty_tree_has_zero_root(self):
        self.assertEqual(MerkleTree([]).root, ZERO_HASH)

    def test_single_leaf_is_its_own_root(self):
        only = leaf("only")
        tree = MerkleTree([only])
        self.assertEqual(tree.root, "0x" + only)
        self.assertEqual(tree.proof(only), [])
        self.assertTrue(MerkleTree.verify(only, [], tree.root))

    def test_pair_root_is_keccak_of_sorted_concatenation(self):
        a, b = normalize_hash(leaf("a")), normalize_hash(leaf("b"))
        expected = Web3.keccak(min(a, b) + max(a, b))
        self.assertEqual(MerkleTree([a.hex(), b.hex()]).root, to_hex(expected))
        # Leaf order does not change a pair's parent
        self.assertEqual(MerkleTree([b.hex(), a.hex()]).root, to_hex(expected))

    def test_odd_node_is_promoted(self):
        a, b, c = (normalize_hash(leaf(x)) for x in "abc")
        expected = hash_pair(hash_pair(a, b), c)
        self.assertEqual(MerkleTree([a.hex(), b.hex(), c.hex()]).root, to_hex(expected))

    def test_every_leaf_proves_inclusion(self):
        for size in range(1, 10):
            leaves = [leaf(f"doc-{i}") for i in range(size)]
            tree = MerkleTree(leaves)
            for item in leaves:
                proof = tree.proof(item)
                self.assertIsNotNone(proof)
                self.assertLessEqual(len(proof), math.ceil(math.log2(size)) if size > 1 else 0)
                self.assertTrue(MerkleTree.verify(item, proof, tree.root), f"size={size}")

    def test_tampered_leaf_or_proof_fails(self):
        leaves = [leaf(f"doc-{i}") for i in range(5)]
        tree = MerkleTree(leaves)
        proof = tree.proof(leaves[2])

        self.assertFalse(MerkleTree.verify(leaf("forged"), proof, tree.root))

        tampered = list(proof)
        tampered[0] = "0x" + leaf("other")
        self.assertFalse(MerkleTree.verify(leaves[2], tampered, tree.root))
        self.assertFalse(MerkleTree.verify(leaves[2], proof[:-1], tree.root))

    def test_absent_leaf_has_no_proof(self):
        tree = MerkleTree([leaf("a"), leaf("b")])
        self.assertIsNone(tree.proof(leaf("c")))

    def test_prefix_is_optional(self):
        value = leaf("prefixed")
        self.assertEqual(normalize_hash(value), normalize_hash("0x" + value))
        self.assertEqual(normalize_hash(value.upper()), normalize_hash(value))

    def test_malformed_hashes(self):
        with self.assertRaises(ValueError):
            normalize_hash("0x1234")
        with self.assertRaises(ValueError):
            normalize_hash("zz" * 32)
        self.assertFalse(MerkleTree.verify("not-a-hash", [], ZERO_HASH))


if __name__ == '__main__':
    unittest.main()
