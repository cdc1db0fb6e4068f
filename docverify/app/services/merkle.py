"""Merkle tree over 32-byte document hashes.

Parents are keccak256 of the sorted pair, so proofs carry no left/right
flags and verify the same way an on-chain sorted-pair check does. An odd
trailing node is promoted to the next level unchanged.
"""

from typing import List, Optional, Sequence

from web3 import Web3

ZERO_HASH = "0x" + "00" * 32


def normalize_hash(value: str) -> bytes:
    """Parse a 32-byte hex hash, with or without the 0x prefix."""
    if not isinstance(value, str):
        raise ValueError("Hash must be a hex string")
    hex_value = value[2:] if value.lower().startswith("0x") else value
    if len(hex_value) != 64:
        raise ValueError(f"Hash must be 32 bytes, got {len(hex_value) // 2}")
    try:
        return bytes.fromhex(hex_value)
    except ValueError:
        raise ValueError(f"Invalid hex hash: {value}")


def to_hex(value: bytes) -> str:
    return "0x" + bytes(value).hex()


def hash_pair(left: bytes, right: bytes) -> bytes:
    first, second = (left, right) if left <= right else (right, left)
    return bytes(Web3.keccak(first + second))


class MerkleTree:
    def __init__(self, leaves: Sequence[str]):
        self.leaves: List[bytes] = [normalize_hash(leaf) for leaf in leaves]
        self.levels: List[List[bytes]] = self._build_levels()

    def _build_levels(self) -> List[List[bytes]]:
        levels = [list(self.leaves)]
        while len(levels[-1]) > 1:
            level = levels[-1]
            next_level = []
            for i in range(0, len(level), 2):
                if i + 1 < len(level):
                    next_level.append(hash_pair(level[i], level[i + 1]))
                else:
                    next_level.append(level[i])
            levels.append(next_level)
        return levels

    def __len__(self) -> int:
        return len(self.leaves)

    @property
    def root(self) -> str:
        if not self.leaves:
            return ZERO_HASH
        return to_hex(self.levels[-1][0])

    def proof(self, leaf: str) -> Optional[List[str]]:
        """Sibling hashes from leaf to root, or None when the leaf is absent."""
        target = normalize_hash(leaf)
        try:
            index = self.leaves.index(target)
        except ValueError:
            return None

        proof: List[str] = []
        for level in self.levels[:-1]:
            sibling = index ^ 1
            if sibling < len(level):
                proof.append(to_hex(level[sibling]))
            index //= 2
        return proof

    @staticmethod
    def verify(leaf: str, proof: Sequence[str], root: str) -> bool:
        try:
            computed = normalize_hash(leaf)
            for sibling in proof:
                computed = hash_pair(computed, normalize_hash(sibling))
            return computed == normalize_hash(root)
        except ValueError:
            return False
