# app/services/merkle.py
"""
Batch commitment: record digests, leaf encoding and Merkle tree construction.

The tree has the layout of OpenZeppelin's ``StandardMerkleTree`` so that roots
and proofs check out with ``MerkleProof.verify`` on the certificate contract:

* the SHA-256 digest of a record (hex text) is the tree value; it is
  ABI-encoded as ``string`` and hashed twice with keccak256 to form the leaf;
* leaves are sorted by hash and stored in a flat array, the root at index 0
  and the parent of ``i`` at ``(i - 1) // 2``;
* parents hash the sorted pair ``H(min(a, b) || max(a, b))``, so a proof is
  the ordered list of sibling hashes without left/right flags.

Proof indices are the positions of the records as given; the tree keeps the
mapping to its internal slots.
"""
from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple

from Crypto.Hash import keccak

from app.core.errors import DataIntegrityError
from app.schemas.certificate import Record

HashFn = Callable[[bytes], bytes]

DATE_FORMAT = "%m/%d/%Y"
# Rendering of a never-expiring certificate in hashes and payloads
INFINITE_EXPIRATION = "1"
DIGEST_SIZE = 32
# ABI types of one tree value
LEAF_ENCODING = ("string",)


class MerkleBuildError(DataIntegrityError):
    code = "MERKLE_BUILD_ERROR"


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def keccak256(data: bytes) -> bytes:
    return keccak.new(digest_bits=256, data=data).digest()


def to_hex(value: bytes) -> str:
    return "0x" + value.hex()


def from_hex(value: str) -> bytes:
    return bytes.fromhex(value[2:] if value.startswith("0x") else value)


def format_date(value: Optional[date]) -> str:
    if value is None:
        return INFINITE_EXPIRATION
    return value.strftime(DATE_FORMAT)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

def canonical_fields(record: Record) -> List[str]:
    """Field values in document order; extra fields keep their insertion order."""
    values = [
        record.document_id,
        record.holder_name,
        record.title,
        format_date(record.grant_date),
        format_date(record.expiration_date),
    ]
    values.extend(str(v) for v in record.extra_fields.values())
    return values


def leaf_hash(record: Record) -> bytes:
    return sha256("".join(canonical_fields(record)).encode("utf-8"))


def record_digest(record: Record) -> str:
    """Hex SHA-256 of the record; stored as ``certificate_hash`` and sent to the ledger."""
    return leaf_hash(record).hex()


def single_certificate_hash(fields: Mapping[str, str]) -> str:
    """
    Hash used for individually issued certificates.

    Every field value is hashed on its own, the name -> digest mapping is
    serialized compactly in field order and hashed again.
    """
    hashed = {name: hashlib.sha256(str(value).encode("utf-8")).hexdigest()
              for name, value in fields.items()}
    combined = json.dumps(hashed, separators=(",", ":"))
    return hashlib.sha256(combined.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Leaves
# ---------------------------------------------------------------------------

def _word(value: int) -> bytes:
    return value.to_bytes(32, "big")


def abi_encode(types: Sequence[str], values: Sequence[Any]) -> bytes:
    """``abi.encode`` for the handful of types tree values use."""
    if len(types) != len(values):
        raise ValueError("types and values differ in length")
    heads: List[bytes] = []
    tails: List[bytes] = []
    head_size = 32 * len(types)
    for kind, value in zip(types, values):
        if kind in ("string", "bytes"):
            data = value.encode("utf-8") if kind == "string" else from_hex(value)
            heads.append(_word(head_size + sum(len(t) for t in tails)))
            tails.append(_word(len(data)) + data + b"\x00" * (-len(data) % 32))
        elif kind == "address":
            heads.append(from_hex(value).rjust(32, b"\x00"))
        elif kind == "bytes32":
            heads.append(from_hex(value) if isinstance(value, str) else bytes(value))
        elif kind.startswith("uint"):
            heads.append(_word(int(value)))
        else:
            raise ValueError(f"unsupported ABI type {kind!r}")
    return b"".join(heads + tails)


def standard_leaf(values: Sequence[Any], types: Sequence[str] = LEAF_ENCODING,
                  hash_fn: HashFn = keccak256) -> bytes:
    return hash_fn(hash_fn(abi_encode(types, values)))


def batch_leaves(digests: Sequence[Optional[str]], hash_fn: HashFn = keccak256) -> List[bytes]:
    leaves = []
    for i, digest in enumerate(digests):
        if not digest:
            raise MerkleBuildError("Missing record digest", {"index": i})
        leaves.append(standard_leaf((digest,), hash_fn=hash_fn))
    return leaves


# ---------------------------------------------------------------------------
# Tree
# ---------------------------------------------------------------------------

def hash_pair(a: bytes, b: bytes, hash_fn: HashFn = keccak256) -> bytes:
    return hash_fn(a + b) if a <= b else hash_fn(b + a)


@dataclass(frozen=True)
class MerkleCommitment:
    """Immutable tree; ``positions[i]`` is the slot of the i-th leaf as given."""
    tree: Tuple[bytes, ...]
    positions: Tuple[int, ...]
    hash_fn: HashFn = field(default=keccak256, repr=False, compare=False)

    @property
    def leaves(self) -> Tuple[bytes, ...]:
        return tuple(self.tree[p] for p in self.positions)

    @property
    def root(self) -> bytes:
        return self.tree[0]

    @property
    def root_hex(self) -> str:
        return to_hex(self.root)

    def __len__(self) -> int:
        return len(self.positions)

    def proof(self, index: int) -> List[bytes]:
        if not 0 <= index < len(self.positions):
            raise IndexError(f"leaf index {index} out of range for batch of {len(self.positions)}")
        slot = self.positions[index]
        path: List[bytes] = []
        while slot > 0:
            sibling = slot + 1 if slot % 2 else slot - 1
            path.append(self.tree[sibling])
            slot = (slot - 1) // 2
        return path

    def proof_hex(self, index: int) -> List[str]:
        return [to_hex(p) for p in self.proof(index)]


def build_tree(leaves: Sequence[Optional[bytes]], hash_fn: HashFn = keccak256,
               sort_leaves: bool = True) -> MerkleCommitment:
    if not leaves:
        raise MerkleBuildError("Cannot build a commitment over an empty batch")
    for i, leaf in enumerate(leaves):
        if not leaf or len(leaf) != DIGEST_SIZE:
            raise MerkleBuildError("Missing or malformed leaf hash", {"index": i})

    count = len(leaves)
    order = sorted(range(count), key=lambda i: leaves[i]) if sort_leaves else list(range(count))
    tree: List[bytes] = [b""] * (2 * count - 1)
    positions = [0] * count
    for rank, i in enumerate(order):
        slot = len(tree) - 1 - rank
        tree[slot] = leaves[i]  # type: ignore[assignment]
        positions[i] = slot
    for slot in range(len(tree) - 1 - count, -1, -1):
        tree[slot] = hash_pair(tree[2 * slot + 1], tree[2 * slot + 2], hash_fn)
    return MerkleCommitment(tree=tuple(tree), positions=tuple(positions), hash_fn=hash_fn)


def commit_records(records: Sequence[Record], hash_fn: HashFn = keccak256) -> MerkleCommitment:
    return build_tree(batch_leaves([record_digest(r) for r in records], hash_fn), hash_fn)


def compute_root(leaf: bytes, proof: Sequence[bytes], hash_fn: HashFn = keccak256) -> bytes:
    computed = leaf
    for sibling in proof:
        computed = hash_pair(computed, sibling, hash_fn)
    return computed


def verify_proof(leaf: bytes, proof: Sequence[bytes], root: bytes, hash_fn: HashFn = keccak256) -> bool:
    return compute_root(leaf, proof, hash_fn) == root


def encode_proof(proof: Sequence[bytes]) -> str:
    """Alternate lookup key: sha256 over the concatenated sibling bytes."""
    return to_hex(hashlib.sha256(b"".join(proof)).digest())
