# FILE: tests/test_merkle.py
"""
Tests for app/services/merkle.py
Record digests, StandardMerkleTree leaves and layout, proofs and the alternate proof key.
"""
import hashlib
from datetime import date

import pytest

from app.schemas.certificate import Record
from app.services.merkle import (
    INFINITE_EXPIRATION,
    MerkleBuildError,
    abi_encode,
    batch_leaves,
    build_tree,
    canonical_fields,
    commit_records,
    compute_root,
    encode_proof,
    hash_pair,
    keccak256,
    leaf_hash,
    record_digest,
    sha256,
    single_certificate_hash,
    standard_leaf,
    to_hex,
    verify_proof,
)


def _leaves(n):
    return [keccak256(f"leaf-{i}".encode()) for i in range(n)]


def _record(number, **overrides):
    data = {"document_id": number, "holder_name": "Ada", "title": "Math", "grant_date": date(2024, 1, 5)}
    data.update(overrides)
    return Record(**data)


class TestRecordDigest:
    def test_canonical_fields_order_and_date_format(self):
        record = _record("C-1", expiration_date=date(2025, 12, 31), extra_fields={"grade": "A", "hours": "40"})
        assert canonical_fields(record) == ["C-1", "Ada", "Math", "01/05/2024", "12/31/2025", "A", "40"]

    def test_infinite_expiration_is_rendered_as_sentinel(self):
        record = _record("C-2")
        assert canonical_fields(record)[4] == INFINITE_EXPIRATION
        assert leaf_hash(record) == sha256("C-2AdaMath01/05/20241".encode())
        assert record_digest(record) == hashlib.sha256(b"C-2AdaMath01/05/20241").hexdigest()

    def test_digest_changes_with_any_field(self):
        base = _record("C-3")
        other = base.model_copy(update={"holder_name": "Bob"})
        assert record_digest(base) != record_digest(other)

    def test_single_certificate_hash_is_stable(self):
        fields = {"Certificate_Number": "S-1", "name": "Ada", "courseName": "Math",
                  "Grant_Date": "01/05/2024", "Expiration_Date": "1"}
        assert single_certificate_hash(fields) == single_certificate_hash(dict(fields))
        assert single_certificate_hash(fields) != single_certificate_hash({**fields, "Expiration_Date": "12/31/2030"})
        assert len(single_certificate_hash(fields)) == 64


class TestLeafEncoding:
    def test_keccak256_known_value(self):
        assert keccak256(b"").hex() == "c5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470"

    def test_string_is_offset_length_and_padded_data(self):
        encoded = abi_encode(["string"], ["abc"])
        assert len(encoded) == 96
        assert int.from_bytes(encoded[:32], "big") == 32
        assert int.from_bytes(encoded[32:64], "big") == 3
        assert encoded[64:] == b"abc" + b"\x00" * 29

    def test_leaf_is_double_keccak_of_encoded_value(self):
        digest = record_digest(_record("C-4"))
        assert standard_leaf((digest,)) == keccak256(keccak256(abi_encode(["string"], [digest])))
        assert batch_leaves([digest]) == [standard_leaf((digest,))]

    def test_missing_digest_fails(self):
        with pytest.raises(MerkleBuildError) as exc:
            batch_leaves(["ab" * 32, None])
        assert exc.value.details == {"index": 1}

    def test_unsupported_type(self):
        with pytest.raises(ValueError):
            abi_encode(["tuple"], [1])


class TestStandardTree:
    def test_matches_openzeppelin_reference_tree(self):
        types = ("address", "uint256")
        values = [
            ("0x1111111111111111111111111111111111111111", 5000000000000000000),
            ("0x2222222222222222222222222222222222222222", 2500000000000000000),
        ]
        tree = build_tree([standard_leaf(v, types) for v in values])
        assert tree.root_hex == "0xd4dee0beab2d53f2cc83e567171bd2820e49898130a22622b10ead383e90bd77"
        assert tree.proof_hex(0) == ["0xb92c48e9d7abe27fd8dfd6b5dfdbfb1c9a463f80c712b66f3a5180a090cccafc"]

    def test_pairs_hash_with_keccak(self):
        assert hash_pair(b"\x01" * 32, b"\x02" * 32).hex().startswith("346d8c96a2454213")
        assert hash_pair(b"\x01" * 32, b"\x02" * 32) == keccak256(b"\x01" * 32 + b"\x02" * 32)

    def test_single_leaf_is_its_own_root(self):
        leaf = _leaves(1)[0]
        tree = build_tree([leaf])
        assert tree.root == leaf
        assert tree.proof(0) == []

    def test_three_leaves_follow_sorted_layout(self):
        leaves = _leaves(3)
        low, mid, high = sorted(leaves)
        tree = build_tree(leaves)
        # slots 2, 3, 4 hold the leaves from the highest down
        assert tree.tree[2:] == (high, mid, low)
        assert tree.root == hash_pair(hash_pair(mid, low), high)
        assert tree.proof(leaves.index(high)) == [hash_pair(low, mid)]
        assert tree.proof(leaves.index(low)) == [mid, high]

    def test_leaves_keep_input_order(self):
        leaves = _leaves(5)
        tree = build_tree(leaves)
        assert list(tree.leaves) == leaves
        assert len(tree) == 5

    def test_input_order_does_not_change_the_root(self):
        a, b, c = _leaves(3)
        assert build_tree([a, b, c]).root == build_tree([c, a, b]).root

    @pytest.mark.parametrize("size", [2, 5, 8, 13])
    def test_every_member_proof_reaches_the_root(self, size):
        tree = build_tree(_leaves(size))
        for i, leaf in enumerate(tree.leaves):
            assert verify_proof(leaf, tree.proof(i), tree.root)

    def test_records_commit_to_their_digests(self):
        records = [_record(f"C-{i}") for i in range(4)]
        tree = commit_records(records)
        leaf = standard_leaf((record_digest(records[2]),))
        assert verify_proof(leaf, tree.proof(2), tree.root)

    def test_tampered_proof_is_rejected(self):
        tree = build_tree(_leaves(6))
        proof = tree.proof(3)
        proof[0] = bytes([proof[0][0] ^ 0xFF]) + proof[0][1:]
        assert not verify_proof(tree.leaves[3], proof, tree.root)

    def test_foreign_leaf_is_rejected(self):
        tree = build_tree(_leaves(4))
        assert not verify_proof(keccak256(b"intruder"), tree.proof(1), tree.root)

    def test_empty_batch_fails(self):
        with pytest.raises(MerkleBuildError):
            build_tree([])

    @pytest.mark.parametrize("bad", [None, b"", b"short"])
    def test_malformed_leaf_fails(self, bad):
        leaves = _leaves(3)
        leaves[1] = bad
        with pytest.raises(MerkleBuildError) as exc:
            build_tree(leaves)
        assert exc.value.details == {"index": 1}

    def test_proof_index_out_of_range(self):
        with pytest.raises(IndexError):
            build_tree(_leaves(3)).proof(3)

    def test_hash_function_is_injectable(self):
        leaves = [sha256(f"leaf-{i}".encode()) for i in range(5)]
        tree = build_tree(leaves, hash_fn=sha256)
        assert tree.root != build_tree(leaves).root
        assert compute_root(leaves[4], tree.proof(4), sha256) == tree.root


class TestEncodedProof:
    def test_encoded_proof_hashes_concatenated_siblings(self):
        tree = build_tree(_leaves(4))
        proof = tree.proof(2)
        assert encode_proof(proof) == to_hex(hashlib.sha256(b"".join(proof)).digest())
        assert tree.proof_hex(2) == [to_hex(p) for p in proof]

    def test_members_get_distinct_keys(self):
        tree = build_tree(_leaves(8))
        keys = {encode_proof(tree.proof(i)) for i in range(len(tree))}
        assert len(keys) == 8

    def test_sole_members_share_the_empty_key(self):
        assert encode_proof(build_tree(_leaves(1)).proof(0)) == encode_proof([])
