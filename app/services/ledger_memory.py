# app/services/ledger_memory.py
"""
Process-local ledger that follows the certificate contract's rules.

Used by the development server and the test-suite. ``fail_next`` queues
errors for a method so retry and classification paths can be exercised.
"""
from __future__ import annotations

import hashlib
import time
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from app.models.certificate import CertificateStatus
from app.services.ledger import LedgerCallError, LedgerClient, is_infinite_epoch
from app.services.merkle import compute_root, encode_proof, from_hex, standard_leaf


class InMemoryLedgerClient(LedgerClient):
    def __init__(self, *, now: Callable[[], float] = time.time, confirm_immediately: bool = True):
        self._now = now
        self.confirm_immediately = confirm_immediately
        self.is_paused = False
        self.roles: Set[Tuple[str, str]] = set()
        self.certificates: Dict[str, Dict[str, Any]] = {}
        self.roots: List[Dict[str, Any]] = []
        # encoded proof -> batch index, learned once a membership proof checks out
        self.alt_keys: Dict[str, int] = {}
        self.member_status: Dict[str, int] = {}
        self.receipts: Dict[str, Optional[Dict[str, Any]]] = {}
        self.calls: Dict[str, int] = defaultdict(int)
        self._failures: Dict[str, List[BaseException]] = defaultdict(list)
        self._nonce = 0

    # -------------------------------------------------------------- helpers

    def grant_role(self, role: str, address: str) -> None:
        self.roles.add((role, address))

    def fail_next(self, method: str, exc: BaseException, times: int = 1) -> None:
        self._failures[method].extend([exc] * times)

    def confirm(self, tx_hash: str) -> None:
        self.receipts[tx_hash] = {"status": 1, "transactionHash": tx_hash}

    def _enter(self, method: str) -> None:
        self.calls[method] += 1
        queued = self._failures.get(method)
        if queued:
            raise queued.pop(0)

    def _tx(self, payload: str) -> str:
        if self.is_paused:
            raise LedgerCallError(reason="Pausable: paused")
        self._nonce += 1
        tx_hash = "0x" + hashlib.sha256(f"{self._nonce}:{payload}".encode()).hexdigest()
        self.receipts[tx_hash] = {"status": 1, "transactionHash": tx_hash} if self.confirm_immediately else None
        return tx_hash

    def _expired(self, epoch: int) -> bool:
        return not is_infinite_epoch(epoch) and epoch < self._now()

    def _root(self, batch_index: int) -> Dict[str, Any]:
        if not 0 <= batch_index < len(self.roots):
            raise LedgerCallError(reason="Invalid batch index")
        return self.roots[batch_index]

    # ---------------------------------------------------------------- writes

    async def issue_certificate(self, certificate_id, certificate_hash, expiration_epoch):
        self._enter("issue_certificate")
        if certificate_id in self.certificates:
            raise LedgerCallError(reason="Certificate already issued")
        tx = self._tx(f"issue:{certificate_id}")
        self.certificates[certificate_id] = {
            "hash": certificate_hash,
            "expiration": int(expiration_epoch),
            "status": int(CertificateStatus.ISSUED),
        }
        return tx

    async def issue_batch_of_certificates(self, root, expiration_epoch):
        self._enter("issue_batch_of_certificates")
        tx = self._tx(f"batch:{root}")
        self.roots.append({"root": root, "expiration": int(expiration_epoch), "status": int(CertificateStatus.ISSUED)})
        return tx

    async def renew_certificate(self, certificate_id, certificate_hash, expiration_epoch):
        self._enter("renew_certificate")
        cert = self.certificates.get(certificate_id)
        if cert is None:
            raise LedgerCallError(reason="Certificate does not exist")
        if cert["status"] == CertificateStatus.REVOKED:
            raise LedgerCallError(reason="Certificate is revoked")
        tx = self._tx(f"renew:{certificate_id}")
        cert.update(hash=certificate_hash, expiration=int(expiration_epoch), status=int(CertificateStatus.RENEWED))
        return tx

    async def renew_batch_of_certificates(self, batch_index, expiration_epoch):
        self._enter("renew_batch_of_certificates")
        root = self._root(batch_index)
        if root["status"] == CertificateStatus.REVOKED:
            raise LedgerCallError(reason="Batch is revoked")
        tx = self._tx(f"renew-batch:{batch_index}")
        root.update(expiration=int(expiration_epoch), status=int(CertificateStatus.RENEWED))
        return tx

    async def update_single_certificate_status(self, certificate_id, status):
        self._enter("update_single_certificate_status")
        cert = self.certificates.get(certificate_id)
        if cert is None:
            raise LedgerCallError(reason="Certificate does not exist")
        if cert["status"] == status:
            raise LedgerCallError(reason="Status already set")
        tx = self._tx(f"status:{certificate_id}:{status}")
        cert["status"] = int(status)
        return tx

    async def update_batch_certificate_status(self, batch_index, status):
        self._enter("update_batch_certificate_status")
        root = self._root(batch_index)
        if root["status"] == status:
            raise LedgerCallError(reason="Status already set")
        tx = self._tx(f"batch-status:{batch_index}:{status}")
        root["status"] = int(status)
        return tx

    async def update_certificate_in_batch_status(self, encoded_proof, status):
        self._enter("update_certificate_in_batch_status")
        if encoded_proof not in self.alt_keys:
            raise LedgerCallError(reason="Unknown batch certificate")
        tx = self._tx(f"member-status:{encoded_proof}:{status}")
        self.member_status[encoded_proof] = int(status)
        return tx

    # ----------------------------------------------------------------- reads

    async def get_root_length(self):
        self._enter("get_root_length")
        return len(self.roots)

    async def verify_certificate_by_id(self, certificate_id):
        self._enter("verify_certificate_by_id")
        cert = self.certificates.get(certificate_id)
        if cert is None:
            return False, 0, 0
        if cert["status"] == CertificateStatus.REVOKED:
            return False, cert["expiration"], cert["status"]
        if self._expired(cert["expiration"]):
            return False, cert["expiration"], int(CertificateStatus.EXPIRED_ON_CHAIN)
        return True, cert["expiration"], cert["status"]

    async def get_certificate_status(self, certificate_id):
        self._enter("get_certificate_status")
        cert = self.certificates.get(certificate_id)
        return cert["status"] if cert else 0

    async def verify_batch_root(self, batch_index):
        self._enter("verify_batch_root")
        if not 0 <= batch_index < len(self.roots):
            return False, 0, 0
        root = self.roots[batch_index]
        return True, root["expiration"], root["status"]

    async def verify_batch_certification(self, batch_index, certificate_hash, proof):
        self._enter("verify_batch_certification")
        if not 0 <= batch_index < len(self.roots):
            return False
        siblings = [from_hex(p) for p in proof]
        leaf = standard_leaf((certificate_hash,))
        ok = compute_root(leaf, siblings) == from_hex(self.roots[batch_index]["root"])
        if ok:
            self.alt_keys.setdefault(encode_proof(siblings), batch_index)
        return ok

    async def verify_certificate_in_batch(self, encoded_proof):
        self._enter("verify_certificate_in_batch")
        index = self.alt_keys.get(encoded_proof)
        if index is None:
            return 0
        root = self.roots[index]
        status = self.member_status.get(encoded_proof, root["status"])
        if status == CertificateStatus.REVOKED or root["status"] == CertificateStatus.REVOKED:
            return int(CertificateStatus.REVOKED)
        if self._expired(root["expiration"]):
            return int(CertificateStatus.EXPIRED_ON_CHAIN)
        return status

    async def has_role(self, role, address):
        self._enter("has_role")
        return (role, address) in self.roles

    async def paused(self):
        self._enter("paused")
        return self.is_paused

    async def get_transaction_receipt(self, tx_hash):
        self._enter("get_transaction_receipt")
        if tx_hash not in self.receipts:
            raise LedgerCallError(code="NOT_FOUND")
        return self.receipts[tx_hash]
