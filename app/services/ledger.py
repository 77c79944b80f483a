# app/services/ledger.py
"""
Ledger access.

``LedgerClient`` is the narrow RPC contract this service needs from the
certificate smart contract; a concrete chain binding is injected at startup
(``app.state.ledger_gateway``) so there is no process-wide signer.

``LedgerGateway`` wraps a client and owns error classification and the retry
policy:

* reads / verifications retry transient timeouts up to ``retries`` times with
  a fixed delay;
* nonce / replacement errors are terminal and never retried;
* a structured revert reason is surfaced verbatim as ``LedgerRejection``;
* anything else is logged and reported as ``LedgerFailure``.

State-changing calls are attempted once here; the orchestrator decides whether
to retry them after checking the ledger for an already-applied write.
"""
from __future__ import annotations

import abc
import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, NamedTuple, Optional, Tuple

from app.core import messages
from app.core.config import settings
from app.core.errors import (
    LedgerError,
    LedgerFailure,
    LedgerRejection,
    LedgerTerminal,
    LedgerTransient,
)
from app.schemas.certificate import TransactionStatus

logger = logging.getLogger(__name__)

# Epochs at or below this value mean "no expiration" on chain
INFINITE_EXPIRATION_EPOCH = 1

TIMEOUT_CODES = {"ETIMEDOUT", "TIMEOUT"}
TERMINAL_CODES = {"NONCE_EXPIRED", "REPLACEMENT_UNDERPRICED", "TRANSACTION_REPLACED"}


def is_infinite_epoch(epoch: int) -> bool:
    return int(epoch) <= INFINITE_EXPIRATION_EPOCH


class LedgerCallError(Exception):
    """Raised by client implementations. ``code`` / ``reason`` drive classification."""

    def __init__(self, message: str = "", *, code: Optional[str] = None, reason: Optional[str] = None):
        super().__init__(message or reason or code or "ledger call failed")
        self.code = code
        self.reason = reason


class LedgerClient(abc.ABC):
    """Logical RPC surface of the certificate contract."""

    @abc.abstractmethod
    async def issue_certificate(self, certificate_id: str, certificate_hash: str, expiration_epoch: int) -> str: ...

    @abc.abstractmethod
    async def issue_batch_of_certificates(self, root: str, expiration_epoch: int) -> str: ...

    @abc.abstractmethod
    async def get_root_length(self) -> int: ...

    @abc.abstractmethod
    async def verify_certificate_by_id(self, certificate_id: str) -> Tuple[bool, int, int]:
        """(exists and current, expiration epoch, status code)."""

    @abc.abstractmethod
    async def get_certificate_status(self, certificate_id: str) -> int: ...

    @abc.abstractmethod
    async def verify_batch_root(self, batch_index: int) -> Tuple[bool, int, int]:
        """(root exists, expiration epoch, status code)."""

    @abc.abstractmethod
    async def verify_batch_certification(self, batch_index: int, certificate_hash: str, proof: List[str]) -> bool:
        """The contract derives the leaf from the record digest and checks the proof against the root."""

    @abc.abstractmethod
    async def verify_certificate_in_batch(self, encoded_proof: str) -> int: ...

    @abc.abstractmethod
    async def renew_certificate(self, certificate_id: str, certificate_hash: str, expiration_epoch: int) -> str: ...

    @abc.abstractmethod
    async def renew_batch_of_certificates(self, batch_index: int, expiration_epoch: int) -> str: ...

    @abc.abstractmethod
    async def update_single_certificate_status(self, certificate_id: str, status: int) -> str: ...

    @abc.abstractmethod
    async def update_batch_certificate_status(self, batch_index: int, status: int) -> str: ...

    @abc.abstractmethod
    async def update_certificate_in_batch_status(self, encoded_proof: str, status: int) -> str: ...

    @abc.abstractmethod
    async def has_role(self, role: str, address: str) -> bool: ...

    @abc.abstractmethod
    async def paused(self) -> bool: ...

    @abc.abstractmethod
    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """None while the transaction is pending."""


class ErrorKind(str, Enum):
    transient = "transient"
    terminal = "terminal"
    rejection = "rejection"
    other = "other"


def classify(exc: BaseException) -> ErrorKind:
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return ErrorKind.transient
    code = str(getattr(exc, "code", "") or "").upper()
    if code in TIMEOUT_CODES:
        return ErrorKind.transient
    if code in TERMINAL_CODES:
        return ErrorKind.terminal
    if getattr(exc, "reason", None):
        return ErrorKind.rejection
    return ErrorKind.other


class SingleVerification(NamedTuple):
    exists: bool
    expiration_epoch: int
    status: int


class BatchRootInfo(NamedTuple):
    exists: bool
    expiration_epoch: int
    status: int


class BatchMembership(NamedTuple):
    exists: bool
    expiration_epoch: int
    status: int


class LedgerGateway:
    def __init__(
        self,
        client: LedgerClient,
        *,
        retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        call_timeout: Optional[float] = None,
        network: Optional[str] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.client = client
        self.retries = settings.LEDGER_RETRY_ATTEMPTS if retries is None else retries
        self.retry_delay = settings.LEDGER_RETRY_DELAY_SECONDS if retry_delay is None else retry_delay
        self.call_timeout = settings.LEDGER_CALL_TIMEOUT_SECONDS if call_timeout is None else call_timeout
        self.network = network or settings.LEDGER_NETWORK
        self._sleep = sleep
        self._root_lock: Optional[Tuple[asyncio.AbstractEventLoop, asyncio.Lock]] = None

    # ------------------------------------------------------------------ core

    async def _invoke(self, name: str, fn: Callable[..., Awaitable[Any]], *args: Any, retries: int) -> Any:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await asyncio.wait_for(fn(*args), timeout=self.call_timeout)
            except Exception as exc:
                kind = classify(exc)
                if kind is ErrorKind.transient and attempt <= retries:
                    logger.warning("ledger %s timed out, retrying (%d/%d) in %.1fs",
                                   name, attempt, retries, self.retry_delay)
                    await self._sleep(self.retry_delay)
                    continue
                raise self._translate(name, exc, kind, attempt) from exc

    def _translate(self, name: str, exc: BaseException, kind: ErrorKind, attempts: int) -> LedgerError:
        details = {"call": name, "attempts": attempts, "error": str(exc)}
        if kind is ErrorKind.transient:
            logger.error("ledger %s gave up after %d attempts", name, attempts)
            return LedgerTransient(messages.LEDGER_TIMEOUT, details)
        if kind is ErrorKind.terminal:
            logger.error("ledger %s terminal error: %s", name, exc)
            details["code"] = getattr(exc, "code", None)
            return LedgerTerminal(messages.LEDGER_NONCE, details)
        if kind is ErrorKind.rejection:
            reason = str(getattr(exc, "reason"))
            logger.info("ledger %s rejected: %s", name, reason)
            return LedgerRejection(reason, details)
        logger.exception("ledger %s failed", name, exc_info=exc)
        return LedgerFailure(messages.FAILED_OPS_AT_LEDGER, details)

    async def _read(self, name: str, fn: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        return await self._invoke(name, fn, *args, retries=self.retries)

    async def _write(self, name: str, fn: Callable[..., Awaitable[Any]], *args: Any) -> str:
        tx_hash = await self._invoke(name, fn, *args, retries=0)
        if not tx_hash:
            raise LedgerFailure(messages.FAILED_OPS_AT_LEDGER, {"call": name, "error": "empty transaction hash"})
        return tx_hash

    async def backoff(self) -> None:
        await self._sleep(self.retry_delay)

    def root_append_lock(self) -> asyncio.Lock:
        """
        Held by a batch issuance from reading the root length until its root
        is on the ledger; the new root's index is that length.
        """
        loop = asyncio.get_running_loop()
        if self._root_lock is None or self._root_lock[0] is not loop:
            self._root_lock = (loop, asyncio.Lock())
        return self._root_lock[1]

    def explorer_link(self, tx_hash: Optional[str]) -> Optional[str]:
        if not tx_hash:
            return None
        return f"https://{self.network}/tx/{tx_hash}"

    # ---------------------------------------------------------------- writes

    async def issue_single(self, certificate_id: str, certificate_hash: str, expiration_epoch: int) -> str:
        return await self._write("issueCertificate", self.client.issue_certificate,
                                 certificate_id, certificate_hash, expiration_epoch)

    async def issue_batch_root(self, root: str, expiration_epoch: int) -> str:
        return await self._write("issueBatchOfCertificates", self.client.issue_batch_of_certificates,
                                 root, expiration_epoch)

    async def renew_single(self, certificate_id: str, certificate_hash: str, expiration_epoch: int) -> str:
        return await self._write("renewCertificate", self.client.renew_certificate,
                                 certificate_id, certificate_hash, expiration_epoch)

    async def renew_batch_root(self, batch_index: int, expiration_epoch: int) -> str:
        return await self._write("renewBatchOfCertificates", self.client.renew_batch_of_certificates,
                                 batch_index, expiration_epoch)

    async def update_single_status(self, certificate_id: str, status: int) -> str:
        return await self._write("updateSingleCertificateStatus", self.client.update_single_certificate_status,
                                 certificate_id, int(status))

    async def update_batch_status(self, batch_index: int, status: int) -> str:
        return await self._write("updateBatchCertificateStatus", self.client.update_batch_certificate_status,
                                 batch_index, int(status))

    async def update_batch_member_status(self, encoded_proof: str, status: int) -> str:
        return await self._write("updateCertificateInBatchStatus", self.client.update_certificate_in_batch_status,
                                 encoded_proof, int(status))

    # ----------------------------------------------------------------- reads

    async def verify_single(self, certificate_id: str) -> SingleVerification:
        exists, epoch, status = await self._read("verifyCertificateById", self.client.verify_certificate_by_id,
                                                 certificate_id)
        return SingleVerification(bool(exists), int(epoch), int(status))

    async def single_status(self, certificate_id: str) -> int:
        return int(await self._read("getCertificateStatus", self.client.get_certificate_status, certificate_id))

    async def verify_batch_root(self, batch_index: int) -> BatchRootInfo:
        exists, epoch, status = await self._read("verifyBatchRoot", self.client.verify_batch_root, batch_index)
        return BatchRootInfo(bool(exists), int(epoch), int(status))

    async def verify_batch_membership(self, batch_index: int, certificate_hash: str,
                                      proof: List[str]) -> BatchMembership:
        member = await self._read("verifyBatchCertification", self.client.verify_batch_certification,
                                  batch_index, certificate_hash, list(proof))
        root = await self.verify_batch_root(batch_index)
        return BatchMembership(bool(member) and root.exists, root.expiration_epoch, root.status)

    async def verify_batch_alt_key(self, encoded_proof: str) -> int:
        return int(await self._read("verifyCertificateInBatch", self.client.verify_certificate_in_batch,
                                    encoded_proof))

    async def root_length(self) -> int:
        return int(await self._read("getRootLength", self.client.get_root_length))

    async def has_role(self, role: str, address: str) -> bool:
        return bool(await self._read("hasRole", self.client.has_role, role, address))

    async def is_paused(self) -> bool:
        return bool(await self._read("paused", self.client.paused))

    async def transaction_status(self, tx_hash: Optional[str]) -> TransactionStatus:
        if not tx_hash:
            return TransactionStatus.unknown
        try:
            receipt = await self._read("getTransactionReceipt", self.client.get_transaction_receipt, tx_hash)
        except LedgerError:
            return TransactionStatus.unknown
        if receipt is None:
            return TransactionStatus.pending
        if int(receipt.get("status", 0)) == 1:
            return TransactionStatus.confirmed
        return TransactionStatus.unknown
