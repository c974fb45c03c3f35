"""
Audit Hash-Chain Ledger.

Every audit entry is appended to a per-category hash chain:

    entry_hash   = SHA256(canonical JSON of the entry)
    current_hash = SHA256(previous_hash + ":" + entry_hash)   (entry_hash alone for sequence 1)

Sequence numbers are derived from the store inside a transaction, and the
store rejects duplicate (category, sequence_number) pairs, so concurrent
appends cannot fork the chain. Batches of chained entries can be signed
with RSA-SHA256 for external notarization.

Tampering is reported, never repaired.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, Iterable, Optional

from accessgate.errors import IntegrityFailure, NotFound
from accessgate.models import (
    AuditLogEntry,
    HashChainEntry,
    LogBatch,
    LogCategory,
    utcnow,
)
from accessgate.notifications import (
    Notification,
    NotificationEvent,
    Notifier,
    Severity,
    dispatch,
)
from accessgate.signing import SIGNATURE_ALGORITHM, SigningKeyProvider
from accessgate.store import Store


logger = logging.getLogger(__name__)


def canonical_payload(entry: AuditLogEntry) -> bytes:
    """
    Deterministic serialization of the hashed fields of an entry.

    Chain bookkeeping (hash_chain, previous_hash, is_tampered) is excluded
    so that writing it back does not change the hash.
    """
    payload = {
        "id": entry.id,
        "category": entry.category.value,
        "log_type": entry.log_type.value,
        "action": entry.action,
        "resource": entry.resource,
        "resource_id": entry.resource_id,
        "subject_id": entry.subject_id,
        "details": entry.details,
        "before_state": entry.before_state,
        "after_state": entry.after_state,
        "access_granted": entry.access_granted,
        "denial_reason": entry.denial_reason,
        "security_label": entry.security_label.name,
        "created_at": entry.created_at.isoformat(),
    }
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str).encode()


def hash_entry(entry: AuditLogEntry) -> str:
    return hashlib.sha256(canonical_payload(entry)).hexdigest()


def chain_hash(previous_hash: Optional[str], entry_hash: str) -> str:
    chain_input = f"{previous_hash}:{entry_hash}" if previous_hash else entry_hash
    return hashlib.sha256(chain_input.encode()).hexdigest()


@dataclass
class ChainVerification:
    """
    Outcome of replaying a category chain.

    Attributes:
        valid: True if every replayed entry matched
        tampered_entries: Log ids whose recomputed hash did not match
        last_valid_sequence: Highest sequence number before the first
            mismatch (start - 1 if the first replayed entry already failed)
        checked: Number of chain entries replayed
    """
    valid: bool
    tampered_entries: list[str] = field(default_factory=list)
    last_valid_sequence: int = 0
    checked: int = 0


@dataclass
class TamperReport:
    tampered: bool
    reason: Optional[str] = None


@dataclass
class BatchVerification:
    valid: bool
    verified: bool


class HashChainLedger:
    """
    Append-only, hash-chained audit ledger.

    Example:
        ledger = HashChainLedger(store, signer=SigningKeyProvider.from_env())
        ledger.append(entry)

        result = ledger.verify(LogCategory.SECURITY)
        if not result.valid:
            print(result.tampered_entries)
    """

    def __init__(
        self,
        store: Store,
        signer: Optional[SigningKeyProvider] = None,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.signer = signer
        self.notifier = notifier
        self.clock = clock

    def append(self, entry: AuditLogEntry) -> str:
        """
        Persist an entry and link it into its category chain.

        The write and the chain link happen in one transaction; a failure
        leaves neither behind.

        Returns:
            The entry's current hash
        """
        with self.store.transaction():
            if self.store.get_audit_log(entry.id) is None:
                self.store.add_audit_log(entry)

            previous = self.store.latest_chain_entry(entry.category)
            previous_hash = previous.current_hash if previous else ""
            sequence = previous.sequence_number + 1 if previous else 1

            current_hash = chain_hash(previous_hash, hash_entry(entry))

            self.store.add_chain_entry(HashChainEntry(
                category=entry.category,
                sequence_number=sequence,
                previous_hash=previous_hash,
                current_hash=current_hash,
                log_id=entry.id,
                created_at=self.clock(),
            ))
            self.store.update_audit_log(replace(
                entry,
                hash_chain=current_hash,
                previous_hash=previous_hash or None,
            ))

        logger.debug(f"Appended {entry.id} to {entry.category.value} chain at sequence {sequence}")
        return current_hash

    def verify(
        self,
        category: LogCategory,
        start: Optional[int] = None,
        end: Optional[int] = None,
    ) -> ChainVerification:
        """
        Replay a category chain from the current row contents.

        Every mismatching entry is recorded and flagged as tampered; the
        scan continues past mismatches. Replay of a sub-range starts from
        the stored hash of the entry preceding `start`.
        """
        start = start or 1
        entries = self.store.list_chain_entries(category, start, end)

        previous_hash = ""
        if start > 1:
            predecessor = self.store.get_chain_entry(category, start - 1)
            if predecessor is not None:
                previous_hash = predecessor.current_hash

        result = ChainVerification(valid=True, last_valid_sequence=start - 1 if entries else 0)
        intact = True

        for chain_entry in entries:
            result.checked += 1
            log = self.store.get_audit_log(chain_entry.log_id)

            if log is None:
                matched = False
            else:
                expected = chain_hash(previous_hash, hash_entry(log))
                matched = expected == chain_entry.current_hash

            if matched:
                if intact:
                    result.last_valid_sequence = chain_entry.sequence_number
            else:
                intact = False
                result.valid = False
                result.tampered_entries.append(chain_entry.log_id)
                if log is not None and not log.is_tampered:
                    self.store.update_audit_log(replace(log, is_tampered=True))

            # Continue from the stored link so one tamper does not cascade
            previous_hash = chain_entry.current_hash

        if not result.valid:
            logger.error(
                f"Hash chain {category.value} failed verification: "
                f"{len(result.tampered_entries)} tampered entries"
            )
            dispatch(self.notifier, Notification(
                event=NotificationEvent.TAMPER_DETECTED,
                title=f"Audit tampering detected in {category.value} logs",
                message=(
                    f"{len(result.tampered_entries)} audit entries failed hash-chain verification. "
                    f"Last valid sequence: {result.last_valid_sequence}."
                ),
                severity=Severity.CRITICAL,
                data={
                    "category": category.value,
                    "tampered_entries": list(result.tampered_entries),
                    "last_valid_sequence": result.last_valid_sequence,
                },
            ))

        return result

    def detect_tampering(self, log_id: str) -> TamperReport:
        """Check a single entry against its chain link."""
        log = self.store.get_audit_log(log_id)
        if log is None:
            raise NotFound(f"Log not found: {log_id}")

        if log.is_tampered:
            return TamperReport(tampered=True, reason="Log marked as tampered")

        chain_entry = self.store.get_chain_entry_for_log(log_id)
        if chain_entry is None:
            return TamperReport(tampered=False)

        verification = self.verify(
            log.category,
            chain_entry.sequence_number,
            chain_entry.sequence_number,
        )
        if not verification.valid:
            return TamperReport(tampered=True, reason="Hash chain verification failed")

        return TamperReport(tampered=False)

    def _batch_payload(self, batch_id: str, log_ids: Iterable[str]) -> tuple[bytes, list[AuditLogEntry]]:
        logs = []
        for log_id in log_ids:
            log = self.store.get_audit_log(log_id)
            if log is None:
                raise NotFound(f"Log not found: {log_id}")
            logs.append(log)
        logs.sort(key=lambda l: l.created_at)

        batch_data = {
            "batchId": batch_id,
            "logIds": [l.id for l in logs],
            "timestamps": [l.created_at.isoformat() for l in logs],
            "hashes": [l.hash_chain or "" for l in logs],
        }
        return json.dumps(batch_data, separators=(",", ":")).encode(), logs

    def _require_signer(self) -> SigningKeyProvider:
        if self.signer is None:
            raise IntegrityFailure("Signing keys not configured")
        return self.signer

    def sign_batch(self, batch_id: str, log_ids: Iterable[str], signed_by: str) -> str:
        """
        Sign an ordered batch of chained entries.

        Raises:
            IntegrityFailure: No private key configured
            NotFound: A log id does not exist

        Returns:
            Base64 RSA-SHA256 signature
        """
        signer = self._require_signer()
        payload, logs = self._batch_payload(batch_id, log_ids)
        signature = signer.sign(payload)

        self.store.save_batch(LogBatch(
            batch_id=batch_id,
            log_ids=tuple(l.id for l in logs),
            signature=signature,
            signature_algorithm=SIGNATURE_ALGORITHM,
            signed_by=signed_by,
            signed_at=self.clock(),
            category=logs[0].category if logs else None,
        ))

        logger.info(f"Signed audit batch {batch_id} with {len(logs)} entries")
        return signature

    def verify_batch(self, batch_id: str) -> BatchVerification:
        """Recompute a batch payload and check its signature."""
        batch = self.store.get_batch(batch_id)
        if batch is None:
            raise NotFound(f"Batch not found: {batch_id}")

        signer = self._require_signer()
        payload, _ = self._batch_payload(batch.batch_id, batch.log_ids)
        valid = signer.verify(payload, batch.signature)

        if valid:
            batch.verified = True
            batch.verified_at = self.clock()
            self.store.save_batch(batch)
        else:
            logger.error(f"Signature verification failed for audit batch {batch_id}")

        return BatchVerification(valid=valid, verified=batch.verified)
