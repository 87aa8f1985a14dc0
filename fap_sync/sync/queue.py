"""Offline queues for records created while the backend is unreachable."""

import logging
import secrets
import threading
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from ..config import StorageKeys, QUEUE_TTL_MINUTES
from ..loans import validate_loan_request
from .cache import LocalCache
from .kv_store import StorageError

__all__ = ["OfflineQueue", "RecordKind", "DEAD_LETTER_TTL_MINUTES"]

logger = logging.getLogger(__name__)

# Dead letters are kept for a week so they can be inspected or re-queued
DEAD_LETTER_TTL_MINUTES = 7 * 1440


class RecordKind(str, Enum):
    """The three kinds of record that can be queued offline."""

    SAVINGS = "savings"
    LOAN_REQUEST = "loan_request"
    ATTENDANCE = "attendance"


class OfflineQueue:
    """Append-only queues of not-yet-synchronized records.

    Each kind lives under its own cache key as one list, oldest first.
    Read-modify-write cycles on a key run under a single lock so an enqueue
    and a sync removal never overwrite each other.
    """

    def __init__(
        self,
        cache: LocalCache,
        keys: Optional[StorageKeys] = None,
        ttl_minutes: int = QUEUE_TTL_MINUTES,
    ):
        """Initialize the offline queue.

        Args:
            cache: Cache used for every queue key
            keys: Store key names
            ttl_minutes: Lifetime of a queue after its last write
        """
        self.cache = cache
        self.keys = keys or StorageKeys()
        self.ttl_minutes = ttl_minutes
        self._lock = threading.RLock()

    def key_for(self, kind: RecordKind) -> str:
        """Store key holding the queue for kind."""
        return {
            RecordKind.SAVINGS: self.keys.savings_cache,
            RecordKind.LOAN_REQUEST: self.keys.loans_cache,
            RecordKind.ATTENDANCE: self.keys.attendance_cache,
        }[RecordKind(kind)]

    # Enqueue

    def save_savings_offline(self, saving: dict) -> dict:
        """Queue a savings deposit. Store failures propagate."""
        return self.enqueue(RecordKind.SAVINGS, saving)

    def save_loan_request_offline(self, loan: dict) -> dict:
        """Queue a loan request; it is always created as pending.

        Raises:
            LoanRequestError: If the amount is not positive or the purpose is empty
            StorageError: If the queue cannot be read or written
        """
        validate_loan_request(loan)
        return self.enqueue(RecordKind.LOAN_REQUEST, loan)

    def save_attendance_offline(self, attendance: dict) -> dict:
        """Queue a meeting attendance, stamped with today's date and time."""
        return self.enqueue(RecordKind.ATTENDANCE, attendance)

    def enqueue(self, kind: RecordKind, payload: dict) -> dict:
        """Append a new record built from payload to the queue for kind.

        Args:
            kind: Which queue to append to
            payload: Domain fields of the record

        Returns:
            The stored record (payload plus id, offline flag and timestamps)

        Raises:
            StorageError: If the queue cannot be read or written
        """
        record = self._build_record(RecordKind(kind), payload)
        key = self.key_for(kind)

        with self._lock:
            try:
                records = self._read(key, strict=True)
                records.append(record)
                self.cache.save_to_cache(key, records, self.ttl_minutes, strict=True)
            except StorageError as e:
                logger.error(f"Error saving {RecordKind(kind).value} offline: {e}")
                raise

        logger.info(f"Queued {RecordKind(kind).value} record {record['id']}")
        return record

    def _build_record(self, kind: RecordKind, payload: dict) -> dict:
        now = self.cache.clock()
        created = datetime.fromtimestamp(now / 1000, tz=timezone.utc)
        record = dict(payload)
        record["id"] = f"offline_{now}_{secrets.token_hex(8)}"
        record["offline"] = True
        record["created_at"] = created.isoformat()

        if kind == RecordKind.LOAN_REQUEST:
            record["estado"] = "pendiente"
        elif kind == RecordKind.ATTENDANCE:
            local = created.astimezone()
            record["fecha_asistencia"] = local.strftime("%Y-%m-%d")
            record["hora_asistencia"] = local.strftime("%H:%M:%S")
        return record

    # Read

    def get_offline_savings(self) -> list[dict]:
        return self.get_records(RecordKind.SAVINGS)

    def get_offline_loans(self) -> list[dict]:
        return self.get_records(RecordKind.LOAN_REQUEST)

    def get_offline_attendance(self) -> list[dict]:
        return self.get_records(RecordKind.ATTENDANCE)

    def get_records(self, kind: RecordKind, strict: bool = False) -> list[dict]:
        """Current queue for kind, oldest first.

        Args:
            kind: Which queue to read
            strict: Raise StorageError instead of returning an empty list

        Returns:
            A copy of the queued records
        """
        try:
            return self._read(self.key_for(kind), strict=strict)
        except StorageError:
            if strict:
                raise
            return []

    def size(self, kind: RecordKind) -> int:
        """Number of records queued for kind."""
        return len(self.get_records(kind))

    def is_empty(self) -> bool:
        """Check if every queue is empty."""
        return all(self.size(kind) == 0 for kind in RecordKind)

    def _read(self, key: str, strict: bool) -> list:
        records = self.cache.get_from_cache(key, strict=strict)
        if records is None:
            return []
        if not isinstance(records, list):
            logger.warning(f"Ignoring malformed queue under {key}")
            return []
        return list(records)

    # Removal

    def remove(self, kind: RecordKind, record_id: str) -> bool:
        """Remove one record from the stored queue.

        The queue is re-read under the lock, so records appended since the
        caller took its snapshot are preserved.

        Returns:
            True if a record was removed

        Raises:
            StorageError: If the queue cannot be read or written
        """
        key = self.key_for(kind)
        with self._lock:
            records = self._read(key, strict=True)
            remaining = [r for r in records if r.get("id") != record_id]
            if len(remaining) == len(records):
                return False
            self.cache.save_to_cache(key, remaining, self.ttl_minutes, strict=True)
            return True

    def clear_offline_data(self) -> None:
        """Drop every offline cache and the attempt counters."""
        keys = self.keys.offline_caches() + [self.keys.sync_attempts]
        with self._lock:
            try:
                self.cache.store.multi_remove(keys)
                logger.info("Offline data cleared")
            except StorageError as e:
                logger.error(f"Error clearing offline data: {e}")

    # Failed attempts and dead letters

    def attempts(self, record_id: str) -> int:
        """Number of failed sync passes recorded for record_id."""
        counts = self.cache.get_from_cache(self.keys.sync_attempts) or {}
        return int(counts.get(record_id, 0))

    def record_failure(self, record_id: str) -> int:
        """Count one more failed sync pass for record_id.

        Returns:
            The updated failure count

        Raises:
            StorageError: If the counters cannot be read or written
        """
        with self._lock:
            counts = self._read_attempts()
            counts[record_id] = int(counts.get(record_id, 0)) + 1
            self.cache.save_to_cache(
                self.keys.sync_attempts, counts, self.ttl_minutes, strict=True
            )
            return counts[record_id]

    def clear_attempts(self, record_id: str) -> None:
        """Forget the failure count for record_id."""
        with self._lock:
            counts = self._read_attempts()
            if counts.pop(record_id, None) is not None:
                self.cache.save_to_cache(
                    self.keys.sync_attempts, counts, self.ttl_minutes, strict=True
                )

    def _read_attempts(self) -> dict:
        # A failed read must never be written back as an empty map
        counts = self.cache.get_from_cache(self.keys.sync_attempts, strict=True)
        return counts if isinstance(counts, dict) else {}

    def move_to_dead_letter(self, kind: RecordKind, record: dict, error: str) -> None:
        """Take a record that keeps failing out of its queue.

        Raises:
            StorageError: If the dead-letter list or the queue cannot be written
        """
        kind = RecordKind(kind)
        with self._lock:
            letters = self.get_dead_letters(strict=True)
            letters.append(
                {
                    "kind": kind.value,
                    "record": record,
                    "error": error,
                    "failed_at": self.cache.clock(),
                }
            )
            self.cache.save_to_cache(
                self.keys.dead_letter, letters, DEAD_LETTER_TTL_MINUTES, strict=True
            )
            self.remove(kind, record["id"])
            self.clear_attempts(record["id"])
        logger.warning(
            f"Moved {kind.value} record {record['id']} to dead letters: {error}"
        )

    def get_dead_letters(self, strict: bool = False) -> list[dict]:
        """Records that exhausted their sync attempts."""
        try:
            return self._read(self.keys.dead_letter, strict=strict)
        except StorageError:
            if strict:
                raise
            return []

    def dead_letter_size(self) -> int:
        return len(self.get_dead_letters())

    def requeue_dead_letters(self) -> int:
        """Put every dead letter back at the end of its queue.

        Returns:
            Number of records requeued
        """
        with self._lock:
            letters = self.get_dead_letters(strict=True)
            for letter in letters:
                key = self.key_for(RecordKind(letter["kind"]))
                records = self._read(key, strict=True)
                records.append(letter["record"])
                self.cache.save_to_cache(key, records, self.ttl_minutes, strict=True)
            self.clear_dead_letters()
        return len(letters)

    def clear_dead_letters(self) -> None:
        try:
            self.cache.store.remove_item(self.keys.dead_letter)
        except StorageError as e:
            logger.error(f"Error clearing dead letters: {e}")
