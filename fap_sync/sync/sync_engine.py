"""Sync engine - replays offline queues against the FAP backend."""

import logging
import threading
from dataclasses import dataclass, asdict
from typing import Callable, Optional

from .backend_client import (
    BackendAuthError,
    BackendUnavailableError,
    TABLE_ATTENDANCE,
    TABLE_LOANS,
    TABLE_SAVINGS,
)
from .cache import now_ms
from .kv_store import StorageError
from .protocols import BackendProtocol, OfflineQueueProtocol, SyncStatusProtocol
from .queue import RecordKind
from .status import SyncState

__all__ = ["SyncEngine", "SyncResult"]

logger = logging.getLogger(__name__)

ALREADY_SYNCING = "already-syncing"
BACKEND_UNREACHABLE = "backend-unreachable"


@dataclass
class SyncResult:
    """Outcome of one sync pass.

    The synced_* counts are records actually written to the backend and
    removed from their local queue during this pass. offline is set when the
    backend could not be reached; auth_error when it rejected the session.
    """

    success: bool
    synced_savings: int = 0
    synced_loans: int = 0
    synced_attendance: int = 0
    failed: int = 0
    dead_lettered: int = 0
    already_syncing: bool = False
    offline: bool = False
    auth_error: bool = False
    error: Optional[str] = None

    @property
    def total_synced(self) -> int:
        return self.synced_savings + self.synced_loans + self.synced_attendance

    def to_dict(self) -> dict:
        return asdict(self)


def _savings_row(record: dict, user_id: str) -> dict:
    return {
        "usuario_id": user_id,
        "monto": record.get("monto"),
        "descripcion": record.get("descripcion"),
        "fecha": record.get("fecha"),
        "ubicacion_lat": record.get("ubicacion_lat"),
        "ubicacion_lng": record.get("ubicacion_lng"),
        "firma_digital": record.get("firma_digital"),
    }


def _loan_row(record: dict, user_id: str) -> dict:
    return {
        "usuario_id": user_id,
        "monto_solicitado": record.get("monto_solicitado"),
        "tasa_interes": record.get("tasa_interes"),
        "proposito": record.get("proposito"),
        "estado": "pendiente",
    }


def _attendance_row(record: dict, user_id: str) -> dict:
    return {
        "reunion_id": record.get("reunion_id"),
        "usuario_id": user_id,
        "fecha_asistencia": record.get("fecha_asistencia"),
        "hora_asistencia": record.get("hora_asistencia"),
        "metodo_validacion": record.get("metodo_validacion"),
    }


# (kind, backend table, row builder, SyncResult counter), in replay order
SYNC_TARGETS = (
    (RecordKind.SAVINGS, TABLE_SAVINGS, _savings_row, "synced_savings"),
    (RecordKind.LOAN_REQUEST, TABLE_LOANS, _loan_row, "synced_loans"),
    (RecordKind.ATTENDANCE, TABLE_ATTENDANCE, _attendance_row, "synced_attendance"),
)


class SyncEngine:
    """Drains the offline queues into the backend, one record at a time."""

    def __init__(
        self,
        backend: BackendProtocol,
        queue: OfflineQueueProtocol,
        status: SyncStatusProtocol,
        max_sync_attempts: int = 5,
        clock: Callable[[], int] = now_ms,
    ):
        self.backend = backend
        self.queue = queue
        self.status = status
        self.max_sync_attempts = max_sync_attempts
        self.clock = clock

        self._guard = threading.Lock()
        self._active_users: set[str] = set()

    def is_syncing(self, user_id: Optional[str] = None) -> bool:
        """Whether a pass is running (for user_id, or for anyone)."""
        with self._guard:
            if user_id is None:
                return bool(self._active_users)
            return user_id in self._active_users

    def sync_offline_data(self, user_id: str) -> SyncResult:
        """Replay every offline queue for user_id.

        Only one pass per user runs at a time; a concurrent call returns
        immediately with already_syncing set and touches nothing.
        """
        with self._guard:
            if user_id in self._active_users:
                logger.info(f"Sync already running for user {user_id}")
                return SyncResult(success=False, already_syncing=True, error=ALREADY_SYNCING)
            self._active_users.add(user_id)

        try:
            return self._run_pass(user_id)
        finally:
            with self._guard:
                self._active_users.discard(user_id)

    def _run_pass(self, user_id: str) -> SyncResult:
        if not self.queue.is_empty() and not self.backend.is_reachable():
            logger.info("Backend unreachable, offline records stay queued")
            return SyncResult(success=False, offline=True, error=BACKEND_UNREACHABLE)

        result = SyncResult(success=True)
        self.status.set_sync_status(SyncState.SYNCING)

        try:
            for kind, table, to_row, counter in SYNC_TARGETS:
                self._sync_queue(kind, table, to_row, counter, user_id, result)

            self.status.set_last_sync(self.clock())
            self.status.set_sync_status(SyncState.COMPLETED)
        except BackendUnavailableError as e:
            # Records already removed stay counted; the rest wait for the next pass
            logger.warning(f"Lost connection to backend during sync: {e}")
            self.status.set_sync_status(SyncState.ERROR)
            result.success = False
            result.offline = True
            result.error = str(e)
            return result
        except BackendAuthError as e:
            logger.warning(f"Auth error during sync: {e}")
            self.status.set_sync_status(SyncState.ERROR)
            return SyncResult(success=False, auth_error=True, error=str(e))
        except Exception as e:
            logger.exception(f"Error during sync: {e}")
            self.status.set_sync_status(SyncState.ERROR)
            return SyncResult(success=False, error=str(e))

        if result.total_synced or result.failed:
            logger.info(
                f"Sync complete: {result.synced_savings} savings, "
                f"{result.synced_loans} loans, {result.synced_attendance} attendance, "
                f"{result.failed} failed, {result.dead_lettered} dead-lettered"
            )
        return result

    def _sync_queue(
        self,
        kind: RecordKind,
        table: str,
        to_row: Callable[[dict, str], dict],
        counter: str,
        user_id: str,
        result: SyncResult,
    ) -> None:
        """Insert each queued record of one kind, counting successes on result.

        Connection loss and auth rejections abort the pass without touching
        the remaining records or their attempt counts.
        """
        records = self.queue.get_records(kind, strict=True)

        for record in records:
            try:
                self.backend.insert(table, to_row(record, user_id))
            except (BackendAuthError, BackendUnavailableError):
                raise
            except Exception as e:
                result.failed += 1
                logger.error(f"Error syncing {kind.value} record {record.get('id')}: {e}")
                self._handle_failure(kind, record, e, result)
                continue

            self.queue.remove(kind, record["id"])
            self.queue.clear_attempts(record["id"])
            setattr(result, counter, getattr(result, counter) + 1)

    def _handle_failure(
        self, kind: RecordKind, record: dict, error: Exception, result: SyncResult
    ) -> None:
        """Count a rejected insert; dead-letter the record once it has used its attempts."""
        attempts = self.queue.record_failure(record["id"])
        if attempts >= self.max_sync_attempts:
            self.queue.move_to_dead_letter(kind, record, str(error))
            result.dead_lettered += 1

    def get_storage_info(self) -> Optional[dict]:
        """Queue depths and sync status for display, or None if unreadable."""
        try:
            return {
                "offline_savings_count": len(
                    self.queue.get_records(RecordKind.SAVINGS, strict=True)
                ),
                "offline_loans_count": len(
                    self.queue.get_records(RecordKind.LOAN_REQUEST, strict=True)
                ),
                "offline_attendance_count": len(
                    self.queue.get_records(RecordKind.ATTENDANCE, strict=True)
                ),
                "dead_letter_count": self.queue.dead_letter_size(),
                "sync_status": self.status.get_sync_status().get("status"),
                "last_sync": self.status.get_last_sync(),
            }
        except StorageError as e:
            logger.error(f"Error getting storage info: {e}")
            return None
