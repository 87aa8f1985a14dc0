"""Tests for sync engine."""

import tempfile
import threading
from pathlib import Path
from unittest.mock import Mock

import requests
import responses

from fap_sync.sync.backend_client import (
    BackendAuthError,
    BackendClient,
    BackendClientError,
    BackendUnavailableError,
    TABLE_ATTENDANCE,
    TABLE_LOANS,
    TABLE_SAVINGS,
)
from fap_sync.sync.cache import LocalCache
from fap_sync.sync.kv_store import KeyValueStore, StorageError
from fap_sync.sync.queue import OfflineQueue, RecordKind
from fap_sync.sync.retry import RetryConfig
from fap_sync.sync.status import SyncStatusRegister
from fap_sync.sync.sync_engine import SyncEngine, SyncResult
from fakes import FakeClock


class TestSyncEngine:
    """Tests for SyncEngine against a real local store and a mocked backend."""

    def setup_method(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.store = KeyValueStore(Path(self.temp_dir) / "store.db")
        self.clock = FakeClock()
        self.cache = LocalCache(self.store, clock=self.clock)
        self.queue = OfflineQueue(self.cache)
        self.status = SyncStatusRegister(self.store, clock=self.clock)
        self.backend = Mock()
        self.backend.insert.return_value = [{"id": 1}]

        self.engine = SyncEngine(
            backend=self.backend,
            queue=self.queue,
            status=self.status,
            max_sync_attempts=3,
            clock=self.clock,
        )

    def teardown_method(self):
        """Clean up."""
        self.store.close()

    def _insert_fails_for(self, *montos):
        def insert(table, row):
            if row.get("monto") in montos:
                raise BackendClientError("API error (400): rejected")
            return [row]

        self.backend.insert.side_effect = insert

    def test_empty_queues(self):
        result = self.engine.sync_offline_data("u1")

        assert result == SyncResult(success=True)
        assert result.synced_savings == 0
        assert result.synced_loans == 0
        assert result.synced_attendance == 0
        assert self.status.get_sync_status()["status"] == "completed"
        assert self.status.get_last_sync() == self.clock.now
        self.backend.insert.assert_not_called()

    def test_syncs_all_queues(self):
        self.queue.save_savings_offline(
            {
                "monto": 20,
                "descripcion": "Aporte",
                "fecha": "2026-10-18",
                "ubicacion_lat": -0.18,
                "ubicacion_lng": -78.46,
                "firma_digital": "firmas/u1.png",
            }
        )
        self.queue.save_loan_request_offline(
            {"monto_solicitado": 300, "tasa_interes": 2.0, "proposito": "Herramientas"}
        )
        attendance = self.queue.save_attendance_offline(
            {"reunion_id": "r-9", "metodo_validacion": "gps"}
        )

        result = self.engine.sync_offline_data("u1")

        assert result.success is True
        assert (result.synced_savings, result.synced_loans, result.synced_attendance) == (1, 1, 1)
        assert self.queue.is_empty()

        calls = self.backend.insert.call_args_list
        assert [c.args[0] for c in calls] == [TABLE_SAVINGS, TABLE_LOANS, TABLE_ATTENDANCE]
        assert calls[0].args[1] == {
            "usuario_id": "u1",
            "monto": 20,
            "descripcion": "Aporte",
            "fecha": "2026-10-18",
            "ubicacion_lat": -0.18,
            "ubicacion_lng": -78.46,
            "firma_digital": "firmas/u1.png",
        }
        assert calls[1].args[1] == {
            "usuario_id": "u1",
            "monto_solicitado": 300,
            "tasa_interes": 2.0,
            "proposito": "Herramientas",
            "estado": "pendiente",
        }
        assert calls[2].args[1] == {
            "reunion_id": "r-9",
            "usuario_id": "u1",
            "fecha_asistencia": attendance["fecha_asistencia"],
            "hora_asistencia": attendance["hora_asistencia"],
            "metodo_validacion": "gps",
        }

    def test_local_markers_not_sent(self):
        self.queue.save_savings_offline({"monto": 5})

        self.engine.sync_offline_data("u1")

        row = self.backend.insert.call_args.args[1]
        assert "id" not in row
        assert "offline" not in row

    def test_failed_record_stays_queued(self):
        self.queue.save_savings_offline({"monto": 1})
        second = self.queue.save_savings_offline({"monto": 2})
        self.queue.save_savings_offline({"monto": 3})
        self._insert_fails_for(2)

        result = self.engine.sync_offline_data("u1")

        assert self.queue.get_offline_savings() == [second]
        assert result.synced_savings == 2
        assert result.failed == 1
        assert self.status.get_sync_status()["status"] == "completed"

    def test_all_inserts_failing_keeps_queues_and_completes(self):
        self.queue.save_savings_offline({"monto": 1})
        self.queue.save_loan_request_offline({"monto_solicitado": 10, "proposito": "Semillas"})
        self.queue.save_attendance_offline({"reunion_id": "r"})
        before = (
            self.queue.get_offline_savings(),
            self.queue.get_offline_loans(),
            self.queue.get_offline_attendance(),
        )
        self.backend.insert.side_effect = RuntimeError("network unreachable")

        result = self.engine.sync_offline_data("u1")

        after = (
            self.queue.get_offline_savings(),
            self.queue.get_offline_loans(),
            self.queue.get_offline_attendance(),
        )
        assert after == before
        assert result.success is True
        assert result.total_synced == 0
        assert result.failed == 3
        assert self.status.get_sync_status()["status"] == "completed"

    def test_dead_letter_after_max_attempts(self):
        record = self.queue.save_savings_offline({"monto": 2})
        self._insert_fails_for(2)

        for _ in range(2):
            result = self.engine.sync_offline_data("u1")
            assert result.dead_lettered == 0
        assert self.queue.attempts(record["id"]) == 2

        result = self.engine.sync_offline_data("u1")

        assert result.dead_lettered == 1
        assert self.queue.get_offline_savings() == []
        letters = self.queue.get_dead_letters()
        assert letters[0]["record"] == record
        assert "rejected" in letters[0]["error"]

    def test_success_resets_attempts(self):
        record = self.queue.save_savings_offline({"monto": 2})
        self._insert_fails_for(2)
        self.engine.sync_offline_data("u1")

        self.backend.insert.side_effect = None
        self.engine.sync_offline_data("u1")

        assert self.queue.attempts(record["id"]) == 0
        assert self.queue.get_offline_savings() == []

    def test_auth_error_aborts_pass(self):
        self.queue.save_savings_offline({"monto": 1})
        self.queue.save_savings_offline({"monto": 2})
        self.backend.insert.side_effect = BackendAuthError("JWT expired")

        result = self.engine.sync_offline_data("u1")

        assert result.success is False
        assert result.error == "JWT expired"
        assert result.auth_error is True
        assert self.backend.insert.call_count == 1
        assert self.queue.size(RecordKind.SAVINGS) == 2
        assert self.status.get_sync_status()["status"] == "error"

    def test_unreachable_backend_skips_pass(self):
        record = self.queue.save_savings_offline({"monto": 1})
        self.backend.is_reachable.return_value = False

        result = self.engine.sync_offline_data("u1")

        assert result.success is False
        assert result.offline is True
        self.backend.insert.assert_not_called()
        assert self.queue.get_offline_savings() == [record]
        assert self.status.get_sync_status()["status"] == "idle"

    def test_empty_queues_skip_reachability_check(self):
        self.engine.sync_offline_data("u1")

        self.backend.is_reachable.assert_not_called()

    def test_connection_loss_over_many_passes_keeps_queues(self):
        saving = self.queue.save_savings_offline({"monto": 1})
        loan = self.queue.save_loan_request_offline(
            {"monto_solicitado": 50, "proposito": "Semillas"}
        )
        self.backend.insert.side_effect = BackendUnavailableError("Cannot connect to backend")

        for _ in range(self.engine.max_sync_attempts * 2):
            result = self.engine.sync_offline_data("u1")
            assert result.offline is True
            assert result.failed == 0
            self.clock.advance_minutes(5)

        assert self.queue.get_offline_savings() == [saving]
        assert self.queue.get_offline_loans() == [loan]
        assert self.queue.attempts(saving["id"]) == 0
        assert self.queue.get_dead_letters() == []
        # Only the first insert of each pass is attempted
        assert self.backend.insert.call_count == self.engine.max_sync_attempts * 2

        self.backend.insert.side_effect = None
        result = self.engine.sync_offline_data("u1")

        assert (result.synced_savings, result.synced_loans) == (1, 1)
        assert self.queue.is_empty()

    def test_connection_lost_mid_pass_counts_synced_records(self):
        self.queue.save_savings_offline({"monto": 1})
        second = self.queue.save_savings_offline({"monto": 2})

        def insert(table, row):
            if row.get("monto") == 2:
                raise BackendUnavailableError("Request timed out")
            return [row]

        self.backend.insert.side_effect = insert

        result = self.engine.sync_offline_data("u1")

        assert result.success is False
        assert result.offline is True
        assert result.synced_savings == 1
        assert self.queue.get_offline_savings() == [second]
        assert self.status.get_sync_status()["status"] == "error"

    @responses.activate
    def test_dropped_connections_never_dead_letter(self):
        base = "https://fap.example.co"
        backend = BackendClient(
            base_url=base,
            api_key="anon-key",
            retry_config=RetryConfig(max_retries=1, base_delay=0, jitter=False),
        )
        responses.add(responses.GET, f"{base}/auth/v1/health", json={})
        responses.add(
            responses.POST,
            f"{base}/rest/v1/ahorros",
            body=requests.exceptions.ConnectionError("Connection refused"),
        )
        engine = SyncEngine(
            backend, self.queue, self.status, max_sync_attempts=5, clock=self.clock
        )
        record = self.queue.save_savings_offline({"monto": 1})

        for _ in range(6):
            engine.sync_offline_data("u1")
            self.clock.advance_minutes(5)

        backend.close()
        assert self.queue.get_offline_savings() == [record]
        assert self.queue.dead_letter_size() == 0

    def test_queue_read_failure_sets_error(self):
        queue = Mock()
        queue.get_records.side_effect = StorageError("database is locked")
        engine = SyncEngine(self.backend, queue, self.status, clock=self.clock)

        result = engine.sync_offline_data("u1")

        assert result == SyncResult(success=False, error="database is locked")
        assert self.status.get_sync_status()["status"] == "error"
        assert self.status.get_last_sync() is None

    def test_status_transitions_in_order(self):
        status = Mock()
        engine = SyncEngine(self.backend, self.queue, status, clock=self.clock)

        engine.sync_offline_data("u1")

        states = [c.args[0] for c in status.set_sync_status.call_args_list]
        assert states == ["syncing", "completed"]
        status.set_last_sync.assert_called_once_with(self.clock.now)

    def test_records_added_during_sync_are_kept(self):
        self.queue.save_savings_offline({"monto": 1})

        def insert(table, row):
            # A screen enqueues while the pass is in flight
            if row.get("monto") == 1:
                self.queue.save_savings_offline({"monto": 99})
            return [row]

        self.backend.insert.side_effect = insert

        result = self.engine.sync_offline_data("u1")

        assert result.synced_savings == 1
        assert [r["monto"] for r in self.queue.get_offline_savings()] == [99]

    def test_concurrent_sync_for_same_user_is_rejected(self):
        self.queue.save_savings_offline({"monto": 1})
        entered = threading.Event()
        release = threading.Event()

        def slow_insert(table, row):
            entered.set()
            release.wait(timeout=5)
            return [row]

        self.backend.insert.side_effect = slow_insert
        results = {}
        worker = threading.Thread(
            target=lambda: results.setdefault("first", self.engine.sync_offline_data("u1"))
        )
        worker.start()
        assert entered.wait(timeout=5)

        second = self.engine.sync_offline_data("u1")
        assert self.engine.is_syncing("u1") is True

        release.set()
        worker.join(timeout=5)

        assert second.success is False
        assert second.already_syncing is True
        assert second.error == "already-syncing"
        assert results["first"].synced_savings == 1
        assert self.engine.is_syncing() is False
        assert self.queue.get_offline_savings() == []

    def test_get_storage_info(self):
        self.queue.save_savings_offline({"monto": 1})
        self.queue.save_savings_offline({"monto": 2})
        self.queue.save_attendance_offline({"reunion_id": "r"})
        self.status.set_sync_status("completed")
        self.status.set_last_sync(123)

        info = self.engine.get_storage_info()

        assert info == {
            "offline_savings_count": 2,
            "offline_loans_count": 0,
            "offline_attendance_count": 1,
            "dead_letter_count": 0,
            "sync_status": "completed",
            "last_sync": 123,
        }

    def test_get_storage_info_unreadable(self):
        queue = Mock()
        queue.get_records.side_effect = StorageError("locked")
        engine = SyncEngine(self.backend, queue, self.status, clock=self.clock)

        assert engine.get_storage_info() is None
