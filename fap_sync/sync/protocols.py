"""Protocol types for the synchronizer's collaborators.

The synchronizer only depends on these interfaces, so tests can hand it
mocks and the app can swap the concrete store or backend.
"""

from typing import Any, Optional, Protocol, runtime_checkable


@runtime_checkable
class KeyValueStoreProtocol(Protocol):
    """Durable string key/value storage."""

    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...

    def multi_remove(self, keys: list[str]) -> int: ...


@runtime_checkable
class BackendProtocol(Protocol):
    """Interface for writing records to the hosted backend."""

    def insert(self, table: str, row: dict) -> list[dict]: ...

    def is_reachable(self) -> bool: ...


@runtime_checkable
class OfflineQueueProtocol(Protocol):
    """Interface for the offline record queues."""

    def get_records(self, kind: Any, strict: bool = False) -> list[dict]: ...

    def remove(self, kind: Any, record_id: str) -> bool: ...

    def record_failure(self, record_id: str) -> int: ...

    def clear_attempts(self, record_id: str) -> None: ...

    def move_to_dead_letter(self, kind: Any, record: dict, error: str) -> None: ...

    def size(self, kind: Any) -> int: ...

    def is_empty(self) -> bool: ...

    def dead_letter_size(self) -> int: ...


@runtime_checkable
class SyncStatusProtocol(Protocol):
    """Interface for the persisted sync status register."""

    def set_sync_status(self, status: str) -> None: ...

    def get_sync_status(self) -> dict: ...

    def set_last_sync(self, timestamp: int) -> None: ...

    def get_last_sync(self) -> Optional[int]: ...
