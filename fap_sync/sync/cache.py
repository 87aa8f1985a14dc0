"""Timestamped cache entries with lazy expiry on top of the key/value store."""

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .kv_store import StorageError
from .protocols import KeyValueStoreProtocol

__all__ = ["CacheEntry", "LocalCache", "now_ms"]

logger = logging.getLogger(__name__)

MS_PER_MINUTE = 60 * 1000


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass
class CacheEntry:
    """A value together with its write time and time-to-live (both in ms)."""

    data: Any
    timestamp: int
    expiration: int

    def is_expired(self, now: int) -> bool:
        return now - self.timestamp > self.expiration

    def to_json(self) -> str:
        return json.dumps(
            {"data": self.data, "timestamp": self.timestamp, "expiration": self.expiration}
        )

    @classmethod
    def from_json(cls, raw: str) -> "CacheEntry":
        parsed = json.loads(raw)
        return cls(
            data=parsed["data"],
            timestamp=int(parsed["timestamp"]),
            expiration=int(parsed["expiration"]),
        )


class LocalCache:
    """Reads and writes CacheEntry values.

    Expired entries are deleted when they are read; there is no background
    sweep. A None result means "absent", whether the key was never written or
    has expired.
    """

    def __init__(
        self,
        store: KeyValueStoreProtocol,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.clock = clock

    def save_to_cache(
        self,
        key: str,
        data: Any,
        expiration_minutes: float = 30,
        strict: bool = False,
    ) -> None:
        """Write data under key with a TTL, overwriting any prior value.

        Args:
            key: Store key
            data: JSON-serializable value
            expiration_minutes: Time-to-live
            strict: Raise StorageError instead of only logging it

        Raises:
            StorageError: If strict and the write failed
        """
        entry = CacheEntry(
            data=data,
            timestamp=self.clock(),
            expiration=int(expiration_minutes * MS_PER_MINUTE),
        )
        try:
            self.store.set_item(key, entry.to_json())
        except (StorageError, TypeError, ValueError) as e:
            logger.error(f"Error saving to cache ({key}): {e}")
            if strict:
                if isinstance(e, StorageError):
                    raise
                raise StorageError(f"Cannot serialize value for {key}: {e}") from e

    def get_from_cache(self, key: str, strict: bool = False) -> Optional[Any]:
        """Read the live value under key.

        Args:
            key: Store key
            strict: Raise StorageError on store failures instead of returning None

        Returns:
            The cached data, or None if absent, unparsable or expired
        """
        try:
            raw = self.store.get_item(key)
        except StorageError as e:
            logger.error(f"Error getting from cache ({key}): {e}")
            if strict:
                raise
            return None

        if not raw:
            return None

        try:
            entry = CacheEntry.from_json(raw)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding unparsable cache entry ({key}): {e}")
            return None

        if entry.is_expired(self.clock()):
            logger.debug(f"Cache entry expired ({key})")
            try:
                self.store.remove_item(key)
            except StorageError as e:
                logger.error(f"Error evicting expired entry ({key}): {e}")
                if strict:
                    raise
            return None

        return entry.data
