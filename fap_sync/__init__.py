"""FAP Sync - offline cache and synchronization for the FAP savings fund client."""

__version__ = "0.3.0"
