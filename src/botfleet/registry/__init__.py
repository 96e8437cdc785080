"""Worker Registry: workers, their handles, states and settings."""

from botfleet.registry.store import HANDLE_ATTEMPTS, WorkerRegistry, make_handle

__all__ = ["HANDLE_ATTEMPTS", "WorkerRegistry", "make_handle"]
