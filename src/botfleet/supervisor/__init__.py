"""Process Supervisor Adapter: one interface, container and process backends.

.. code-block:: text

    SupervisorAdapter (Protocol)
      └── BaseSupervisorAdapter   logging + timeout + error wrapping
            ├── DockerSupervisor   docker CLI, one container per worker
            ├── ProcessSupervisor  local child processes, auto-restart
            └── StubSupervisor     in-memory, for tests

    create_supervisor(settings)    picks the backend once at startup
"""

from botfleet.supervisor._base import DEFAULT_TIMEOUT, BaseSupervisorAdapter, StubSupervisor
from botfleet.supervisor._types import (
    ProcessDescription,
    SupervisorAdapter,
    SupervisorHealth,
    SupervisorResult,
)
from botfleet.supervisor.docker import DockerSupervisor
from botfleet.supervisor.factory import create_supervisor
from botfleet.supervisor.process import ProcessSupervisor

__all__ = [
    "DEFAULT_TIMEOUT",
    "BaseSupervisorAdapter",
    "DockerSupervisor",
    "ProcessDescription",
    "ProcessSupervisor",
    "StubSupervisor",
    "SupervisorAdapter",
    "SupervisorHealth",
    "SupervisorResult",
    "create_supervisor",
]
