"""Select the supervisor backend once, from settings."""

from __future__ import annotations

from botfleet.core.logging import get_logger
from botfleet.core.settings import FleetSettings
from botfleet.supervisor._base import BaseSupervisorAdapter
from botfleet.supervisor.docker import DockerSupervisor
from botfleet.supervisor.process import ProcessSupervisor

logger = get_logger(__name__)


def create_supervisor(settings: FleetSettings) -> BaseSupervisorAdapter:
    """Build the configured backend. Unknown names raise ``ValueError``."""
    backend = settings.supervisor_backend
    if backend == "docker":
        supervisor: BaseSupervisorAdapter = DockerSupervisor(
            image=settings.docker_image,
            command=settings.worker_command,
            docker_binary=settings.docker_binary,
            workdir=settings.docker_workdir,
            mount_dir=settings.commands_dir,
            timeout=settings.supervisor_timeout,
        )
    elif backend == "process":
        supervisor = ProcessSupervisor(
            command=settings.worker_command,
            log_dir=settings.log_dir,
            cwd=settings.commands_dir,
            max_restarts=settings.max_restarts,
            restart_delay=settings.restart_delay,
            stop_grace_period=settings.stop_grace_period,
            timeout=settings.supervisor_timeout,
        )
    else:
        raise ValueError(f"Unknown supervisor backend: {backend!r}")
    logger.info("supervisor.selected", backend=backend, timeout=settings.supervisor_timeout)
    return supervisor


__all__ = ["create_supervisor"]
