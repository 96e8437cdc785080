"""Worker entry point: ``python -m botfleet.runner``.

Every supervised worker runs this module. It reads its identity and
settings from the environment the lifecycle controller hands over, loads
the command plugins that are installed and enabled, then stays up until
the supervisor sends SIGTERM.

Command plugins register through the ``botfleet.commands`` entry-point
group. Each entry point resolves to an object exposing ``name`` and
``run(context, args)``, plus an optional ``feature`` naming the toggle
that enables it. Nothing is loaded by file path.

ARCHITECTURE
────────────
::

    WorkerConfig.from_env()        BOT_TOKEN, BOT_TENANT_ID, BOT_PREFIX, BOT_FEATURES ...
    CommandRegistry
      ├── .register(name, run, feature)
      ├── .load_entry_points()     ─ installed plugins
      └── .get(name)
    WorkerRunner(config, registry)
      ├── .dispatch(text)          ─ "<prefix><name> args..." → run(context, args)
      └── .run()                   ─ blocking until SIGINT / SIGTERM

Environment::

    BOT_TOKEN        credential of the bot (required)
    BOT_TENANT_ID    owning tenant
    BOT_WORKER_ID    registry id
    BOT_HANDLE       supervisor handle
    BOT_PREFIX       command prefix
    BOT_FEATURES     comma-separated enabled feature toggles
"""

from __future__ import annotations

import os
import signal
import sys
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from importlib.metadata import entry_points
from typing import Any

from botfleet.core.logging import configure_logging, get_logger

logger = get_logger(__name__)

ENTRY_POINT_GROUP = "botfleet.commands"

CommandRun = Callable[["CommandContext", list[str]], Any]


@dataclass(frozen=True)
class WorkerConfig:
    """Identity and settings of this worker process."""

    token: str
    tenant_id: str = ""
    worker_id: str = ""
    handle: str = ""
    prefix: str = "+"
    features: frozenset[str] = frozenset()

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> WorkerConfig:
        env = os.environ if environ is None else environ
        token = env.get("BOT_TOKEN", "").strip()
        if not token:
            raise ValueError("BOT_TOKEN is not set")
        features = frozenset(
            item.strip() for item in env.get("BOT_FEATURES", "").split(",") if item.strip()
        )
        return cls(
            token=token,
            tenant_id=env.get("BOT_TENANT_ID", ""),
            worker_id=env.get("BOT_WORKER_ID", ""),
            handle=env.get("BOT_HANDLE", ""),
            prefix=env.get("BOT_PREFIX") or "+",
            features=features,
        )


@dataclass(frozen=True)
class CommandContext:
    """What a command sees of the worker it runs in."""

    config: WorkerConfig
    command: str


@dataclass
class _Command:
    name: str
    run: CommandRun
    feature: str | None = None


@dataclass
class CommandRegistry:
    """Name → command lookup, filled from entry points or by hand in tests."""

    _commands: dict[str, _Command] = field(default_factory=dict)

    def register(self, name: str, run: CommandRun, feature: str | None = None) -> None:
        key = name.lower()
        if key in self._commands:
            raise ValueError(f"Command already registered: {name}")
        self._commands[key] = _Command(name=key, run=run, feature=feature)

    def get(self, name: str) -> _Command:
        key = name.lower()
        if key not in self._commands:
            raise KeyError(f"No command registered for {name!r}. Available: {self.names() or 'none'}")
        return self._commands[key]

    def has(self, name: str) -> bool:
        return name.lower() in self._commands

    def names(self) -> list[str]:
        return sorted(self._commands)

    def enabled(self, features: frozenset[str]) -> CommandRegistry:
        """Registry holding only the commands whose feature toggle is on."""
        kept = {
            key: cmd
            for key, cmd in self._commands.items()
            if cmd.feature is None or cmd.feature in features
        }
        return CommandRegistry(_commands=kept)

    def load_entry_points(self, group: str = ENTRY_POINT_GROUP) -> int:
        """Register every installed plugin of *group*. Returns how many loaded."""
        loaded = 0
        for ep in entry_points(group=group):
            try:
                plugin = ep.load()
                self.register(plugin.name, plugin.run, getattr(plugin, "feature", None))
            except (ImportError, AttributeError, ValueError) as exc:
                logger.warning("runner.plugin_failed", entry_point=ep.name, error=str(exc))
                continue
            loaded += 1
        return loaded


class WorkerRunner:
    """Runs one bot until told to stop."""

    def __init__(
        self,
        config: WorkerConfig,
        registry: CommandRegistry,
        *,
        heartbeat_interval: float = 60.0,
    ) -> None:
        self.config = config
        self.registry = registry.enabled(config.features)
        self._heartbeat = heartbeat_interval
        self._shutdown = threading.Event()

    def dispatch(self, text: str) -> Any:
        """Run the command addressed by *text*; ``None`` if it is not a command."""
        if not text.startswith(self.config.prefix):
            return None
        parts = text[len(self.config.prefix):].split()
        if not parts or not self.registry.has(parts[0]):
            return None
        command = self.registry.get(parts[0])
        return command.run(CommandContext(config=self.config, command=command.name), parts[1:])

    def stop(self) -> None:
        self._shutdown.set()

    def _handle_signal(self, signum: int, _frame: Any) -> None:
        logger.info("runner.signal", signal=signal.Signals(signum).name)
        self.stop()

    def run(self) -> None:
        """Block until SIGINT / SIGTERM or :meth:`stop`."""
        try:
            signal.signal(signal.SIGINT, self._handle_signal)
            signal.signal(signal.SIGTERM, self._handle_signal)
        except (ValueError, OSError):
            pass  # not the main thread

        logger.info(
            "runner.ready",
            handle=self.config.handle,
            tenant_id=self.config.tenant_id,
            prefix=self.config.prefix,
            commands=self.registry.names(),
        )
        while not self._shutdown.wait(self._heartbeat):
            logger.debug("runner.heartbeat", handle=self.config.handle)
        logger.info("runner.stopped", handle=self.config.handle)


def main(environ: Mapping[str, str] | None = None) -> int:
    configure_logging(service="botfleet-worker")
    try:
        config = WorkerConfig.from_env(environ)
    except ValueError as exc:
        logger.error("runner.config_invalid", error=str(exc))
        return 2
    registry = CommandRegistry()
    registry.load_entry_points()
    WorkerRunner(config, registry).run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
