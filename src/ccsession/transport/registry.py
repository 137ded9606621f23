"""Transport registry: maps execution targets to transport factories.

``get()`` caches one instance per target. ``default_registry()`` wires the
stock transports: ``local`` over the Claude Agent SDK, ``shell`` and
``sprite`` over one shared ShellTransport.
"""

from collections.abc import Callable

import structlog

from ..config import Config
from ..errors import UnknownTransportError
from .base import Transport
from .local import LocalTransport
from .session_server import SessionHost, ShellAgent
from .shell import ShellTransport
from .subprocess_server import SubprocessSessionServer

logger = structlog.get_logger()

TransportFactory = Callable[[], Transport]


class TransportRegistry:
    """Maps execution target names to transport factories.

    Instances are cached per target: ``get()`` returns the same instance
    for repeated calls with the same target.
    """

    def __init__(self) -> None:
        self._factories: dict[str, TransportFactory] = {}
        self._instances: dict[str, Transport] = {}

    def register(self, target: str, factory: TransportFactory) -> None:
        """Register a factory under *target* (overwrites silently)."""
        self._factories[target] = factory
        self._instances.pop(target, None)  # invalidate cached instance
        logger.debug("Registered transport %r", target)

    def is_valid(self, target: str) -> bool:
        return target in self._factories

    def targets(self) -> list[str]:
        return sorted(self._factories)

    def get(self, target: str) -> Transport:
        """Return a cached transport for *target*.

        Raises ``UnknownTransportError`` if *target* is not registered.
        """
        if target in self._instances:
            return self._instances[target]
        factory = self._factories.get(target)
        if factory is None:
            available = ", ".join(self.targets()) or "(none)"
            raise UnknownTransportError(
                details=f"Unknown execution target {target!r}. Available: {available}"
            )
        instance = factory()
        self._instances[target] = instance
        return instance


def default_registry(
    config: Config,
    server: SessionHost | None = None,
    agent: ShellAgent | None = None,
) -> TransportRegistry:
    """Registry with the stock local, shell, and sprite transports."""
    registry = TransportRegistry()
    shell: list[ShellTransport] = []

    def shell_transport() -> ShellTransport:
        if not shell:
            shell.append(
                ShellTransport(server or SubprocessSessionServer(), config, agent)
            )
        return shell[0]

    registry.register("local", lambda: LocalTransport(config))
    registry.register("shell", shell_transport)
    registry.register("sprite", shell_transport)
    return registry
