"""Plugin registry -- stores and retrieves protocol implementations.

At startup, main.py instantiates runners and notifiers from config.yaml and
registers them here. Engine components query the registry by protocol type.
"""

from __future__ import annotations

import logging
from typing import Any

from core.protocols import Notifier, TaskRunner

logger = logging.getLogger(__name__)

# All supported protocol types
PROTOCOL_TYPES = {
    "runner": TaskRunner,
    "notifier": Notifier,
}


class PluginRegistry:
    """Central registry for runner and notifier implementations.

    Usage:
        registry = PluginRegistry()
        registry.register("notifier", discord_notifier)

        notifiers = registry.get_all("notifier")
        runner = registry.get("runner", "openclaw")
    """

    def __init__(self) -> None:
        self._plugins: dict[str, dict[str, Any]] = {key: {} for key in PROTOCOL_TYPES}

    def register(self, protocol_key: str, instance: Any) -> None:
        """Register a plugin instance under a protocol type.

        The instance must satisfy the protocol, including its `name` property.
        """
        if protocol_key not in PROTOCOL_TYPES:
            raise ValueError(
                f"Unknown protocol key '{protocol_key}'. "
                f"Must be one of: {list(PROTOCOL_TYPES.keys())}"
            )
        if not isinstance(instance, PROTOCOL_TYPES[protocol_key]):
            raise TypeError(
                f"{type(instance).__name__} does not implement the {protocol_key} protocol"
            )

        name = instance.name
        if name in self._plugins[protocol_key]:
            logger.warning("Overwriting existing %s plugin '%s'", protocol_key, name)

        self._plugins[protocol_key][name] = instance
        logger.info("Registered %s plugin: %s", protocol_key, name)

    def get(self, protocol_key: str, name: str) -> Any:
        """Get a specific plugin by protocol type and name.

        Raises KeyError if not found.
        """
        if protocol_key not in self._plugins:
            raise KeyError(f"Unknown protocol key: {protocol_key}")
        if name not in self._plugins[protocol_key]:
            available = list(self._plugins[protocol_key].keys())
            raise KeyError(f"No {protocol_key} plugin named '{name}'. Available: {available}")
        return self._plugins[protocol_key][name]

    def get_all(self, protocol_key: str) -> list[Any]:
        if protocol_key not in self._plugins:
            raise KeyError(f"Unknown protocol key: {protocol_key}")
        return list(self._plugins[protocol_key].values())

    def has(self, protocol_key: str, name: str) -> bool:
        return protocol_key in self._plugins and name in self._plugins[protocol_key]

    def summary(self) -> dict[str, list[str]]:
        """Return registered plugin names per protocol type."""
        return {key: list(plugins.keys()) for key, plugins in self._plugins.items() if plugins}
