#!/usr/bin/env python3
"""
Plugin registry for rig-bridge.
Maps plugin ids to descriptors, keeps at most one live plugin
instance, and dispatches commands to it.
"""

import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .config import ConfigStore
from .logging_cfg import log, LogLevel, exception
from .plugins.base import PluginServices, RigPlugin

# Commands the gateway may forward to the active plugin
DISPATCHABLE = ('set_freq', 'set_mode', 'set_ptt')


class RegistryError(Exception):
    """Base class for registry failures."""


class InvalidDescriptor(RegistryError):
    """A descriptor is missing its id or factory."""


class UnknownPlugin(RegistryError):
    """No descriptor is registered under the requested id."""


@dataclass(frozen=True)
class PluginDescriptor:
    """Static, immutable description of a plugin.

    ``create(config_snapshot, services)`` builds a plugin instance;
    ``register_routes(app, registry)`` may add extra HTTP endpoints.
    """
    id: str
    name: str
    category: str = 'rig'
    config_key: str = 'radio'
    create: Optional[Callable[[Dict[str, Any], PluginServices], RigPlugin]] = None
    register_routes: Optional[Callable[[Any, 'PluginRegistry'], None]] = None


class PluginRegistry:
    """Holds every descriptor and the single active plugin instance."""

    def __init__(self, config_store: ConfigStore, services: PluginServices):
        self.config_store = config_store
        self.services = services
        self._descriptors: Dict[str, PluginDescriptor] = {}
        self._active: Optional[RigPlugin] = None
        self._active_id: Optional[str] = None
        # Serializes switches so teardown and construction never overlap
        self._switch_lock = threading.RLock()

    def register(self, descriptor: PluginDescriptor):
        """Add a descriptor; a duplicate id replaces the earlier one.

        Raises:
            InvalidDescriptor: If id or factory is missing
        """
        if descriptor is None or not descriptor.id or not callable(descriptor.create):
            raise InvalidDescriptor(f"Plugin descriptor needs an id and a factory: {descriptor!r}")
        if descriptor.id in self._descriptors:
            log(f"Replacing plugin registration for '{descriptor.id}'", LogLevel.DEBUG)
        self._descriptors[descriptor.id] = descriptor
        log(f"Registered plugin '{descriptor.id}' ({descriptor.name})", LogLevel.DEBUG)

    def register_builtins(self):
        from .plugins import builtin_descriptors
        for descriptor in builtin_descriptors():
            self.register(descriptor)

    def list(self) -> List[Dict[str, str]]:
        return [
            {'id': d.id, 'name': d.name, 'category': d.category}
            for d in self._descriptors.values()
        ]

    def get(self, plugin_id: str) -> Optional[PluginDescriptor]:
        return self._descriptors.get(plugin_id)

    @property
    def active_id(self) -> Optional[str]:
        return self._active_id

    @property
    def active(self) -> Optional[RigPlugin]:
        return self._active

    def connect_active(self, radio_type: Optional[str] = None):
        """Activate the configured radio type at boot. Unknown types are logged, not raised."""
        radio_type = radio_type or self.config_store.radio_type
        if not radio_type or radio_type == 'none':
            log("No radio configured; waiting for configuration")
            return
        try:
            self.switch_plugin(radio_type)
        except UnknownPlugin as e:
            log(str(e), LogLevel.ERROR)

    def switch_plugin(self, plugin_id: Optional[str]) -> Optional[RigPlugin]:
        """Tear down the active instance, then build and connect plugin_id.

        Returns:
            The new active instance, or None

        Raises:
            UnknownPlugin: If plugin_id is not registered (no plugin is left active)
        """
        with self._switch_lock:
            self._teardown()
            self.services.state.update('connected', False)

            if not plugin_id or plugin_id == 'none':
                log("Radio control disabled")
                return None

            descriptor = self._descriptors.get(plugin_id)
            if descriptor is None:
                raise UnknownPlugin(f"Unknown plugin: {plugin_id}")

            try:
                instance = descriptor.create(self.config_store.snapshot(), self.services)
            except Exception as e:
                exception(f"Failed to create plugin '{plugin_id}': {e}")
                return None

            self._active = instance
            self._active_id = plugin_id
            log(f"Activated plugin '{plugin_id}' ({descriptor.name})")

            try:
                instance.connect()
            except Exception as e:
                exception(f"Plugin '{plugin_id}' failed to connect: {e}")
                self._teardown()
                return None
            return instance

    def _teardown(self):
        instance, plugin_id = self._active, self._active_id
        self._active = None
        self._active_id = None
        if instance is None:
            return
        try:
            instance.disconnect()
            log(f"Deactivated plugin '{plugin_id}'")
        except Exception as e:
            log(f"Error disconnecting plugin '{plugin_id}': {e}", LogLevel.ERROR)

    def dispatch(self, method: str, *args) -> bool:
        """Forward a command to the active plugin.

        Returns:
            False if nothing is active, the method is unsupported, or it failed
        """
        instance = self._active
        if instance is None:
            log(f"No active plugin for {method}", LogLevel.DEBUG)
            return False
        if method not in DISPATCHABLE:
            log(f"Unsupported command {method}", LogLevel.WARNING)
            return False
        handler = getattr(instance, method, None)
        if not callable(handler):
            return False
        try:
            result = handler(*args)
        except Exception as e:
            log(f"{self._active_id}: {method}{args} failed: {e}", LogLevel.ERROR)
            return False
        return result is not False

    def register_routes(self, app):
        """Let each descriptor contribute endpoints. Called once at boot."""
        for descriptor in self._descriptors.values():
            if descriptor.register_routes is not None:
                descriptor.register_routes(app, self)

    def shutdown(self):
        with self._switch_lock:
            self._teardown()
            self.services.state.update('connected', False)
