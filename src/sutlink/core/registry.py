"""Transport plugin registry"""

import importlib
import logging
import threading
from typing import Callable, Dict, Optional, Tuple

from sutlink.core.errors import ErrorCode, SutlinkError

logger = logging.getLogger(__name__)

# Closed set of transports known at build time
KNOWN_PLUGINS: Dict[str, str] = {
    "ssh": "sutlink.plugins.ssh",
    "virtio": "sutlink.plugins.virtio",
    "serial": "sutlink.plugins.serial",
}

PLUGIN_SYMBOL = "plugin"


def split_target_spec(target_spec: Optional[str]) -> Tuple[str, str]:
    """Split "plugin:rest" into its two components

    Args:
        target_spec: Target specification string

    Returns:
        Tuple of (plugin_name, rest)

    Raises:
        SutlinkError: INVALID_TARGET_SPEC if there is no plugin name,
            UNKNOWN_PLUGIN if the name is not known or has no body
    """
    if not target_spec:
        raise SutlinkError(ErrorCode.INVALID_TARGET_SPEC)

    name, sep, rest = target_spec.partition(":")
    if not name:
        raise SutlinkError(ErrorCode.INVALID_TARGET_SPEC)

    if name not in KNOWN_PLUGINS:
        raise SutlinkError(ErrorCode.UNKNOWN_PLUGIN, f"Unknown plugin \"{name}\"")

    if not sep or not rest:
        raise SutlinkError(ErrorCode.UNKNOWN_PLUGIN, f"Plugin \"{name}\" needs a target after the colon")

    return name, rest


class PluginRegistry:
    """Loads each transport plugin at most once and hands out its capability vector"""

    def __init__(self, modules: Optional[Dict[str, str]] = None,
                 loader: Callable = importlib.import_module):
        """Initialize plugin registry

        Args:
            modules: Overrides of the module path per plugin name
            loader: Function importing a module by dotted path
        """
        self.modules = dict(KNOWN_PLUGINS)
        if modules:
            for name, module_path in modules.items():
                if name not in KNOWN_PLUGINS:
                    logger.warning(f"Ignoring module override for unknown plugin: {name}")
                    continue
                self.modules[name] = module_path

        self.loader = loader
        self.loaded = {}  # Cache of imported plugin modules
        self.loaded_lock = threading.Lock()  # Protect cache against concurrent first use

    def _load_module(self, name: str):
        """Import the module implementing a plugin, once per registry"""
        with self.loaded_lock:
            if name not in self.loaded:
                module_path = self.modules[name]
                try:
                    self.loaded[name] = self.loader(module_path)
                    logger.debug(f"Loaded plugin {name} from {module_path}")
                except ImportError as e:
                    logger.error(f"Cannot open plugin module \"{module_path}\": {e}")
                    return None

            return self.loaded[name]

    def get_plugin(self, name: str):
        """Get the capability vector of a plugin

        Args:
            name: Plugin name

        Returns:
            The plugin's capability vector

        Raises:
            SutlinkError: UNKNOWN_PLUGIN or INCOMPATIBLE_PLUGIN
        """
        if name not in self.modules:
            raise SutlinkError(ErrorCode.UNKNOWN_PLUGIN, f"Unknown plugin \"{name}\"")

        module = self._load_module(name)
        if module is None:
            raise SutlinkError(ErrorCode.UNKNOWN_PLUGIN, f"Cannot load plugin \"{name}\"")

        plugin = getattr(module, PLUGIN_SYMBOL, None)
        if plugin is None:
            plugin = getattr(module, f"{name}_ops", None)

        if plugin is None:
            logger.error(f"plugin \"{name}\" does not provide a capability vector")
            raise SutlinkError(ErrorCode.INCOMPATIBLE_PLUGIN)

        return plugin

    def create_target(self, target_spec: str):
        """Create a target handle from a "plugin:rest" spec

        Args:
            target_spec: Target specification string

        Returns:
            Target created by the plugin's init

        Raises:
            SutlinkError: on malformed spec or plugin failure
        """
        name, rest = split_target_spec(target_spec)
        plugin = self.get_plugin(name)

        init = getattr(plugin, "init", None)
        if init is None:
            logger.error(f"plugin \"{name}\" has no init function")
            raise SutlinkError(ErrorCode.INCOMPATIBLE_PLUGIN)

        target = init(rest)
        if target is None:
            raise SutlinkError(ErrorCode.UNKNOWN_PLUGIN, f"Plugin \"{name}\" rejected target \"{rest}\"")

        logger.debug(f"Created {name} target for {rest}")
        return target
