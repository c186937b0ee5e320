"""Plugin shapes accepted in ``UserConfig.plugins`` and their adaptation.

A plugin entry is one of:

- a local plugin: any object (or mapping) exposing hook functions such as
  ``build_start``, ``transform``, ``watch_change`` or ``close_watcher``;
- a ``ParallelPlugin`` marker: the plugin runs in worker processes and is
  registered out of band, so this layer leaves an empty slot for it;
- a ``BuiltinPlugin``: a native plugin identified by a ``builtin:`` tag.
"""

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from bundlewatch.errors import ConfigurationError
from bundlewatch.request import BuiltinPluginDescriptor, NormalizedOutput, PluginDescriptor

logger = logging.getLogger(__name__)

HOOK_NAMES = (
    "build_start",
    "resolve_id",
    "load",
    "transform",
    "module_parsed",
    "build_end",
    "render_start",
    "render_chunk",
    "generate_bundle",
    "write_bundle",
    "watch_change",
    "close_watcher",
)
"""Hook functions collected from local plugins, in engine call order."""


class Plugin(Protocol):
    """A local plugin. Every hook is optional."""

    name: str


@dataclass(frozen=True)
class ParallelPlugin:
    """Marker for a plugin that runs in parallel workers."""

    file_url: str
    options: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BuiltinPlugin:
    """A native plugin selected by tag, e.g. ``builtin:glob-import``."""

    name: str
    options: dict[str, Any] = field(default_factory=dict)


def _normalize_wasm_helper(options: Mapping[str, Any]) -> dict[str, Any]:
    if options:
        raise ConfigurationError(f"builtin:wasm-helper takes no options, got {sorted(options)}")
    return {}


def _normalize_glob_import(options: Mapping[str, Any]) -> dict[str, Any]:
    root = options.get("root")
    return {
        "root": str(root) if root is not None else None,
        "restore_query_extension": bool(options.get("restore_query_extension", False)),
    }


def _normalize_dynamic_import_vars(options: Mapping[str, Any]) -> dict[str, Any]:
    if options:
        raise ConfigurationError(f"builtin:dynamic-import-vars takes no options, got {sorted(options)}")
    return {}


BUILTIN_PLUGIN_TRANSFORMS: dict[str, Callable[[Mapping[str, Any]], dict[str, Any]]] = {
    "builtin:wasm-helper": _normalize_wasm_helper,
    "builtin:glob-import": _normalize_glob_import,
    "builtin:dynamic-import-vars": _normalize_dynamic_import_vars,
}


def normalize_builtin_plugin(plugin: BuiltinPlugin) -> BuiltinPluginDescriptor:
    """Normalize a built-in plugin through its per-tag transform.

    Raises:
        ConfigurationError: If the tag is unknown or its options are invalid
    """
    transform = BUILTIN_PLUGIN_TRANSFORMS.get(plugin.name)
    if transform is None:
        raise ConfigurationError(f"Unknown builtin plugin: {plugin.name}")
    return BuiltinPluginDescriptor(name=plugin.name, options=transform(plugin.options))


def adapt_plugin(plugin: Any, index: int = 0, output: NormalizedOutput | None = None) -> PluginDescriptor:
    """Collect the hook functions of a local plugin into a descriptor.

    Args:
        plugin: Plugin object or mapping of hook name -> function
        index: Position in the plugin list, used for the fallback name
        output: Normalized output options, passed to output-phase hooks

    Returns:
        PluginDescriptor with only the hooks the plugin defines

    Raises:
        ConfigurationError: If a hook attribute is not callable
    """
    if isinstance(plugin, Mapping):
        lookup = plugin.get
        name = plugin.get("name")
    else:
        lookup = lambda attr: getattr(plugin, attr, None)  # noqa: E731
        name = getattr(plugin, "name", None)

    hooks = {}
    for hook_name in HOOK_NAMES:
        hook = lookup(hook_name)
        if hook is None:
            continue
        if not callable(hook):
            raise ConfigurationError(f"Plugin hook '{hook_name}' of plugin #{index} is not callable")
        hooks[hook_name] = hook

    return PluginDescriptor(name=name or f"plugin-{index}", hooks=hooks, output=output)


class PluginContext:
    """Build-scoped context handed to ``build_start`` hooks.

    Added watch files are passed to the session through ``sink``; the context
    stops accepting them once the build it belongs to has finished.
    """

    def __init__(self, build_id: int, sink: Callable[[str], None]):
        self.build_id = build_id
        self._sink = sink
        self._active = True

    def add_watch_file(self, path: str | Path) -> None:
        """Watch an extra file for the rest of the session."""
        if not self._active:
            logger.warning(f"add_watch_file({path}) called after build #{self.build_id} finished, ignored")
            return
        self._sink(str(Path(path).absolute()))

    def invalidate(self) -> None:
        self._active = False
