"""Canonical, engine-ready build request.

Every type here is a frozen dataclass so that two normalizations of the same
user configuration compare equal.
"""

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Union

VIRTUAL_MODULE_PREFIX = "\0"
"""Ids starting with this character belong to plugin-provided virtual modules."""


class LogLevel(IntEnum):
    SILENT = 0
    WARN = 1
    INFO = 2
    DEBUG = 3


@dataclass(frozen=True)
class InputItem:
    """One entry point. Unnamed entries get their name from the engine."""

    import_path: str
    name: str | None = None


@dataclass(frozen=True)
class ExternalPredicate:
    """External check backed by a user function."""

    func: Callable[[str, Union[str, None], bool], Union[bool, None]]

    def __call__(self, id: str, importer: str | None = None, is_resolved: bool = False) -> bool:
        if id.startswith(VIRTUAL_MODULE_PREFIX):
            return False
        return bool(self.func(id, importer, is_resolved))


@dataclass(frozen=True)
class ExternalMatcher:
    """External check backed by exact strings and regex patterns."""

    patterns: tuple[Union[str, re.Pattern], ...]

    def __call__(self, id: str, importer: str | None = None, is_resolved: bool = False) -> bool:
        for pattern in self.patterns:
            if isinstance(pattern, re.Pattern):
                if pattern.search(id):
                    return True
            elif id == pattern:
                return True
        return False


@dataclass(frozen=True)
class AliasRule:
    find: str
    replacements: tuple[str, ...]


@dataclass(frozen=True)
class ExtensionAliasRule:
    target: str
    replacements: tuple[str, ...]


@dataclass(frozen=True)
class ResolveRequest:
    alias: tuple[AliasRule, ...] | None = None
    extension_alias: tuple[ExtensionAliasRule, ...] | None = None
    main_fields: tuple[str, ...] | None = None
    condition_names: tuple[str, ...] | None = None
    modules: tuple[str, ...] | None = None
    symlinks: bool | None = None
    tsconfig_filename: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class InjectNamed:
    """``import { imported as alias } from from_`` (``imported == "default"`` for default imports)."""

    alias: str
    from_: str
    imported: str


@dataclass(frozen=True)
class InjectNamespace:
    """``import * as alias from from_``."""

    alias: str
    from_: str


@dataclass(frozen=True)
class JsxRequest:
    runtime: str
    import_source: str | None = None
    pragma: str | None = None
    pragma_frag: str | None = None
    development: bool | None = None
    refresh: bool | None = None


@dataclass(frozen=True)
class NotifyRequest:
    poll_interval: int | None = None
    compare_contents: bool = False


@dataclass(frozen=True)
class WatchRequest:
    skip_write: bool = False
    include: tuple[Union[str, re.Pattern], ...] | None = None
    exclude: tuple[Union[str, re.Pattern], ...] | None = None
    notify: NotifyRequest | None = None


@dataclass(frozen=True)
class ExperimentalRequest:
    strict_execution_order: bool | None = None
    disable_live_bindings: bool | None = None


@dataclass(frozen=True)
class NormalizedOutput:
    dir: str
    """Absolute output directory."""

    entry_file_names: str = "[name].js"


@dataclass(frozen=True)
class PluginDescriptor:
    """Engine-compatible hook set adapted from a user plugin object."""

    name: str
    hooks: dict[str, Callable[..., Any]] = field(default_factory=dict)
    output: NormalizedOutput | None = None
    """Output options handed to output-phase hooks such as ``render_chunk``."""

    def get_hook(self, hook_name: str) -> Callable[..., Any] | None:
        return self.hooks.get(hook_name)


@dataclass(frozen=True)
class BuiltinPluginDescriptor:
    """A native plugin, identified by tag, with normalized options."""

    name: str
    options: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LogForwarder:
    """Forwards engine diagnostics to the user's ``on_log`` reduced to code and message."""

    on_log: Callable[[str, Any], None]

    def __call__(self, level: str, log: Any) -> None:
        self.on_log(level, {"code": getattr(log, "code", None), "message": getattr(log, "message", str(log))})


@dataclass(frozen=True)
class CanonicalRequest:
    """Fully explicit build request derived from a UserConfig."""

    input: tuple[InputItem, ...]
    cwd: str
    plugins: tuple[Union[PluginDescriptor, BuiltinPluginDescriptor, None], ...] = ()
    external: Union[ExternalPredicate, ExternalMatcher, None] = None
    resolve: ResolveRequest | None = None
    platform: str | None = None
    shim_missing_exports: bool | None = None
    log_level: LogLevel = LogLevel.INFO
    on_log: LogForwarder | None = None
    treeshake: bool | None = None
    module_types: dict[str, str] | None = None
    define: tuple[tuple[str, str], ...] | None = None
    inject: tuple[Union[InjectNamed, InjectNamespace], ...] | None = None
    experimental: ExperimentalRequest = field(default_factory=ExperimentalRequest)
    profiler_names: bool | None = None
    jsx: JsxRequest | None = None
    watch: WatchRequest | None = None
    drop_labels: tuple[str, ...] | None = None
    output: NormalizedOutput | None = None

    @property
    def active_plugins(self) -> list[Union[PluginDescriptor, BuiltinPluginDescriptor]]:
        """Plugin slots that are handled by this layer (placeholders removed)."""
        return [p for p in self.plugins if p is not None]
