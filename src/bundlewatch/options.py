"""User-facing configuration types.

These mirror what a user writes in a config file or passes to ``watch()``:
loosely typed and polymorphic. ``bundlewatch.normalizer`` turns them into a
``CanonicalRequest``.
"""

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, fields
from typing import Any, Union

from bundlewatch.errors import ConfigurationError

StringOrRegex = Union[str, re.Pattern]

ExternalOption = Union[
    Callable[[str, Union[str, None], bool], Union[bool, None]],
    StringOrRegex,
    list[StringOrRegex],
]

InputOption = Union[str, list[str], dict[str, str]]

InjectOption = Union[str, list[str], tuple[str, str]]


@dataclass
class ResolveOptions:
    """Module resolution rules."""

    alias: dict[str, str] | None = None
    """Module name -> replacement path."""

    extension_alias: dict[str, list[str]] | None = None
    """Extension -> candidate extensions, e.g. {".js": [".ts", ".js"]}."""

    main_fields: list[str] | None = None
    condition_names: list[str] | None = None
    modules: list[str] | None = None
    symlinks: bool | None = None
    tsconfig_filename: str | None = None

    extra: dict[str, Any] = field(default_factory=dict)
    """Further resolver options passed through untouched."""


@dataclass
class JsxOptions:
    """JSX transform options."""

    mode: str | None = None
    """classic (default), automatic, preserve."""

    factory: str | None = None
    fragment: str | None = None

    import_source: str | None = None
    """Import source used in classic mode."""

    jsx_import_source: str | None = None
    """Import source used in automatic mode."""

    development: bool | None = None
    refresh: bool | None = None


@dataclass
class NotifyOptions:
    """Polling notification backend options."""

    poll_interval: int | None = None
    """Polling interval in milliseconds."""

    compare_contents: bool = False
    """Report a change only when file contents differ."""


@dataclass
class WatchOptions:
    """Watch mode options."""

    skip_write: bool = False
    """Build and report, but do not write output to disk."""

    include: StringOrRegex | list[StringOrRegex] | None = None
    exclude: StringOrRegex | list[StringOrRegex] | None = None

    notify: NotifyOptions | None = None

    chokidar: Any = None
    """Deprecated legacy backend option. Only produces a warning."""


@dataclass
class ExperimentalOptions:
    strict_execution_order: bool | None = None
    disable_live_bindings: bool | None = None


@dataclass
class OutputOptions:
    """Output options."""

    dir: str = "dist"
    """Output directory, relative to cwd unless absolute."""

    entry_file_names: str = "[name].js"
    """File name pattern for entry chunks."""


@dataclass
class UserConfig:
    """Complete user configuration for one build or watch invocation."""

    input: InputOption = field(default_factory=list)
    cwd: str | None = None
    external: ExternalOption | None = None
    resolve: ResolveOptions | None = None
    platform: str | None = None
    shim_missing_exports: bool | None = None
    treeshake: bool | None = None
    module_types: dict[str, str] | None = None
    profiler_names: bool | None = None
    log_level: str = "info"
    on_log: Callable[[str, Any], None] | None = None
    define: dict[str, str] | None = None
    inject: dict[str, InjectOption] | None = None
    experimental: ExperimentalOptions | None = None
    jsx: JsxOptions | None = None
    watch: WatchOptions | None = None
    drop_labels: list[str] | None = None
    plugins: list[Any] = field(default_factory=list)
    output: OutputOptions = field(default_factory=OutputOptions)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "UserConfig":
        """Build a UserConfig from a plain mapping (snake_case keys).

        Nested tables become their option dataclasses. Unknown top-level keys
        are rejected.

        Args:
            raw: Mapping, typically parsed from TOML

        Returns:
            UserConfig

        Raises:
            ConfigurationError: If a key is not a known option
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(raw) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}")

        values = dict(raw)
        nested = {
            "resolve": ResolveOptions,
            "jsx": JsxOptions,
            "experimental": ExperimentalOptions,
            "output": OutputOptions,
        }
        for key, option_cls in nested.items():
            if isinstance(values.get(key), Mapping):
                values[key] = _build_option(option_cls, values[key], key)

        if isinstance(values.get("watch"), Mapping):
            watch_raw = dict(values["watch"])
            if isinstance(watch_raw.get("notify"), Mapping):
                watch_raw["notify"] = _build_option(NotifyOptions, watch_raw["notify"], "watch.notify")
            values["watch"] = _build_option(WatchOptions, watch_raw, "watch")

        return cls(**values)


def _build_option(option_cls: type, raw: Mapping[str, Any], table: str) -> Any:
    known = {f.name for f in fields(option_cls)}
    values = dict(raw)
    if option_cls is ResolveOptions:
        # Unrecognized resolver keys pass through
        extra = {k: values.pop(k) for k in list(values) if k not in known}
        values.setdefault("extra", {}).update(extra)
    unknown = sorted(set(values) - known)
    if unknown:
        raise ConfigurationError(f"Unknown keys in [{table}]: {', '.join(unknown)}")
    return option_cls(**values)
