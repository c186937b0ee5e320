"""Translate a UserConfig into a CanonicalRequest.

Pure apart from reading the working directory when ``cwd`` is omitted and
reporting deprecation diagnostics to the log sink.
"""

import logging
import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from bundlewatch.errors import ConfigurationError
from bundlewatch.options import (
    InputOption,
    JsxOptions,
    OutputOptions,
    ResolveOptions,
    UserConfig,
    WatchOptions,
)
from bundlewatch.plugins import BuiltinPlugin, ParallelPlugin, adapt_plugin, normalize_builtin_plugin
from bundlewatch.request import (
    AliasRule,
    CanonicalRequest,
    ExperimentalRequest,
    ExtensionAliasRule,
    ExternalMatcher,
    ExternalPredicate,
    InjectNamed,
    InjectNamespace,
    InputItem,
    JsxRequest,
    LogForwarder,
    LogLevel,
    NormalizedOutput,
    NotifyRequest,
    ResolveRequest,
    WatchRequest,
)

logger = logging.getLogger(__name__)

NAMESPACE_MARKER = "*"

LOG_LEVELS = {
    "silent": LogLevel.SILENT,
    "warn": LogLevel.WARN,
    "info": LogLevel.INFO,
    "debug": LogLevel.DEBUG,
}

CHOKIDAR_DEPRECATION = "The watch chokidar option is deprecated, please use notify options instead of it."


def normalize(user_config: UserConfig, output_options: OutputOptions | None = None) -> CanonicalRequest:
    """Build the canonical request for a user configuration.

    Args:
        user_config: User configuration
        output_options: Output options (defaults to ``user_config.output``)

    Returns:
        CanonicalRequest

    Raises:
        ConfigurationError: On any unsupported option value
    """
    cwd = user_config.cwd if user_config.cwd is not None else os.getcwd()
    output = normalize_output(output_options or user_config.output, cwd)

    return CanonicalRequest(
        input=normalize_input(user_config.input),
        cwd=cwd,
        plugins=tuple(_normalize_plugin(plugin, index, output) for index, plugin in enumerate(user_config.plugins)),
        external=normalize_external(user_config.external),
        resolve=normalize_resolve(user_config.resolve),
        platform=user_config.platform,
        shim_missing_exports=user_config.shim_missing_exports,
        log_level=normalize_log_level(user_config.log_level),
        on_log=LogForwarder(user_config.on_log) if user_config.on_log else None,
        treeshake=user_config.treeshake,
        module_types=dict(user_config.module_types) if user_config.module_types else None,
        define=tuple(user_config.define.items()) if user_config.define else None,
        inject=normalize_inject(user_config.inject),
        experimental=ExperimentalRequest(
            strict_execution_order=getattr(user_config.experimental, "strict_execution_order", None),
            disable_live_bindings=getattr(user_config.experimental, "disable_live_bindings", None),
        ),
        profiler_names=user_config.profiler_names,
        jsx=normalize_jsx(user_config.jsx),
        watch=normalize_watch(user_config.watch, on_log=user_config.on_log),
        drop_labels=tuple(user_config.drop_labels) if user_config.drop_labels else None,
        output=output,
    )


def normalize_output(output_options: OutputOptions, cwd: str) -> NormalizedOutput:
    """Resolve the output directory against cwd."""
    out_dir = Path(output_options.dir)
    if not out_dir.is_absolute():
        out_dir = Path(cwd) / out_dir
    return NormalizedOutput(dir=os.path.normpath(str(out_dir)), entry_file_names=output_options.entry_file_names)


def normalize_input(value: InputOption) -> tuple[InputItem, ...]:
    if isinstance(value, str):
        value = [value]
    if isinstance(value, Mapping):
        return tuple(InputItem(name=name, import_path=str(path)) for name, path in value.items())
    if isinstance(value, (list, tuple)):
        return tuple(InputItem(import_path=str(path)) for path in value)
    raise ConfigurationError(f"Invalid input option: {value!r}")


def normalize_external(value: Any) -> ExternalPredicate | ExternalMatcher | None:
    if not value:
        return None
    if callable(value) and not isinstance(value, re.Pattern):
        return ExternalPredicate(value)
    patterns = value if isinstance(value, (list, tuple)) else [value]
    for pattern in patterns:
        if not isinstance(pattern, (str, re.Pattern)):
            raise ConfigurationError(f"Invalid external entry: {pattern!r}")
    return ExternalMatcher(tuple(patterns))


def normalize_resolve(resolve: ResolveOptions | None) -> ResolveRequest | None:
    if resolve is None:
        return None

    def _tuple(value):
        return tuple(value) if value is not None else None

    return ResolveRequest(
        alias=(
            tuple(AliasRule(find=name, replacements=(replacement,)) for name, replacement in resolve.alias.items())
            if resolve.alias
            else None
        ),
        extension_alias=(
            tuple(
                ExtensionAliasRule(target=name, replacements=tuple(value))
                for name, value in resolve.extension_alias.items()
            )
            if resolve.extension_alias
            else None
        ),
        main_fields=_tuple(resolve.main_fields),
        condition_names=_tuple(resolve.condition_names),
        modules=_tuple(resolve.modules),
        symlinks=resolve.symlinks,
        tsconfig_filename=resolve.tsconfig_filename,
        extra=dict(resolve.extra),
    )


def normalize_log_level(value: str) -> LogLevel:
    try:
        return LOG_LEVELS[value]
    except (KeyError, TypeError):
        raise ConfigurationError(f"Unexpected log level: {value}") from None


def normalize_inject(inject: Mapping[str, Any] | None) -> tuple[InjectNamed | InjectNamespace, ...] | None:
    if not inject:
        return None

    items = []
    for alias, item in inject.items():
        if isinstance(item, (list, tuple)):
            if len(item) != 2:
                raise ConfigurationError(f"Inject entry '{alias}' must be [source, name], got {item!r}")
            source, imported = item
            if imported == NAMESPACE_MARKER:
                # import * as alias from 'source'
                items.append(InjectNamespace(alias=alias, from_=source))
            else:
                # import { imported as alias } from 'source'
                items.append(InjectNamed(alias=alias, from_=source, imported=imported))
        elif isinstance(item, (str, os.PathLike)):
            # import alias from 'source'
            items.append(InjectNamed(alias=alias, from_=os.fspath(item), imported="default"))
        else:
            raise ConfigurationError(f"Invalid inject entry '{alias}': {item!r}")
    return tuple(items)


def normalize_jsx(jsx: JsxOptions | None) -> JsxRequest | None:
    if jsx is None:
        return None

    mode = jsx.mode or "classic"
    if mode == "classic":
        import_source = jsx.import_source
    elif mode == "automatic":
        import_source = jsx.jsx_import_source
    else:
        import_source = None

    return JsxRequest(
        runtime=mode,
        import_source=import_source,
        pragma=jsx.factory,
        pragma_frag=jsx.fragment,
        development=jsx.development,
        refresh=jsx.refresh,
    )


def normalize_patterns(value: Any) -> tuple[str | re.Pattern, ...] | None:
    """Normalize a string, regex or list of either into a tuple."""
    if value is None:
        return None
    patterns = value if isinstance(value, (list, tuple)) else [value]
    for pattern in patterns:
        if not isinstance(pattern, (str, re.Pattern)):
            raise ConfigurationError(f"Invalid watch pattern: {pattern!r}")
    return tuple(patterns)


def normalize_watch(watch: WatchOptions | None, on_log=None) -> WatchRequest | None:
    if watch is None:
        return None

    notify = None
    if watch.notify is not None:
        notify = NotifyRequest(
            poll_interval=watch.notify.poll_interval,
            compare_contents=watch.notify.compare_contents,
        )

    if watch.chokidar:
        logger.warning(CHOKIDAR_DEPRECATION)
        if on_log is not None:
            on_log("warn", {"code": "DEPRECATED_OPTION", "message": CHOKIDAR_DEPRECATION})

    return WatchRequest(
        skip_write=watch.skip_write,
        include=normalize_patterns(watch.include),
        exclude=normalize_patterns(watch.exclude),
        notify=notify,
    )


def _normalize_plugin(plugin: Any, index: int, output: NormalizedOutput):
    if plugin is None or isinstance(plugin, ParallelPlugin):
        return None
    if isinstance(plugin, BuiltinPlugin):
        return normalize_builtin_plugin(plugin)
    return adapt_plugin(plugin, index, output)
