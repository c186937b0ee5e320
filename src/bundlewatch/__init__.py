"""bundlewatch: watch-mode orchestration for a bundler build engine."""

__version__ = "0.1.0"

# Errors
from bundlewatch.errors import BuildFailure, BundleWatchError, ConfigurationError, WatchBackendError

# Models
from bundlewatch.models import (
    BuildError,
    BuildOutput,
    BundleEvent,
    ChangeEvent,
    ChangeKind,
    EventCode,
    OutputAsset,
    SessionState,
    WatcherChange,
)

# Configuration
from bundlewatch.config import load_watch_config
from bundlewatch.normalizer import normalize, normalize_output
from bundlewatch.options import (
    JsxOptions,
    NotifyOptions,
    OutputOptions,
    ResolveOptions,
    UserConfig,
    WatchOptions,
)
from bundlewatch.plugins import BuiltinPlugin, ParallelPlugin, PluginContext
from bundlewatch.request import CanonicalRequest, LogLevel

# Engine and session
from bundlewatch.engine import BuildEngine, PassthroughEngine
from bundlewatch.session import WatchSession, watch

__all__ = [
    "__version__",
    # Errors
    "BundleWatchError",
    "ConfigurationError",
    "BuildFailure",
    "WatchBackendError",
    # Models
    "BuildError",
    "BuildOutput",
    "BundleEvent",
    "ChangeEvent",
    "ChangeKind",
    "EventCode",
    "OutputAsset",
    "SessionState",
    "WatcherChange",
    # Configuration
    "UserConfig",
    "ResolveOptions",
    "JsxOptions",
    "WatchOptions",
    "NotifyOptions",
    "OutputOptions",
    "BuiltinPlugin",
    "ParallelPlugin",
    "PluginContext",
    "CanonicalRequest",
    "LogLevel",
    "normalize",
    "normalize_output",
    "load_watch_config",
    # Engine and session
    "BuildEngine",
    "PassthroughEngine",
    "WatchSession",
    "watch",
]
