"""Shared data models for bundlewatch."""

from dataclasses import dataclass, field
from enum import Enum


class ChangeKind(str, Enum):
    """Kind of a filesystem change."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class ChangeEvent:
    """A single raw notification from the filesystem backend."""

    path: str
    """Absolute path of the changed file."""

    kind: ChangeKind
    """What happened to it."""


@dataclass(frozen=True)
class WatcherChange:
    """Payload passed to `change` listeners and `watch_change` hooks."""

    event: ChangeKind


class SessionState(str, Enum):
    """Lifecycle state of a watch session."""

    STARTING = "starting"
    WATCHING = "watching"
    REBUILDING = "rebuilding"
    CLOSED = "closed"


class EventCode(str, Enum):
    """Codes of the per-build `event` notifications, in emission order."""

    START = "START"
    BUNDLE_START = "BUNDLE_START"
    BUNDLE_END = "BUNDLE_END"
    ERROR = "ERROR"
    END = "END"


@dataclass(frozen=True)
class BuildError:
    """Structured failure reported by the engine for one build attempt."""

    code: str
    """Stable machine-readable token, e.g. PARSE_ERROR."""

    message: str
    """Human readable description."""

    def describe(self) -> str:
        """Message with the code token guaranteed to be present.

        Callers match on the code embedded in the message, so it is prefixed
        when the engine did not include it.
        """
        if self.code in self.message:
            return self.message
        return f"[{self.code}] {self.message}"


@dataclass(frozen=True)
class BundleEvent:
    """One `event` notification of a build cycle."""

    code: EventCode

    output: list[str] | None = None
    """Output directories (BUNDLE_END only)."""

    duration: int | None = None
    """Build duration in milliseconds (BUNDLE_END only)."""

    error: BuildError | None = None
    """The failure (ERROR only)."""

    def as_dict(self) -> dict:
        """Wire representation of the event payload."""
        payload: dict = {"code": self.code.value}
        if self.code == EventCode.BUNDLE_END:
            payload["output"] = list(self.output or [])
            payload["duration"] = self.duration
        elif self.code == EventCode.ERROR and self.error is not None:
            payload["error"] = {"code": self.error.code, "message": self.error.describe()}
        return payload


@dataclass(frozen=True)
class OutputAsset:
    """A chunk or asset produced by the engine."""

    file_name: str
    """Path relative to the output directory."""

    content: str | bytes


@dataclass
class BuildOutput:
    """Result of one engine invocation."""

    assets: list[OutputAsset] = field(default_factory=list)
    """Emitted chunks and assets."""

    watch_files: list[str] = field(default_factory=list)
    """Files of the resolved module graph; they seed the watch set."""

    errors: list[BuildError] = field(default_factory=list)
    """Errors reported by the engine. Empty on success."""

    @property
    def ok(self) -> bool:
        """Whether the build succeeded."""
        return not self.errors
