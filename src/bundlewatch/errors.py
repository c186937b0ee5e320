"""Exception taxonomy for bundlewatch."""

from bundlewatch.models import BuildError


class BundleWatchError(Exception):
    """Base class for all bundlewatch errors."""


class ConfigurationError(BundleWatchError, ValueError):
    """Unsupported or malformed option value. Raised before any session starts."""


class BuildFailure(BundleWatchError):
    """Raised by a build engine when a build attempt fails.

    Never escapes a watch session: the session reports it as an ERROR event.
    """

    def __init__(self, errors: list[BuildError] | BuildError):
        if isinstance(errors, BuildError):
            errors = [errors]
        if not errors:
            raise ValueError("BuildFailure requires at least one BuildError")
        self.errors = list(errors)
        super().__init__(self.errors[0].describe())


class WatchBackendError(BundleWatchError, RuntimeError):
    """The filesystem notification backend could not be started or restarted."""
