"""Change source protocol and include/exclude filtering."""

import functools
import os
import re
from collections.abc import Callable, Iterable
from typing import Protocol, Union

from bundlewatch.models import ChangeEvent

Pattern = Union[str, re.Pattern]

ChangeCallback = Callable[[ChangeEvent], None]
"""Called from the backend thread for every change to a watched file."""


class ChangeSource(Protocol):
    """Protocol for filesystem notification backends."""

    def add_watch(self, path: str) -> bool:
        """Watch a file. Returns False if it was already watched."""
        ...

    def start(self) -> None:
        """Start delivering notifications."""
        ...

    def check_health(self) -> None:
        """Recover from a backend failure, or raise WatchBackendError."""
        ...

    def stop(self) -> None:
        """Stop delivering notifications."""
        ...


def _to_posix(path: str) -> str:
    return path.replace(os.sep, "/") if os.sep != "/" else path


@functools.lru_cache(maxsize=256)
def _compile_glob(pattern: str) -> re.Pattern:
    """Translate a glob: ``*`` and ``?`` stay within one segment, ``**`` crosses them."""
    parts = []
    i, n = 0, len(pattern)
    while i < n:
        c = pattern[i]
        if pattern.startswith("**/", i):
            # Zero or more leading directories
            parts.append("(?:.*/)?")
            i += 3
            continue
        if pattern.startswith("**", i):
            parts.append(".*")
            i += 2
            continue
        if c == "*":
            parts.append("[^/]*")
        elif c == "?":
            parts.append("[^/]")
        elif c == "[":
            end = pattern.find("]", i + 2)
            if end == -1:
                parts.append(re.escape(c))
            else:
                body = pattern[i + 1 : end].replace("\\", "\\\\")
                if body.startswith("!"):
                    body = "^" + body[1:]
                parts.append(f"[{body}]")
                i = end + 1
                continue
        else:
            parts.append(re.escape(c))
        i += 1
    return re.compile("".join(parts))


def _glob_matches(pattern: str, candidate: str) -> bool:
    # Patterns without a separator match the file name at any depth
    if "/" not in pattern:
        candidate = candidate.rsplit("/", 1)[-1]
    return _compile_glob(pattern).fullmatch(candidate) is not None


class PathFilter:
    """Include/exclude filter for changed paths.

    String patterns are globs, checked against the absolute path and the path
    relative to cwd. A glob without a separator matches the file name alone.
    Regex patterns are searched in both. Exclude wins over include; a
    non-empty include list must match.
    """

    def __init__(
        self,
        include: Iterable[Pattern] | None = None,
        exclude: Iterable[Pattern] | None = None,
        cwd: str | None = None,
    ):
        self.include = tuple(include or ())
        self.exclude = tuple(exclude or ())
        self.cwd = cwd

    def _candidates(self, path: str) -> list[str]:
        candidates = [_to_posix(path)]
        if self.cwd:
            try:
                relative = os.path.relpath(path, self.cwd)
            except ValueError:
                # Different drive on Windows
                return candidates
            if not relative.startswith(".."):
                candidates.append(_to_posix(relative))
        return candidates

    def _matches_any(self, patterns: tuple[Pattern, ...], candidates: list[str]) -> bool:
        for pattern in patterns:
            for candidate in candidates:
                if isinstance(pattern, re.Pattern):
                    if pattern.search(candidate):
                        return True
                elif _glob_matches(pattern, candidate):
                    return True
        return False

    def matches(self, path: str) -> bool:
        """Check whether a change to ``path`` should be acted upon."""
        candidates = self._candidates(path)
        if self.exclude and self._matches_any(self.exclude, candidates):
            return False
        if self.include:
            return self._matches_any(self.include, candidates)
        return True
