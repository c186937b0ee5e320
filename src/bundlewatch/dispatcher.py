"""Fan-out of session events to listeners and of lifecycle points to plugin hooks."""

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any

from bundlewatch.errors import BuildFailure
from bundlewatch.models import BuildError, WatcherChange
from bundlewatch.plugins import PluginContext
from bundlewatch.request import BuiltinPluginDescriptor, PluginDescriptor

logger = logging.getLogger(__name__)

EVENT_NAMES = ("event", "change", "restart", "close")


class EventDispatcher:
    """Publish-subscribe registry keyed by event name.

    Handlers run synchronously in registration order. Coroutine handlers are
    scheduled on the running loop. Once sealed, nothing is emitted anymore.
    """

    def __init__(self):
        self._handlers: dict[str, list[Callable[..., Any]]] = {name: [] for name in EVENT_NAMES}
        self._tasks: set[asyncio.Task] = set()
        self._sealed = False

    @property
    def sealed(self) -> bool:
        return self._sealed

    def on(self, event_name: str, handler: Callable[..., Any]) -> None:
        """Register a handler.

        Args:
            event_name: One of event, change, restart, close
            handler: Callable, may be async

        Raises:
            ValueError: If the event name is unknown
        """
        if event_name not in self._handlers:
            raise ValueError(f"Unknown event '{event_name}', expected one of {', '.join(EVENT_NAMES)}")
        self._handlers[event_name].append(handler)

    def off(self, event_name: str, handler: Callable[..., Any]) -> None:
        """Remove a previously registered handler (no-op if absent)."""
        handlers = self._handlers.get(event_name, [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event_name: str, *args: Any) -> None:
        if self._sealed:
            logger.debug(f"Dropped '{event_name}' emitted after close")
            return

        for handler in list(self._handlers[event_name]):
            try:
                result = handler(*args)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._tasks.add(task)
                    task.add_done_callback(self._on_task_done)
            except Exception as e:
                logger.exception(f"Error in '{event_name}' handler: {e}")

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Error in async handler: {task.exception()}")

    def seal(self) -> None:
        """Stop all further emission."""
        self._sealed = True


async def _call_hook(hook: Callable[..., Any], *args: Any) -> Any:
    result = hook(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class HookDispatcher:
    """Invokes plugin hooks at the session's lifecycle points, in plugin order."""

    def __init__(self, plugins: list[PluginDescriptor | BuiltinPluginDescriptor]):
        # Built-in plugins are native; their hooks run inside the engine
        self.plugins = [p for p in plugins if isinstance(p, PluginDescriptor)]

    def _hooks(self, hook_name: str) -> list[tuple[str, Callable[..., Any]]]:
        return [(p.name, p.hooks[hook_name]) for p in self.plugins if hook_name in p.hooks]

    async def build_start(self, context: PluginContext) -> None:
        """Run ``build_start`` hooks; a failing hook fails the build.

        Raises:
            BuildFailure: With code PLUGIN_ERROR
        """
        for name, hook in self._hooks("build_start"):
            try:
                await _call_hook(hook, context)
            except BuildFailure:
                raise
            except Exception as e:
                raise BuildFailure(BuildError("PLUGIN_ERROR", f"[plugin {name}] build_start failed: {e}")) from e

    async def watch_change(self, path: str, change: WatcherChange) -> None:
        for name, hook in self._hooks("watch_change"):
            try:
                await _call_hook(hook, path, change)
            except Exception as e:
                logger.exception(f"Error in watch_change hook of plugin '{name}': {e}")

    async def close_watcher(self) -> None:
        for name, hook in self._hooks("close_watcher"):
            try:
                await _call_hook(hook)
            except Exception as e:
                logger.exception(f"Error in close_watcher hook of plugin '{name}': {e}")
