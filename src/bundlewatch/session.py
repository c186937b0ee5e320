"""
Watch session orchestration.

A session owns one canonical request and rebuilds it whenever a watched file
changes:

- the first build runs as soon as the session starts
- filesystem notifications are filtered and debounced into rebuild triggers
- builds never overlap; changes arriving mid-build feed the next build
- build failures are reported as ERROR events and never end the session
- ``close()`` lets an in-flight build finish, then emits ``close`` last

Usage:
    session = await watch(UserConfig(input=["src/main.js"]))
    session.on("event", lambda event: print(event.code))
    ...
    await session.close()
"""

import asyncio
import logging
import os
import threading
import time
from collections.abc import Callable
from typing import Any

from bundlewatch.dispatcher import EventDispatcher, HookDispatcher
from bundlewatch.engine import BuildEngine, OutputWriter, PassthroughEngine
from bundlewatch.errors import BuildFailure, WatchBackendError
from bundlewatch.file_watcher import BACKEND_CHECK_INTERVAL, DEFAULT_DEBOUNCE_MS, ChangeDebouncer, FileWatcherManager
from bundlewatch.models import BuildError, BundleEvent, ChangeKind, EventCode, SessionState, WatcherChange
from bundlewatch.normalizer import normalize
from bundlewatch.notifier import NoOpNotifier, WatchNotifier
from bundlewatch.options import UserConfig
from bundlewatch.plugins import PluginContext
from bundlewatch.request import CanonicalRequest, NormalizedOutput, NotifyRequest, WatchRequest
from bundlewatch.watchers import ChangeCallback, ChangeSource, PathFilter

logger = logging.getLogger(__name__)

BackendFactory = Callable[[ChangeCallback, NotifyRequest | None], ChangeSource]


class WatchSession:
    """Long-lived rebuild loop for one canonical request."""

    def __init__(
        self,
        request: CanonicalRequest,
        output: NormalizedOutput,
        engine: BuildEngine,
        notifier: WatchNotifier | None = None,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        backend_factory: BackendFactory | None = None,
        writer: OutputWriter | None = None,
    ):
        """Initialize session. Call ``start()`` from a running event loop.

        Args:
            request: Canonical build request, reused for every rebuild
            output: Normalized output options
            engine: Build engine
            notifier: User-facing message sink (defaults to NoOpNotifier - silent)
            debounce_ms: Debounce window in milliseconds
            backend_factory: Creates the change source (defaults to the watchdog backend)
            writer: Output writer
        """
        self.request = request
        self.output = output
        self.engine = engine
        self.notifier = notifier or NoOpNotifier()
        self.state = SessionState.STARTING
        self.build_count = 0
        self.last_build_ok: bool | None = None
        self.backend_check_interval = BACKEND_CHECK_INTERVAL

        watch_request = request.watch or WatchRequest()
        self.skip_write = watch_request.skip_write

        self._events = EventDispatcher()
        self._hooks = HookDispatcher(request.active_plugins)
        self._writer = writer or OutputWriter()
        self._debouncer = ChangeDebouncer(
            debounce_ms,
            self._on_debounced,
            PathFilter(watch_request.include, watch_request.exclude, request.cwd),
        )
        factory = backend_factory or FileWatcherManager
        self._backend = factory(self._debouncer.record, watch_request.notify)

        self._loop: asyncio.AbstractEventLoop | None = None
        self._task: asyncio.Task | None = None
        self._close_task: asyncio.Future | None = None
        self._closing = False
        self._pending: dict[str, ChangeKind] = {}
        self._handoffs = 0
        self._handoff_lock = threading.Lock()
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()

    # ========================================================================
    # Listeners
    # ========================================================================

    def on(self, event_name: str, handler: Callable[..., Any]) -> None:
        """Register a listener for ``event``, ``change``, ``restart`` or ``close``.

        Handler signatures:
            event: handler(BundleEvent)
            change: handler(path, WatcherChange)
            restart: handler()
            close: handler()
        """
        self._events.on(event_name, handler)

    def off(self, event_name: str, handler: Callable[..., Any]) -> None:
        self._events.off(event_name, handler)

    @property
    def watch_files(self) -> set[str]:
        return set(getattr(self._backend, "watched_files", set()))

    @property
    def closed(self) -> bool:
        return self.state == SessionState.CLOSED

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def start(self) -> None:
        """Start the change source and schedule the first build.

        Raises:
            WatchBackendError: If the change source cannot be started
            RuntimeError: If no event loop is running
        """
        if self._task is not None:
            logger.warning("Watch session already started")
            return

        self._loop = asyncio.get_running_loop()
        self._backend.start()

        # Entry modules are watched even if the first build fails
        for item in self.request.input:
            path = item.import_path
            if not os.path.isabs(path):
                path = os.path.join(self.request.cwd, path)
            self._add_watch_file(os.path.normpath(path))

        self._task = self._loop.create_task(self._run())
        logger.debug("Watch session started")

    async def close(self) -> None:
        """Close the session. Idempotent and safe while a build is running."""
        if self._close_task is None:
            self._close_task = asyncio.ensure_future(self._close())
        await self._close_task

    async def _close(self) -> None:
        self._closing = True
        self._debouncer.cancel()
        try:
            await asyncio.to_thread(self._backend.stop)
        except Exception as e:
            logger.error(f"Error stopping file watcher: {e}")

        self._wakeup.set()
        if self._task is not None:
            try:
                await self._task
            except Exception as e:
                logger.exception(f"Watch loop ended with an error: {e}")

        self.state = SessionState.CLOSED
        self._events.emit("close")
        self._events.seal()
        await self._hooks.close_watcher()
        self._idle.set()
        self.notifier.info("Watcher closed")
        logger.debug("Watch session closed")

    async def idle(self) -> None:
        """Wait until no build is running and no change is waiting to be built."""
        while not self.closed:
            await self._idle.wait()
            with self._handoff_lock:
                busy = bool(self._handoffs or self._debouncer.pending)
            if not busy and self._idle.is_set():
                return
            await asyncio.sleep(self._debouncer.delay_ms / 1000.0)

    # ========================================================================
    # Change intake
    # ========================================================================

    def _on_debounced(self, changes: dict[str, ChangeKind]) -> None:
        """Receive a rebuild trigger from the debouncer thread."""
        loop = self._loop
        if loop is None or self._closing:
            return
        with self._handoff_lock:
            self._handoffs += 1
        try:
            loop.call_soon_threadsafe(self._accept_changes, changes)
        except RuntimeError:
            with self._handoff_lock:
                self._handoffs -= 1
            logger.debug("Event loop closed, dropping changes")

    def _accept_changes(self, changes: dict[str, ChangeKind]) -> None:
        with self._handoff_lock:
            self._handoffs -= 1
        if self._closing:
            logger.debug(f"Ignoring {len(changes)} change(s) after close")
            return
        self._pending.update(changes)
        self._idle.clear()
        self._wakeup.set()

    def _add_watch_file(self, path: str) -> None:
        if self._closing:
            return
        if self._backend.add_watch(path):
            logger.debug(f"Added watch file {path}")

    # ========================================================================
    # Build loop
    # ========================================================================

    async def _run(self) -> None:
        await self._build({})
        while not self._closing:
            healthy = await self._check_backend()
            if self._closing:
                break
            if not healthy:
                # Unrecoverable backend failure ends the session
                if self._close_task is None:
                    self._close_task = asyncio.ensure_future(self._close())
                return
            if not self._pending:
                self._idle.set()
            try:
                await asyncio.wait_for(self._wakeup.wait(), self.backend_check_interval)
            except asyncio.TimeoutError:
                continue
            self._wakeup.clear()
            if self._closing:
                break
            changes, self._pending = self._pending, {}
            if changes:
                self._idle.clear()
                await self._build(changes)

    async def _check_backend(self) -> bool:
        try:
            await asyncio.to_thread(self._backend.check_health)
        except WatchBackendError as e:
            logger.error(f"File watcher failed, closing session: {e}")
            self.notifier.error(f"File watcher failed: {e}")
            return False
        return True

    async def _build(self, changes: dict[str, ChangeKind]) -> None:
        if changes:
            for path, kind in changes.items():
                if self._closing:
                    return
                change = WatcherChange(kind)
                self._events.emit("change", path, change)
                await self._hooks.watch_change(path, change)
            if self._closing:
                return
            self._events.emit("restart")

        self.state = SessionState.REBUILDING
        self.build_count += 1
        build_id = self.build_count
        start_time = time.perf_counter()
        logger.debug(f"Build #{build_id} started ({len(changes)} change(s))")

        self._events.emit("event", BundleEvent(EventCode.START))
        self._events.emit("event", BundleEvent(EventCode.BUNDLE_START))

        error = await self._run_engine(build_id)
        duration = int((time.perf_counter() - start_time) * 1000)

        if error is None:
            self.last_build_ok = True
            self._events.emit(
                "event",
                BundleEvent(EventCode.BUNDLE_END, output=[self.output.dir], duration=duration),
            )
            self.notifier.info(f"Build #{build_id} finished in {duration}ms")
        else:
            self.last_build_ok = False
            self._events.emit("event", BundleEvent(EventCode.ERROR, error=error))
            self.notifier.error(f"Build #{build_id} failed: {error.describe()}")

        if not self._closing:
            self.state = SessionState.WATCHING
        self._events.emit("event", BundleEvent(EventCode.END))

    async def _run_engine(self, build_id: int) -> BuildError | None:
        """Run hooks, engine and writer for one build; return the first error."""
        context = PluginContext(build_id, self._add_watch_file)
        try:
            await self._hooks.build_start(context)
            result = await self.engine.build(self.request, self.output)
            for path in result.watch_files:
                self._add_watch_file(path)
            if not result.ok:
                return result.errors[0]
            if not self.skip_write:
                try:
                    await self._writer.write(self.output.dir, result.assets)
                except OSError as e:
                    logger.error(f"Build #{build_id} could not write output: {e}")
                    return BuildError("WRITE_ERROR", str(e))
            return None
        except BuildFailure as e:
            return e.errors[0]
        except Exception as e:
            logger.exception(f"Build #{build_id} crashed: {e}")
            return BuildError("UNKNOWN_ERROR", f"{type(e).__name__}: {e}")
        finally:
            context.invalidate()


async def watch(
    config: UserConfig,
    engine: BuildEngine | None = None,
    *,
    notifier: WatchNotifier | None = None,
    debounce_ms: int = DEFAULT_DEBOUNCE_MS,
    backend_factory: BackendFactory | None = None,
) -> WatchSession:
    """Start a watch session.

    Returns before the first build runs, so listeners registered right after
    ``await watch(...)`` observe it.

    Args:
        config: User configuration
        engine: Build engine (defaults to PassthroughEngine)
        notifier: User-facing message sink
        debounce_ms: Debounce window in milliseconds
        backend_factory: Change source factory (defaults to the watchdog backend)

    Returns:
        Started WatchSession

    Raises:
        ConfigurationError: If the configuration is invalid
        WatchBackendError: If file watching cannot be started
    """
    request = normalize(config)
    session = WatchSession(
        request,
        request.output,
        engine or PassthroughEngine(),
        notifier=notifier,
        debounce_ms=debounce_ms,
        backend_factory=backend_factory,
    )
    session.start()
    return session
