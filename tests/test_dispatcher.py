"""Tests for the event registry and plugin hook dispatch."""

import asyncio

import pytest

from bundlewatch.dispatcher import EventDispatcher, HookDispatcher
from bundlewatch.errors import BuildFailure
from bundlewatch.models import ChangeKind, WatcherChange
from bundlewatch.plugins import PluginContext, adapt_plugin
from bundlewatch.request import BuiltinPluginDescriptor


class TestEventDispatcher:
    def test_handlers_run_in_registration_order(self):
        dispatcher = EventDispatcher()
        calls = []
        dispatcher.on("restart", lambda: calls.append("first"))
        dispatcher.on("restart", lambda: calls.append("second"))

        dispatcher.emit("restart")

        assert calls == ["first", "second"]

    def test_handlers_receive_arguments(self):
        dispatcher = EventDispatcher()
        received = []
        dispatcher.on("change", lambda path, change: received.append((path, change.event)))

        dispatcher.emit("change", "/p/a.js", WatcherChange(ChangeKind.UPDATE))

        assert received == [("/p/a.js", ChangeKind.UPDATE)]

    def test_unknown_event_name(self):
        dispatcher = EventDispatcher()
        with pytest.raises(ValueError, match="Unknown event"):
            dispatcher.on("bundle", lambda: None)

    def test_failing_handler_does_not_stop_others(self):
        dispatcher = EventDispatcher()
        calls = []

        def broken():
            raise RuntimeError("boom")

        dispatcher.on("close", broken)
        dispatcher.on("close", lambda: calls.append("ok"))

        dispatcher.emit("close")

        assert calls == ["ok"]

    def test_sealed_dispatcher_drops_events(self):
        dispatcher = EventDispatcher()
        calls = []
        dispatcher.on("event", calls.append)

        dispatcher.seal()
        dispatcher.emit("event", "START")

        assert calls == []
        assert dispatcher.sealed

    def test_off_removes_handler(self):
        dispatcher = EventDispatcher()
        calls = []
        dispatcher.on("restart", calls.append)
        dispatcher.off("restart", calls.append)
        dispatcher.off("restart", calls.append)

        dispatcher.emit("restart")

        assert calls == []

    @pytest.mark.asyncio
    async def test_async_handlers_are_scheduled(self):
        dispatcher = EventDispatcher()
        calls = []

        async def handler():
            calls.append("async")

        dispatcher.on("restart", handler)
        dispatcher.emit("restart")
        await asyncio.sleep(0.01)

        assert calls == ["async"]


class TestHookDispatcher:
    @pytest.mark.asyncio
    async def test_build_start_gets_context(self):
        added = []

        class AddsWatchFile:
            name = "adds"

            def build_start(self, ctx):
                ctx.add_watch_file("/p/extra.js")

        hooks = HookDispatcher([adapt_plugin(AddsWatchFile())])
        await hooks.build_start(PluginContext(1, added.append))

        assert added == ["/p/extra.js"]

    @pytest.mark.asyncio
    async def test_async_hooks_are_awaited_in_order(self):
        calls = []

        class First:
            name = "first"

            async def watch_change(self, path, change):
                await asyncio.sleep(0.01)
                calls.append(("first", path, change.event))

        class Second:
            name = "second"

            def watch_change(self, path, change):
                calls.append(("second", path, change.event))

        hooks = HookDispatcher([adapt_plugin(First()), adapt_plugin(Second())])
        await hooks.watch_change("/p/a.js", WatcherChange(ChangeKind.DELETE))

        assert calls == [("first", "/p/a.js", ChangeKind.DELETE), ("second", "/p/a.js", ChangeKind.DELETE)]

    @pytest.mark.asyncio
    async def test_build_start_error_becomes_plugin_error(self):
        class Broken:
            name = "broken"

            def build_start(self, ctx):
                raise RuntimeError("cannot start")

        hooks = HookDispatcher([adapt_plugin(Broken())])
        with pytest.raises(BuildFailure) as exc_info:
            await hooks.build_start(PluginContext(1, lambda path: None))

        assert exc_info.value.errors[0].code == "PLUGIN_ERROR"
        assert "cannot start" in exc_info.value.errors[0].message

    @pytest.mark.asyncio
    async def test_close_watcher_errors_are_logged(self):
        calls = []

        class Broken:
            name = "broken"

            def close_watcher(self):
                raise RuntimeError("boom")

        class Fine:
            name = "fine"

            def close_watcher(self):
                calls.append("closed")

        hooks = HookDispatcher([adapt_plugin(Broken()), adapt_plugin(Fine())])
        await hooks.close_watcher()

        assert calls == ["closed"]

    def test_builtin_plugins_are_skipped(self):
        hooks = HookDispatcher([BuiltinPluginDescriptor("builtin:wasm-helper")])
        assert hooks.plugins == []


class TestPluginContext:
    def test_invalidated_context_ignores_add_watch_file(self):
        added = []
        ctx = PluginContext(3, added.append)
        ctx.invalidate()

        ctx.add_watch_file("/p/late.js")

        assert added == []
