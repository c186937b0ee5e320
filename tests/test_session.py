"""Watch session lifecycle tests, driven through an in-memory change source."""

import asyncio

import pytest
from conftest import wait_for

from bundlewatch.engine import PassthroughEngine
from bundlewatch.errors import BuildFailure, ConfigurationError, WatchBackendError
from bundlewatch.models import BuildError, ChangeKind, EventCode, SessionState
from bundlewatch.notifier import RecordingNotifier
from bundlewatch.options import OutputOptions, UserConfig, WatchOptions
from bundlewatch.session import watch

CYCLE = [EventCode.START, EventCode.BUNDLE_START, EventCode.BUNDLE_END, EventCode.END]


class Recorder:
    """Records every session notification in one ordered list."""

    def __init__(self, session):
        self.items = []
        session.on("event", lambda event: self.items.append(event.code))
        session.on("change", lambda path, change: self.items.append(("change", path, change.event)))
        session.on("restart", lambda: self.items.append("restart"))
        session.on("close", lambda: self.items.append("close"))

    @property
    def events(self):
        return [item for item in self.items if isinstance(item, EventCode)]

    def clear(self):
        self.items.clear()


class GatedEngine(PassthroughEngine):
    """Passthrough engine that can be held mid-build and tracks concurrency."""

    def __init__(self, check=None):
        super().__init__(check=check)
        self.gate: asyncio.Event | None = None
        self.started = asyncio.Event()
        self.active = 0
        self.max_active = 0

    async def build(self, request, output):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            self.started.set()
            if self.gate is not None:
                await self.gate.wait()
            return await super().build(request, output)
        finally:
            self.active -= 1


def reject_parse_errors(code, module_id):
    if "conso le" in code:
        raise BuildFailure(BuildError("PARSE_ERROR", f"Unexpected token in {module_id}"))


async def start(project, backend_factory, engine=None, **options):
    config = UserConfig(input=["src/main.js"], cwd=str(project), **options)
    session = await watch(config, engine, backend_factory=backend_factory, debounce_ms=20)
    return session, backend_factory.created[-1]


@pytest.mark.asyncio
async def test_first_build_emits_cycle_and_writes_output(project, backend_factory):
    session, backend = await start(project, backend_factory)
    recorder = Recorder(session)

    await asyncio.wait_for(session.idle(), 5)

    assert recorder.items == CYCLE
    assert backend.started
    assert session.state == SessionState.WATCHING
    assert session.build_count == 1
    assert session.last_build_ok is True
    assert "console.log(1)" in (project / "dist" / "main.js").read_text()
    await session.close()


@pytest.mark.asyncio
async def test_bundle_end_payload(project, backend_factory):
    session, _ = await start(project, backend_factory)
    payloads = []
    session.on("event", lambda event: payloads.append(event.as_dict()))

    await asyncio.wait_for(session.idle(), 5)

    bundle_end = payloads[2]
    assert bundle_end["code"] == "BUNDLE_END"
    assert bundle_end["output"] == [str(project / "dist")]
    assert isinstance(bundle_end["duration"], int)
    assert payloads[0] == {"code": "START"}
    await session.close()


@pytest.mark.asyncio
async def test_edit_emits_change_restart_and_rebuilds(project, backend_factory):
    main = project / "src" / "main.js"
    session, backend = await start(project, backend_factory)
    recorder = Recorder(session)
    await asyncio.wait_for(session.idle(), 5)
    recorder.clear()

    main.write_text("console.log(2)\n")
    backend.emit(main)
    await wait_for(lambda: session.build_count == 2)
    await asyncio.wait_for(session.idle(), 5)

    assert recorder.items == [("change", str(main), ChangeKind.UPDATE), "restart", *CYCLE]
    assert "console.log(2)" in (project / "dist" / "main.js").read_text()
    await session.close()


@pytest.mark.asyncio
async def test_burst_of_notifications_triggers_one_rebuild(project, backend_factory):
    main = project / "src" / "main.js"
    session, backend = await start(project, backend_factory)
    recorder = Recorder(session)
    await asyncio.wait_for(session.idle(), 5)
    recorder.clear()

    for kind in (ChangeKind.UPDATE, ChangeKind.UPDATE, ChangeKind.DELETE, ChangeKind.CREATE):
        backend.emit(main, kind)
    await wait_for(lambda: session.build_count == 2)
    await asyncio.wait_for(session.idle(), 5)
    await asyncio.sleep(0.1)

    changes = [item for item in recorder.items if isinstance(item, tuple)]
    assert changes == [("change", str(main), ChangeKind.CREATE)]
    assert recorder.items.count("restart") == 1
    assert session.build_count == 2
    await session.close()


@pytest.mark.asyncio
async def test_change_during_build_feeds_next_build(project, backend_factory):
    main = project / "src" / "main.js"
    other = project / "src" / "other.js"
    other.write_text("export const x = 1\n")
    engine = GatedEngine()
    config = UserConfig(input=["src/main.js", "src/other.js"], cwd=str(project))
    session = await watch(config, engine, backend_factory=backend_factory, debounce_ms=20)
    backend = backend_factory.created[-1]
    recorder = Recorder(session)
    await asyncio.wait_for(session.idle(), 5)
    recorder.clear()

    engine.gate = asyncio.Event()
    engine.started.clear()
    backend.emit(main)
    await wait_for(engine.started.is_set)
    assert session.state == SessionState.REBUILDING

    backend.emit(other)
    await asyncio.sleep(0.1)
    assert session.build_count == 2

    engine.gate.set()
    await wait_for(lambda: session.build_count == 3)
    await asyncio.wait_for(session.idle(), 5)

    assert engine.max_active == 1
    assert recorder.items == [
        ("change", str(main), ChangeKind.UPDATE),
        "restart",
        *CYCLE,
        ("change", str(other), ChangeKind.UPDATE),
        "restart",
        *CYCLE,
    ]
    await session.close()


@pytest.mark.asyncio
async def test_build_error_is_reported_and_session_recovers(project, backend_factory):
    main = project / "src" / "main.js"
    main.write_text("conso le.log(1)")
    session, backend = await start(project, backend_factory, engine=PassthroughEngine(check=reject_parse_errors))
    errors = []
    session.on("event", lambda event: event.code == EventCode.ERROR and errors.append(event.as_dict()["error"]))
    recorder = Recorder(session)

    await asyncio.wait_for(session.idle(), 5)
    assert recorder.events == [EventCode.START, EventCode.BUNDLE_START, EventCode.ERROR, EventCode.END]
    assert len(errors) == 1
    assert errors[0]["code"] == "PARSE_ERROR"
    assert "PARSE_ERROR" in errors[0]["message"]
    assert session.state == SessionState.WATCHING
    assert session.last_build_ok is False

    main.write_text("console.log(2)")
    backend.emit(main)
    await wait_for(lambda: session.build_count == 2)
    await asyncio.wait_for(session.idle(), 5)

    assert session.last_build_ok is True
    assert recorder.events[-2] == EventCode.BUNDLE_END
    assert "console.log(2)" in (project / "dist" / "main.js").read_text()

    main.write_text("conso le.log(1)")
    backend.emit(main)
    await wait_for(lambda: session.build_count == 3)
    await asyncio.wait_for(session.idle(), 5)
    assert len(errors) == 2

    main.write_text("console.log(3)")
    backend.emit(main)
    await wait_for(lambda: session.build_count == 4)
    await asyncio.wait_for(session.idle(), 5)
    assert "console.log(3)" in (project / "dist" / "main.js").read_text()
    await session.close()


@pytest.mark.asyncio
async def test_engine_crash_is_reported_as_error(project, backend_factory):
    class CrashingEngine:
        async def build(self, request, output):
            raise KeyError("chunk")

    session, _ = await start(project, backend_factory, engine=CrashingEngine())
    errors = []
    session.on("event", lambda event: event.error and errors.append(event.error))

    await asyncio.wait_for(session.idle(), 5)

    assert errors[0].code == "UNKNOWN_ERROR"
    assert session.state == SessionState.WATCHING
    await session.close()


@pytest.mark.asyncio
async def test_skip_write_builds_without_output(project, backend_factory):
    session, _ = await start(
        project,
        backend_factory,
        watch=WatchOptions(skip_write=True),
        output=OutputOptions(dir="skip-write-dist"),
    )
    recorder = Recorder(session)

    await asyncio.wait_for(session.idle(), 5)

    assert recorder.events == CYCLE
    assert not (project / "skip-write-dist").exists()
    await session.close()


@pytest.mark.asyncio
async def test_excluded_file_does_not_rebuild(project, backend_factory):
    main = project / "src" / "main.js"
    session, backend = await start(project, backend_factory, watch=WatchOptions(exclude="main.js"))
    recorder = Recorder(session)
    await asyncio.wait_for(session.idle(), 5)
    recorder.clear()

    main.write_text("console.log(2)\n")
    backend.emit(main)
    await asyncio.sleep(0.15)

    assert recorder.items == []
    assert session.build_count == 1
    assert "console.log(1)" in (project / "dist" / "main.js").read_text()
    await session.close()


@pytest.mark.asyncio
async def test_close_is_idempotent_and_final(project, backend_factory):
    main = project / "src" / "main.js"
    closed = []

    class ClosePlugin:
        name = "close-plugin"

        def close_watcher(self):
            closed.append(True)

    session, backend = await start(project, backend_factory, plugins=[ClosePlugin()])
    recorder = Recorder(session)
    await asyncio.wait_for(session.idle(), 5)

    await session.close()
    await session.close()

    assert recorder.items == [*CYCLE, "close"]
    assert closed == [True]
    assert backend.stopped
    assert session.state == SessionState.CLOSED

    backend.emit(main)
    await asyncio.sleep(0.1)
    assert recorder.items[-1] == "close"
    assert session.build_count == 1


@pytest.mark.asyncio
async def test_close_during_build_waits_and_emits_close_last(project, backend_factory):
    main = project / "src" / "main.js"
    engine = GatedEngine()
    engine.gate = asyncio.Event()
    session, backend = await start(project, backend_factory, engine=engine)
    recorder = Recorder(session)
    await wait_for(engine.started.is_set)

    close_task = asyncio.ensure_future(session.close())
    await asyncio.sleep(0.05)
    assert not close_task.done()

    backend.emit(main)
    engine.gate.set()
    await asyncio.wait_for(close_task, 5)
    await asyncio.sleep(0.1)

    assert recorder.items == [*CYCLE, "close"]
    assert session.build_count == 1


@pytest.mark.asyncio
async def test_add_watch_file_from_build_start(project, backend_factory):
    extra = project / "foo.js"
    extra.write_text("console.log('foo')\n")
    changes = []

    class WatchExtra:
        name = "watch-extra"

        def build_start(self, ctx):
            ctx.add_watch_file(extra)

        def watch_change(self, path, change):
            changes.append((path, change.event))

    session, backend = await start(project, backend_factory, plugins=[WatchExtra()])
    seen = []
    session.on("change", lambda path, change: seen.append(path))
    await asyncio.wait_for(session.idle(), 5)

    assert str(extra) in session.watch_files

    backend.emit(extra)
    await wait_for(lambda: session.build_count == 2)
    await asyncio.wait_for(session.idle(), 5)

    assert seen == [str(extra)]
    assert changes == [(str(extra), ChangeKind.UPDATE)]
    assert str(extra) in session.watch_files
    await session.close()


@pytest.mark.asyncio
async def test_failing_build_start_hook_reports_plugin_error(project, backend_factory):
    class Broken:
        name = "broken"

        def build_start(self, ctx):
            raise RuntimeError("nope")

    session, _ = await start(project, backend_factory, plugins=[Broken()])
    errors = []
    session.on("event", lambda event: event.error and errors.append(event.error))

    await asyncio.wait_for(session.idle(), 5)

    assert errors[0].code == "PLUGIN_ERROR"
    assert session.state == SessionState.WATCHING
    await session.close()


@pytest.mark.asyncio
async def test_transform_hook_applies_to_output(project, backend_factory):
    class Banner:
        name = "banner"

        def transform(self, code, id):
            return "/* banner */\n" + code

    session, _ = await start(project, backend_factory, plugins=[Banner()])
    await asyncio.wait_for(session.idle(), 5)

    assert (project / "dist" / "main.js").read_text().startswith("/* banner */")
    await session.close()


@pytest.mark.asyncio
async def test_configuration_error_is_raised_before_session_starts(project, backend_factory):
    with pytest.raises(ConfigurationError):
        await watch(UserConfig(input=["src/main.js"], cwd=str(project), log_level="loud"), backend_factory=backend_factory)

    assert backend_factory.created == []


@pytest.mark.asyncio
async def test_render_chunk_hook_receives_normalized_output(project, backend_factory):
    seen = []

    class Footer:
        name = "footer"

        def render_chunk(self, code, file_name, output):
            seen.append((file_name, output.dir))
            return {"code": code + f"//# {file_name}\n"}

    session, _ = await start(project, backend_factory, plugins=[Footer()])
    await asyncio.wait_for(session.idle(), 5)

    assert seen == [("main.js", str(project / "dist"))]
    assert (project / "dist" / "main.js").read_text().endswith("//# main.js\n")
    await session.close()


@pytest.mark.asyncio
async def test_engine_os_error_is_reported_as_unknown_error(project, backend_factory):
    class MissingFileEngine:
        async def build(self, request, output):
            raise FileNotFoundError("no such file: src/missing.js")

    session, _ = await start(project, backend_factory, engine=MissingFileEngine())
    errors = []
    session.on("event", lambda event: event.error and errors.append(event.error))

    await asyncio.wait_for(session.idle(), 5)

    assert [error.code for error in errors] == ["UNKNOWN_ERROR"]
    assert "FileNotFoundError" in errors[0].message
    await session.close()


@pytest.mark.asyncio
async def test_output_write_failure_is_reported_as_write_error(project, backend_factory):
    # A regular file where the output directory should be
    (project / "dist").write_text("not a directory")

    session, _ = await start(project, backend_factory)
    errors = []
    session.on("event", lambda event: event.error and errors.append(event.error))

    await asyncio.wait_for(session.idle(), 5)

    assert [error.code for error in errors] == ["WRITE_ERROR"]
    assert session.last_build_ok is False
    await session.close()


@pytest.mark.asyncio
async def test_notifier_receives_build_messages(project, backend_factory):
    notifier = RecordingNotifier()
    session = await watch(
        UserConfig(input=["src/main.js"], cwd=str(project)),
        notifier=notifier,
        backend_factory=backend_factory,
        debounce_ms=20,
    )
    await asyncio.wait_for(session.idle(), 5)
    await session.close()

    levels = [level for level, _ in notifier.messages]
    assert levels == ["info", "info"]
    assert notifier.messages[0][1].startswith("Build #1 finished in")
    assert notifier.messages[1][1] == "Watcher closed"


@pytest.mark.asyncio
async def test_backend_is_checked_while_idle(project, backend_factory):
    session, backend = await start(project, backend_factory)
    session.backend_check_interval = 0.02

    await wait_for(lambda: backend.health_checks >= 3)

    assert session.state == SessionState.WATCHING
    await session.close()


@pytest.mark.asyncio
async def test_unrecoverable_backend_failure_closes_session(project, backend_factory):
    notifier = RecordingNotifier()
    session = await watch(
        UserConfig(input=["src/main.js"], cwd=str(project)),
        notifier=notifier,
        backend_factory=backend_factory,
        debounce_ms=20,
    )
    backend = backend_factory.created[-1]
    backend.failure = WatchBackendError("observer thread died")
    recorder = Recorder(session)

    await wait_for(lambda: session.closed)

    assert recorder.items == CYCLE + ["close"]
    assert backend.stopped
    assert ("error", "File watcher failed: observer thread died") in notifier.messages

    backend.emit(project / "src" / "main.js")
    await asyncio.sleep(0.1)
    assert session.build_count == 1
    await session.close()
