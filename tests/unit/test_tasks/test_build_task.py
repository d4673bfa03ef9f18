"""
Unit tests for the build pipeline state machine.

Processes are replaced by the scripted FakeExecutor from conftest, so these
tests exercise stage ordering, state transitions and cancellation without
spawning anything.
"""

import asyncio
from typing import List, Tuple
from unittest.mock import Mock

import pytest

from conftest import FakeExecutor, wait_until
from tinyci.models.build import Build, BuildState
from tinyci.tasks import build_task
from tinyci.tasks.build_task import BuildTask


class Recorder:
    """Records persistence calls and state notifications in one timeline."""

    def __init__(self, fail_on: Tuple[BuildState, ...] = ()):
        self.events: List[Tuple[str, BuildState]] = []
        self.fail_on = fail_on

    async def persist(self, build: Build) -> None:
        if build.state in self.fail_on:
            raise RuntimeError(f"cannot persist {build.state}")
        self.events.append(("persist", build.state))

    def on_state(self, task: BuildTask, state: BuildState) -> None:
        self.events.append(("emit", state))

    @property
    def emitted(self) -> List[BuildState]:
        return [state for kind, state in self.events if kind == "emit"]


def make_build(**kwargs):
    fields = dict(name="web", git="https://example.com/acme/web.git", timeout=60000, number=1)
    fields.update(kwargs)
    return Build(**fields)


def make_task(pipeline_config, executor, recorder, **build_fields):
    task = BuildTask(make_build(**build_fields), pipeline_config, recorder.persist, executor=executor)
    task.on_state_changed(recorder.on_state)
    return task


class TestPipeline:
    """Test cases for stage ordering and outcomes."""

    @pytest.mark.asyncio
    async def test_success_runs_required_stages(self, pipeline_config):
        executor = FakeExecutor()
        recorder = Recorder()
        task = make_task(pipeline_config, executor, recorder)

        state = await task.run()

        assert state is BuildState.SUCCESS
        assert recorder.emitted == [BuildState.IN_PROGRESS, BuildState.SUCCESS]
        assert len(executor.commands) == 3
        assert executor.commands[0].startswith("git clone --branch master --recursive")
        assert executor.commands[0].endswith(str(task.workspace))
        assert executor.commands[1:] == ["npm install", "npm test"]
        assert task.workspace.is_dir()
        assert task.is_finished

    @pytest.mark.asyncio
    async def test_commands_run_in_workspace_with_build_timeout(self, pipeline_config):
        executor = FakeExecutor()
        task = make_task(pipeline_config, executor, Recorder(), timeout=45000)

        await task.run()

        assert executor.cwds[0] == task.workspace.parent
        assert executor.cwds[1:] == [task.workspace, task.workspace]
        assert executor.timeouts == [45.0, 45.0, 45.0]

    @pytest.mark.asyncio
    async def test_state_persisted_before_each_notification(self, pipeline_config):
        recorder = Recorder()
        task = make_task(pipeline_config, FakeExecutor(), recorder)

        await task.run()

        for i, (kind, state) in enumerate(recorder.events):
            if kind == "emit":
                assert ("persist", state) in recorder.events[:i]

    @pytest.mark.asyncio
    async def test_failing_test_stops_pipeline(self, pipeline_config, temp_dir):
        executor = FakeExecutor(scripts={"npm test": {"exit_code": 2}})
        recorder = Recorder()
        task = make_task(
            pipeline_config, executor, recorder,
            pre_deployment_script="./pre.sh",
            post_deployment_script="./post.sh",
            deployment_path=str(temp_dir / "deploy"),
        )

        state = await task.run()

        assert state is BuildState.FAILED
        assert recorder.emitted == [BuildState.IN_PROGRESS, BuildState.FAILED]
        assert executor.commands[-1] == "npm test"
        assert not (temp_dir / "deploy").exists()

    @pytest.mark.asyncio
    async def test_failing_clone_is_failed(self, pipeline_config):
        executor = FakeExecutor(scripts={"git clone": {"exit_code": 128}})
        task = make_task(pipeline_config, executor, Recorder())

        assert await task.run() is BuildState.FAILED
        assert len(executor.commands) == 1

    @pytest.mark.asyncio
    async def test_optional_stages_run_in_order(self, pipeline_config, temp_dir):
        executor = FakeExecutor()
        task = make_task(
            pipeline_config, executor, Recorder(),
            pre_deployment_script="./pre.sh",
            post_deployment_script="./post.sh",
            deployment_path=str(temp_dir / "deploy"),
            deployment_root="dist",
        )
        (task.workspace / "dist").mkdir(parents=True)
        (task.workspace / "dist" / "index.html").write_text("<h1>ok</h1>")

        state = await task.run()

        assert state is BuildState.SUCCESS
        assert executor.commands[1:] == ["npm install", "npm test", "./pre.sh", "./post.sh"]
        assert (temp_dir / "deploy" / "index.html").read_text() == "<h1>ok</h1>"

    @pytest.mark.asyncio
    async def test_deploy_defaults_to_workspace_root(self, pipeline_config, temp_dir):
        task = make_task(pipeline_config, FakeExecutor(), Recorder(), deployment_path=str(temp_dir / "deploy"))
        task.workspace.mkdir(parents=True)
        (task.workspace / "package.json").write_text("{}")

        assert await task.run() is BuildState.SUCCESS
        assert (temp_dir / "deploy" / "package.json").exists()

    @pytest.mark.asyncio
    async def test_project_command_overrides(self, pipeline_config):
        executor = FakeExecutor()
        task = make_task(pipeline_config, executor, Recorder(), install_command="npm ci", test_command="npm run ci")

        await task.run()

        assert executor.commands[1:] == ["npm ci", "npm run ci"]

    @pytest.mark.asyncio
    async def test_spawn_error_is_error(self, pipeline_config):
        executor = FakeExecutor(errors={"npm install": FileNotFoundError("no such directory")})
        recorder = Recorder()
        task = make_task(pipeline_config, executor, recorder)

        assert await task.run() is BuildState.ERROR
        assert recorder.emitted == [BuildState.IN_PROGRESS, BuildState.ERROR]

    @pytest.mark.asyncio
    async def test_command_timeout_is_timeout(self, pipeline_config):
        executor = FakeExecutor(scripts={"npm test": {"command_timeout": True}})
        recorder = Recorder()
        task = make_task(pipeline_config, executor, recorder)

        assert await task.run() is BuildState.TIMEOUT
        assert recorder.emitted == [BuildState.IN_PROGRESS, BuildState.TIMEOUT]
        assert executor.handles[-1].terminated

    @pytest.mark.asyncio
    async def test_output_is_captured(self, pipeline_config):
        executor = FakeExecutor(scripts={
            "npm test": {"stdout": "✓ 3 passing\n".encode(), "stderr": b"warning: deprecated\n"},
        })
        saved = []

        async def persist(build):
            saved.append(build.output)

        task = BuildTask(make_build(), pipeline_config, persist, executor=executor)
        await task.run()

        assert "✓ 3 passing\n" in task.build.output
        assert "warning: deprecated\n" in task.build.output
        assert "✓ 3 passing\n" in saved[-1]


    @pytest.mark.asyncio
    async def test_output_flushes_use_output_path(self, pipeline_config):
        executor = FakeExecutor(scripts={"npm test": {"stdout": b"ok\n"}})
        recorder = Recorder()
        flushed = []

        async def save_output(build):
            flushed.append(build.output)

        task = BuildTask(make_build(), pipeline_config, recorder.persist, executor=executor, save_output=save_output)
        task.on_state_changed(recorder.on_state)
        await task.run()

        assert any("ok\n" in output for output in flushed)
        assert [kind for kind, _ in recorder.events].count("persist") == 2

    @pytest.mark.asyncio
    async def test_failed_output_flush_does_not_stop_build(self, pipeline_config):
        executor = FakeExecutor(scripts={"npm test": {"stdout": b"ok\n"}})
        recorder = Recorder()

        async def save_output(build):
            raise RuntimeError("disk full")

        task = BuildTask(make_build(), pipeline_config, recorder.persist, executor=executor, save_output=save_output)
        task.on_state_changed(recorder.on_state)
        state = await task.run()

        assert state is BuildState.SUCCESS
        assert recorder.emitted == [BuildState.IN_PROGRESS, BuildState.SUCCESS]
        assert "ok\n" in task.build.output

    @pytest.mark.asyncio
    async def test_children_holding_pipes_are_killed(self, pipeline_config, monkeypatch):
        monkeypatch.setattr(build_task, "PIPE_DRAIN_TIMEOUT", 0.05)
        executor = FakeExecutor(scripts={"npm install": {"stdout": b"started server\n", "pipes_open": True}})
        task = make_task(pipeline_config, executor, Recorder())

        state = await asyncio.wait_for(task.run(), timeout=5)

        (install,) = [handle for handle in executor.handles if handle.command == "npm install"]
        assert install.terminated
        assert state is BuildState.SUCCESS
        assert "started server\n" in task.build.output

class TestCancellation:
    """Test cases for kill and timeout."""

    @pytest.mark.asyncio
    async def test_kill_terminates_running_process(self, pipeline_config):
        executor = FakeExecutor(scripts={"npm install": {"hang": True}})
        recorder = Recorder()
        task = make_task(pipeline_config, executor, recorder, pre_deployment_script="./pre.sh")

        runner = asyncio.ensure_future(task.run())
        await wait_until(lambda: executor.commands_matching("npm install"))
        task.kill()
        task.kill()
        state = await asyncio.wait_for(runner, timeout=5)

        assert state is BuildState.KILLED
        assert recorder.emitted == [BuildState.IN_PROGRESS, BuildState.KILLED]
        assert executor.handles[-1].terminated
        assert executor.commands[-1] == "npm install"

    @pytest.mark.asyncio
    async def test_kill_after_finish_is_ignored(self, pipeline_config):
        recorder = Recorder()
        task = make_task(pipeline_config, FakeExecutor(), recorder)

        await task.run()
        task.kill()
        await asyncio.sleep(0.01)

        assert task.state is BuildState.SUCCESS
        assert recorder.emitted == [BuildState.IN_PROGRESS, BuildState.SUCCESS]

    @pytest.mark.asyncio
    async def test_build_timeout_kills_hanging_stage(self, pipeline_config):
        executor = FakeExecutor(scripts={"npm test": {"hang": True}})
        recorder = Recorder()
        task = make_task(pipeline_config, executor, recorder, timeout=200)

        state = await asyncio.wait_for(task.run(), timeout=5)

        assert state is BuildState.TIMEOUT
        assert recorder.emitted == [BuildState.IN_PROGRESS, BuildState.TIMEOUT]
        assert executor.handles[-1].terminated

    @pytest.mark.asyncio
    async def test_wait_returns_terminal_state(self, pipeline_config):
        executor = FakeExecutor(scripts={"git clone": {"hang": True}})
        task = make_task(pipeline_config, executor, Recorder())

        asyncio.ensure_future(task.run())
        await wait_until(lambda: executor.handles)
        task.kill()

        assert await asyncio.wait_for(task.wait(), timeout=5) is BuildState.KILLED
        assert task._finish_future.done()


    @pytest.mark.asyncio
    async def test_kill_waits_for_signalled_processes(self, pipeline_config, monkeypatch):
        child = Mock(pid=4242)
        waited = []

        def fake_wait_for_termination(processes):
            waited.append(list(processes))
            return processes

        monkeypatch.setattr(build_task, "wait_for_termination", fake_wait_for_termination)
        executor = FakeExecutor(scripts={"npm test": {"hang": True}})
        recorder = Recorder()
        task = make_task(pipeline_config, executor, recorder)

        runner = asyncio.ensure_future(task.run())
        await wait_until(lambda: executor.commands_matching("npm test"))
        handle = executor.handles[-1]
        original = handle.terminate
        handle.terminate = lambda: original() + [child]
        task.kill()
        state = await asyncio.wait_for(runner, timeout=5)

        assert waited == [[child]]
        assert state is BuildState.KILLED
        assert recorder.emitted[-1] is BuildState.KILLED

class TestPersistenceFailures:
    """Test cases for states that cannot be persisted."""

    @pytest.mark.asyncio
    async def test_unpersisted_state_is_not_announced(self, pipeline_config):
        recorder = Recorder(fail_on=(BuildState.IN_PROGRESS,))
        task = make_task(pipeline_config, FakeExecutor(), recorder)

        state = await task.run()

        assert state is BuildState.SUCCESS
        assert recorder.emitted == [BuildState.SUCCESS]

    @pytest.mark.asyncio
    async def test_unpersisted_terminal_state_still_finishes(self, pipeline_config):
        recorder = Recorder(fail_on=(BuildState.SUCCESS,))
        task = make_task(pipeline_config, FakeExecutor(), recorder)

        state = await asyncio.wait_for(task.run(), timeout=5)

        assert state is BuildState.SUCCESS
        assert task.is_finished
        assert recorder.emitted == [BuildState.IN_PROGRESS]


class TestListeners:
    """Test cases for state-changed listeners."""

    @pytest.mark.asyncio
    async def test_async_handlers_are_awaited_in_order(self, pipeline_config):
        calls = []

        async def slow(task, state):
            await asyncio.sleep(0.01)
            calls.append(("slow", state))

        def fast(task, state):
            calls.append(("fast", state))

        task = BuildTask(make_build(), pipeline_config, Recorder().persist, executor=FakeExecutor())
        task.on_state_changed(slow)
        task.on_state_changed(fast)
        await task.run()

        assert calls == [
            ("slow", BuildState.IN_PROGRESS), ("fast", BuildState.IN_PROGRESS),
            ("slow", BuildState.SUCCESS), ("fast", BuildState.SUCCESS),
        ]

    @pytest.mark.asyncio
    async def test_remove_all_listeners(self, pipeline_config):
        recorder = Recorder()
        task = make_task(pipeline_config, FakeExecutor(), recorder)
        task.remove_all_listeners()

        await task.run()

        assert recorder.emitted == []

    @pytest.mark.asyncio
    async def test_handler_errors_do_not_break_pipeline(self, pipeline_config):
        def broken(task, state):
            raise RuntimeError("listener bug")

        task = BuildTask(make_build(), pipeline_config, Recorder().persist, executor=FakeExecutor())
        task.on_state_changed(broken)

        assert await task.run() is BuildState.SUCCESS
