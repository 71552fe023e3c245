"""
Execution Sandbox Test Suite

Real subprocesses, python toolchain only.
"""
import asyncio
import os
import sys

import pytest

from mentorlink.errors import RateLimitError
from mentorlink.sandbox import executor as executor_module
from mentorlink.sandbox.executor import CodeExecutor, ExecutionResult
from mentorlink.sandbox.languages import Toolchain, build_toolchains, extract_java_class_name
from mentorlink.sandbox.pool import BUSY_MESSAGE, ExecutionPool

PRINT_CWD = "import os, sys\nprint(os.getcwd(), flush=True)\n"


def make_executor(timeout=5.0, max_output_bytes=64 * 1024, toolchains=None):
    return CodeExecutor(
        toolchains=toolchains if toolchains is not None else build_toolchains(sys.executable),
        timeout_seconds=timeout,
        max_output_bytes=max_output_bytes,
    )


# =============================================================================
# Test: Dispatch
# =============================================================================

def test_supported_languages():
    toolchains = build_toolchains(sys.executable)
    assert set(toolchains) == {"javascript", "typescript", "python", "java", "csharp", "c#", "go"}
    assert toolchains["c#"] is toolchains["csharp"]


def test_java_class_name_detection(tmp_path):
    java = build_toolchains(sys.executable)["java"]

    assert extract_java_class_name("public class Greeter { }") == "Greeter"
    assert extract_java_class_name("class Hidden {}") is None
    assert java.source_path(tmp_path, "public  class Solver {}").name == "Solver.java"
    assert java.source_path(tmp_path, "class Hidden {}").name == "Main.java"


def test_java_runs_compile_then_class(tmp_path):
    java = build_toolchains(sys.executable)["java"]
    source = tmp_path / "Greeter.java"

    commands = java.commands(source, tmp_path)

    assert commands == [["javac", str(source)], ["java", "-cp", str(tmp_path), "Greeter"]]


@pytest.mark.asyncio
async def test_unsupported_language_spawns_nothing(monkeypatch):
    def fail_spawn(*args, **kwargs):
        raise AssertionError("no process may be spawned")

    monkeypatch.setattr(executor_module.asyncio, "create_subprocess_exec", fail_spawn)

    result = await make_executor().execute("print(1)", "unsupported-x")

    assert result.output == ""
    assert result.error
    assert "unsupported-x" in result.error


@pytest.mark.asyncio
async def test_language_is_case_insensitive():
    result = await make_executor().execute("print('hi')", "Python")
    assert result.output == "hi"
    assert result.error is None


# =============================================================================
# Test: Exit Paths (workdir removed on each)
# =============================================================================

@pytest.mark.asyncio
@pytest.mark.parametrize(
    "snippet, expect_error",
    [
        (PRINT_CWD + "print('done')\n", None),
        (PRINT_CWD + "sys.stderr.write('boom')\nsys.exit(3)\n", "boom"),
        (PRINT_CWD + "import time\ntime.sleep(10)\n", "timed out"),
    ],
    ids=["success", "error", "timeout"],
)
async def test_workdir_removed_on_every_path(snippet, expect_error):
    result = await make_executor(timeout=1.0).execute(snippet, "python")

    workdir = result.output.splitlines()[0]
    assert os.path.basename(workdir).startswith(CodeExecutor.WORKDIR_PREFIX)
    assert not os.path.exists(workdir)

    if expect_error is None:
        assert result.error is None
    else:
        assert expect_error in result.error


@pytest.mark.asyncio
async def test_timeout_reports_elapsed_time():
    result = await make_executor(timeout=1.0).execute("import time\ntime.sleep(10)\n", "python")

    assert "timed out" in result.error
    assert result.execution_time >= 1000


@pytest.mark.asyncio
async def test_nonzero_exit_keeps_partial_stdout():
    result = await make_executor().execute("print('partial')\nraise ValueError('bad input')\n", "python")

    assert result.output == "partial"
    assert "ValueError: bad input" in result.error


@pytest.mark.asyncio
async def test_nonzero_exit_without_stderr_names_command():
    result = await make_executor().execute("import sys\nsys.exit(4)\n", "python")

    assert "exit code 4" in result.error


@pytest.mark.asyncio
async def test_trailing_whitespace_trimmed():
    result = await make_executor().execute("print('  x  ')\nprint()\nprint()\n", "python")
    assert result.output == "  x"


@pytest.mark.asyncio
async def test_stderr_on_success_is_reported():
    result = await make_executor().execute("import sys\nprint('ok')\nsys.stderr.write('warning\\n')\n", "python")

    assert result.output == "ok"
    assert result.error == "warning"


@pytest.mark.asyncio
async def test_output_cap_terminates_process():
    result = await make_executor(max_output_bytes=1000).execute(
        "import sys\nwhile True:\n    sys.stdout.write('x' * 4096)\n", "python"
    )

    assert "exceeded" in result.error
    assert len(result.output) <= 1000


@pytest.mark.asyncio
async def test_server_secrets_hidden_from_snippet(monkeypatch):
    monkeypatch.setenv("IDENTITY_API_KEY", "service-role-secret")
    monkeypatch.setenv("DATABASE_URL", "postgresql://admin:hunter2@db/prod")

    result = await make_executor().execute(
        "import os\nprint(os.environ.get('IDENTITY_API_KEY'), os.environ.get('DATABASE_URL'))\n"
        "print(os.path.realpath(os.environ['HOME']) == os.path.realpath(os.getcwd()))\n",
        "python",
    )

    assert result.error is None
    assert result.output.splitlines() == ["None None", "True"]


@pytest.mark.asyncio
async def test_missing_toolchain_is_data():
    ghost = Toolchain(
        name="ghost",
        extension=".txt",
        commands=lambda source, workdir: [["mentorlink-no-such-binary", str(source)]],
    )

    result = await make_executor(toolchains={"ghost": ghost}).execute("anything", "ghost")

    assert result.output == ""
    assert "not installed" in result.error


@pytest.mark.asyncio
async def test_deadline_shared_across_steps():
    """Two steps that each fit the timeout but not together."""
    nap = [sys.executable, "-c", "import time; time.sleep(0.7)"]
    two_step = Toolchain(name="two-step", extension=".py", commands=lambda source, workdir: [nap, nap])

    result = await make_executor(timeout=1.0, toolchains={"two-step": two_step}).execute("x", "two-step")

    assert "timed out" in result.error


def test_result_wire_shape():
    assert ExecutionResult(output="1", error=None, execution_time=12).to_dict() == {
        "output": "1",
        "error": None,
        "executionTime": 12,
    }


# =============================================================================
# Test: Admission Control
# =============================================================================

class BlockingExecutor:
    def __init__(self):
        self.release = asyncio.Event()
        self.started = 0

    async def execute(self, code, language):
        self.started += 1
        await self.release.wait()
        return ExecutionResult(output=code, error=None, execution_time=0)


@pytest.mark.asyncio
async def test_pool_rejects_when_saturated():
    executor = BlockingExecutor()
    pool = ExecutionPool(executor, max_concurrency=1, max_pending=1)

    running = asyncio.create_task(pool.run("first", "python"))
    waiting = asyncio.create_task(pool.run("second", "python"))
    while pool.stats()["waiting"] < 1 or executor.started < 1:
        await asyncio.sleep(0)

    with pytest.raises(RateLimitError) as exc:
        await pool.run("third", "python")
    assert exc.value.status_code == 429
    assert exc.value.message == BUSY_MESSAGE

    executor.release.set()
    results = await asyncio.gather(running, waiting)
    assert [r.output for r in results] == ["first", "second"]
    assert pool.stats()["running"] == 0


@pytest.mark.asyncio
async def test_pool_limits_concurrency():
    executor = BlockingExecutor()
    pool = ExecutionPool(executor, max_concurrency=2, max_pending=5)

    tasks = [asyncio.create_task(pool.run(str(i), "python")) for i in range(4)]
    while pool.stats()["waiting"] < 2:
        await asyncio.sleep(0)

    assert executor.started == 2
    assert pool.stats()["running"] == 2

    executor.release.set()
    await asyncio.gather(*tasks)
    assert executor.started == 4


class GatedExecutor:
    """Each call blocks until its own snippet is released."""

    def __init__(self):
        self.gates = {}
        self.started = []

    def _gate(self, code):
        return self.gates.setdefault(code, asyncio.Event())

    async def execute(self, code, language):
        self.started.append(code)
        await self._gate(code).wait()
        return ExecutionResult(output=code, error=None, execution_time=0)

    def finish(self, code):
        self._gate(code).set()


@pytest.mark.asyncio
async def test_pool_admission_holds_across_slot_handoff():
    executor = GatedExecutor()
    pool = ExecutionPool(executor, max_concurrency=1, max_pending=1)

    first = asyncio.create_task(pool.run("first", "python"))
    second = asyncio.create_task(pool.run("second", "python"))
    while pool.stats()["admitted"] < 2 or executor.started != ["first"]:
        await asyncio.sleep(0)

    executor.finish("first")
    await first

    # The slot is being handed to "second"; only one more call fits
    third = asyncio.create_task(pool.run("third", "python"))
    await asyncio.sleep(0)
    with pytest.raises(RateLimitError):
        await pool.run("fourth", "python")
    assert pool.stats()["admitted"] == 2

    executor.finish("second")
    executor.finish("third")
    results = await asyncio.gather(second, third)
    assert [r.output for r in results] == ["second", "third"]
    assert executor.started == ["first", "second", "third"]
    assert pool.stats()["admitted"] == 0
