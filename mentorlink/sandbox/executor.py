"""
Execution Sandbox

Runs a source snippet with a pre-installed toolchain inside a fresh,
uniquely-named working directory.

Guarantees:
- One wall-clock deadline per invocation, shared by compile and run steps
- stdout / stderr captured separately, each capped at max_output_bytes
- The working directory is removed on every exit path
- The child sees only a whitelisted environment, never the server's secrets
- Execution failures (bad snippet, timeout, missing toolchain) are
  returned as data in ExecutionResult.error, never raised
"""
import asyncio
import logging
import os
import shutil
import signal
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from mentorlink.config.settings import Settings, get_settings
from mentorlink.sandbox.languages import Toolchain, build_toolchains

logger = logging.getLogger(__name__)

_READ_CHUNK = 64 * 1024

# Server variables a toolchain may need; everything else stays out of the child
INHERITED_ENV_VARS = (
    "PATH",
    "LANG",
    "JAVA_HOME",
    "GOROOT",
    "GOCACHE",
    "GOPATH",
    "DOTNET_ROOT",
    "NODE_PATH",
)


def sandbox_env(workdir: Path) -> Dict[str, str]:
    """Environment for a snippet process: whitelisted variables plus a private HOME and TMPDIR."""
    env = {key: os.environ[key] for key in INHERITED_ENV_VARS if key in os.environ}
    env.setdefault("PATH", os.defpath)
    env.setdefault("LANG", "C.UTF-8")
    env["HOME"] = str(workdir)
    env["TMPDIR"] = str(workdir)
    return env


@dataclass
class ExecutionResult:
    """Outcome of one sandbox invocation. execution_time is in milliseconds."""
    output: str
    error: Optional[str]
    execution_time: int

    def to_dict(self) -> dict:
        return {
            "output": self.output,
            "error": self.error,
            "executionTime": self.execution_time,
        }


class _CappedBuffer:
    """Collects stream bytes up to a limit."""

    def __init__(self, limit: int):
        self.limit = limit
        self.data = bytearray()
        self.overflowed = False

    def append(self, chunk: bytes) -> bool:
        """Append chunk; returns False once the limit has been exceeded."""
        room = self.limit - len(self.data)
        if len(chunk) > room:
            self.data.extend(chunk[:max(room, 0)])
            self.overflowed = True
            return False
        self.data.extend(chunk)
        return True

    def text(self) -> str:
        return self.data.decode("utf-8", errors="replace")


@dataclass
class _StepResult:
    stdout: str
    stderr: str
    returncode: Optional[int]
    timed_out: bool = False
    overflowed: bool = False
    spawn_error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return bool(self.timed_out or self.overflowed or self.spawn_error or self.returncode)


class CodeExecutor:
    """Dispatches snippets to language toolchains."""

    WORKDIR_PREFIX = "code-exec-"

    def __init__(
        self,
        settings: Optional[Settings] = None,
        toolchains: Optional[Dict[str, Toolchain]] = None,
        timeout_seconds: Optional[float] = None,
        max_output_bytes: Optional[int] = None,
    ):
        settings = settings or get_settings()
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.sandbox_timeout_seconds
        self.max_output_bytes = max_output_bytes if max_output_bytes is not None else settings.sandbox_max_output_bytes
        self.toolchains = toolchains if toolchains is not None else build_toolchains(settings.sandbox_python_bin)

    @property
    def supported_languages(self) -> List[str]:
        return sorted(self.toolchains)

    async def execute(self, code: str, language: str) -> ExecutionResult:
        """
        Run code in the given language.

        Args:
            code: Source snippet
            language: Language name (case-insensitive)
        Returns:
            ExecutionResult; callers must branch on .error
        """
        start = time.monotonic()
        toolchain = self.toolchains.get((language or "").lower())
        if toolchain is None:
            return ExecutionResult(
                output="",
                error=f'Language "{language}" is not supported for execution',
                execution_time=self._elapsed_ms(start),
            )

        workdir = None
        try:
            workdir = Path(tempfile.mkdtemp(prefix=self.WORKDIR_PREFIX))
            source = toolchain.source_path(workdir, code)
            source.write_text(code, encoding="utf-8")

            deadline = start + self.timeout_seconds
            step = None
            for argv in toolchain.commands(source, workdir):
                step = await self._run_step(argv, workdir, deadline)
                if step.failed:
                    return ExecutionResult(
                        output=step.stdout.rstrip(),
                        error=self._describe_failure(step, argv),
                        execution_time=self._elapsed_ms(start),
                    )

            return ExecutionResult(
                output=step.stdout.rstrip() if step else "",
                error=(step.stderr.rstrip() or None) if step else None,
                execution_time=self._elapsed_ms(start),
            )
        except Exception as e:
            logger.exception(f"Sandbox fault while running {toolchain.name} snippet")
            return ExecutionResult(
                output="",
                error=str(e) or "Execution failed",
                execution_time=self._elapsed_ms(start),
            )
        finally:
            if workdir is not None:
                shutil.rmtree(workdir, ignore_errors=True)

    async def _run_step(self, argv: List[str], workdir: Path, deadline: float) -> _StepResult:
        """Run one command until it exits, the deadline passes, or output overflows."""
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return _StepResult(stdout="", stderr="", returncode=None, timed_out=True)

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(workdir),
                env=sandbox_env(workdir),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except FileNotFoundError:
            return _StepResult(
                stdout="",
                stderr="",
                returncode=None,
                spawn_error=f"Toolchain '{argv[0]}' is not installed on this server",
            )
        except OSError as e:
            return _StepResult(stdout="", stderr="", returncode=None, spawn_error=str(e))

        stdout = _CappedBuffer(self.max_output_bytes)
        stderr = _CappedBuffer(self.max_output_bytes)
        readers = [
            asyncio.ensure_future(self._drain(process.stdout, stdout, process)),
            asyncio.ensure_future(self._drain(process.stderr, stderr, process)),
        ]

        timed_out = False
        try:
            await asyncio.wait_for(self._communicate(process, readers), timeout=remaining)
        except asyncio.TimeoutError:
            timed_out = True
            logger.info(f"Sandbox step {argv[0]} exceeded {self.timeout_seconds}s deadline; killing")
            await self._terminate(process, readers)
        except asyncio.CancelledError:
            await self._terminate(process, readers)
            raise

        return _StepResult(
            stdout=stdout.text(),
            stderr=stderr.text(),
            returncode=process.returncode,
            timed_out=timed_out,
            overflowed=stdout.overflowed or stderr.overflowed,
        )

    @staticmethod
    async def _communicate(process, readers) -> None:
        await asyncio.gather(*readers)
        await process.wait()

    @classmethod
    async def _drain(cls, stream, buffer: _CappedBuffer, process) -> None:
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                return
            if not buffer.append(chunk):
                cls._kill(process)
                return

    @classmethod
    async def _terminate(cls, process, readers) -> None:
        cls._kill(process)
        for reader in readers:
            reader.cancel()
        await asyncio.gather(*readers, return_exceptions=True)
        try:
            await asyncio.wait_for(process.wait(), timeout=5)
        except asyncio.TimeoutError:
            logger.error(f"Sandbox process {process.pid} did not exit after SIGKILL")

    @staticmethod
    def _kill(process) -> None:
        """Kill the child and anything it spawned (own process group)."""
        if process.returncode is not None:
            return
        try:
            if hasattr(os, "killpg"):
                os.killpg(process.pid, signal.SIGKILL)
            else:
                process.kill()
        except (ProcessLookupError, PermissionError):
            pass

    def _describe_failure(self, step: _StepResult, argv: List[str]) -> str:
        if step.spawn_error:
            return step.spawn_error
        if step.timed_out:
            return f"Execution timed out after {self.timeout_seconds:g}s"
        if step.overflowed:
            return f"Output exceeded the {self.max_output_bytes} byte limit"
        return step.stderr.rstrip() or f"Command failed: {' '.join(argv)} (exit code {step.returncode})"

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int(round((time.monotonic() - start) * 1000))
