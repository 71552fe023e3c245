"""
Sandbox admission control

Bounds concurrent sandbox invocations. At most max_concurrency run at
once and at most max_pending wait for a slot; anything beyond that is
rejected with a RateLimitError instead of spawning another process.
"""
import asyncio
import logging
from typing import Any, Dict

from mentorlink.errors import RateLimitError
from mentorlink.sandbox.executor import CodeExecutor, ExecutionResult

logger = logging.getLogger(__name__)

BUSY_MESSAGE = "Code runner is busy, please try again shortly"


class ExecutionPool:
    """Admission-controlled front for a CodeExecutor."""

    def __init__(self, executor: CodeExecutor, max_concurrency: int = 4, max_pending: int = 16):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.executor = executor
        self.max_concurrency = max_concurrency
        self.max_pending = max(max_pending, 0)
        self._slots = asyncio.Semaphore(max_concurrency)
        self._running = 0
        self._waiting = 0
        # Calls past the saturation check and not yet finished
        self._admitted = 0

    async def run(self, code: str, language: str) -> ExecutionResult:
        """
        Execute code once a slot is free.

        Raises:
            RateLimitError: All slots busy and the wait queue is full
        """
        if self._admitted >= self.max_concurrency + self.max_pending:
            logger.warning(
                f"Sandbox saturated ({self._running} running, {self._waiting} waiting); rejecting {language} run"
            )
            raise RateLimitError(BUSY_MESSAGE)

        self._admitted += 1
        try:
            self._waiting += 1
            try:
                await self._slots.acquire()
            finally:
                self._waiting -= 1

            self._running += 1
            try:
                return await self.executor.execute(code, language)
            finally:
                self._running -= 1
                self._slots.release()
        finally:
            self._admitted -= 1

    def stats(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "waiting": self._waiting,
            "admitted": self._admitted,
            "max_concurrency": self.max_concurrency,
            "max_pending": self.max_pending,
        }
