"""Bounded-retry supervisor for the runtime subprocess.

The supervisor is a small explicit state machine owned by `StdioTransport`:

    running -> crashed -> restarting -> running
                                     -> failed

Each crash gets relaunch attempts with exponential backoff. The attempt budget
is shared across crashes and only restored after a relaunched process has
stayed up for `RestartPolicy.reset_after` seconds, which keeps a runtime that
dies right after start from being relaunched forever.
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Awaitable, Callable, Optional

from copilot_sdk.errors import RuntimeRestartError
from copilot_sdk.schemas.config import RestartPolicy

logger = logging.getLogger(__name__)


class SupervisorState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    CRASHED = "crashed"
    RESTARTING = "restarting"
    FAILED = "failed"
    STOPPED = "stopped"


class RestartSupervisor:
    def __init__(
        self,
        policy: Optional[RestartPolicy] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._policy = policy or RestartPolicy()
        self._clock = clock
        self._sleep = sleep
        self._state = SupervisorState.IDLE
        self._attempts = 0
        self._restarts = 0
        self._running_since: Optional[float] = None
        self._last_error: Optional[BaseException] = None

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def attempts(self) -> int:
        """Relaunch attempts charged against the current budget."""
        return self._attempts

    @property
    def restarts(self) -> int:
        """Successful relaunches over the supervisor's lifetime."""
        return self._restarts

    @property
    def policy(self) -> RestartPolicy:
        return self._policy

    def mark_running(self) -> None:
        self._state = SupervisorState.RUNNING
        self._running_since = self._clock()

    def mark_stopped(self) -> None:
        self._state = SupervisorState.STOPPED

    def mark_crashed(self) -> None:
        """Record an unexpected exit of a running process."""
        if self._state is not SupervisorState.RUNNING:
            return
        if self._running_since is not None and self._clock() - self._running_since >= self._policy.reset_after:
            self._attempts = 0
        self._state = SupervisorState.CRASHED

    async def restart(self, launch: Callable[[], Awaitable[None]]) -> None:
        """Relaunch with backoff until `launch` succeeds or the budget runs out.

        Raises:
            RuntimeRestartError: When every allowed attempt failed. The
                supervisor is left in the terminal ``failed`` state.
        """
        if self._state is not SupervisorState.CRASHED:
            raise RuntimeError(f"restart() called in state {self._state.value}")
        self._state = SupervisorState.RESTARTING
        while self._attempts < self._policy.max_attempts:
            delay = self._policy.delay_for(self._attempts)
            self._attempts += 1
            logger.warning(
                "Restarting Copilot runtime in %ss (attempt %s/%s)",
                delay,
                self._attempts,
                self._policy.max_attempts,
            )
            await self._sleep(delay)
            if self._state is not SupervisorState.RESTARTING:
                # stop() was requested while we were waiting
                return
            try:
                await launch()
            except Exception as e:
                self._last_error = e
                logger.warning("Runtime relaunch attempt %s failed: %s", self._attempts, e)
                continue
            self._restarts += 1
            self.mark_running()
            logger.info("Copilot runtime restarted (restart #%s)", self._restarts)
            return
        self._state = SupervisorState.FAILED
        logger.error("Giving up on Copilot runtime after %s attempt(s)", self._attempts)
        raise RuntimeRestartError(self._attempts, self._last_error)
