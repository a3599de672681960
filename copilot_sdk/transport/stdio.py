"""Subprocess transport for a locally launched Copilot runtime.

The runtime is spawned with `asyncio.create_subprocess_exec` and spoken to
either over its stdin/stdout pipes (default) or, with ``use_stdio=False``,
over a TCP port it announces on stdout. stderr is drained into the debug log.

A watcher task owns the process for its whole life. An exit that was not
requested through `stop()` is treated as a crash: depending on
``auto_restart`` the connection either fails with `RuntimeExitedError` or the
`RestartSupervisor` relaunches the runtime and re-attaches the same
`JsonRpcConnection`, so handler registrations survive the restart.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import shutil
from typing import Dict, List, Optional, Tuple

from copilot_sdk.errors import ConfigurationError, RuntimeExitedError, RuntimeRestartError, TransportError
from copilot_sdk.schemas.config import ClientOptions

from . import TransportCommonMixin, TransportState
from .connection import JsonRpcConnection
from .supervisor import RestartSupervisor, SupervisorState

logger = logging.getLogger(__name__)

DEFAULT_CLI_NAME = "copilot"
AUTH_TOKEN_ENV = "COPILOT_SDK_AUTH_TOKEN"

_PORT_ANNOUNCEMENT = re.compile(r"listening on port (\d+)", re.IGNORECASE)


class StdioTransport(TransportCommonMixin):
    def __init__(
        self,
        options: Optional[ClientOptions] = None,
        *,
        terminate_timeout: float = 5.0,
        port_timeout: float = 10.0,
        connect_timeout: float = 10.0,
        supervisor: Optional[RestartSupervisor] = None,
    ) -> None:
        self._options = (options or ClientOptions()).resolved()
        self._terminate_timeout = terminate_timeout
        self._port_timeout = port_timeout
        self._connect_timeout = connect_timeout
        self._supervisor = supervisor or RestartSupervisor(self._options.restart_policy)
        self._state = TransportState.NOT_STARTED
        self._connection: Optional[JsonRpcConnection] = None
        self._process: Optional[asyncio.subprocess.Process] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._pipe_tasks: List[asyncio.Task] = []
        self._stopping = False
        self._actual_port: Optional[int] = None

    @property
    def process(self) -> Optional[asyncio.subprocess.Process]:
        return self._process

    @property
    def supervisor(self) -> RestartSupervisor:
        return self._supervisor

    @property
    def actual_port(self) -> Optional[int]:
        """Port announced by the runtime in TCP mode, None over stdio."""
        return self._actual_port

    # ------------------------------------------------------------------
    # Command line
    # ------------------------------------------------------------------

    def resolve_cli_path(self) -> str:
        cli_path = self._options.cli_path
        if cli_path is None:
            found = shutil.which(DEFAULT_CLI_NAME)
            if found is None:
                raise ConfigurationError(
                    f"Copilot CLI '{DEFAULT_CLI_NAME}' not found on PATH; set cli_path or COPILOT_CLI_PATH"
                )
            return found
        if os.path.dirname(cli_path) and not os.path.exists(cli_path):
            raise ConfigurationError(f"Copilot CLI not found at {cli_path}")
        return cli_path

    def build_command(self, cli_path: str) -> List[str]:
        opts = self._options
        args = [*opts.cli_args, "--headless", "--no-auto-update", "--log-level", opts.log_level]
        if opts.github_token:
            args.extend(["--auth-token-env", AUTH_TOKEN_ENV])
        if not opts.use_logged_in_user:
            args.append("--no-auto-login")
        if opts.use_stdio:
            args.append("--stdio")
        else:
            args.extend(["--port", str(opts.port)])

        # shebangs are not honoured everywhere, so scripts go through node explicitly
        if cli_path.endswith(".js"):
            return ["node", cli_path, *args]
        return [cli_path, *args]

    def build_env(self) -> Dict[str, str]:
        env = dict(os.environ) if self._options.env is None else dict(self._options.env)
        if self._options.github_token:
            env[AUTH_TOKEN_ENV] = self._options.github_token
        return env

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._state in (TransportState.STARTING, TransportState.STARTED):
            return
        self._state = TransportState.STARTING
        self._stopping = False
        try:
            reader, writer = await self._launch()
        except BaseException:
            self._state = TransportState.NOT_STARTED
            raise

        self._connection = JsonRpcConnection(
            reader,
            writer,
            name="copilot runtime",
            reattachable=True,
            default_timeout=self._options.request_timeout,
        )
        self._supervisor.mark_running()
        self._watch_task = asyncio.get_running_loop().create_task(self._watch())
        self._state = TransportState.STARTED
        logger.info("Copilot runtime started (pid=%s)", self._process.pid if self._process else None)

    async def stop(self) -> List[Exception]:
        if self._state in (TransportState.NOT_STARTED, TransportState.STOPPED):
            return []
        self._state = TransportState.STOPPING
        self._stopping = True
        self._supervisor.mark_stopped()
        errors: List[Exception] = []

        connection, self._connection = self._connection, None
        if connection is not None:
            try:
                await connection.close()
            except Exception as e:
                errors.append(e)

        process, self._process = self._process, None
        if process is not None and process.returncode is None:
            try:
                process.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(process.wait(), self._terminate_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Copilot runtime did not exit within %ss; killing it", self._terminate_timeout
                )
                try:
                    process.kill()
                    await process.wait()
                except ProcessLookupError:
                    pass
                except Exception as e:
                    errors.append(e)
            except Exception as e:
                errors.append(e)

        await self._cancel_tasks()
        self._state = TransportState.STOPPED
        logger.info("Copilot runtime stopped")
        return errors

    async def force_stop(self) -> None:
        self._stopping = True
        self._supervisor.mark_stopped()
        connection, self._connection = self._connection, None
        if connection is not None:
            connection.dispose()
        process, self._process = self._process, None
        if process is not None and process.returncode is None:
            try:
                process.kill()
                await process.wait()
            except ProcessLookupError:
                pass
        await self._cancel_tasks()
        self._state = TransportState.STOPPED

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _launch(self) -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        cmd = self.build_command(self.resolve_cli_path())
        logger.debug("Launching Copilot runtime: %s", " ".join(cmd))
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE if self._options.use_stdio else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._options.cwd,
                env=self.build_env(),
            )
        except OSError as e:
            raise TransportError(f"Failed to launch Copilot runtime '{cmd[0]}': {e}") from e

        self._process = process
        self._pipe_tasks.append(asyncio.get_running_loop().create_task(self._drain(process.stderr, "stderr")))
        if self._options.use_stdio:
            return process.stdout, process.stdin

        try:
            port = await asyncio.wait_for(self._read_port(process), self._port_timeout)
            self._pipe_tasks.append(asyncio.get_running_loop().create_task(self._drain(process.stdout, "stdout")))
            return await asyncio.wait_for(asyncio.open_connection("localhost", port), self._connect_timeout)
        except asyncio.TimeoutError:
            await self._kill(process)
            raise TransportError("Timeout waiting for Copilot runtime to start listening") from None
        except (OSError, TransportError) as e:
            await self._kill(process)
            if isinstance(e, TransportError):
                raise
            raise TransportError(f"Failed to connect to Copilot runtime: {e}") from e

    async def _read_port(self, process: asyncio.subprocess.Process) -> int:
        while True:
            line = await process.stdout.readline()
            if not line:
                raise TransportError("Copilot runtime exited before announcing its port")
            match = _PORT_ANNOUNCEMENT.search(line.decode(errors="replace"))
            if match:
                self._actual_port = int(match.group(1))
                logger.debug("Copilot runtime listening on port %s", self._actual_port)
                return self._actual_port

    async def _drain(self, stream: Optional[asyncio.StreamReader], label: str) -> None:
        if stream is None:
            return
        while True:
            try:
                line = await stream.readline()
            except ValueError:
                # overlong line; the reader has discarded it
                continue
            if not line:
                return
            logger.debug("[runtime %s] %s", label, line.decode(errors="replace").rstrip())

    async def _watch(self) -> None:
        while True:
            process = self._process
            if process is None:
                return
            returncode = await process.wait()
            connection = self._connection
            if self._stopping or connection is None:
                return

            logger.warning("Copilot runtime exited unexpectedly (code=%s)", returncode)
            exited = RuntimeExitedError(returncode)
            if not self._options.auto_restart:
                connection.fail(exited)
                return

            connection.suspend(exited)
            self._supervisor.mark_crashed()
            try:
                await self._supervisor.restart(self._relaunch)
            except RuntimeRestartError as e:
                connection.fail(e)
                return
            if self._supervisor.state is not SupervisorState.RUNNING:
                return

    async def _relaunch(self) -> None:
        await self._cancel_pipe_tasks()
        reader, writer = await self._launch()
        connection = self._connection
        if connection is None or self._stopping:
            writer.close()
            if self._process is not None:
                await self._kill(self._process)
            return
        connection.attach(reader, writer)

    async def _kill(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            try:
                process.kill()
                await process.wait()
            except ProcessLookupError:
                pass
        if process is self._process:
            self._process = None

    async def _cancel_pipe_tasks(self) -> None:
        tasks, self._pipe_tasks = self._pipe_tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _cancel_tasks(self) -> None:
        task, self._watch_task = self._watch_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        await self._cancel_pipe_tasks()
