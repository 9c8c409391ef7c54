"""Lifecycle supervisor for a local llama.cpp server process."""

from __future__ import annotations

import asyncio
import logging
import shlex
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, TextIO

import httpx

from worker import constants
from worker.client import InferenceClient, probe_health
from worker.errors import BinaryMissing, ReadinessTimeout, WorkerExited, WorkerStateError
from worker.provisioner import worker_installed
from worker.retry import Clock, RetryPolicy, Sleep, fixed_interval
from worker.settings import WorkerSettings

logger = logging.getLogger("llamahost.supervisor")

ProcessFactory = Callable[..., Awaitable[Any]]


class WorkerState(str, Enum):
    UNSTARTED = "unstarted"
    STARTING = "starting"
    RUNNING = "running"
    CLOSED = "closed"


class WorkerSupervisor:
    """Start, await and terminate one llama-server child process.

    The supervisor moves through ``UNSTARTED -> STARTING -> RUNNING -> CLOSED``
    and rejects operations that do not fit the current state. A readiness
    timeout leaves it in ``STARTING`` so the caller may wait again or close.
    """

    def __init__(
        self,
        settings: WorkerSettings | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        process_factory: ProcessFactory | None = None,
        sleep: Sleep | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.settings = settings or WorkerSettings()
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(self.settings.request_timeout))
        self._process_factory = process_factory or asyncio.create_subprocess_exec
        self._sleep = sleep
        self._clock = clock
        self._state = WorkerState.UNSTARTED
        self._process: Any | None = None
        self._port = self.settings.port
        self._model = self.settings.model
        self._log_tasks: set[asyncio.Task[None]] = set()
        self._log_handle: TextIO | None = None

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def port(self) -> int:
        return self._port

    @property
    def model(self) -> str:
        return self._model

    @property
    def base_url(self) -> str:
        """Return the base URL for the local server."""
        return self.settings.base_url(self._port)

    @property
    def pid(self) -> int | None:
        return getattr(self._process, "pid", None)

    @property
    def returncode(self) -> int | None:
        if self._process is None:
            return None
        return self._process.returncode

    def format_args(self, model: str, port: int) -> list[str]:
        """Compose the llama-server command arguments."""
        args: list[str] = [
            str(self.settings.server_path),
            self.settings.model_flag,
            model,
            "--port",
            str(port),
            "--threads",
            str(self.settings.threads),
        ]
        args.extend(self.settings.extra_args)
        return args

    async def start(self, model: str | None = None, port: int | None = None) -> None:
        """Launch the worker without waiting for it to load its model."""
        self._require("start", WorkerState.UNSTARTED)
        if not worker_installed(self.settings):
            raise BinaryMissing(self.settings.server_path)
        self._model = model or self.settings.model
        self._port = int(port if port is not None else self.settings.port)
        command = self.format_args(self._model, self._port)
        logger.info("Starting llama-server: %s", shlex.join(command))
        capture = self.settings.log_dir is not None
        stream = asyncio.subprocess.PIPE if capture else None
        self._process = await self._process_factory(
            *command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=stream,
            stderr=stream,
        )
        self._state = WorkerState.STARTING
        if capture:
            self._start_log_pumps()

    async def wait_until_loaded(self, timeout: float | None = None) -> None:
        """Poll the health endpoint until the worker answers or ``timeout`` passes.

        A missing or non-positive timeout falls back to the readiness ceiling
        (99 minutes by default).
        """
        self._require("wait_until_loaded", WorkerState.STARTING, WorkerState.RUNNING)
        if timeout is None or timeout <= 0:
            timeout = self.settings.readiness_ceiling
        policy = RetryPolicy(
            backoff=fixed_interval(self.settings.poll_interval),
            timeout=timeout,
        )

        async def _probe() -> bool:
            if self._process is not None and self._process.returncode is not None:
                raise WorkerExited(self._process.returncode)
            return await probe_health(self._client, self.base_url, timeout=self.settings.health_timeout)

        if not await policy.run(_probe, sleep=self._sleep, clock=self._clock):
            raise ReadinessTimeout(f"llama-server at {self.base_url} not ready after {timeout:.0f}s")
        self._state = WorkerState.RUNNING
        logger.info("llama-server is ready at %s", self.base_url)

    def inference_client(self) -> InferenceClient:
        """Return a client bound to this worker that shares its HTTP connection pool."""
        self._require("create a client", WorkerState.STARTING, WorkerState.RUNNING)
        return InferenceClient(
            self.base_url,
            settings=self.settings,
            http_client=self._client,
            sleep=self._sleep,
        )

    async def close(self) -> None:
        """Kill the worker process and release the HTTP client."""
        self._require("close", WorkerState.STARTING, WorkerState.RUNNING)
        self._state = WorkerState.CLOSED
        process = self._process
        try:
            if process is not None and process.returncode is None:
                logger.info("Killing llama-server (pid=%s)", process.pid)
                process.kill()
                try:
                    await asyncio.wait_for(process.wait(), timeout=5.0)
                except asyncio.TimeoutError:
                    logger.warning("llama-server (pid=%s) did not exit after kill", process.pid)
        finally:
            await self._drain_log_tasks()
            if self._owns_client:
                await self._client.aclose()

    async def __aenter__(self) -> "WorkerSupervisor":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        if self._state in (WorkerState.STARTING, WorkerState.RUNNING):
            await self.close()
        elif self._owns_client and self._state is WorkerState.UNSTARTED:
            await self._client.aclose()

    def _require(self, action: str, *allowed: WorkerState) -> None:
        if self._state not in allowed:
            expected = ", ".join(state.value for state in allowed)
            raise WorkerStateError(f"cannot {action} while {self._state.value} (expected {expected})")

    def _start_log_pumps(self) -> None:
        """Begin draining stdout/stderr so pipes never block."""
        if self._process is None or self.settings.log_dir is None:
            return
        if self._log_handle is None:
            log_path = Path(self.settings.log_dir) / constants.SERVER_LOG_NAME
            log_path.parent.mkdir(parents=True, exist_ok=True)
            self._log_handle = log_path.open("a", encoding="utf-8")
        for label in ("stdout", "stderr"):
            stream = getattr(self._process, label, None)
            if stream is not None:
                task = asyncio.create_task(self._pump_stream(stream, label))
                self._log_tasks.add(task)

    async def _pump_stream(self, stream: asyncio.StreamReader, label: str) -> None:
        """Continuously read from a subprocess stream and log lines."""
        try:
            while not stream.at_eof():
                line = await stream.readline()
                if not line:
                    break
                text = line.decode(errors="ignore").rstrip()
                logger.debug("[llama-server %s] %s", label, text)
                if self._log_handle is not None:
                    self._log_handle.write(f"{text}\n")
                    self._log_handle.flush()
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            logger.debug("Error reading llama-server %s stream: %s", label, exc)

    async def _drain_log_tasks(self) -> None:
        """Ensure background log-readers exit cleanly."""
        while self._log_tasks:
            task = self._log_tasks.pop()
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._log_handle is not None:
            self._log_handle.close()
            self._log_handle = None


__all__ = ["ProcessFactory", "WorkerState", "WorkerSupervisor"]
