import os
import queue
import subprocess
import sys
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import IO, Callable, Optional, Union

from crosstool.core.constants import (
    ENV_SERVER_CHILD,
    ENV_SERVER_LOG,
    STARTUP_SIGNAL,
    STARTUP_TIMEOUT_SECONDS,
)
from crosstool.core.utils.file import ensure_executable
from crosstool.core.utils.logging import get_logger
from .health import HealthState

logger = get_logger("crosstool.client.launcher")

_PORT_TAKEN_MARKERS = ("eaddrinuse", "address already in use")
_EXIT_GRACE_SECONDS = 0.5
_TERMINATE_WAIT_SECONDS = 2.0


class LaunchFailure(str, Enum):
    TIMEOUT = "timeout"
    EXITED = "exited"
    PORT_TAKEN = "port_taken"
    SPAWN_FAILED = "spawn_failed"


@dataclass
class LaunchFailed:
    reason: LaunchFailure
    detail: str = ""
    exit_code: Optional[int] = None

    def __str__(self) -> str:
        return f"{self.reason.value}: {self.detail}" if self.detail else self.reason.value


@dataclass
class ServerHandle:
    """
    A server instance the supervisor talks to.

    ``process`` is set only for servers this client spawned; an adopted peer
    has no process object and is never killed through its handle.
    """

    port: int
    process: Optional[subprocess.Popen] = None
    launched_at: float = field(default_factory=time.time)
    health: HealthState = HealthState.UNKNOWN
    last_checked: float = 0.0

    @property
    def owned(self) -> bool:
        return self.process is not None

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process is not None else None

    def is_alive(self) -> bool:
        if self.process is None:
            return True
        return self.process.poll() is None

    def terminate(self) -> None:
        if self.process is None:
            return
        _terminate(self.process)

    def as_dict(self) -> dict[str, object]:
        return {
            "port": self.port,
            "pid": self.pid,
            "owned": self.owned,
            "health": self.health.value,
            "launched_at": self.launched_at,
            "last_checked": self.last_checked,
        }


LaunchOutcome = Union[ServerHandle, LaunchFailed]


def _terminate(proc: subprocess.Popen) -> None:
    if proc.poll() is not None:
        return
    try:
        proc.terminate()
        proc.wait(timeout=_TERMINATE_WAIT_SECONDS)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.wait(timeout=_TERMINATE_WAIT_SECONDS)
    except ProcessLookupError:
        pass


def build_server_command(port: int, host: Optional[str] = None, server_binary: Optional[str] = None) -> list[str]:
    """
    Command line for a server listening on ``port``.

    Raises:
        NotFoundError: If ``server_binary`` does not exist
        PermissionDeniedError: If ``server_binary`` cannot be made executable
    """
    if server_binary:
        path = ensure_executable(server_binary)
        cmd = [str(path), "server", "--port", str(int(port))]
    else:
        cmd = [sys.executable, "-m", "crosstool", "server", "--port", str(int(port))]
    if host:
        cmd += ["--host", host]
    return cmd


def classify_line(line: str) -> Optional[LaunchFailure]:
    text = line.lower()
    if any(m in text for m in _PORT_TAKEN_MARKERS):
        return LaunchFailure.PORT_TAKEN
    return None


def _pump(stream: IO[str], name: str, sink: "queue.Queue[tuple[str, Optional[str]]]") -> None:
    try:
        for line in iter(stream.readline, ""):
            sink.put((name, line.rstrip("\r\n")))
    except (OSError, ValueError):
        pass
    finally:
        sink.put((name, None))
        try:
            stream.close()
        except OSError:
            pass


class ProcessLauncher:
    """
    Spawns a server child and watches its output for the startup signal.

    The child runs in its own session so it outlives this client. Output is
    read on background threads; the startup wait is bounded by ``timeout``.
    """

    def __init__(
        self,
        popen_factory: Callable[..., subprocess.Popen] = subprocess.Popen,
        log_path: Optional[str] = None,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[str] = None,
    ):
        self.popen_factory = popen_factory
        self.log_path = log_path
        self.env = env
        self.cwd = cwd

    def _child_env(self) -> dict[str, str]:
        env = dict(os.environ if self.env is None else self.env)
        env[ENV_SERVER_CHILD] = "1"
        env["PYTHONUNBUFFERED"] = "1"
        if self.log_path:
            env[ENV_SERVER_LOG] = self.log_path
        return env

    def launch(self, command: list[str], port: int, timeout: float = STARTUP_TIMEOUT_SECONDS) -> LaunchOutcome:
        logger.info("launching_server", command=command, port=port)
        try:
            proc = self.popen_factory(
                command,
                cwd=self.cwd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                bufsize=1,
                start_new_session=True,
                env=self._child_env(),
            )
        except OSError as e:
            logger.error("server_spawn_failed", command=command, error=str(e))
            return LaunchFailed(LaunchFailure.SPAWN_FAILED, str(e))

        lines: "queue.Queue[tuple[str, Optional[str]]]" = queue.Queue()
        streams = [(n, s) for n, s in (("stdout", proc.stdout), ("stderr", proc.stderr)) if s is not None]
        for name, stream in streams:
            threading.Thread(target=_pump, args=(stream, name, lines), daemon=True).start()

        outcome, still_open = self._await_startup(proc, port, lines, timeout, len(streams))
        if isinstance(outcome, ServerHandle):
            threading.Thread(target=self._drain, args=(proc, lines, still_open), daemon=True).start()
            logger.info("server_launched", pid=proc.pid, port=port)
            return outcome

        if outcome.reason in (LaunchFailure.PORT_TAKEN, LaunchFailure.TIMEOUT):
            _terminate(proc)
        outcome.exit_code = proc.poll()
        logger.warning("server_launch_failed", reason=outcome.reason.value, detail=outcome.detail, port=port)
        return outcome

    def _await_startup(
        self,
        proc: subprocess.Popen,
        port: int,
        lines: "queue.Queue[tuple[str, Optional[str]]]",
        timeout: float,
        open_streams: int = 2,
    ) -> tuple[LaunchOutcome, int]:
        """Wait for the startup signal. Also returns how many streams are still open."""
        deadline = time.monotonic() + max(0.0, float(timeout))
        exit_deadline: Optional[float] = None
        tail: list[str] = []

        while True:
            now = time.monotonic()
            if exit_deadline is None and proc.poll() is not None:
                # Output written right before exit may still be in flight.
                exit_deadline = now + _EXIT_GRACE_SECONDS
            limit = deadline if exit_deadline is None else min(deadline, exit_deadline)
            if now >= limit or (exit_deadline is not None and open_streams <= 0):
                break
            try:
                name, line = lines.get(timeout=min(0.1, max(0.0, limit - now)))
            except queue.Empty:
                continue
            if line is None:
                open_streams -= 1
                continue
            logger.debug("server_output", stream=name, line=line)
            tail = (tail + [line])[-5:]
            if name == "stdout" and STARTUP_SIGNAL in line:
                handle = ServerHandle(
                    port=port,
                    process=proc,
                    launched_at=time.time(),
                    health=HealthState.STARTING,
                    last_checked=0.0,
                )
                return handle, open_streams
            failure = classify_line(line)
            if failure is not None:
                return LaunchFailed(failure, line), open_streams

        if proc.poll() is not None:
            exited = LaunchFailed(
                LaunchFailure.EXITED,
                f"exit code {proc.returncode}" + (f": {tail[-1]}" if tail else ""),
            )
            return exited, open_streams
        return LaunchFailed(LaunchFailure.TIMEOUT, f"no startup signal within {timeout}s"), open_streams

    @staticmethod
    def _drain(proc: subprocess.Popen, lines: "queue.Queue[tuple[str, Optional[str]]]", open_streams: int) -> None:
        while open_streams > 0:
            name, line = lines.get()
            if line is None:
                open_streams -= 1
                continue
            logger.debug("server_output", stream=name, line=line)
        try:
            proc.wait()
        except Exception as e:
            logger.debug("server_reap_failed", pid=proc.pid, error=str(e))
