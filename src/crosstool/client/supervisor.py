"""
Server lifecycle supervision.

One ``Supervisor`` per client process owns the knowledge of where the server
lives and whether it answers. Callers only ever ask for ``ensure_ready()``;
concurrent callers share a single probe/launch sequence.
"""
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from crosstool.core.constants import (
    DEFAULT_SERVER_HOST,
    DEFAULT_SERVER_PORT,
    HEALTH_FRESHNESS_SECONDS,
    LAUNCH_ATTEMPTS,
    LAUNCH_BACKOFF_SECONDS,
    PROBE_TIMEOUT_SECONDS,
    STARTUP_TIMEOUT_SECONDS,
)
from crosstool.core.errors import LaunchError
from crosstool.core.utils.logging import get_logger
from crosstool.core.utils.net import enforce_loopback
from .health import HealthState, probe
from .launcher import LaunchFailed, LaunchFailure, ProcessLauncher, ServerHandle, build_server_command
from .ports import ClaimResult, PortArbiter

logger = get_logger("crosstool.client.supervisor")


class SupervisorState(str, Enum):
    UNKNOWN = "unknown"
    PROBING = "probing"
    LAUNCHING = "launching"
    READY = "ready"
    DEGRADED = "degraded"


@dataclass
class SupervisorConfig:
    host: str = DEFAULT_SERVER_HOST
    port: int = DEFAULT_SERVER_PORT
    probe_timeout: float = PROBE_TIMEOUT_SECONDS
    startup_timeout: float = STARTUP_TIMEOUT_SECONDS
    health_freshness: float = HEALTH_FRESHNESS_SECONDS
    launch_attempts: int = LAUNCH_ATTEMPTS
    launch_backoff: float = LAUNCH_BACKOFF_SECONDS
    server_binary: Optional[str] = None
    server_log: Optional[str] = None

    @classmethod
    def from_settings(cls, settings_obj) -> "SupervisorConfig":
        return cls(
            host=settings_obj.HOST,
            port=int(settings_obj.PORT),
            probe_timeout=float(settings_obj.PROBE_TIMEOUT_SEC),
            startup_timeout=float(settings_obj.STARTUP_TIMEOUT_SEC),
            health_freshness=float(settings_obj.HEALTH_FRESHNESS_SEC),
            launch_attempts=max(1, int(settings_obj.LAUNCH_ATTEMPTS)),
            launch_backoff=max(0.0, float(settings_obj.LAUNCH_BACKOFF_SEC)),
            server_binary=settings_obj.SERVER_BINARY,
            server_log=settings_obj.server_log_path,
        )


class Supervisor:
    def __init__(
        self,
        config: Optional[SupervisorConfig] = None,
        prober: Callable[..., HealthState] = probe,
        arbiter: Optional[PortArbiter] = None,
        launcher: Optional[ProcessLauncher] = None,
        command_factory: Optional[Callable[[], list[str]]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep_fn: Callable[[float], None] = time.sleep,
    ):
        self.config = config or SupervisorConfig()
        enforce_loopback(self.config.host)
        self.prober = prober
        self.arbiter = arbiter or PortArbiter(
            prober=prober,
            probe_timeout=self.config.probe_timeout,
            server_markers=(self.config.server_binary,) if self.config.server_binary else (),
        )
        self.launcher = launcher or ProcessLauncher(log_path=self.config.server_log)
        self.command_factory = command_factory or self._default_command
        self.clock = clock
        self.sleep_fn = sleep_fn

        self._lock = threading.Lock()
        self._pending: Optional[Future] = None
        self._state = SupervisorState.UNKNOWN
        self._handle: Optional[ServerHandle] = None
        self._last_error: Optional[str] = None
        self._launches = 0

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def handle(self) -> Optional[ServerHandle]:
        return self._handle

    @property
    def launches(self) -> int:
        return self._launches

    def _default_command(self) -> list[str]:
        return build_server_command(self.config.port, self.config.host, self.config.server_binary)

    def _set_state(self, state: SupervisorState) -> None:
        if state != self._state:
            logger.debug("supervisor_state", old=self._state.value, new=state.value)
        self._state = state

    def _is_fresh(self) -> bool:
        h = self._handle
        if self._state != SupervisorState.READY or h is None:
            return False
        if h.health != HealthState.HEALTHY or not h.is_alive():
            return False
        return (self.clock() - h.last_checked) < self.config.health_freshness

    def ensure_ready(self) -> ServerHandle:
        """
        Return a handle to a server that answered the liveness check recently.

        Within the freshness window no network call is made. Otherwise the
        server is probed, and launched when nothing healthy answers. Concurrent
        callers wait on the same attempt and receive the same result.

        Raises:
            LaunchError: If every launch attempt failed
            NotFoundError: If the configured server binary is missing
            PermissionDeniedError: If the server binary cannot be executed
        """
        with self._lock:
            if self._is_fresh():
                return self._handle
            pending = self._pending
            if pending is None:
                pending = Future()
                self._pending = pending
                owner = True
            else:
                owner = False

        if not owner:
            return pending.result()

        try:
            handle = self._bring_up()
        except BaseException as e:
            pending.set_exception(e)
            raise
        else:
            pending.set_result(handle)
            return handle
        finally:
            with self._lock:
                self._pending = None

    def _mark_healthy(self, handle: ServerHandle) -> ServerHandle:
        handle.health = HealthState.HEALTHY
        handle.last_checked = self.clock()
        self._handle = handle
        self._last_error = None
        self._set_state(SupervisorState.READY)
        return handle

    def _adopt_peer(self) -> ServerHandle:
        old = self._handle
        if old is not None and old.owned and old.is_alive():
            # Our own instance is alive, so it is the one answering.
            return self._mark_healthy(old)
        if old is not None and old.owned:
            logger.info("replacing_dead_server", pid=old.pid)
        logger.info("adopting_server", host=self.config.host, port=self.config.port)
        return self._mark_healthy(ServerHandle(port=self.config.port))

    def _discard_unhealthy_own(self) -> None:
        old = self._handle
        if old is not None and old.owned and old.is_alive():
            logger.warning("stopping_unresponsive_server", pid=old.pid)
            old.terminate()
        if old is not None:
            old.health = HealthState.UNHEALTHY

    def _probe(self) -> HealthState:
        return self.prober(self.config.host, self.config.port, timeout=self.config.probe_timeout)

    def _bring_up(self) -> ServerHandle:
        host, port = self.config.host, self.config.port
        self._set_state(SupervisorState.PROBING)
        if self._probe() == HealthState.HEALTHY:
            return self._adopt_peer()

        self._discard_unhealthy_own()
        attempts = max(1, int(self.config.launch_attempts))
        failure: Optional[str] = None
        for attempt in range(attempts):
            if attempt > 0:
                delay = self.config.launch_backoff * (2 ** (attempt - 1))
                logger.info("launch_backoff", attempt=attempt + 1, delay=delay)
                self.sleep_fn(delay)

            claim = self.arbiter.try_claim(host, port)
            if claim == ClaimResult.OWNED_BY_HEALTHY_PEER:
                return self._adopt_peer()
            if claim == ClaimResult.OWNED_BY_DEAD_PEER and not self.arbiter.reclaim(host, port):
                failure = f"port {port} is held by a process that does not answer {host}:{port}/ping"
                logger.warning("port_unreclaimable", port=port, attempt=attempt + 1)
                continue

            self._set_state(SupervisorState.LAUNCHING)
            self._launches += 1
            outcome = self.launcher.launch(self.command_factory(), port, self.config.startup_timeout)
            if isinstance(outcome, ServerHandle):
                return self._mark_healthy(outcome)

            failure = str(outcome)
            if isinstance(outcome, LaunchFailed) and outcome.reason == LaunchFailure.PORT_TAKEN:
                # Another client won the race for the port; use its server if it answers.
                if self._probe() == HealthState.HEALTHY:
                    return self._adopt_peer()

        self._last_error = failure
        self._set_state(SupervisorState.DEGRADED)
        logger.error("server_unavailable", host=host, port=port, attempts=attempts, error=failure)
        raise LaunchError(
            f"Server could not be started on {host}:{port} after {attempts} attempt(s): {failure}",
            hint="Check the server log or run `crosstool server` manually to see its output.",
        )

    def mark_degraded(self, reason: str = "") -> None:
        """Forget the last successful check so the next ``ensure_ready`` re-probes."""
        with self._lock:
            if self._handle is not None:
                self._handle.health = HealthState.UNHEALTHY
            self._last_error = reason or self._last_error
            self._set_state(SupervisorState.DEGRADED)
        logger.warning("server_degraded", reason=reason)

    def status(self) -> dict[str, object]:
        h = self._handle
        if h is not None and not h.is_alive():
            h.health = HealthState.UNHEALTHY
        return {
            "state": self._state.value,
            "host": self.config.host,
            "port": self.config.port,
            "handle": h.as_dict() if h is not None else None,
            "launches": self._launches,
            "last_error": self._last_error,
        }

    def stop_server(self) -> bool:
        """
        Stop the server on the configured port.

        An instance launched by this supervisor is terminated directly; an
        adopted one is stopped only if it identifies as a crosstool server.
        """
        with self._lock:
            h = self._handle
            self._handle = None
            self._set_state(SupervisorState.UNKNOWN)
        if h is not None and h.owned:
            h.terminate()
            return self.arbiter.wait_for_release(self.config.host, self.config.port)
        return self.arbiter.reclaim(self.config.host, self.config.port)

    def shutdown(self, stop_server: bool = False) -> None:
        if stop_server:
            self.stop_server()
            return
        with self._lock:
            self._handle = None
            self._set_state(SupervisorState.UNKNOWN)
