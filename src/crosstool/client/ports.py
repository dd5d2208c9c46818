import os
import socket
import time
from enum import Enum
from typing import Callable, Iterable

import psutil

from crosstool.core.constants import (
    PORT_RELEASE_INTERVAL_SECONDS,
    PORT_RELEASE_RETRIES,
    PROBE_TIMEOUT_SECONDS,
)
from crosstool.core.utils.logging import get_logger
from .health import HealthState, probe

logger = get_logger("crosstool.client.ports")

_SERVER_MARKERS = ("-m crosstool server", "crosstool server", "crosstool/__main__.py server")


class ClaimResult(str, Enum):
    CLAIMED = "claimed"
    OWNED_BY_HEALTHY_PEER = "owned_by_healthy_peer"
    OWNED_BY_DEAD_PEER = "owned_by_dead_peer"


def is_port_in_use(host: str, port: int) -> bool:
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    with socket.socket(family, socket.SOCK_STREAM) as s:
        # Same bind flags as the server, so TIME_WAIT leftovers do not count as in use.
        if os.name != "nt":
            s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            s.bind((host, port))
            return False
        except OSError:
            return True


def identify_server_process(proc: "psutil.Process", extra_markers: Iterable[str] = ()) -> bool:
    """Whether ``proc`` looks like a crosstool server we are allowed to stop."""
    try:
        cmdline = " ".join(proc.cmdline()).lower()
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return False
    markers = list(_SERVER_MARKERS) + [str(m).lower() for m in extra_markers if m]
    return any(m in cmdline for m in markers)


def find_port_owners(port: int) -> list["psutil.Process"]:
    owners = []
    for proc in psutil.process_iter(["pid", "name", "cmdline"]):
        try:
            for conn in proc.net_connections(kind="inet"):
                if conn.laddr and conn.laddr.port == port and conn.status == psutil.CONN_LISTEN:
                    owners.append(proc)
                    break
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.Error):
            continue
    return owners


class PortArbiter:
    """
    Decides who may own the server port.

    A free port is claimable. An occupied port is either served by a healthy
    peer (adopt it) or held by something that does not answer the liveness
    check (reclaim it, but only when it is one of our own server processes).
    """

    def __init__(
        self,
        prober: Callable[..., HealthState] = probe,
        probe_timeout: float = PROBE_TIMEOUT_SECONDS,
        release_retries: int = PORT_RELEASE_RETRIES,
        release_interval: float = PORT_RELEASE_INTERVAL_SECONDS,
        server_markers: Iterable[str] = (),
        sleep_fn: Callable[[float], None] = time.sleep,
    ):
        self.prober = prober
        self.probe_timeout = float(probe_timeout)
        self.release_retries = max(1, int(release_retries))
        self.release_interval = float(release_interval)
        self.server_markers = tuple(server_markers)
        self.sleep_fn = sleep_fn

    def is_port_free(self, host: str, port: int) -> bool:
        return not is_port_in_use(host, port)

    def try_claim(self, host: str, port: int) -> ClaimResult:
        if self.is_port_free(host, port):
            return ClaimResult.CLAIMED
        if self.prober(host, port, timeout=self.probe_timeout) == HealthState.HEALTHY:
            return ClaimResult.OWNED_BY_HEALTHY_PEER
        # A port that is only slow to release is not owned by anyone.
        if self.wait_for_release(host, port):
            return ClaimResult.CLAIMED
        return ClaimResult.OWNED_BY_DEAD_PEER

    def wait_for_release(self, host: str, port: int) -> bool:
        for _ in range(self.release_retries):
            if self.is_port_free(host, port):
                return True
            self.sleep_fn(self.release_interval)
        return self.is_port_free(host, port)

    def reclaim(self, host: str, port: int) -> bool:
        """
        Stop the crosstool server holding ``port`` and wait for the port to free.

        Processes that do not identify as a crosstool server are left alone.
        Returns True when the port is free afterwards.
        """
        if self.is_port_free(host, port):
            return True

        stopped = False
        for proc in find_port_owners(port):
            if not identify_server_process(proc, self.server_markers):
                logger.warning("port_owner_not_ours", port=port, pid=proc.pid)
                continue
            logger.info("reclaiming_port", port=port, pid=proc.pid)
            try:
                proc.terminate()
                _, alive = psutil.wait_procs([proc], timeout=2)
                for p in alive:
                    p.kill()
                stopped = True
            except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
                logger.warning("reclaim_failed", port=port, pid=proc.pid, error=str(e))

        if not stopped:
            return self.is_port_free(host, port)
        return self.wait_for_release(host, port)
