from enum import Enum

from crosstool.core.constants import PING_BODY, PING_PATH, PROBE_TIMEOUT_SECONDS
from crosstool.core.utils.net import format_host, is_loopback, urlopen


class HealthState(str, Enum):
    UNKNOWN = "unknown"
    STARTING = "starting"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


def probe(
    host: str,
    port: int,
    path: str = PING_PATH,
    timeout: float = PROBE_TIMEOUT_SECONDS,
) -> HealthState:
    """
    Single liveness GET against ``path``.

    Never raises and never retries: refused connections, timeouts, non-2xx
    statuses and unexpected bodies all collapse to ``UNHEALTHY``.
    """
    if not is_loopback(host):
        return HealthState.UNHEALTHY
    try:
        url = f"http://{format_host(host)}:{int(port)}{path}"
        with urlopen(url, timeout=timeout) as r:
            if not 200 <= int(r.status) < 300:
                return HealthState.UNHEALTHY
            body = r.read(64).decode("utf-8", errors="ignore").strip()
            return HealthState.HEALTHY if body == PING_BODY else HealthState.UNHEALTHY
    except Exception:
        return HealthState.UNHEALTHY
