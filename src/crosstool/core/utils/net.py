import ipaddress
import urllib.request

from crosstool.core.errors import ValidationError

# Loopback calls must never be routed through an environment HTTP proxy.
_NO_PROXY_OPENER = urllib.request.build_opener(urllib.request.ProxyHandler({}))


def urlopen(request, timeout: float):
    return _NO_PROXY_OPENER.open(request, timeout=timeout)


def is_loopback(host: str) -> bool:
    h = str(host or "").strip().strip("[]").lower()
    if h == "localhost":
        return True
    try:
        return ipaddress.ip_address(h).is_loopback
    except ValueError:
        return False


def enforce_loopback(host: str) -> None:
    """
    Raises:
        ValidationError: If host is not a loopback address
    """
    if not is_loopback(host):
        raise ValidationError(
            f"crosstool loopback-only: server host must be 127.0.0.1/localhost/::1 (got={host})"
        )


def format_host(host: str) -> str:
    h = str(host).strip("[]")
    return f"[{h}]" if ":" in h else h
