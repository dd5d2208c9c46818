"""
HTTP request gateway.

Every request goes through ``Supervisor.ensure_ready()`` first. A transport
failure marks the server degraded and is retried once after the supervisor
re-establishes the server; an HTTP error response is the server's answer and
is never retried.
"""
import http.client
import json
import socket
import urllib.error
import urllib.request
from typing import Optional

from crosstool.core.constants import REQUEST_TIMEOUT_SECONDS
from crosstool.core.errors import ApplicationError, RequestTimeoutError, ServerConnectionError
from crosstool.core.utils.logging import get_logger
from crosstool.core.utils.net import enforce_loopback, format_host, urlopen
from .supervisor import Supervisor

logger = get_logger("crosstool.client.gateway")


def _is_timeout(err: BaseException) -> bool:
    return isinstance(err, (socket.timeout, TimeoutError))


def _error_message(status: int, raw: bytes) -> tuple[str, Optional[object]]:
    text = raw.decode("utf-8", errors="replace").strip()
    try:
        body = json.loads(text) if text else None
    except json.JSONDecodeError:
        return text or http.client.responses.get(status, "Error"), text or None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"]), body
    return text or http.client.responses.get(status, "Error"), body


def http_request(
    host: str,
    port: int,
    method: str,
    path: str,
    body: Optional[dict] = None,
    timeout: float = REQUEST_TIMEOUT_SECONDS,
):
    """
    One HTTP exchange with no retries.

    Returns the decoded JSON body, or the text body when it is not JSON.

    Raises:
        ServerConnectionError: Connection refused, reset or dropped
        RequestTimeoutError: No answer within ``timeout``
        ApplicationError: The server answered with a non-2xx status
    """
    enforce_loopback(host)
    url = f"http://{format_host(host)}:{int(port)}{path}"
    data = None
    headers = {"Accept": "application/json"}
    if body is not None:
        data = json.dumps(body).encode("utf-8")
        headers["Content-Type"] = "application/json"
    req = urllib.request.Request(url, data=data, headers=headers, method=method.upper())

    try:
        with urlopen(req, timeout=timeout) as r:
            raw = r.read()
            status = int(r.status)
    except urllib.error.HTTPError as e:
        try:
            raw = e.read() or b""
        except (OSError, http.client.HTTPException):
            raw = b""
        message, parsed = _error_message(e.code, raw)
        raise ApplicationError(e.code, message, parsed)
    except urllib.error.URLError as e:
        if _is_timeout(e.reason):
            raise RequestTimeoutError(f"Request to {url} timed out after {timeout}s")
        raise ServerConnectionError(f"Cannot connect to {url}: {e.reason}")
    except (socket.timeout, TimeoutError):
        raise RequestTimeoutError(f"Request to {url} timed out after {timeout}s")
    except (ConnectionError, http.client.HTTPException) as e:
        raise ServerConnectionError(f"Connection to {url} failed: {e}")

    text = raw.decode("utf-8", errors="replace")
    if not text.strip():
        return {}
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        if 200 <= status < 300:
            return text
        raise ApplicationError(status, text)


class RequestGateway:
    def __init__(self, supervisor: Supervisor, timeout: float = REQUEST_TIMEOUT_SECONDS):
        self.supervisor = supervisor
        self.timeout = float(timeout)

    def _send(self, method: str, path: str, body: Optional[dict]):
        cfg = self.supervisor.config
        return http_request(cfg.host, cfg.port, method, path, body, self.timeout)

    def request(self, method: str, path: str, body: Optional[dict] = None):
        self.supervisor.ensure_ready()
        try:
            return self._send(method, path, body)
        except ServerConnectionError as first:
            logger.warning("request_retry", method=method, path=path, error=first.message)
            self.supervisor.mark_degraded(first.message)

        self.supervisor.ensure_ready()
        try:
            return self._send(method, path, body)
        except ServerConnectionError as second:
            self.supervisor.mark_degraded(second.message)
            logger.error("request_failed", method=method, path=path, error=second.message)
            raise

    def call(self, endpoint: str, body: Optional[dict] = None):
        """POST ``body`` as JSON to ``endpoint``."""
        return self.request("POST", endpoint, body if body is not None else {})

    def get(self, endpoint: str):
        return self.request("GET", endpoint)
