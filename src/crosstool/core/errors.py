"""
Error taxonomy shared by the server, the supervisor and the CLI.

Every error carries a stable ``code`` so HTTP handlers and the CLI can report
it without inspecting the class.
"""
from typing import Optional


class CrossToolError(RuntimeError):
    code = "ERROR"

    def __init__(self, message: str, hint: str = ""):
        super().__init__(message)
        self.message = message
        self.hint = hint

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {"error": self.message, "code": self.code}
        if self.hint:
            payload["hint"] = self.hint
        return payload


class NotFoundError(CrossToolError):
    """Binary, file or item missing."""
    code = "NOT_FOUND"


class PermissionDeniedError(CrossToolError):
    code = "PERMISSION_DENIED"


class ValidationError(CrossToolError):
    """Rejected before any I/O happens."""
    code = "VALIDATION"


class ServerConnectionError(CrossToolError):
    """Server unreachable: refused, reset, or no listener."""
    code = "CONNECTION"


class RequestTimeoutError(ServerConnectionError):
    code = "TIMEOUT"


class LaunchError(ServerConnectionError):
    code = "LAUNCH_FAILED"


class ApplicationError(CrossToolError):
    """Non-2xx response from the server. Never retried."""
    code = "APPLICATION"

    def __init__(self, status: int, message: str, body: Optional[object] = None):
        super().__init__(f"HTTP {status}: {message}")
        self.status = int(status)
        self.detail = message
        self.body = body
