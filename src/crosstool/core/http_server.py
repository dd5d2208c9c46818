"""
Starlette 기반 로컬 HTTP 서버.

항목 CRUD, 코드 분석, 포맷팅 API를 제공하며 uvicorn으로 구동됩니다.
소켓을 먼저 바인딩한 뒤 stdout으로 시작 신호를 출력하므로, 런처는 이
신호만 보고 서버가 포트를 점유했는지 판단할 수 있습니다.
"""
import asyncio
import errno
import functools
import json
import os
import socket
import sys
from contextlib import asynccontextmanager
from typing import Optional, TypeAlias

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.routing import Route

from crosstool.version import __version__
from crosstool.core.constants import ENV_SERVER_CHILD, ENV_SERVER_LOG, PING_BODY, STARTUP_SIGNAL
from crosstool.core.db import ItemStore
from crosstool.core.errors import (
    CrossToolError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from crosstool.core.parsers import analyze_code, format_code
from crosstool.core.utils.file import read_text_file, write_text_file
from crosstool.core.utils.logging import get_logger

JsonObject: TypeAlias = dict[str, object]

logger = get_logger("crosstool.http_server")

ENDPOINTS = [
    "GET /ping",
    "GET /",
    "POST /database/init",
    "POST /database/items",
    "POST /database/clear",
    "POST /analyze",
    "POST /format",
]

_ERROR_STATUS = {
    ValidationError: 400,
    PermissionDeniedError: 403,
    NotFoundError: 404,
}


def _status_for(err: CrossToolError) -> int:
    for cls, status in _ERROR_STATUS.items():
        if isinstance(err, cls):
            return status
    return 500


class AsyncHttpServer:
    """
    Starlette 기반 비동기 HTTP 서버.

    lifespan 종료 시 저장소 연결을 정리합니다.
    """

    def __init__(
        self,
        store: ItemStore,
        allowed_tokens: Optional[set[str]] = None,
        version: str = __version__,
    ):
        self.store = store
        self.allowed_tokens = set(allowed_tokens or set())
        self.version = version
        self._app: Optional[Starlette] = None

    @asynccontextmanager
    async def lifespan(self, app: Starlette):
        logger.info("server_lifespan_start", storage=self.store.info())
        try:
            yield
        finally:
            self.store.close()
            logger.info("server_lifespan_stop")

    @staticmethod
    async def _read_json(request: Request) -> JsonObject:
        raw = await request.body()
        if not raw or not raw.strip():
            return {}
        try:
            body = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ValidationError(f"Invalid JSON body: {e}")
        if not isinstance(body, dict):
            raise ValidationError("JSON body must be an object")
        return body

    def _check_token(self, request: Request, body: JsonObject) -> None:
        token = body.get("securityToken") or request.headers.get("x-security-token") or ""
        if not token or str(token) not in self.allowed_tokens:
            raise PermissionDeniedError("Invalid security token")

    @staticmethod
    async def _offload(fn, *args, **kwargs):
        # Store, parser and file work runs in the executor so /ping keeps answering.
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))

    @staticmethod
    def _error(err: CrossToolError) -> JSONResponse:
        status = _status_for(err)
        if status >= 500:
            logger.error("request_failed", code=err.code, error=err.message)
        else:
            logger.warning("request_rejected", code=err.code, status=status, error=err.message)
        return JSONResponse(err.to_dict(), status_code=status)

    @staticmethod
    def _internal_error(where: str) -> JSONResponse:
        logger.exception("request_crashed", where=where)
        return JSONResponse({"error": "Internal server error"}, status_code=500)

    async def ping(self, request: Request) -> Response:
        return PlainTextResponse(PING_BODY)

    async def root(self, request: Request) -> JSONResponse:
        return JSONResponse({
            "status": "running",
            "version": self.version,
            "pid": os.getpid(),
            "storage": await self._offload(self.store.info),
            "endpoints": list(ENDPOINTS),
        })

    async def database_init(self, request: Request) -> JSONResponse:
        try:
            body = await self._read_json(request)
            result = await self._offload(self.store.initialize, seed=bool(body.get("seed", False)))
            return JSONResponse(result.model_dump(exclude_none=True))
        except CrossToolError as e:
            return self._error(e)
        except Exception:
            return self._internal_error("database_init")

    async def database_items(self, request: Request) -> JSONResponse:
        try:
            body = await self._read_json(request)
            action = str(body.get("action") or "").strip().lower()
            if action == "list":
                items = [item.model_dump() for item in await self._offload(self.store.list_items)]
                return JSONResponse({"items": items})
            if action == "add":
                result = await self._offload(self.store.add_item, body.get("name"))
            elif action == "update":
                result = await self._offload(self.store.update_item, body.get("id"), body.get("name"))
            elif action == "delete":
                result = await self._offload(self.store.delete_item, body.get("id"))
            else:
                raise ValidationError(f"Unknown action: {action or '<missing>'}")
            return JSONResponse(result.model_dump(exclude_none=True))
        except CrossToolError as e:
            return self._error(e)
        except Exception:
            return self._internal_error("database_items")

    async def database_clear(self, request: Request) -> JSONResponse:
        try:
            await self._read_json(request)
            result = await self._offload(self.store.clear)
            return JSONResponse(result.model_dump(exclude_none=True))
        except CrossToolError as e:
            return self._error(e)
        except Exception:
            return self._internal_error("database_clear")

    @staticmethod
    def _resolve_source(body: JsonObject) -> tuple[str, str, Optional[str]]:
        code = body.get("code")
        file_path = body.get("filePath")
        file_path = str(file_path) if file_path else None
        if isinstance(code, str) and code:
            file_name = os.path.basename(file_path) if file_path else "unknown"
            return code, file_name, file_path
        if file_path:
            return read_text_file(file_path), os.path.basename(file_path), file_path
        raise ValidationError("Either code or filePath must be provided")

    async def analyze(self, request: Request) -> JSONResponse:
        try:
            body = await self._read_json(request)
            self._check_token(request, body)
            code, file_name, _ = await self._offload(self._resolve_source, body)
            result = await self._offload(analyze_code, code, file_name)
            return JSONResponse(result.to_json())
        except CrossToolError as e:
            return self._error(e)
        except Exception:
            return self._internal_error("analyze")

    async def format(self, request: Request) -> JSONResponse:
        try:
            body = await self._read_json(request)
            self._check_token(request, body)
            code, _, file_path = await self._offload(self._resolve_source, body)
            formatted = await self._offload(format_code, code)
            if body.get("saveToFile") and file_path:
                await self._offload(write_text_file, file_path, formatted)
            return JSONResponse({"formatted": formatted, "changed": formatted != code})
        except CrossToolError as e:
            return self._error(e)
        except Exception:
            return self._internal_error("format")

    def create_app(self) -> Starlette:
        routes = [
            Route("/ping", self.ping, methods=["GET"]),
            Route("/", self.root, methods=["GET"]),
            Route("/database/init", self.database_init, methods=["POST"]),
            Route("/database/items", self.database_items, methods=["POST"]),
            Route("/database/clear", self.database_clear, methods=["POST"]),
            Route("/analyze", self.analyze, methods=["POST"]),
            Route("/format", self.format, methods=["POST"]),
        ]

        middleware = [
            Middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["GET", "POST", "OPTIONS"], allow_headers=["Content-Type", "X-Security-Token"]),
        ]

        self._app = Starlette(
            debug=False,
            routes=routes,
            middleware=middleware,
            lifespan=self.lifespan,
        )
        return self._app


def bind_listener(host: str, port: int) -> socket.socket:
    """Bind and listen on ``host:port``; raises ``OSError`` when the port is taken."""
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        if os.name != "nt":
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
        sock.listen(128)
    except OSError:
        sock.close()
        raise
    sock.set_inheritable(True)
    return sock


def supervised_log_path() -> Optional[str]:
    """Log file for a server spawned by a supervisor; None when run by hand."""
    if os.environ.get(ENV_SERVER_CHILD) != "1":
        return None
    return os.environ.get(ENV_SERVER_LOG) or None


def _detach_output(log_path: str) -> None:
    """Point fd 1 and 2 at ``log_path`` so a supervisor may drop its pipes."""
    os.makedirs(os.path.dirname(log_path) or ".", exist_ok=True)
    sys.stdout.flush()
    sys.stderr.flush()
    fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o644)
    try:
        os.dup2(fd, 1)
        os.dup2(fd, 2)
    finally:
        os.close(fd)


def serve(
    host: str,
    port: int,
    store: ItemStore,
    allowed_tokens: Optional[set[str]] = None,
    stdout=None,
    stderr=None,
) -> int:
    """
    Run the server in the foreground until interrupted.

    Returns:
        0 after a clean shutdown, 1 when the port could not be bound.
    """
    import uvicorn

    out = stdout or sys.stdout
    err = stderr or sys.stderr
    try:
        sock = bind_listener(host, port)
    except OSError as e:
        store.close()
        if e.errno == errno.EADDRINUSE:
            print(f"Error: listen EADDRINUSE: address already in use {host}:{port}", file=err, flush=True)
        else:
            print(f"Error: cannot listen on {host}:{port}: {e}", file=err, flush=True)
        return 1

    actual_port = int(sock.getsockname()[1])
    server = AsyncHttpServer(store=store, allowed_tokens=allowed_tokens)
    app = server.create_app()

    config = uvicorn.Config(
        app,
        host=host,
        port=actual_port,
        log_level="warning",
        access_log=False,
        lifespan="on",
    )
    uvicorn_server = uvicorn.Server(config)

    print(f"{STARTUP_SIGNAL} {actual_port}", file=out, flush=True)
    logger.info("server_started", host=host, port=actual_port, pid=os.getpid())
    log_path = supervised_log_path()
    if log_path and stdout is None:
        _detach_output(log_path)
    try:
        asyncio.run(uvicorn_server.serve(sockets=[sock]))
    except KeyboardInterrupt:
        pass
    finally:
        sock.close()
    print("Server stopped", file=out, flush=True)
    return 0
