"""
Data Services — API Server & Lifecycle Controller
===================================================

What:  Assembles the FastAPI application from discovered components and owns
       the listening socket, the status state machine and shutdown.
How:   Construction (status INITIALIZING):
           1. Application middleware: request context (id + access log), gzip, CORS
           2. Component loading: provided → injectables → middlewares
              (+ STANDARD) → services
           3. OpenAPI document synthesized from the service files
           4. Routes built from the document (fatal on bad definitions)
           5. Docs routes and exception handlers
       start():    binds the socket, serves it with uvicorn, reports LISTENING
                   then CONNECTED
       shutdown(): stops uvicorn, emits "shutdown complete" with an exit code
Who:   Owned by the entry point (data_services.main); tests build their own.

Status transitions:
    INITIALIZING → STARTING → LISTENING → CONNECTED
                            ↘ ERROR → (shutdown) → START_FAILED
    any → SHUTTING_DOWN → SHUTDOWN | SHUTDOWN_FAILED

Exit codes passed to shutdown-complete listeners:
    exit_code if non-zero, else 1 when an error was given, else 0.
    fail(error) uses 6; bind failures use 1; signals use the signal number.
"""

import asyncio
import errno
import logging
import socket
from contextlib import asynccontextmanager, contextmanager
from enum import Enum
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, List, Optional, Set, Tuple, Union

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from pydantic import BaseModel, ConfigDict, Field

from data_services import __version__
from data_services.config import settings
from data_services.loader import (
    DEFAULT_INJECTABLE_LOCATIONS,
    DEFAULT_MIDDLEWARE_LOCATIONS,
    DEFAULT_SERVICE_LOCATIONS,
    ComponentLoader,
    locate,
)
from data_services.logging_setup import get_logger
from data_services.middleware.request_context import RequestContextMiddleware
from data_services.middleware.standard import STANDARD_NAME, StandardMiddlewares
from data_services.openapi import RequestValidator, synthesize_document
from data_services.router import RouteBuilder, build_route_entries, register_exception_handlers
from data_services.routes.docs import create_docs_router

logger = logging.getLogger(__name__)

Hook = Callable[[], Union[Awaitable[Any], Any]]


class ServerStatus(str, Enum):
    UNKNOWN = "UNKNOWN"
    INITIALIZING = "INITIALIZING"
    STARTING = "STARTING"
    START_FAILED = "START_FAILED"
    LISTENING = "LISTENING"
    CONNECTED = "CONNECTED"
    ERROR = "ERROR"
    SHUTTING_DOWN = "SHUTTING_DOWN"
    SHUTDOWN = "SHUTDOWN"
    SHUTDOWN_FAILED = "SHUTDOWN_FAILED"


_STARTED_STATES = (ServerStatus.STARTING, ServerStatus.LISTENING, ServerStatus.CONNECTED)
_STOPPED_STATES = (
    ServerStatus.START_FAILED,
    ServerStatus.SHUTTING_DOWN,
    ServerStatus.SHUTDOWN,
    ServerStatus.SHUTDOWN_FAILED,
)
_SHUTDOWN_STATES = (ServerStatus.SHUTTING_DOWN, ServerStatus.SHUTDOWN, ServerStatus.SHUTDOWN_FAILED)


class ServerOptions(BaseModel):
    """
    Options for one ApiServer.

    Locations are glob patterns; `None` means the package conventions
    (services/**/*_service.py and so on). Module lists hold importable
    module names and are located in addition to the globs.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    service_locations: Optional[List[str]] = None
    middleware_locations: Optional[List[str]] = None
    injectable_locations: Optional[List[str]] = None
    services: List[str] = Field(default_factory=list)
    middlewares: List[str] = Field(default_factory=list)
    injectables: List[str] = Field(default_factory=list)

    # Already-built objects registered as injectables under these names
    provided: Dict[str, Any] = Field(default_factory=dict)

    # True → allow configured origins; a dict → CORSMiddleware keyword arguments
    cors: Union[bool, Dict[str, Any]] = False
    cors_origin: str = "*"

    docs_challenge: str = "12345"
    title: str = "data-services"
    description: str = ""
    version: str = __version__

    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=0, le=65535)

    on_startup: List[Hook] = Field(default_factory=list)
    on_shutdown: List[Hook] = Field(default_factory=list)
    on_listening: Optional[Hook] = None


class _UvicornServer(uvicorn.Server):
    """uvicorn.Server that leaves process signals to the entry point."""

    @contextmanager
    def capture_signals(self):
        yield

    def install_signal_handlers(self) -> None:
        pass


async def _run_hook(hook: Hook) -> Any:
    result = hook()
    if asyncio.iscoroutine(result) or isinstance(result, asyncio.Future):
        result = await result
    return result


class ApiServer:
    """
    Convention-driven API server.

    Usage:
        server = ApiServer(ServerOptions(cors=True, provided={"DataStore": store}))
        server.on_shutdown_complete(lambda code: print("exit", code))
        await server.start()
        ...
        await server.shutdown()
    """

    STATUS_STATES = ServerStatus

    def __init__(self, options: Optional[ServerOptions] = None):
        self._status = ServerStatus.UNKNOWN
        self._set_status(ServerStatus.INITIALIZING)
        self.options = options or ServerOptions()

        self._start_task: Optional[asyncio.Future] = None
        self._shutdown_task: Optional[asyncio.Future] = None
        self._serve_task: Optional[asyncio.Future] = None
        self._uvicorn: Optional[_UvicornServer] = None
        self._address: Optional[Tuple[str, int]] = None
        self._exit_code: Optional[int] = None
        self._listeners: List[Callable[[int], Any]] = []
        self._background: Set[asyncio.Task] = set()

        self.app = FastAPI(
            title=self.options.title,
            description=self.options.description,
            version=self.options.version,
            docs_url=None,
            redoc_url=None,
            openapi_url=None,
            lifespan=self._lifespan,
        )
        self._install_app_middleware()

        self.loader = ComponentLoader({"api_server": self, "log": get_logger})
        self._load_components()

        self.document = synthesize_document(
            self._service_paths,
            title=self.options.title,
            version=self.options.version,
            description=self.options.description,
        )
        # Served by the docs routes in place of FastAPI's generated schema
        self.app.openapi_schema = self.document
        self.validator = RequestValidator(self.document)

        self.routes = build_route_entries(
            self.document, self.loader.services, self.loader.middlewares
        )
        RouteBuilder(self.loader.services, self.loader.middlewares, self.validator).register(
            self.app, self.routes
        )
        self.app.include_router(
            create_docs_router(
                lambda: self.document,
                self.options.docs_challenge,
                title=f"{self.options.title} API Docs",
            )
        )
        register_exception_handlers(self.app)

        logger.info(
            "Server initialized: %d service(s), %d middleware(s), %d injectable(s), %d route(s)",
            len(self.loader.services),
            len(self.loader.middlewares),
            len(self.loader.injectables),
            len(self.routes),
        )

    # ══════════════════════════════════════════════════════════════════════
    # Construction
    # ══════════════════════════════════════════════════════════════════════

    def _install_app_middleware(self) -> None:
        # Executes in reverse order of addition: RequestContext → GZip → CORS
        if self.options.cors:
            if isinstance(self.options.cors, dict):
                cors_options = dict(self.options.cors)
            else:
                cors_options = {
                    "allow_origins": settings.cors_origins_list or ["*"],
                    "allow_methods": ["*"],
                    "allow_headers": ["*"],
                }
            cors_options.setdefault("expose_headers", ["X-Request-ID"])
            self.app.add_middleware(CORSMiddleware, **cors_options)
        self.app.add_middleware(GZipMiddleware, minimum_size=500)
        self.app.add_middleware(RequestContextMiddleware)

    def _load_components(self) -> None:
        options = self.options
        for name, obj in options.provided.items():
            self.loader.provide(name, obj)

        injectable_paths = locate(
            DEFAULT_INJECTABLE_LOCATIONS if options.injectable_locations is None
            else options.injectable_locations,
            options.injectables,
        )
        self.loader.load(injectable_paths, self.loader.injectables)

        middleware_paths = locate(
            DEFAULT_MIDDLEWARE_LOCATIONS if options.middleware_locations is None
            else options.middleware_locations,
            options.middlewares,
        )
        self.loader.load(middleware_paths, self.loader.middlewares)
        self.loader.middlewares[STANDARD_NAME] = StandardMiddlewares(origin=options.cors_origin)

        self._service_paths = locate(
            DEFAULT_SERVICE_LOCATIONS if options.service_locations is None
            else options.service_locations,
            options.services,
        )
        self.loader.load(self._service_paths, self.loader.services)

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI) -> AsyncGenerator[None, None]:
        for hook in self.options.on_startup:
            await _run_hook(hook)
        yield
        for hook in self.options.on_shutdown:
            try:
                await _run_hook(hook)
            except Exception as e:
                logger.error("Shutdown hook failed: %s", str(e), exc_info=True)

    # ══════════════════════════════════════════════════════════════════════
    # Status
    # ══════════════════════════════════════════════════════════════════════

    def get_status(self) -> ServerStatus:
        return self._status

    @property
    def _stopping(self) -> bool:
        return self._status in _SHUTDOWN_STATES

    def _set_status(self, status: Union[ServerStatus, str]) -> None:
        try:
            self._status = ServerStatus(status)
        except ValueError:
            raise ValueError(f"Unknown status {status!r}")
        logger.debug("Server status → %s", self._status.value)

    @property
    def address(self) -> Optional[Tuple[str, int]]:
        """(host, port) of the listening socket once bound."""
        return self._address

    @property
    def exit_code(self) -> Optional[int]:
        return self._exit_code

    def on_shutdown_complete(self, callback: Callable[[int], Any]) -> None:
        """Register a callback receiving the exit code when shutdown finishes."""
        self._listeners.append(callback)

    # ══════════════════════════════════════════════════════════════════════
    # Start
    # ══════════════════════════════════════════════════════════════════════

    async def start(self) -> None:
        """
        Bind the socket and start serving.

        Concurrent or repeated calls while starting/running await the same
        start attempt; the socket is bound once. Once shutdown has begun,
        start() does nothing.

        Raises:
            OSError: the address could not be bound (after shutdown(err, 1))
            RuntimeError: the ASGI lifespan startup failed
        """
        if self._stopping:
            logger.warning("start() called after shutdown began; ignoring")
            return
        if self._status not in _STARTED_STATES or self._start_task is None:
            self._set_status(ServerStatus.STARTING)
            self._start_task = asyncio.ensure_future(self._start())
        await asyncio.shield(self._start_task)

    async def _start(self) -> None:
        try:
            await self._listen()
            if not self._stopping:
                self._set_status(ServerStatus.CONNECTED)
        except Exception as e:
            logger.error("Server failed to start: %s", str(e))
            self._set_status(ServerStatus.START_FAILED)
            raise

    def _bind(self) -> socket.socket:
        host, port = self.options.host, self.options.port
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, port))
            sock.listen(2048)
        except OSError:
            sock.close()
            raise
        sock.set_inheritable(True)
        return sock

    async def _listen(self) -> None:
        if self._stopping:
            return
        try:
            sock = self._bind()
        except OSError as e:
            await self._on_error(e)
            raise

        config = uvicorn.Config(
            self.app,
            lifespan="on",
            log_config=None,
            access_log=False,
        )
        self._uvicorn = _UvicornServer(config)
        self._serve_task = asyncio.ensure_future(self._serve(sock))

        while not self._uvicorn.started:
            if self._serve_task.done():
                sock.close()
                if not self._serve_task.cancelled() and self._serve_task.exception():
                    raise self._serve_task.exception()
                raise RuntimeError("Server stopped before it started listening")
            await asyncio.sleep(0.01)

        self._address = sock.getsockname()[:2]
        if self._stopping:
            logger.info("Shutdown requested while starting; skipping on_listening")
            return
        self._on_listening()

    async def _serve(self, sock: socket.socket) -> None:
        try:
            await self._uvicorn.serve(sockets=[sock])
        except SystemExit as e:
            # uvicorn exits the process when lifespan startup fails
            raise RuntimeError(f"Server exited during startup (code {e.code})") from e

    async def _on_error(self, error: OSError) -> None:
        self._set_status(ServerStatus.ERROR)
        if error.errno == errno.EACCES:
            logger.error("Binding %s:%d requires elevated privileges.", self.options.host, self.options.port)
        elif error.errno == errno.EADDRINUSE:
            logger.error("Cannot start: port %d is already in use.", self.options.port)
        else:
            logger.error("Server socket encountered an error: %s", str(error))
        await self.shutdown(error, 1)

    def _on_listening(self) -> None:
        self._set_status(ServerStatus.LISTENING)
        host, port = self._address
        logger.info("Listening on address %s and port %d", host, port)
        if self.options.on_listening is not None:
            task = asyncio.ensure_future(self._run_listening_hook())
            self._background.add(task)
            task.add_done_callback(self._background.discard)

    async def _run_listening_hook(self) -> None:
        try:
            await _run_hook(self.options.on_listening)
        except Exception as e:
            logger.error("on_listening hook failed: %s", str(e), exc_info=True)

    # ══════════════════════════════════════════════════════════════════════
    # Shutdown
    # ══════════════════════════════════════════════════════════════════════

    async def shutdown(self, error: Any = None, exit_code: int = 0) -> Optional[int]:
        """
        Stop serving and notify shutdown-complete listeners.

        Calls made while already stopping or stopped await the existing
        shutdown (or return at once) without closing anything again.

        Returns:
            The exit code emitted to listeners.
        """
        if self._status in _STOPPED_STATES:
            if self._shutdown_task is not None:
                await asyncio.shield(self._shutdown_task)
            return self._exit_code

        self._set_status(ServerStatus.SHUTTING_DOWN)
        if error is not None:
            logger.error("Server encountered a failure and is being shut down: %s", error)
        self._shutdown_task = asyncio.ensure_future(self._shutdown(error, exit_code))
        return await asyncio.shield(self._shutdown_task)

    async def _shutdown(self, error: Any, exit_code: int) -> int:
        try:
            await self._close()
            self._set_status(ServerStatus.SHUTDOWN)
        except Exception as e:
            logger.error(
                "Server failed to shut down cleanly, check for leftover resources: %s",
                str(e),
                exc_info=True,
            )
            self._set_status(ServerStatus.SHUTDOWN_FAILED)

        if exit_code:
            code = exit_code
        elif error is not None:
            code = 1
        else:
            code = 0
        self._exit_code = code
        logger.info("Server exiting with code %d", code)

        for callback in list(self._listeners):
            try:
                result = callback(code)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error("Shutdown-complete listener failed: %s", str(e), exc_info=True)
        return code

    async def _close(self) -> None:
        start_task = self._start_task
        if start_task is not None and not start_task.done() and self._uvicorn is not None:
            # uvicorn only closes its listeners once startup has finished
            await asyncio.wait([start_task])
        if self._uvicorn is None or self._serve_task is None:
            return
        self._uvicorn.should_exit = True
        await self._serve_task

    async def fail(self, error: BaseException) -> Optional[int]:
        """Shut down with exit code 6."""
        return await self.shutdown(error, 6)
