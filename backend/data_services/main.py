"""
Data Services — Process Entry Point
=====================================

What:  Builds the ApiServer from settings, starts it and turns its shutdown
       into the process exit code.
How:   create_api_server() maps Settings onto ServerOptions and wires the
       data layer in:
           provided injectables: {"DataStore": data_store}
           lifespan startup:     init_models()    (CREATE TABLE IF NOT EXISTS)
           lifespan shutdown:    dispose_engine()
           on listening:         data_store.seed_all()  (SEED_ON_STARTUP)
       serve() owns the event loop side: signal handlers, the loop exception
       handler and waiting for shutdown-complete.
Who:   `python -m data_services` or the `data-services` console script.
       create_app() is an app factory for running under another ASGI server:
           uvicorn --factory data_services.main:create_app

Process exit codes:
    0        clean shutdown
    1        bind failure, startup failure, uncaught exception
    1/2/15   SIGHUP / SIGINT / SIGTERM (the signal number)
    6        ApiServer.fail()
"""

import asyncio
import logging
import signal
import sys
from typing import Optional

from fastapi import FastAPI

from data_services import __version__
from data_services.config import settings
from data_services.database import dispose_engine, init_models
from data_services.logging_setup import setup_logging
from data_services.server import ApiServer, ServerOptions, ServerStatus
from data_services.utils.data_store import data_store

logger = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGHUP, signal.SIGINT, signal.SIGTERM)


# ══════════════════════════════════════════════════════════════════════════
# Server Factory
# ══════════════════════════════════════════════════════════════════════════

def build_options() -> ServerOptions:
    """ServerOptions for the stock deployment, read from settings."""
    return ServerOptions(
        service_locations=settings.service_locations or None,
        middleware_locations=settings.middleware_locations or None,
        injectable_locations=settings.injectable_locations or None,
        services=settings.services,
        middlewares=settings.middlewares,
        injectables=settings.injectables,
        provided={"DataStore": data_store},
        cors=settings.cors_enabled,
        cors_origin=settings.cors_origins_list[0] if settings.cors_origins_list else "*",
        docs_challenge=settings.docs_challenge,
        title=settings.app_name,
        description=settings.app_description,
        version=__version__,
        host=settings.backend_host,
        port=settings.backend_port,
        on_startup=[init_models],
        on_shutdown=[dispose_engine],
        on_listening=data_store.seed_all if settings.seed_on_startup else None,
    )


def create_api_server(options: Optional[ServerOptions] = None) -> ApiServer:
    return ApiServer(options or build_options())


def create_app() -> FastAPI:
    """ASGI application of a freshly built server."""
    return create_api_server().app


# ══════════════════════════════════════════════════════════════════════════
# Process Lifecycle
# ══════════════════════════════════════════════════════════════════════════

async def serve(server: Optional[ApiServer] = None) -> int:
    """
    Run `server` until it shuts down and return its exit code.

    Flow:
        1. Register SIGHUP/SIGINT/SIGTERM → server.shutdown(name, number)
        2. Unhandled task errors → logged, exit code 1
        3. start(); a failed start ends with exit code 1
        4. Wait for shutdown-complete
    """
    loop = asyncio.get_running_loop()
    server = server or create_api_server()
    done: asyncio.Future = loop.create_future()

    def _complete(exit_code: int) -> None:
        if not done.done():
            done.set_result(exit_code)

    server.on_shutdown_complete(_complete)

    def _on_signal(sig: signal.Signals) -> None:
        logger.critical("Received a %s signal", sig.name)
        asyncio.ensure_future(server.shutdown(sig.name, int(sig)))

    for sig in HANDLED_SIGNALS:
        try:
            loop.add_signal_handler(sig, _on_signal, sig)
        except (NotImplementedError, RuntimeError):
            # No loop signal support (e.g. Windows or a non-main thread)
            logger.debug("Signal handler for %s not installed", sig.name)

    def _on_loop_exception(loop: asyncio.AbstractEventLoop, context: dict) -> None:
        logger.error(
            "Exiting due to an unhandled error: %s",
            context.get("message"),
            exc_info=context.get("exception"),
        )
        _complete(1)

    loop.set_exception_handler(_on_loop_exception)

    try:
        await server.start()
    except Exception as e:
        logger.error("Startup failed: %s", str(e))
        if server.get_status() not in (ServerStatus.SHUTDOWN, ServerStatus.SHUTDOWN_FAILED):
            await server.shutdown(e, 1)
        _complete(1)

    exit_code = await done
    if server.get_status() not in (
        ServerStatus.SHUTTING_DOWN,
        ServerStatus.SHUTDOWN,
        ServerStatus.SHUTDOWN_FAILED,
        ServerStatus.START_FAILED,
    ):
        await server.shutdown(None, exit_code)

    for sig in HANDLED_SIGNALS:
        try:
            loop.remove_signal_handler(sig)
        except (NotImplementedError, RuntimeError):
            pass
    logger.critical("Exiting with code: %d", exit_code)
    return exit_code


def _excepthook(exc_type, exc_value, exc_traceback) -> None:
    logger.critical(
        "Exiting due to an uncaught exception",
        exc_info=(exc_type, exc_value, exc_traceback),
    )


def main() -> None:
    setup_logging()
    sys.excepthook = _excepthook
    logger.info("=" * 60)
    logger.info("%s %s starting up...", settings.app_name, __version__)
    try:
        server = create_api_server()
    except Exception:
        logger.critical("Server construction failed", exc_info=True)
        sys.exit(1)
    sys.exit(asyncio.run(serve(server)))


if __name__ == "__main__":
    main()
