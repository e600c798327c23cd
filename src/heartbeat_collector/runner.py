"""Run the public and admin listeners in one process.

Both uvicorn servers share one HeartbeatService and run as sibling
tasks in a TaskGroup. SIGINT/SIGTERM set a stop event that tells both
servers to exit; a server that stops on its own sets it too, so the
other one follows. The store is closed once both have finished.
"""

import asyncio
import contextlib
import logging
import signal

import uvicorn

from heartbeat_collector.config import Settings, parse_listen_addr
from heartbeat_collector.service import HeartbeatService
from heartbeat_collector.store import SQLiteHeartbeatStore
from heartbeat_collector.web import create_admin_app, create_public_app

logger = logging.getLogger(__name__)


class _Listener(uvicorn.Server):
    """uvicorn server that leaves signal handling to the runner."""

    def __init__(self, config: uvicorn.Config, name: str):
        super().__init__(config)
        self.name = name

    @contextlib.contextmanager
    def capture_signals(self):
        yield

    def install_signal_handlers(self) -> None:
        pass


def build_listeners(settings: Settings, service: HeartbeatService) -> list[_Listener]:
    """Create the public and admin servers for a service."""
    listeners = []
    for name, addr, app in (
        ("public", settings.public_addr, create_public_app(service)),
        ("admin", settings.admin_addr, create_admin_app(service)),
    ):
        host, port = parse_listen_addr(addr)
        config = uvicorn.Config(app, host=host, port=port, log_level="warning")
        listeners.append(_Listener(config, name))
    return listeners


async def _run_listener(listener: _Listener, stop: asyncio.Event) -> None:
    host, port = listener.config.host, listener.config.port
    logger.info(f"{listener.name} server starting on {host}:{port}")
    try:
        await listener.serve()
    finally:
        logger.info(f"{listener.name} server shutdown")
        stop.set()


async def _watch_stop(listeners: list[_Listener], stop: asyncio.Event) -> None:
    await stop.wait()
    for listener in listeners:
        listener.should_exit = True


async def serve_listeners(listeners: list[_Listener], stop: asyncio.Event | None = None) -> None:
    """Run listeners until stop is set or any of them exits."""
    stop = stop or asyncio.Event()
    loop = asyncio.get_running_loop()

    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _on_signal, sig, stop)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # Not the main thread, or a platform without loop signal support
            pass

    try:
        async with asyncio.TaskGroup() as group:
            group.create_task(_watch_stop(listeners, stop))
            for listener in listeners:
                group.create_task(_run_listener(listener, stop))
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def _on_signal(sig: signal.Signals, stop: asyncio.Event) -> None:
    logger.info(f"received {sig.name}, exiting")
    stop.set()


def serve(settings: Settings) -> None:
    """Open the store and serve both listeners until told to stop."""
    store = SQLiteHeartbeatStore(settings.db_path)
    service = HeartbeatService(store, model=settings.freshness_model)
    logger.info(f"{settings.app_name} using {service.model.value} freshness model")
    try:
        asyncio.run(serve_listeners(build_listeners(settings, service)))
    finally:
        store.close()
        logger.info(f"closed DB at {settings.db_path}")
