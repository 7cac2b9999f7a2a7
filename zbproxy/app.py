"""Command entry point: start the services and reload them when the config changes."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from pathlib import Path

from .config import CONFIG_FILE, ConfigError, load_config, reload_config
from .console import VERSION, build_info, set_title
from .service import ProxyServer, ServiceError

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.1

_BANNER = (
    " ______  _____   _____   _____    _____  __    __ __    __\n"
    "|___  / |  _  \\ |  _  \\ |  _  \\  /  _  \\ \\ \\  / / \\ \\  / /\n"
    "   / /  | |_| | | |_| | | |_| |  | | | |  \\ \\/ /   \\ \\/ /\n"
    "  / /   |  _  { |  ___/ |  _  /  | | | |   }  {     \\  /\n"
    " / /__  | |_| | | |     | | \\ \\  | |_| |  / /\\ \\    / /\n"
    "/_____| |_____/ |_|     |_|  \\_\\ \\_____/ /_/  \\_\\  /_/"
)


def banner() -> str:
    """The start-up logo."""
    return _BANNER


class ConfigWatcher:
    """Notices changes to a file by polling its modification time and size."""

    def __init__(self, path: str | Path, debounce: float = 0.1) -> None:
        self.path = Path(path)
        self.debounce = debounce
        self._last = self._signature()

    def _signature(self) -> tuple[int, int] | None:
        try:
            st = self.path.stat()
        except FileNotFoundError:
            return None
        return st.st_mtime_ns, st.st_size

    def changed(self) -> bool:
        """Whether the file differs from the last time it was looked at."""
        current = self._signature()
        if current == self._last:
            return False
        self._last = current
        return True

    async def wait_for_change(self) -> Path:
        """Wait for a change, then until writes have been quiet for ``debounce`` seconds."""
        while not self.changed():
            await asyncio.sleep(POLL_INTERVAL)
        loop = asyncio.get_running_loop()
        quiet_since = loop.time()
        while loop.time() - quiet_since < self.debounce:
            await asyncio.sleep(min(POLL_INTERVAL, self.debounce))
            if self.changed():
                quiet_since = loop.time()
        return self.path


def _install_signal(loop: asyncio.AbstractEventLoop, name: str, callback) -> None:
    signum = getattr(signal, name, None)
    if signum is None:
        return
    with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
        loop.add_signal_handler(signum, callback)


async def run(config_path: str | Path = CONFIG_FILE) -> None:
    """Run the services until interrupted, reloading on file changes or SIGHUP."""
    set_title(f"ZBProxy {VERSION} | Running...", sys.stdout)
    print(banner())
    print(f"Welcome to ZBProxy {VERSION}!")
    print(build_info())

    config = load_config(config_path)
    server = ProxyServer(config)
    await server.start()

    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    reload_requested = asyncio.Event()
    _install_signal(loop, "SIGINT", stop.set)
    _install_signal(loop, "SIGTERM", stop.set)
    _install_signal(loop, "SIGHUP", reload_requested.set)

    watcher = ConfigWatcher(config_path)
    try:
        while not stop.is_set():
            waiters = {
                asyncio.ensure_future(watcher.wait_for_change()),
                asyncio.ensure_future(reload_requested.wait()),
                asyncio.ensure_future(stop.wait()),
            }
            _, pending = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            for task in pending:
                task.cancel()
            if stop.is_set():
                break
            reload_requested.clear()
            logger.info("Config Reload : File change detected. Reloading...")
            try:
                new_config = reload_config(config_path)
            except ConfigError as exc:
                logger.error("%s", exc)
                logger.info("Config Reload : Failed to reload Lists.")
                continue
            logger.info("Config Reload : Successfully reloaded Lists.")
            try:
                await server.restart(new_config)
            except ServiceError as exc:
                logger.error("Config Reload Error : %s", exc)
    finally:
        await server.stop()


def main(argv: list[str] | None = None) -> int:
    """Parse arguments and run the proxy."""
    parser = argparse.ArgumentParser(prog="zbproxy", description="Run the ZBProxy services.")
    parser.add_argument("-c", "--config", default=CONFIG_FILE,
                        help="configuration file (default: %(default)s)")
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")
    try:
        asyncio.run(run(args.config))
    except KeyboardInterrupt:
        pass
    except (ConfigError, ServiceError) as exc:
        logger.error("%s", exc)
        return 1
    return 0