"""Serve the rendered chart locally and open it in the default browser."""

import asyncio
import logging
import webbrowser
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeAlias

from aiohttp import web

from gotest_timeline.chart import PlotlyTrace
from gotest_timeline.errors import BrowserError, RenderError
from gotest_timeline.models.timeline import Timeline
from gotest_timeline.render import render_html

log = logging.getLogger(__name__)

LOAD_TIMEOUT = 10.0

BrowserOpener: TypeAlias = Callable[[str], Awaitable[None]]


async def open_browser(url: str) -> None:
    """Open ``url`` with the platform default browser.

    Raises:
        BrowserError: If no browser could be launched

    """
    try:
        opened = await asyncio.to_thread(webbrowser.open, url)
    except webbrowser.Error as exc:
        raise BrowserError(f"Error opening browser: {exc}") from exc

    if not opened:
        raise BrowserError(f"No browser available to open {url}")


def create_app(
    timeline: Timeline,
    traces: Sequence[PlotlyTrace],
    loaded: asyncio.Event,
) -> web.Application:
    """Build the application serving the chart and the load signal."""

    async def index(request: web.Request) -> web.Response:
        try:
            rendered = render_html(timeline, traces, call_on_load=True)
        except RenderError as exc:
            log.error("%s", exc)
            return web.Response(status=500, text=str(exc))

        return web.Response(text=rendered, content_type="text/html")

    async def page_loaded(request: web.Request) -> web.Response:
        # setting an already set event is a no-op
        loaded.set()
        return web.Response()

    app = web.Application()
    app.router.add_get("/", index)
    app.router.add_get("/loaded", page_loaded)
    return app


async def serve_html(
    timeline: Timeline,
    traces: Sequence[PlotlyTrace],
    *,
    keep_running: bool,
    shutdown: asyncio.Event,
    load_timeout: float = LOAD_TIMEOUT,
    open_browser: BrowserOpener = open_browser,
    access_log: bool = False,
) -> None:
    """Serve the chart on an ephemeral port until the browser has loaded it.

    Waits for whichever comes first: the page reporting ``GET /loaded``,
    ``load_timeout`` seconds, or ``shutdown``. With ``keep_running`` only
    ``shutdown`` ends the wait.

    Raises:
        OSError: If the listener cannot be bound
        BrowserError: If the browser cannot be launched

    """
    loaded = asyncio.Event()
    app = create_app(timeline, traces, loaded)

    runner = web.AppRunner(
        app,
        access_log=logging.getLogger("aiohttp.access") if access_log else None,
    )
    await runner.setup()

    try:
        site = web.TCPSite(runner, "127.0.0.1", 0)
        await site.start()

        host, port = runner.addresses[0][:2]
        url = f"http://{host}:{port}"
        log.info("Serving test timeline at %s", url)

        await open_browser(url)

        await _wait_for_page(loaded, shutdown, keep_running, load_timeout)
    finally:
        log.debug("Shutting down the server...")
        await runner.cleanup()


async def _wait_for_page(
    loaded: asyncio.Event,
    shutdown: asyncio.Event,
    keep_running: bool,
    load_timeout: float,
) -> None:
    waiters = {asyncio.create_task(shutdown.wait(), name="shutdown")}
    if not keep_running:
        waiters.add(asyncio.create_task(loaded.wait(), name="loaded"))

    try:
        done, _ = await asyncio.wait(
            waiters,
            timeout=None if keep_running else load_timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )
    finally:
        for waiter in waiters:
            waiter.cancel()

    if not done:
        log.error(
            "Timeout: browser did not load the page within %s seconds", load_timeout
        )
    elif shutdown.is_set():
        log.debug("Shutdown requested")
    else:
        log.debug("Browser successfully loaded the page")
