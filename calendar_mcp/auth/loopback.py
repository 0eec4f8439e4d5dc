"""
Tool: Loopback Redirect Listener
Purpose: Receive the OAuth authorization redirect on a local ephemeral port

Browser-based flows need somewhere to land after consent. This starts a tiny
aiohttp server on 127.0.0.1 with an OS-assigned port, waits for the first
request carrying ?code= or ?error=, and shuts down.

Usage:
    async with LoopbackRedirectListener() as listener:
        open_browser(build_url(redirect_uri=listener.redirect_uri))
        params = await listener.wait_for_redirect(cancel_event=event)
"""

from __future__ import annotations

import asyncio
import logging

from aiohttp import web

from calendar_mcp.errors import AuthCancelledError

logger = logging.getLogger(__name__)


DEFAULT_REDIRECT_TIMEOUT = 300.0

_SUCCESS_PAGE = (
    "<html><body><h2>Authentication complete.</h2>"
    "<p>You can close this window and return to the terminal.</p></body></html>"
)
_FAILURE_PAGE = (
    "<html><body><h2>Authentication was not completed.</h2>"
    "<p>You can close this window and return to the terminal.</p></body></html>"
)


class LoopbackRedirectListener:
    def __init__(self, host: str = "127.0.0.1", redirect_host: str | None = None, path: str = "/"):
        self.host = host
        self.redirect_host = redirect_host or host
        self.path = path
        self.port: int | None = None
        self._runner: web.AppRunner | None = None
        self._result: asyncio.Future[dict[str, str]] | None = None

    @property
    def redirect_uri(self) -> str:
        if self.port is None:
            raise RuntimeError("Listener not started")
        # Both identity platforms accept any port on a bare loopback redirect
        path = "" if self.path == "/" else self.path
        return f"http://{self.redirect_host}:{self.port}{path}"

    async def start(self) -> None:
        loop = asyncio.get_running_loop()
        self._result = loop.create_future()

        app = web.Application()
        app.router.add_get(self.path, self._handle)
        self._runner = web.AppRunner(app, access_log=None)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, 0)
        await site.start()
        self.port = self._runner.addresses[0][1]
        logger.debug("Loopback listener started on port %d", self.port)

    async def close(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        if self._result is not None and not self._result.done():
            self._result.cancel()

    async def __aenter__(self) -> "LoopbackRedirectListener":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _handle(self, request: web.Request) -> web.Response:
        params = dict(request.query)
        # Browsers also ask for /favicon.ico and similar; only the redirect counts
        if "code" not in params and "error" not in params:
            return web.Response(status=404)

        if self._result is not None and not self._result.done():
            self._result.set_result(params)

        page = _SUCCESS_PAGE if "code" in params else _FAILURE_PAGE
        return web.Response(text=page, content_type="text/html")

    async def wait_for_redirect(
        self,
        cancel_event: asyncio.Event | None = None,
        timeout: float = DEFAULT_REDIRECT_TIMEOUT,
        account_id: str | None = None,
    ) -> dict[str, str]:
        """
        Wait for the authorization redirect.

        Returns:
            The redirect query parameters (code/state or error/error_description)

        Raises:
            AuthCancelledError: If cancel_event is set or the timeout passes first
        """
        if self._result is None:
            raise RuntimeError("Listener not started")

        waiters: set[asyncio.Future] = {self._result}
        cancel_task = None
        if cancel_event is not None:
            cancel_task = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_task)

        try:
            done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if cancel_task is not None and not cancel_task.done():
                cancel_task.cancel()

        if self._result in done:
            return self._result.result()

        if cancel_task is not None and cancel_task in done:
            raise AuthCancelledError(account_id)
        raise AuthCancelledError(account_id, "Timed out waiting for the browser sign-in to complete")
