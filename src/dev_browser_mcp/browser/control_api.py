"""
Control API

HTTP surface through which clients perform registry operations and learn the
browser's remote-debugging endpoint.

    GET    /              -> {"wsEndpoint": str}
    POST   /pages         -> {"targetId": str}     body {"name": str}
    GET    /pages         -> {"pages": [str]}
    DELETE /pages/{name}  -> {"success": true}     404 if unknown
"""

import json
from typing import Callable

from aiohttp import web

from ..exceptions import PageNotFoundError
from ..types import ErrorResponse, GetPageResponse, ListPagesResponse, ServerInfoResponse
from ..utils.logging_config import get_logger
from .registry import PageRegistry

logger = get_logger(__name__)


def _error(status: int, message: str) -> web.Response:
    return web.json_response(ErrorResponse(error=message), status=status)


class ControlAPI:
    """aiohttp application exposing a PageRegistry"""

    def __init__(self, registry: PageRegistry, ws_endpoint: Callable[[], str]):
        """
        Initialize the control API.

        Args:
            registry: Registry the routes operate on
            ws_endpoint: Callable returning the browser's CDP WebSocket endpoint
        """
        self.registry = registry
        self._ws_endpoint = ws_endpoint
        self._runner: web.AppRunner | None = None
        self.app = self._build_app()

    def _build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/", self.handle_info)
        app.router.add_post("/pages", self.handle_get_or_create)
        app.router.add_get("/pages", self.handle_list)
        app.router.add_delete("/pages/{name}", self.handle_close)
        return app

    async def handle_info(self, request: web.Request) -> web.Response:
        return web.json_response(ServerInfoResponse(wsEndpoint=self._ws_endpoint()))

    async def handle_get_or_create(self, request: web.Request) -> web.Response:
        try:
            body = await request.json()
        except json.JSONDecodeError:
            return _error(400, "Invalid JSON")

        name = body.get("name") if isinstance(body, dict) else None
        if not isinstance(name, str) or not name:
            return _error(400, "name is required")

        try:
            target_id = await self.registry.get_or_create(name)
        except ValueError as e:
            return _error(400, str(e))

        return web.json_response(GetPageResponse(targetId=target_id))

    async def handle_list(self, request: web.Request) -> web.Response:
        return web.json_response(ListPagesResponse(pages=self.registry.list()))

    async def handle_close(self, request: web.Request) -> web.Response:
        name = request.match_info["name"]
        try:
            await self.registry.close(name)
        except PageNotFoundError as e:
            return _error(404, str(e))

        return web.json_response({"success": True})

    async def start(self, host: str, port: int) -> None:
        """
        Start listening.

        Args:
            host: Interface to bind
            port: TCP port
        """
        runner = web.AppRunner(self.app)
        await runner.setup()
        self._runner = runner

        site = web.TCPSite(runner, host, port)
        try:
            await site.start()
        except OSError:
            await runner.cleanup()
            self._runner = None
            raise

        logger.info(f"Control API listening on http://{host}:{port}")

    async def stop(self) -> None:
        """Stop listening and release the port."""
        if self._runner is None:
            return
        await self._runner.cleanup()
        self._runner = None
        logger.info("Control API stopped")
