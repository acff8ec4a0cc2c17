from collections.abc import Awaitable, Callable
from urllib.parse import parse_qs

import httpx
import pytest

from oauthclient.models.settings import ClientSettings
from oauthclient.services.protocol import OAuth2ProtocolClient

Handler = Callable[[httpx.Request], httpx.Response | Awaitable[httpx.Response]]


class FakeAuthServer:
    """In-memory authorization server served through httpx.MockTransport."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self._routes: dict[str, Handler | httpx.Response] = {}

    def route(self, path: str, handler: Handler | httpx.Response) -> None:
        """Answer requests to ``path`` with a fixed response or a handler."""
        self._routes[path] = handler

    def requests_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self._routes.get(request.url.path)
        if handler is None:
            return httpx.Response(404, text="Not Found")
        if isinstance(handler, httpx.Response):
            return handler
        response = handler(request)
        if not isinstance(response, httpx.Response):
            response = await response
        return response

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handle))

    @staticmethod
    def form(request: httpx.Request) -> dict[str, list[str]]:
        """Decode an application/x-www-form-urlencoded request body."""
        return parse_qs(request.content.decode("ascii"))


@pytest.fixture
def auth_server() -> FakeAuthServer:
    return FakeAuthServer()


@pytest.fixture
def make_client(auth_server: FakeAuthServer):
    """Build a protocol client talking to the fake server."""

    def factory(**settings) -> OAuth2ProtocolClient:
        settings.setdefault("client_id", "test-client")
        return OAuth2ProtocolClient(
            ClientSettings(**settings), http_client=auth_server.http_client()
        )

    return factory
