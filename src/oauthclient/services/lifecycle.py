"""Token lifecycle management and authenticated requests.

Holds the current token, refreshes it on demand or ahead of expiry, and
sends requests with a Bearer token, retrying once with a fresh token when
the server answers 401.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx

from oauthclient.models.errors import FatalAuthError, OAuth2Error
from oauthclient.models.tokens import Token
from oauthclient.services.protocol import OAuth2ProtocolClient

T = TypeVar("T")

TokenProvider = Callable[[], "Token | None | Awaitable[Token | None]"]
TokenSink = Callable[[Token], "Awaitable[None] | None"]
ErrorSink = Callable[[Exception], "Awaitable[None] | None"]
SendRequest = Callable[[httpx.Request], Awaitable[httpx.Response]]

# Only schedule a refresh when the token lives longer than this
MIN_SCHEDULE_SECONDS = 120.0
# How long before expiry the scheduled refresh fires
REFRESH_LEAD_SECONDS = 60.0


async def _maybe_await(value: T | Awaitable[T]) -> T:
    if inspect.isawaitable(value):
        return await value
    return value


class TokenLifecycleManager:
    """Keeps a valid access token available for outgoing requests.

    Handles:
    - Loading a stored token once, before any validity decision
    - Single-flight refresh: concurrent callers share one refresh operation
    - Falling back to ``get_new_token`` when a refresh is not possible
    - Proactive background refresh shortly before expiry
    - Bearer injection with exactly one retry after a 401
    """

    def __init__(
        self,
        client: OAuth2ProtocolClient,
        get_new_token: TokenProvider,
        get_stored_token: TokenProvider | None = None,
        store_token: TokenSink | None = None,
        on_error: ErrorSink | None = None,
        schedule_refresh: bool = True,
        raise_on_storage_error: bool = False,
        http_client: httpx.AsyncClient | None = None,
        logger: logging.Logger | None = None,
    ):
        """Initialize the lifecycle manager.

        Args:
            client: Protocol client used for the refresh_token grant
            get_new_token: Obtains a brand new token when refreshing is not
                possible, e.g. by running a client_credentials grant.
                May be sync or async; returning None is fatal
            get_stored_token: Returns a previously stored token, consulted
                once before the first token is needed
            store_token: Called with every newly acquired token
            on_error: Called with the error when no token can be obtained
            schedule_refresh: Refresh automatically 60 seconds before expiry
            raise_on_storage_error: Raise errors from ``get_stored_token``
                instead of treating them as "no stored token"
            http_client: Client used to send authenticated requests,
                defaults to the protocol client's HTTP client
            logger: Diagnostics logger, defaults to this module's logger
        """
        self.client = client
        self.schedule_refresh = schedule_refresh
        self.token: Token | None = None

        self._get_new_token = get_new_token
        self._get_stored_token = get_stored_token
        self._store_token = store_token
        self._on_error = on_error
        self._raise_on_storage_error = raise_on_storage_error
        self._http_client = http_client or client.http_client
        self._logger = logger or logging.getLogger(__name__)

        self._stored_token_pending = get_stored_token is not None
        self._active_get_stored_token: asyncio.Future[None] | None = None
        self._active_refresh: asyncio.Future[Token] | None = None
        self._refresh_timer: asyncio.TimerHandle | None = None
        self._background_tasks: set[asyncio.Task[None]] = set()

    async def get_current_token(self) -> Token:
        """Return a valid token, refreshing or acquiring one if needed.

        Raises:
            FatalAuthError: If no token could be obtained by any means
        """
        await self._await_stored_token()

        token = self.token
        if token is not None and not token.is_expired():
            return token

        return await self.force_refresh()

    async def get_access_token(self) -> str:
        """Return a valid access token string."""
        token = await self.get_current_token()
        return token.access_token

    async def force_refresh(self) -> Token:
        """Refresh the token now, sharing any refresh already in progress.

        Returns:
            The new token, the same object for every concurrent caller

        Raises:
            FatalAuthError: If neither a refresh nor ``get_new_token``
                produced a token
        """
        await self._await_stored_token()

        if self._active_refresh is None:
            self._active_refresh = asyncio.ensure_future(self._refresh())

        return await asyncio.shield(self._active_refresh)

    async def _refresh(self) -> Token:
        try:
            old_token = self.token
            new_token: Token | None = None

            if old_token is not None and old_token.can_refresh():
                try:
                    new_token = await self.client.refresh(old_token)
                except OAuth2Error as e:
                    self._logger.warning(
                        f"Refresh token not accepted, trying to reauthenticate: {e}"
                    )

            if new_token is None:
                try:
                    new_token = await _maybe_await(self._get_new_token())
                except Exception as e:
                    await self._report_error(e)
                    raise

            if new_token is None:
                error = FatalAuthError(
                    "Unable to obtain OAuth2 tokens, a full reauth may be needed"
                )
                await self._report_error(error)
                raise error

            self.token = new_token
            await self._persist(new_token)
            self._schedule_refresh()

            self._logger.info("Obtained new OAuth2 access token")
            return new_token
        finally:
            self._active_refresh = None

    async def _await_stored_token(self) -> None:
        """Wait for the one-time stored token retrieval, starting it if needed."""
        if self._stored_token_pending:
            self._stored_token_pending = False
            self._active_get_stored_token = asyncio.ensure_future(
                self._load_stored_token()
            )

        if self._active_get_stored_token is not None:
            await asyncio.shield(self._active_get_stored_token)

    async def _load_stored_token(self) -> None:
        try:
            try:
                token = await _maybe_await(self._get_stored_token())
            except Exception as e:
                if self._raise_on_storage_error:
                    raise
                self._logger.warning(
                    f"Stored token could not be retrieved, continuing without it: {e}"
                )
                token = None

            if token is not None:
                self.token = token
                self._schedule_refresh()
        finally:
            self._active_get_stored_token = None

    async def _persist(self, token: Token) -> None:
        if self._store_token is None:
            return
        try:
            await _maybe_await(self._store_token(token))
        except Exception:
            self._logger.exception("Failed to store OAuth2 token")

    async def _report_error(self, error: Exception) -> None:
        if self._on_error is None:
            return
        try:
            await _maybe_await(self._on_error(error))
        except Exception:
            self._logger.exception("OAuth2 error handler failed")

    def _schedule_refresh(self) -> None:
        """Arm the background refresh timer for the current token."""
        if not self.schedule_refresh:
            return

        if self._refresh_timer is not None:
            self._refresh_timer.cancel()
            self._refresh_timer = None

        token = self.token
        if token is None or token.expires_at is None or not token.refresh_token:
            return

        expires_in = token.expires_at - time.time()
        if expires_in <= MIN_SCHEDULE_SECONDS:
            return

        loop = asyncio.get_running_loop()
        self._refresh_timer = loop.call_later(
            expires_in - REFRESH_LEAD_SECONDS, self._on_refresh_timer
        )
        self._logger.debug(
            f"Scheduled token refresh in {expires_in - REFRESH_LEAD_SECONDS:.0f}s"
        )

    def _on_refresh_timer(self) -> None:
        self._refresh_timer = None
        task = asyncio.get_running_loop().create_task(self._background_refresh())
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _background_refresh(self) -> None:
        try:
            await self.force_refresh()
        except Exception:
            self._logger.exception("Error while doing a background OAuth2 auto-refresh")

    async def authenticate(
        self, request: httpx.Request, send: SendRequest | None = None
    ) -> httpx.Response:
        """Send a request with a Bearer token.

        A 401 response causes one forced refresh and one retry; whatever the
        retry returns is passed back unchanged.

        Args:
            request: Request to authenticate; it is cloned, not modified
            send: Sends a request, defaults to the HTTP client's ``send``

        Returns:
            The server's response
        """
        send = send or self._http_client.send

        # The body is replayed for the retry
        await request.aread()

        access_token = await self.get_access_token()
        response = await send(self._with_bearer(request, access_token))

        if response.status_code == 401:
            self._logger.debug(
                f"{request.method} {request.url} returned 401, "
                "refreshing token and retrying"
            )
            new_token = await self.force_refresh()
            response = await send(self._with_bearer(request, new_token.access_token))

        return response

    def _with_bearer(self, request: httpx.Request, access_token: str) -> httpx.Request:
        headers = request.headers.copy()
        # Framing is recomputed from the buffered body
        headers.pop("Transfer-Encoding", None)
        headers.pop("Content-Length", None)
        headers["Authorization"] = f"Bearer {access_token}"
        return httpx.Request(
            request.method,
            request.url,
            headers=headers,
            content=request.content,
            extensions=request.extensions,
        )

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Build a request on the HTTP client and send it authenticated.

        Accepts the same keyword arguments as ``httpx.AsyncClient.build_request``.
        """
        request = self._http_client.build_request(method, url, **kwargs)
        return await self.authenticate(request)

    def middleware(
        self,
    ) -> Callable[[httpx.Request, SendRequest], Awaitable[httpx.Response]]:
        """Return the authentication pipeline as ``(request, call_next)`` middleware."""

        async def authenticate_middleware(
            request: httpx.Request, call_next: SendRequest
        ) -> httpx.Response:
            return await self.authenticate(request, call_next)

        return authenticate_middleware

    async def close(self) -> None:
        """Cancel the refresh timer and any background refresh in progress."""
        if self._refresh_timer is not None:
            self._refresh_timer.cancel()
            self._refresh_timer = None

        tasks = list(self._background_tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def __aenter__(self) -> TokenLifecycleManager:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
