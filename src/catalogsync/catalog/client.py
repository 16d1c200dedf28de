"""
Async client for a Navidrome-style catalog REST API.

Authentication is a JSON login that returns a bearer token and a client id;
both are sent as headers on every data request. A 401 on a data request
invalidates the token and the request is retried once after a fresh login.

Every failure is raised as one of the typed errors in catalog.errors so the
sync controller can classify it. Transient failures (transport errors,
timeouts, 5xx) are retried with exponential backoff via tenacity.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from catalogsync.catalog.errors import (
    CatalogFetchError,
    CatalogParseError,
    CatalogPermissionError,
    CatalogTimeoutError,
)

logger = logging.getLogger(__name__)


class CatalogClient:
    """
    Thin async wrapper over the catalog HTTP API.

    Usage:
        async with CatalogClient(url, user, password) as client:
            artists = await client.list_artists(0, 50)
    """

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        *,
        timeout: float = 5.0,
        max_attempts: int = 3,
        retry_wait: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: Catalog server root, e.g. "http://localhost:4533".
            username: Catalog account name.
            password: Catalog account password.
            timeout: Per-request timeout in seconds.
            max_attempts: Attempts per request for retryable failures.
            retry_wait: Backoff multiplier in seconds (0 disables waiting).
            transport: Optional httpx transport (httpx.MockTransport in tests).
        """
        self._username = username
        self._password = password
        self._max_attempts = max(1, max_attempts)
        self._retry_wait = retry_wait
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
        )
        self._token: Optional[str] = None
        self._client_id: Optional[str] = None

    @classmethod
    def from_settings(cls, settings) -> "CatalogClient":
        return cls(
            settings.catalog_url,
            settings.catalog_username,
            settings.catalog_password,
            timeout=settings.catalog_timeout_seconds,
            max_attempts=settings.catalog_max_attempts,
        )

    async def __aenter__(self) -> "CatalogClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # ── Auth ──────────────────────────────────────────────────────────────────

    async def login(self) -> None:
        """
        Exchange credentials for a bearer token.

        Raises:
            CatalogPermissionError: credentials rejected.
            CatalogTimeoutError / CatalogFetchError: server unreachable.
            CatalogParseError: login response lacks token or id.
        """
        try:
            response = await self._http.post(
                "/auth/login",
                json={"username": self._username, "password": self._password},
            )
        except httpx.TimeoutException as exc:
            raise CatalogTimeoutError("Login request timed out") from exc
        except httpx.TransportError as exc:
            raise CatalogFetchError(f"Login request failed: {exc}") from exc

        if response.status_code in (401, 403):
            raise CatalogPermissionError(
                f"Login rejected: {response.status_code} {response.reason_phrase}"
            )
        if response.is_error:
            raise CatalogFetchError(
                f"Login failed: {response.status_code} {response.reason_phrase}"
            )

        data = self._json(response)
        if not isinstance(data, dict) or not data.get("token") or not data.get("id"):
            raise CatalogParseError("No token or id received from login")
        self._token = str(data["token"])
        self._client_id = str(data["id"])
        logger.debug("Authenticated with catalog as %s", self._username)

    # ── Requests ──────────────────────────────────────────────────────────────

    async def _get(self, path: str, params: Dict[str, Any]) -> Any:
        """GET with tenacity retries for transient failures."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=self._retry_wait, max=10),
            retry=retry_if_exception_type((CatalogFetchError, CatalogTimeoutError)),
            reraise=True,
        ):
            with attempt:
                return await self._get_once(path, params)

    async def _get_once(self, path: str, params: Dict[str, Any]) -> Any:
        reauthenticated = False
        while True:
            if self._token is None:
                await self.login()
            try:
                response = await self._http.get(
                    path,
                    params=params,
                    headers={
                        "x-nd-authorization": f"Bearer {self._token}",
                        "x-nd-client-unique-id": self._client_id or "",
                    },
                )
            except httpx.TimeoutException as exc:
                raise CatalogTimeoutError(f"Request to {path} timed out") from exc
            except httpx.TransportError as exc:
                raise CatalogFetchError(f"Request to {path} failed: {exc}") from exc

            if response.status_code == 401 and not reauthenticated:
                # Token expired: log in again and retry once
                self._token = None
                self._client_id = None
                reauthenticated = True
                continue
            if response.status_code in (401, 403):
                raise CatalogPermissionError(
                    f"Access to {path} denied: {response.status_code} {response.reason_phrase}"
                )
            if response.is_error:
                raise CatalogFetchError(
                    f"Request to {path} failed: {response.status_code} {response.reason_phrase}"
                )
            return self._json(response)

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise CatalogParseError(f"Invalid JSON from {response.request.url.path}") from exc

    async def _get_list(self, path: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        data = await self._get(path, params)
        if data is None:
            return []
        if not isinstance(data, list):
            raise CatalogParseError(f"Expected a list from {path}, got {type(data).__name__}")
        return data

    @staticmethod
    def _page(offset: int, limit: int) -> Dict[str, int]:
        return {"_start": offset, "_end": offset + limit - 1}

    # ── Catalog listings ──────────────────────────────────────────────────────

    async def list_artists(self, offset: int = 0, limit: int = 50) -> List[Dict[str, Any]]:
        """Fetch one page of artists."""
        return await self._get_list("/api/artist", self._page(offset, limit))

    async def list_albums(
        self, artist_id: str, offset: int = 0, limit: int = 20
    ) -> List[Dict[str, Any]]:
        """Fetch one page of an artist's albums."""
        params: Dict[str, Any] = {"artist_id": artist_id, **self._page(offset, limit)}
        return await self._get_list("/api/album", params)

    async def list_songs(
        self, album_id: str, offset: int = 0, limit: int = 50
    ) -> List[Dict[str, Any]]:
        """Fetch one page of an album's songs."""
        params: Dict[str, Any] = {"album_id": album_id, **self._page(offset, limit)}
        return await self._get_list("/api/song", params)
