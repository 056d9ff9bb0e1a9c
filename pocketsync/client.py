"""REST client for a PocketBase-compatible backend."""

import logging
from typing import Any

import httpx

from .errors import ClientResponseError
from .realtime import MQTTChangeFeed
from .session import SessionContext
from .sync.events import Record
from .sync.service import EventHandler, RemoteDataService, Unsubscribe

logger = logging.getLogger(__name__)


class PocketBaseClient(RemoteDataService):
    """Client for the records and auth APIs of the backend.

    Queries go over HTTP; subscriptions are delegated to the change feed.
    Every failure is raised as ClientResponseError. Auth responses are saved
    into the injected SessionContext, whose token authorizes later requests.
    """

    def __init__(
        self,
        server_url: str = "http://127.0.0.1:8090",
        session: SessionContext | None = None,
        feed: MQTTChangeFeed | None = None,
        page_size: int = 500,
        timeout: float = 30.0,
        auth_collection: str = "users",
    ):
        """Initialize the client.

        Args:
            server_url: Base URL of the backend.
            session: Session holding the auth token. A fresh one if None.
            feed: Change feed used by subscribe(). Realtime is unavailable if None.
            page_size: Records per request when listing a full collection.
            timeout: Request timeout in seconds.
            auth_collection: Collection holding user accounts.
        """
        self.server_url = server_url.rstrip("/")
        self.session = session or SessionContext()
        self.feed = feed
        self.page_size = page_size
        self.timeout = timeout
        self.auth_collection = auth_collection
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.server_url,
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        """Send a request and decode the JSON body.

        Raises:
            ClientResponseError: On HTTP errors (status set) or transport
                failures (status 0).
        """
        client = await self._get_client()

        headers = {}
        if self.session.token:
            headers["Authorization"] = self.session.token

        try:
            response = await client.request(
                method, path, params=params, json=json, headers=headers
            )
        except httpx.HTTPError as e:
            logger.debug(f"{method} {path} failed: {e}")
            raise ClientResponseError(0, f"Request failed: {e}", url=path) from e

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            if not isinstance(body, dict):
                body = {}
            message = body.get("message") or f"HTTP {response.status_code}"
            raise ClientResponseError(
                response.status_code, message, data=body.get("data"), url=path
            )

        if response.status_code == 204:
            return None
        return response.json()

    def _records_path(self, collection: str, record_id: str | None = None) -> str:
        path = f"/api/collections/{collection}/records"
        if record_id:
            path = f"{path}/{record_id}"
        return path

    def _auth_path(self, action: str) -> str:
        return f"/api/collections/{self.auth_collection}/{action}"

    async def health_check(self) -> bool:
        """Check if the backend is healthy.

        Returns:
            True if server is healthy, False otherwise.
        """
        try:
            await self._request("GET", "/api/health")
            return True
        except ClientResponseError as e:
            logger.debug(f"Health check failed: {e}")
            return False

    # ==================== Records ====================

    async def list_all(
        self,
        collection: str,
        *,
        filter: str = "",
        sort: str = "",
        expand: str = "",
    ) -> list[Record]:
        """Fetch every matching record, one page of page_size at a time."""
        records: list[Record] = []
        page = 1

        while True:
            params: dict[str, Any] = {
                "page": page,
                "perPage": self.page_size,
                "skipTotal": 1,
            }
            if filter:
                params["filter"] = filter
            if sort:
                params["sort"] = sort
            if expand:
                params["expand"] = expand

            data = await self._request("GET", self._records_path(collection), params=params)
            items = data.get("items", [])
            records.extend(items)

            if len(items) < self.page_size:
                break
            page += 1

        logger.debug(f"Listed {len(records)} records from {collection}")
        return records

    async def get_one(
        self,
        collection: str,
        record_id: str,
        *,
        expand: str = "",
    ) -> Record:
        if not record_id:
            raise ClientResponseError(404, "Missing required record id.")

        params = {"expand": expand} if expand else None
        return await self._request(
            "GET", self._records_path(collection, record_id), params=params
        )

    async def create(self, collection: str, data: dict[str, Any]) -> Record:
        return await self._request("POST", self._records_path(collection), json=data)

    async def update(
        self, collection: str, record_id: str, data: dict[str, Any]
    ) -> Record:
        record = await self._request(
            "PATCH", self._records_path(collection, record_id), json=data
        )

        # Keep the session model current when the user edits itself
        if (
            collection == self.auth_collection
            and record_id == self.session.user_id
            and isinstance(record, dict)
        ):
            self.session.save(self.session.token, record)
        return record

    async def delete(self, collection: str, record_id: str) -> None:
        await self._request("DELETE", self._records_path(collection, record_id))

    async def subscribe(
        self,
        collection: str,
        topic: str,
        handler: EventHandler,
    ) -> Unsubscribe:
        if self.feed is None:
            raise ClientResponseError(0, "Realtime feed is not configured")
        return await self.feed.subscribe(collection, topic, handler)

    # ==================== Auth ====================

    def _save_auth(self, data: dict[str, Any]) -> dict[str, Any]:
        self.session.save(data.get("token", ""), data.get("record"))
        return data

    async def auth_with_password(self, identity: str, password: str) -> dict[str, Any]:
        data = await self._request(
            "POST",
            self._auth_path("auth-with-password"),
            json={"identity": identity, "password": password},
        )
        logger.info(f"Authenticated {identity}")
        return self._save_auth(data)

    async def list_auth_methods(self) -> dict[str, Any]:
        return await self._request("GET", self._auth_path("auth-methods"))

    async def auth_with_oauth2_code(
        self,
        provider: str,
        code: str,
        code_verifier: str,
        redirect_url: str,
    ) -> dict[str, Any]:
        """Exchange an OAuth2 authorization code for a session."""
        data = await self._request(
            "POST",
            self._auth_path("auth-with-oauth2"),
            json={
                "provider": provider,
                "code": code,
                "codeVerifier": code_verifier,
                "redirectURL": redirect_url,
            },
        )
        logger.info(f"Authenticated via {provider}")
        return self._save_auth(data)

    async def auth_refresh(self) -> dict[str, Any]:
        """Renew the session token and reload the user record."""
        if not self.session.token:
            raise ClientResponseError(401, "No session to refresh")
        data = await self._request("POST", self._auth_path("auth-refresh"))
        return self._save_auth(data)

    async def request_verification(self, email: str) -> None:
        await self._request(
            "POST", self._auth_path("request-verification"), json={"email": email}
        )

    async def confirm_verification(self, token: str) -> None:
        await self._request(
            "POST", self._auth_path("confirm-verification"), json={"token": token}
        )

    async def request_password_reset(self, email: str) -> None:
        await self._request(
            "POST", self._auth_path("request-password-reset"), json={"email": email}
        )

    async def confirm_password_reset(
        self, token: str, password: str, password_confirm: str
    ) -> None:
        await self._request(
            "POST",
            self._auth_path("confirm-password-reset"),
            json={
                "token": token,
                "password": password,
                "passwordConfirm": password_confirm,
            },
        )
