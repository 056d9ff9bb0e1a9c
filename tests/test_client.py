"""Tests for the PocketBase REST client."""

import base64
import json
import time

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from pocketsync.client import PocketBaseClient
from pocketsync.errors import ClientResponseError
from pocketsync.session import SessionContext


def make_response(status_code=200, body=None):
    response = MagicMock()
    response.status_code = status_code
    if body is None:
        response.json.side_effect = ValueError("no body")
    else:
        response.json.return_value = body
    return response


def make_token(exp_offset=3600):
    payload = json.dumps({"id": "u1", "exp": int(time.time()) + exp_offset}).encode()
    encoded = base64.urlsafe_b64encode(payload).decode().rstrip("=")
    return f"header.{encoded}.signature"


@pytest.fixture
def http():
    return AsyncMock()


@pytest.fixture
def client(http):
    client = PocketBaseClient("http://localhost:8090/", page_size=2)
    with patch.object(client, "_get_client") as mock_get:
        mock_get.return_value = http
        yield client


class TestPocketBaseClient:
    """Tests for request handling."""

    def test_client_initialization(self):
        """Test trailing slash is stripped and a session is created."""
        client = PocketBaseClient("http://localhost:8090/")

        assert client.server_url == "http://localhost:8090"
        assert isinstance(client.session, SessionContext)
        assert client.feed is None

    @pytest.mark.asyncio
    async def test_health_check_success(self, client, http):
        http.request = AsyncMock(return_value=make_response(200, {"code": 200}))

        assert await client.health_check() is True
        assert http.request.call_args[0] == ("GET", "/api/health")

    @pytest.mark.asyncio
    async def test_health_check_failure(self, client, http):
        http.request = AsyncMock(side_effect=httpx.ConnectError("Connection refused"))

        assert await client.health_check() is False

    @pytest.mark.asyncio
    async def test_network_error_has_status_zero(self, client, http):
        http.request = AsyncMock(side_effect=httpx.ConnectError("Connection refused"))

        with pytest.raises(ClientResponseError) as exc_info:
            await client.get_one("todos", "a")

        assert exc_info.value.status == 0
        assert exc_info.value.is_network_error

    @pytest.mark.asyncio
    async def test_http_error_uses_backend_message(self, client, http):
        http.request = AsyncMock(return_value=make_response(
            400,
            {"message": "Invalid filter.", "data": {"filter": {"code": "invalid"}}},
        ))

        with pytest.raises(ClientResponseError) as exc_info:
            await client.list_all("todos", filter="bad ~")

        error = exc_info.value
        assert error.status == 400
        assert error.message == "Invalid filter."
        assert error.data == {"filter": {"code": "invalid"}}
        assert error.url == "/api/collections/todos/records"

    @pytest.mark.asyncio
    async def test_http_error_without_body(self, client, http):
        http.request = AsyncMock(return_value=make_response(502))

        with pytest.raises(ClientResponseError) as exc_info:
            await client.get_one("todos", "a")

        assert exc_info.value.message == "HTTP 502"

    @pytest.mark.asyncio
    async def test_token_sent_as_authorization(self, client, http):
        client.session.save("tok-123", {"id": "u1"})
        http.request = AsyncMock(return_value=make_response(200, {"id": "a"}))

        await client.get_one("todos", "a")

        assert http.request.call_args[1]["headers"] == {"Authorization": "tok-123"}


class TestRecords:
    """Tests for the records API."""

    @pytest.mark.asyncio
    async def test_list_all_follows_pages(self, client, http):
        """Pages are requested until a short page comes back."""
        http.request = AsyncMock(side_effect=[
            make_response(200, {"items": [{"id": "a"}, {"id": "b"}]}),
            make_response(200, {"items": [{"id": "c"}]}),
        ])

        records = await client.list_all("todos", filter="done = false", sort="-created", expand="user")

        assert [r["id"] for r in records] == ["a", "b", "c"]
        assert http.request.call_count == 2
        first_params = http.request.call_args_list[0][1]["params"]
        assert first_params == {
            "page": 1,
            "perPage": 2,
            "skipTotal": 1,
            "filter": "done = false",
            "sort": "-created",
            "expand": "user",
        }
        assert http.request.call_args_list[1][1]["params"]["page"] == 2

    @pytest.mark.asyncio
    async def test_list_all_omits_empty_query_options(self, client, http):
        http.request = AsyncMock(return_value=make_response(200, {"items": []}))

        assert await client.list_all("todos") == []
        params = http.request.call_args[1]["params"]
        assert "filter" not in params
        assert "sort" not in params
        assert "expand" not in params

    @pytest.mark.asyncio
    async def test_get_one_with_expand(self, client, http):
        http.request = AsyncMock(return_value=make_response(200, {"id": "a", "expand": {}}))

        record = await client.get_one("todos", "a", expand="user")

        assert record["id"] == "a"
        args, kwargs = http.request.call_args
        assert args == ("GET", "/api/collections/todos/records/a")
        assert kwargs["params"] == {"expand": "user"}

    @pytest.mark.asyncio
    async def test_get_one_empty_id_is_not_found(self, client, http):
        http.request = AsyncMock()

        with pytest.raises(ClientResponseError) as exc_info:
            await client.get_one("todos", "")

        assert exc_info.value.is_not_found
        http.request.assert_not_called()

    @pytest.mark.asyncio
    async def test_delete_accepts_no_content(self, client, http):
        http.request = AsyncMock(return_value=make_response(204))

        assert await client.delete("todos", "a") is None

    @pytest.mark.asyncio
    async def test_update_own_user_refreshes_session(self, client, http):
        client.session.save("tok", {"id": "u1", "name": "old"})
        http.request = AsyncMock(return_value=make_response(200, {"id": "u1", "name": "new"}))

        await client.update("users", "u1", {"name": "new"})

        assert client.session.record == {"id": "u1", "name": "new"}
        assert client.session.token == "tok"

    @pytest.mark.asyncio
    async def test_update_other_record_leaves_session(self, client, http):
        client.session.save("tok", {"id": "u1"})
        http.request = AsyncMock(return_value=make_response(200, {"id": "u2"}))

        await client.update("users", "u2", {"name": "x"})

        assert client.session.record == {"id": "u1"}

    @pytest.mark.asyncio
    async def test_subscribe_without_feed(self, client):
        with pytest.raises(ClientResponseError) as exc_info:
            await client.subscribe("todos", "*", lambda event: None)

        assert exc_info.value.status == 0

    @pytest.mark.asyncio
    async def test_subscribe_delegates_to_feed(self, client):
        feed = MagicMock()
        unsubscribe = MagicMock()
        feed.subscribe = AsyncMock(return_value=unsubscribe)
        client.feed = feed

        def handler(event):
            pass

        result = await client.subscribe("todos", "a", handler)

        assert result is unsubscribe
        feed.subscribe.assert_awaited_once_with("todos", "a", handler)


class TestAuthEndpoints:
    """Tests for the auth API."""

    @pytest.mark.asyncio
    async def test_auth_with_password_saves_session(self, client, http):
        token = make_token()
        http.request = AsyncMock(return_value=make_response(
            200, {"token": token, "record": {"id": "u1", "email": "a@example.com"}}
        ))

        await client.auth_with_password("a@example.com", "secret")

        assert client.session.token == token
        assert client.session.user_id == "u1"
        assert client.session.is_valid
        args, kwargs = http.request.call_args
        assert args == ("POST", "/api/collections/users/auth-with-password")
        assert kwargs["json"] == {"identity": "a@example.com", "password": "secret"}

    @pytest.mark.asyncio
    async def test_auth_with_oauth2_code(self, client, http):
        http.request = AsyncMock(return_value=make_response(
            200, {"token": "t", "record": {"id": "u1"}}
        ))

        await client.auth_with_oauth2_code("google", "code", "verifier", "http://localhost/cb")

        payload = http.request.call_args[1]["json"]
        assert payload == {
            "provider": "google",
            "code": "code",
            "codeVerifier": "verifier",
            "redirectURL": "http://localhost/cb",
        }

    @pytest.mark.asyncio
    async def test_auth_refresh_requires_token(self, client, http):
        http.request = AsyncMock()

        with pytest.raises(ClientResponseError) as exc_info:
            await client.auth_refresh()

        assert exc_info.value.status == 401
        http.request.assert_not_called()

    @pytest.mark.asyncio
    async def test_auth_refresh_replaces_session(self, client, http):
        client.session.save("old", {"id": "u1"})
        http.request = AsyncMock(return_value=make_response(
            200, {"token": "new", "record": {"id": "u1", "verified": True}}
        ))

        await client.auth_refresh()

        assert client.session.token == "new"
        assert client.session.record["verified"] is True

    @pytest.mark.asyncio
    async def test_confirm_password_reset_payload(self, client, http):
        http.request = AsyncMock(return_value=make_response(204))

        await client.confirm_password_reset("reset-token", "pw1", "pw1")

        args, kwargs = http.request.call_args
        assert args == ("POST", "/api/collections/users/confirm-password-reset")
        assert kwargs["json"] == {
            "token": "reset-token",
            "password": "pw1",
            "passwordConfirm": "pw1",
        }

    @pytest.mark.asyncio
    async def test_custom_auth_collection(self, http):
        client = PocketBaseClient("http://localhost:8090", auth_collection="members")
        http.request = AsyncMock(return_value=make_response(204))

        with patch.object(client, "_get_client") as mock_get:
            mock_get.return_value = http
            await client.request_verification("a@example.com")

        assert http.request.call_args[0] == (
            "POST", "/api/collections/members/request-verification"
        )
