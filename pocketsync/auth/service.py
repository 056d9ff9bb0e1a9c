"""Account flows: login, registration, verification, password reset, onboarding."""

import logging
from typing import Any

from ..client import PocketBaseClient
from ..errors import AuthError, ClientResponseError, UnverifiedAccountError
from ..session import SessionContext

logger = logging.getLogger(__name__)


class AuthService:
    """High level account operations on top of PocketBaseClient."""

    def __init__(
        self,
        client: PocketBaseClient,
        session: SessionContext | None = None,
        organisations_collection: str = "organisations",
    ):
        self.client = client
        self.session = session or client.session
        self.organisations_collection = organisations_collection

    @property
    def users_collection(self) -> str:
        return self.client.auth_collection

    async def login(self, identity: str, password: str) -> dict[str, Any]:
        """Authenticate with username/email and password.

        An unverified account is refused with HTTP 403. In that case a new
        verification email is requested for the identity and
        UnverifiedAccountError is raised. When the identity is a username
        the request fails and is ignored.
        """
        try:
            return await self.client.auth_with_password(identity, password)
        except ClientResponseError as e:
            if e.status != 403:
                raise

        sent = True
        try:
            await self.client.request_verification(identity)
        except ClientResponseError as e:
            logger.debug(f"Could not request verification for {identity}: {e}")
            sent = False

        raise UnverifiedAccountError(identity, verification_sent=sent)

    async def register(
        self,
        name: str,
        email: str,
        username: str,
        password: str,
        password_confirm: str,
    ) -> dict[str, Any]:
        """Create an account and send its verification email.

        Field validation errors from the backend propagate as
        ClientResponseError with per-field messages in .data.
        """
        user = await self.client.create(
            self.users_collection,
            {
                "name": name,
                "email": email,
                "username": username,
                "password": password,
                "passwordConfirm": password_confirm,
            },
        )
        await self.client.request_verification(email)
        logger.info(f"Registered {username}, verification sent to {email}")
        return user

    async def oauth2_providers(self) -> list[dict[str, Any]]:
        """List the OAuth2 providers enabled on the backend."""
        methods = await self.client.list_auth_methods()
        oauth2 = methods.get("oauth2")
        if isinstance(oauth2, dict):
            return list(oauth2.get("providers", [])) if oauth2.get("enabled", True) else []
        return list(methods.get("authProviders", []))

    async def login_with_oauth2(
        self,
        provider: str,
        code: str,
        code_verifier: str,
        redirect_url: str,
    ) -> dict[str, Any]:
        return await self.client.auth_with_oauth2_code(
            provider, code, code_verifier, redirect_url
        )

    async def request_verification(self, email: str) -> None:
        await self.client.request_verification(email)

    async def confirm_verification(self, token: str) -> bool:
        """Confirm an email verification token. False if invalid or expired."""
        if not token:
            return False
        try:
            await self.client.confirm_verification(token)
        except ClientResponseError as e:
            logger.info(f"Email verification failed: {e}")
            return False
        return True

    async def request_password_reset(self, email: str) -> None:
        await self.client.request_password_reset(email)

    async def confirm_password_reset(
        self, token: str, password: str, password_confirm: str
    ) -> None:
        if not token:
            raise AuthError("Invalid or expired password reset link")
        await self.client.confirm_password_reset(token, password, password_confirm)

    async def create_organisation(self, name: str, slug: str) -> dict[str, Any]:
        """Create an organisation and make it the user's current one.

        The session is refreshed afterwards so the user record reflects
        the new membership.
        """
        if not self.session.is_valid or not self.session.user_id:
            raise AuthError("Not authenticated")

        org = await self.client.create(
            self.organisations_collection, {"name": name, "slug": slug}
        )

        user = self.session.record or {}
        orgs = list(user.get("orgs") or [])
        if org["id"] not in orgs:
            orgs.append(org["id"])

        await self.client.update(
            self.users_collection,
            self.session.user_id,
            {"orgs": orgs, "current_org": org["id"]},
        )
        await self.client.auth_refresh()

        logger.info(f"Created organisation {slug} ({org['id']})")
        return org

    def logout(self) -> None:
        self.session.clear()
