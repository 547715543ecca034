from typing import Any, Dict, Optional

import httpx

from config import settings
from errors import ActionResponse
from fetch import fetch_handler


class ApiClient:
    """Thin client for our own HTTP routes, used by server-side callers
    such as the OAuth provider callback."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def _call(self, method: str, path: str, json: Optional[Any] = None) -> ActionResponse:
        return await fetch_handler(
            f"{self.base_url}{path}",
            method=method,
            json=json,
            timeout=self.timeout,
            transport=self.transport,
        )

    # Auth
    async def oauth_sign_in(self, provider: str, provider_account_id: str, user: Dict[str, Any]) -> ActionResponse:
        return await self._call(
            "POST",
            "/auth/signin-with-oauth",
            {"provider": provider, "providerAccountId": provider_account_id, "user": user},
        )

    # Users
    async def get_users(self) -> ActionResponse:
        return await self._call("GET", "/users")

    async def get_user(self, user_id: str) -> ActionResponse:
        return await self._call("GET", f"/users/{user_id}")

    async def get_user_by_email(self, email: str) -> ActionResponse:
        return await self._call("POST", "/users/email", {"email": email})

    async def create_user(self, data: Dict[str, Any]) -> ActionResponse:
        return await self._call("POST", "/users", data)

    async def update_user(self, user_id: str, data: Dict[str, Any]) -> ActionResponse:
        return await self._call("PUT", f"/users/{user_id}", data)

    async def delete_user(self, user_id: str) -> ActionResponse:
        return await self._call("DELETE", f"/users/{user_id}")

    # Accounts
    async def get_accounts(self) -> ActionResponse:
        return await self._call("GET", "/accounts")

    async def get_account(self, account_id: str) -> ActionResponse:
        return await self._call("GET", f"/accounts/{account_id}")

    async def get_account_by_provider(self, provider_account_id: str) -> ActionResponse:
        return await self._call("POST", "/accounts/provider", {"providerAccountId": provider_account_id})

    async def create_account(self, data: Dict[str, Any]) -> ActionResponse:
        return await self._call("POST", "/accounts", data)

    async def update_account(self, account_id: str, data: Dict[str, Any]) -> ActionResponse:
        return await self._call("PUT", f"/accounts/{account_id}", data)

    async def delete_account(self, account_id: str) -> ActionResponse:
        return await self._call("DELETE", f"/accounts/{account_id}")
