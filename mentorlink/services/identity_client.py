"""
Identity Provider Client

Verifies bearer tokens by asking the external identity provider who the
token belongs to (GET {IDENTITY_URL}/auth/v1/user). This service never
issues or decodes tokens itself.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from mentorlink.config.settings import Settings, get_settings

logger = logging.getLogger(__name__)


class IdentityError(Exception):
    """The provider rejected the token or could not be reached."""


@dataclass
class IdentityUser:
    """User record returned by the provider."""
    id: str
    email: Optional[str] = None
    user_metadata: Dict[str, Any] = field(default_factory=dict)
    app_metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def display_name(self) -> Optional[str]:
        return self.user_metadata.get("name") or self.email

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "IdentityUser":
        user = payload.get("user", payload) if isinstance(payload, dict) else None
        if not isinstance(user, dict) or not user.get("id"):
            raise IdentityError("Identity provider returned no user")
        return cls(
            id=str(user["id"]),
            email=user.get("email"),
            user_metadata=user.get("user_metadata") or {},
            app_metadata=user.get("app_metadata") or {},
        )


class IdentityClient:
    """Thin async client for the provider's user-lookup operation."""

    USER_PATH = "/auth/v1/user"

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        settings = settings or get_settings()
        self.api_key = settings.identity_api_key
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=settings.identity_url,
            timeout=settings.identity_timeout_seconds,
        )

    async def get_user(self, token: str) -> IdentityUser:
        """
        Resolve a bearer token to a user.

        Raises:
            IdentityError: Non-2xx answer, transport failure, or no user in the body
        """
        headers = {"Authorization": f"Bearer {token}"}
        if self.api_key:
            headers["apikey"] = self.api_key

        try:
            response = await self._client.get(self.USER_PATH, headers=headers)
        except httpx.HTTPError as e:
            logger.warning(f"Identity provider unreachable: {type(e).__name__}: {e}")
            raise IdentityError("Identity provider unreachable") from e

        if response.status_code != 200:
            logger.info(f"Identity provider rejected token (status {response.status_code})")
            raise IdentityError(f"Identity provider returned {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise IdentityError("Identity provider returned invalid JSON") from e
        return IdentityUser.from_payload(payload)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
