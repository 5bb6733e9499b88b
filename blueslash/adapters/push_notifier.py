"""Push notification adapters: HTTP push gateway via httpx, and a logging fallback."""

import logging

import httpx
from pydantic import BaseModel, Field

from blueslash.core import errors
from blueslash.core.config import Settings, constants
from blueslash.domain.notification import NotificationPayload
from blueslash.domain.user import User
from blueslash.ports.notification_port import NotificationPort


logger = logging.getLogger(__name__)


# Tokens issued by local emulators are logged instead of delivered
EMULATOR_TOKEN_PREFIX = "emulator-token-"

HTTP_NOT_FOUND = 404
HTTP_GONE = 410


class PushResult(BaseModel):
    """Result of sending a push notification."""

    success: bool = Field(..., description="Whether the gateway accepted the notification")
    message_id: str | None = Field(None, description="Gateway message ID if successful")
    error: str | None = Field(None, description="Error message if failed")


class LoggingNotifier:
    """Notifier used when no push gateway is configured."""

    async def notify(self, user: User, payload: NotificationPayload) -> bool:
        logger.info(
            "Notification (not delivered, no push gateway)",
            extra={"user_id": user.id, "title": payload.title, "body": payload.body},
        )
        return True


class HttpPushNotifier:
    """Deliver notifications by POSTing them to a push gateway.

    The gateway owns the transport (web push, FCM, APNs); this adapter only
    needs the user's registered token.
    """

    def __init__(
        self,
        *,
        gateway_url: str,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._gateway_url = gateway_url
        self._api_key = api_key
        self._client = client

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def _post(self, body: dict) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(self._gateway_url, json=body, headers=self._headers())
        async with httpx.AsyncClient(timeout=constants.API_TIMEOUT_SECONDS) as client:
            return await client.post(self._gateway_url, json=body, headers=self._headers())

    async def send(self, *, token: str, payload: NotificationPayload) -> PushResult:
        """Send one payload to one device token.

        Raises:
            UnregisteredTokenError: The gateway reports the token as unknown.
        """
        body = {
            "token": token,
            "notification": {"title": payload.title, "body": payload.body},
            # Gateways expect string-valued data maps
            "data": {key: str(value) for key, value in payload.data.items()},
            "require_interaction": payload.require_interaction,
        }

        try:
            response = await self._post(body)
        except httpx.HTTPError as e:
            logger.warning("Push gateway request failed: %s", e)
            return PushResult(success=False, error=str(e))

        if response.status_code in (HTTP_NOT_FOUND, HTTP_GONE):
            msg = "not-registered"
            raise errors.UnregisteredTokenError(msg)

        if not response.is_success:
            logger.warning("Push gateway returned %d: %s", response.status_code, response.text[:200])
            return PushResult(success=False, error=f"HTTP {response.status_code}")

        data = response.json() if response.content else {}
        return PushResult(success=True, message_id=data.get("id"))

    async def notify(self, user: User, payload: NotificationPayload) -> bool:
        token = user.notification_token
        if not token:
            logger.info("User %s has no notification token", user.id)
            return False

        if token.startswith(EMULATOR_TOKEN_PREFIX):
            logger.info("Emulator notification", extra={"user_id": user.id, "title": payload.title})
            return True

        result = await self.send(token=token, payload=payload)
        if result.success:
            logger.info("Push notification sent to %s", user.id)
        return result.success


def build_notifier(settings: Settings) -> NotificationPort:
    """Pick the HTTP gateway when configured, otherwise log notifications."""
    if settings.push_gateway_url:
        return HttpPushNotifier(gateway_url=settings.push_gateway_url, api_key=settings.push_gateway_api_key)
    return LoggingNotifier()
