"""Push delivery through the Firebase Cloud Messaging v1 HTTP API."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

import anyio
import httpx
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account

from .errors import PermanentlyInvalidRecipient, TransientDeliveryError
from .settings import PushSettings
from .storage import run_sync

if TYPE_CHECKING:
    from .models import NotificationPayload

LOG = logging.getLogger("mediapush.gateway")

FCM_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"

_UNREGISTERED_CODES = frozenset({"UNREGISTERED"})


def redact(token: str) -> str:
    return f"{token[:10]}..." if len(token) > 10 else token


class PushGateway(Protocol):
    async def startup(self) -> None: ...

    async def shutdown(self) -> None: ...

    async def send(self, token: str, payload: NotificationPayload) -> str:
        """Deliver ``payload`` to ``token`` and return the provider message id.

        Raises:
            PermanentlyInvalidRecipient: the token no longer names a device.
            TransientDeliveryError: any other failure.
        """
        ...


def load_push_settings_from_env() -> PushSettings:
    """Load FCM settings from environment variables.

    Returns:
        PushSettings instance populated from environment variables.
    """
    return PushSettings()


class FcmGateway:
    def __init__(
        self,
        settings: PushSettings,
        *,
        credentials: Any = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._settings = settings
        self._credentials = credentials
        self._http_client = http_client
        self._owns_client = http_client is None
        self._refresh_lock = anyio.Lock()
        self._project_id = settings.project_id

    async def startup(self) -> None:
        if self._credentials is None and self._settings.enabled:
            self._credentials = await run_sync(
                service_account.Credentials.from_service_account_file,
                self._settings.service_account_file,
                scopes=[FCM_SCOPE],
            )
        if self._credentials is not None and not self._project_id:
            self._project_id = getattr(self._credentials, "project_id", None)
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self._settings.endpoint,
                timeout=httpx.Timeout(self._settings.timeout),
                trust_env=False,
            )
        if self.configured:
            LOG.info("FCM gateway ready (project=%s)", self._project_id)
        else:
            LOG.warning("FCM gateway not configured; deliveries will fail")

    async def shutdown(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    @property
    def configured(self) -> bool:
        return self._credentials is not None and bool(self._project_id)

    async def send(self, token: str, payload: NotificationPayload) -> str:
        if not self.configured or self._http_client is None:
            msg = "push gateway not configured"
            raise TransientDeliveryError(token, msg)

        access_token = await self._access_token(token)
        message = {
            "message": {
                "token": token,
                "notification": {"title": payload.title, "body": payload.body},
            }
        }
        try:
            response = await self._http_client.post(
                f"/v1/projects/{self._project_id}/messages:send",
                json=message,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as error:
            msg = f"FCM request failed: {error}"
            raise TransientDeliveryError(token, msg) from error

        if response.status_code == 200:
            name = response.json().get("name", "")
            LOG.debug("FCM push sent to %s: %s", redact(token), name)
            return name

        raise self._classify(token, response)

    async def _access_token(self, token: str) -> str:
        credentials = self._credentials
        async with self._refresh_lock:
            if not credentials.valid:
                try:
                    await run_sync(credentials.refresh, GoogleAuthRequest())
                except GoogleAuthError as error:
                    LOG.warning("FCM credential refresh failed: %s", error)
                    msg = f"credential refresh failed: {error}"
                    raise TransientDeliveryError(token, msg) from error
        return credentials.token

    def _classify(self, token: str, response: httpx.Response) -> Exception:
        status, error_code, message = _parse_error(response)
        detail = f"FCM {response.status_code} {error_code or status}: {message}"
        if (
            response.status_code == 404
            or error_code in _UNREGISTERED_CODES
            or (
                status == "INVALID_ARGUMENT"
                and "registration token" in message.lower()
            )
        ):
            LOG.info("FCM reports %s as invalid: %s", redact(token), detail)
            return PermanentlyInvalidRecipient(token, detail)
        LOG.warning("FCM push to %s failed: %s", redact(token), detail)
        return TransientDeliveryError(token, detail)


def _parse_error(response: httpx.Response) -> tuple[str, str | None, str]:
    try:
        error = response.json().get("error", {})
    except ValueError:
        return "", None, response.text
    if not isinstance(error, dict):
        return "", None, str(error)
    error_code = None
    for detail in error.get("details") or []:
        if isinstance(detail, dict) and detail.get("errorCode"):
            error_code = detail["errorCode"]
            break
    return error.get("status", ""), error_code, error.get("message", "")
