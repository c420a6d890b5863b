"""
HTTP client for the remote report API, used by the field device.
Translates transport and HTTP failures into delivery errors the sync engine
can act on: stop the pass, or fail just this record and move on.
"""
import asyncio
import base64
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from ..core.config import settings
from .offline_queue import OfflineReportRecord

logger = logging.getLogger(__name__)


class DeliveryError(Exception):
    """A report could not be confirmed delivered."""
    halts_pass = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ConnectivityError(DeliveryError):
    """The report API could not be reached; nothing was sent."""
    halts_pass = True


class AuthenticationError(DeliveryError):
    """The device token was refused; every remaining record would fail too."""
    halts_pass = True


class AmbiguousDeliveryError(DeliveryError):
    """The request may have been committed; retry with the same idempotency key."""


class ReportRejectedError(DeliveryError):
    """The report API refused this record's content."""


class ServerError(DeliveryError):
    """The report API failed or asked us to slow down."""


class ProfileNotReadyError(Exception):
    """The officer's profile did not appear within the allowed attempts."""


@dataclass
class DeliveryResult:
    report_id: Optional[str]
    duplicate: bool = False


def _error_detail(response: httpx.Response) -> str:
    try:
        detail = response.json().get("detail")
    except ValueError:
        detail = None
    return f"HTTP {response.status_code}: {detail or response.reason_phrase}"


def _raise_for_status(response: httpx.Response) -> None:
    code = response.status_code
    if code < 400:
        return
    detail = _error_detail(response)
    if code in (401, 403):
        raise AuthenticationError(detail, status_code=code)
    if code in (408, 429) or code >= 500:
        raise ServerError(detail, status_code=code)
    raise ReportRejectedError(detail, status_code=code)


def build_report_payload(record: OfflineReportRecord) -> dict:
    """JSON body for ``POST /reports`` built from the frozen capture fields."""
    return {
        "imageData": base64.b64encode(record.image_data).decode("ascii"),
        "notes": record.notes,
        "latitude": record.latitude,
        "longitude": record.longitude,
        "capturedAt": record.captured_at.isoformat(),
        "idempotencyKey": record.idempotency_key,
        "isOfflineSubmission": record.captured_offline,
    }


class ReportApiClient:
    """Async client for the report API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.REPORT_API_URL).rstrip("/")
        self.token = token if token is not None else settings.REPORT_API_TOKEN
        self.timeout = timeout if timeout is not None else settings.REPORT_API_TIMEOUT
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=headers,
            transport=transport,
        )

    @property
    def health_url(self) -> str:
        return str(httpx.URL(self.base_url).join("/health"))

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)
        except (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout) as exc:
            raise ConnectivityError(f"Report API unreachable: {exc!r}") from exc
        except (
            httpx.ReadTimeout,
            httpx.WriteTimeout,
            httpx.ReadError,
            httpx.WriteError,
            httpx.RemoteProtocolError,
        ) as exc:
            raise AmbiguousDeliveryError(f"No confirmation from report API: {exc!r}") from exc
        except httpx.TransportError as exc:
            raise ConnectivityError(f"Report API transport failure: {exc!r}") from exc

    async def submit_report(self, record: OfflineReportRecord) -> DeliveryResult:
        """
        Deliver one queued report.
        The local_id travels as the idempotency key, so a replay of a request
        whose response was lost is answered with the existing report.
        """
        response = await self._request(
            "POST",
            "/reports",
            json=build_report_payload(record),
            headers={"Idempotency-Key": record.idempotency_key},
        )
        _raise_for_status(response)
        try:
            body = response.json()
        except ValueError as exc:
            raise AmbiguousDeliveryError("Report API returned an unreadable response") from exc
        report = body.get("report") or {}
        return DeliveryResult(report_id=report.get("id"), duplicate=bool(body.get("duplicate", False)))

    async def check_health(self) -> bool:
        try:
            response = await self._client.get(self.health_url)
        except httpx.HTTPError as exc:
            logger.debug("Health check failed: %s", exc)
            return False
        return response.status_code == 200

    async def fetch_profile(self) -> Optional[dict]:
        """Return the caller's profile, or None while it does not exist yet."""
        response = await self._request("GET", "/profile/me")
        if response.status_code == 404:
            return None
        _raise_for_status(response)
        return response.json()

    async def wait_for_profile(
        self,
        attempts: Optional[int] = None,
        delay: Optional[float] = None,
    ) -> dict:
        """Poll for the profile created during onboarding, a bounded number of times."""
        attempts = attempts if attempts is not None else settings.PROFILE_WAIT_ATTEMPTS
        delay = delay if delay is not None else settings.PROFILE_WAIT_DELAY_SECONDS
        for attempt in range(1, attempts + 1):
            profile = await self.fetch_profile()
            if profile is not None:
                return profile
            logger.debug("Profile not created yet (attempt %d/%d)", attempt, attempts)
            if attempt < attempts:
                await asyncio.sleep(delay)
        raise ProfileNotReadyError(f"Profile not found after {attempts} attempts")
