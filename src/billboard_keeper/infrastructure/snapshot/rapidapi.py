"""RapidAPI-backed snapshot provider (twitter241 API).

Request:
    GET https://<host>/user?username=<handle>
    Headers: X-RapidAPI-Key, X-RapidAPI-Host

The profile lives at result.data.user.result; the header image and bio are in
its `legacy` object.
"""

from __future__ import annotations

from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from billboard_keeper.domain.exceptions import SnapshotFetchError
from billboard_keeper.domain.interfaces import (
    ProfileSnapshot,
    SnapshotResult,
    normalize_handle,
)
from billboard_keeper.logging_config import get_logger

logger = get_logger(__name__)


class RapidApiSnapshotProvider:
    """Live SnapshotProvider over the twitter241 RapidAPI endpoint."""

    def __init__(
        self,
        api_key: str,
        api_host: str = "twitter241.p.rapidapi.com",
        timeout_seconds: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("RAPIDAPI_KEY is required for the rapidapi snapshot provider")
        self._api_key = api_key
        self._api_host = api_host
        self._timeout = timeout_seconds
        self._client = http_client

    async def fetch_snapshot(self, handle: str) -> SnapshotResult:
        handle = normalize_handle(handle)
        try:
            data = await self._get_user(handle)
            return SnapshotResult.success(self._parse(handle, data))
        except SnapshotFetchError as exc:
            logger.warning("snapshot.fetch_failed", handle=handle, error=exc.reason)
            return SnapshotResult.failure(exc.reason)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("snapshot.fetch_failed", handle=handle, error=str(exc))
            return SnapshotResult.failure(f"RapidAPI request failed: {exc}")

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=4),
        reraise=True,
    )
    async def _get_user(self, handle: str) -> dict[str, Any]:
        """Call the user endpoint, retrying connection-level failures."""
        url = f"https://{self._api_host}/user"
        headers = {
            "X-RapidAPI-Key": self._api_key,
            "X-RapidAPI-Host": self._api_host,
        }
        params = {"username": handle}

        if self._client is not None:
            response = await self._client.get(
                url, params=params, headers=headers, timeout=self._timeout
            )
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(url, params=params, headers=headers)

        if response.status_code != 200:
            raise SnapshotFetchError(
                handle,
                f"RapidAPI request failed: {response.status_code} {response.reason_phrase}",
            )

        data = response.json()
        if not isinstance(data, dict):
            raise SnapshotFetchError(handle, "Unexpected response shape")
        if data.get("error") or data.get("message"):
            raise SnapshotFetchError(handle, str(data.get("error") or data.get("message")))
        return data

    @staticmethod
    def _parse(handle: str, data: dict[str, Any]) -> ProfileSnapshot:
        user: Any = data
        for key in ("result", "data", "user", "result"):
            user = user.get(key) if isinstance(user, dict) else None
        if not user:
            raise SnapshotFetchError(handle, f"User @{handle} not found")

        legacy = user.get("legacy") or {}
        core = user.get("core") or {}
        avatar = (user.get("avatar") or {}).get("image_url") or legacy.get(
            "profile_image_url_https"
        )
        if avatar:
            avatar = avatar.replace("_normal", "_400x400")

        return ProfileSnapshot(
            handle=handle,
            image_url=legacy.get("profile_banner_url") or None,
            text=legacy.get("description") or "",
            display_name=core.get("name") or legacy.get("name") or handle,
            avatar_url=avatar,
        )
