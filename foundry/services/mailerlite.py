from __future__ import annotations

import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx

from foundry.config import settings

logger = logging.getLogger(__name__)


class MailerLiteError(RuntimeError):
    """Raised when a MailerLite API call fails."""


class MailerLiteClient:
    """Minimal MailerLite REST client bound to one API key."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        if not api_key:
            raise MailerLiteError(
                "Missing MailerLite API key (set env MAILERLITE_API_KEY or emailSettings.mailerLiteApiKey)"
            )
        self._client = httpx.Client(
            base_url=(base_url or settings.MAILERLITE_BASE_URL).rstrip("/"),
            timeout=timeout or settings.MAILERLITE_TIMEOUT_SECONDS,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "MailerLiteClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _request(self, method: str, path: str, payload: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        try:
            response = self._client.request(method, path, json=payload)
        except httpx.HTTPError as exc:
            raise MailerLiteError(f"MailerLite request failed ({method} {path}): {exc}") from exc
        if response.status_code >= 400:
            detail = response.text.strip() or response.reason_phrase
            raise MailerLiteError(f"MailerLite {response.status_code}: {detail}")
        if response.status_code == 204 or not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as exc:
            raise MailerLiteError(f"MailerLite returned invalid JSON ({method} {path})") from exc
        return data if isinstance(data, dict) else {}

    def upsert_subscriber(self, email: str, groups: Optional[list[str]] = None) -> str:
        payload: dict[str, Any] = {"email": email, "resubscribe": True}
        if groups:
            payload["groups"] = groups
        result = self._request("POST", "/subscribers", payload)
        subscriber_id = (result.get("data") or {}).get("id")
        return str(subscriber_id or "")

    def update_subscriber_status(self, id_or_email: str, status: str) -> None:
        self._request("PUT", f"/subscribers/{quote(id_or_email, safe='')}", {"status": status})

    def ensure_group(self, name: str, existing_id: Optional[str] = None) -> str:
        if existing_id:
            return existing_id
        result = self._request("POST", "/groups", {"name": name})
        return str((result.get("data") or {}).get("id") or "")

    def fetch_subscriber_total(self) -> int:
        result = self._request("GET", "/subscribers?limit=0")
        return int(result.get("total") or 0)


def resolve_api_key(email_settings: dict[str, Any]) -> Optional[str]:
    return (email_settings.get("mailerLiteApiKey") or settings.MAILERLITE_API_KEY or "").strip() or None
