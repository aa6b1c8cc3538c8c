"""Client for the keyserver that derives sync passphrases from OAuth identities."""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

PASSPHRASE_PATH = "/passphrase"


class CredentialRetrievalError(RuntimeError):
    """Raised when the keyserver call fails or returns no secret."""

    def __init__(self, message: str = "Could not retrieve credentials") -> None:
        super().__init__(message)


class KeyserverClient:
    """POST ``/passphrase`` with a bearer token and return the derived secret."""

    def __init__(
        self,
        base_url: str,
        *,
        proxy: str | None = None,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._proxy = proxy
        self._timeout = timeout
        self._transport = transport

    @property
    def base_url(self) -> str:
        return self._base_url

    def _headers(self, access_token: str) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {access_token}"}
        if self._proxy:
            headers["atproto-proxy"] = self._proxy
        return headers

    @staticmethod
    def _extract_secret(response: httpx.Response) -> str | None:
        try:
            body: Any = response.json()
        except ValueError:
            text = response.text.strip()
            return text or None
        if isinstance(body, str):
            return body or None
        if isinstance(body, dict):
            for field in ("passphrase", "secret"):
                value = body.get(field)
                if isinstance(value, str) and value:
                    return value
        return None

    def fetch_passphrase(self, access_token: str | None) -> str:
        if not access_token:
            raise CredentialRetrievalError() from ValueError("OAuth session has no access token")

        try:
            with httpx.Client(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                response = client.post(PASSPHRASE_PATH, headers=self._headers(access_token))
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error(
                "Keyserver request failed",
                extra={"keyserver": self._base_url, "error": str(exc)},
            )
            raise CredentialRetrievalError() from exc

        secret = self._extract_secret(response)
        if secret is None:
            logger.error("Keyserver returned no passphrase", extra={"keyserver": self._base_url})
            raise CredentialRetrievalError() from ValueError("No passphrase found")
        return secret


__all__ = ["CredentialRetrievalError", "KeyserverClient", "PASSPHRASE_PATH"]
