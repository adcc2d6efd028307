"""Content-addressable storage for token artwork and metadata."""

from __future__ import annotations

import json
from typing import Any, Mapping, Protocol

import httpx
from loguru import logger


class ContentStorageError(RuntimeError):
    """Raised when content could not be pinned."""


class ContentStorageClient(Protocol):
    async def upload_file(
        self,
        content: bytes,
        *,
        name: str,
        mime_type: str,
        metadata: Mapping[str, str] | None = None,
    ) -> str:
        """Pin ``content`` and return its content identifier."""

    async def upload_json(
        self,
        document: Mapping[str, Any],
        *,
        name: str,
        metadata: Mapping[str, str] | None = None,
    ) -> str:
        """Pin a JSON document and return its content identifier."""


def ipfs_uri(cid: str) -> str:
    return f"ipfs://{cid}"


def gateway_url(uri: str, gateway_base: str) -> str:
    """Translate ``ipfs://<cid>`` into an HTTP gateway link."""

    if not uri.startswith("ipfs://"):
        return uri
    return f"{gateway_base.rstrip('/')}/{uri[len('ipfs://'):]}"


class PinataClient:
    """Pinata pinning API client backed by ``httpx``."""

    def __init__(
        self,
        *,
        base_url: str = "https://api.pinata.cloud",
        jwt: str | None = None,
        api_key: str | None = None,
        api_secret: str | None = None,
        timeout_seconds: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._jwt = jwt
        self._api_key = api_key
        self._api_secret = api_secret
        self._timeout_seconds = timeout_seconds
        self._http_client = http_client

    @property
    def is_configured(self) -> bool:
        return bool(self._jwt or (self._api_key and self._api_secret))

    def _headers(self) -> dict[str, str]:
        if self._jwt:
            token = self._jwt if self._jwt.lower().startswith("bearer ") else f"Bearer {self._jwt}"
            return {"Authorization": token}
        if self._api_key and self._api_secret:
            return {"pinata_api_key": self._api_key, "pinata_secret_api_key": self._api_secret}
        raise ContentStorageError("Pinata credentials are not configured")

    async def _post(self, path: str, **kwargs: Any) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        headers = self._headers()
        try:
            if self._http_client is not None:
                response = await self._http_client.post(url, headers=headers, timeout=self._timeout_seconds, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                    response = await client.post(url, headers=headers, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Pinata returned HTTP error",
                status=exc.response.status_code,
                body=exc.response.text[:256],
            )
            raise ContentStorageError(f"Pinata responded with {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            logger.warning("Pinata request failed", error=str(exc))
            raise ContentStorageError(f"Pinata request failed: {exc}") from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise ContentStorageError("Pinata returned a non-JSON body") from exc
        if not isinstance(data, dict) or not data.get("IpfsHash"):
            raise ContentStorageError("Pinata response did not include IpfsHash")
        return data

    @staticmethod
    def _pinata_metadata(name: str, metadata: Mapping[str, str] | None) -> dict[str, Any]:
        payload: dict[str, Any] = {"name": name}
        if metadata:
            payload["keyvalues"] = {key: str(value) for key, value in metadata.items()}
        return payload

    async def upload_file(
        self,
        content: bytes,
        *,
        name: str,
        mime_type: str,
        metadata: Mapping[str, str] | None = None,
    ) -> str:
        data = await self._post(
            "/pinning/pinFileToIPFS",
            files={"file": (name, content, mime_type)},
            data={"pinataMetadata": json.dumps(self._pinata_metadata(name, metadata))},
        )
        return str(data["IpfsHash"])

    async def upload_json(
        self,
        document: Mapping[str, Any],
        *,
        name: str,
        metadata: Mapping[str, str] | None = None,
    ) -> str:
        data = await self._post(
            "/pinning/pinJSONToIPFS",
            json={"pinataContent": dict(document), "pinataMetadata": self._pinata_metadata(name, metadata)},
        )
        return str(data["IpfsHash"])


__all__ = [
    "ContentStorageClient",
    "ContentStorageError",
    "PinataClient",
    "gateway_url",
    "ipfs_uri",
]
