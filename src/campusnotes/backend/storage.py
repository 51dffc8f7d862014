"""Object-storage API wrapper.

Provides :class:`StorageAPI`, an async wrapper over the backend's storage
REST endpoints for one bucket:

1. **Put** -- raw-body or multipart upload of an object.
2. **Signed upload** -- obtain a short-lived URL and ``PUT`` bytes to it.
3. **Get / delete** -- fetch an object's bytes or remove it.
4. **Public URL** -- compute the object's public address (no request).
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable
from urllib.parse import quote

from campusnotes.errors import BackendValidationError

from .transport import BackendTransport

_STORAGE_PREFIX = "/storage/v1"


def _quote_path(path: str) -> str:
    return quote(path, safe="/")


@runtime_checkable
class StorageClient(Protocol):
    """Object-storage operations the upload pipeline relies on."""

    async def put(
        self, path: str, data: bytes, content_type: str, timeout: float | None = None,
    ) -> str: ...

    async def put_multipart(
        self,
        path: str,
        data: bytes,
        content_type: str,
        access_token: str,
        timeout: float | None = None,
    ) -> str: ...

    async def create_signed_upload_url(self, path: str) -> str: ...

    async def put_signed(
        self, signed_url: str, data: bytes, content_type: str, timeout: float | None = None,
    ) -> None: ...

    async def get(self, path: str) -> bytes: ...

    async def delete(self, path: str) -> None: ...

    def public_url(self, path: str) -> str: ...


class StorageAPI:
    """Async wrapper for a single storage bucket.

    Parameters
    ----------
    transport:
        A configured :class:`BackendTransport`.
    bucket:
        Name of the bucket every call targets.
    cache_control:
        ``max-age`` (seconds) stored with uploaded objects.
    """

    def __init__(
        self,
        transport: BackendTransport,
        bucket: str,
        cache_control: str = "3600",
    ) -> None:
        self._transport = transport
        self.bucket = bucket
        self._cache_control = cache_control

    def _object_path(self, path: str) -> str:
        return f"{_STORAGE_PREFIX}/object/{self.bucket}/{_quote_path(path)}"

    async def put(
        self,
        path: str,
        data: bytes,
        content_type: str,
        timeout: float | None = None,
    ) -> str:
        """Upload *data* as the raw request body.

        Returns
        -------
        str
            The object's public URL.
        """
        await self._transport.send(
            "POST",
            self._object_path(path),
            content=data,
            headers={
                "Content-Type": content_type,
                "Cache-Control": f"max-age={self._cache_control}",
                "x-upsert": "false",
            },
            timeout=timeout,
        )
        return self.public_url(path)

    async def put_multipart(
        self,
        path: str,
        data: bytes,
        content_type: str,
        access_token: str,
        timeout: float | None = None,
    ) -> str:
        """Upload *data* as a ``multipart/form-data`` body with an explicit
        bearer token.

        Returns
        -------
        str
            The object's public URL.
        """
        file_name = path.rsplit("/", 1)[-1]
        await self._transport.send(
            "POST",
            self._object_path(path),
            bearer=access_token,
            files={"file": (file_name, data, content_type)},
            data={"cacheControl": self._cache_control},
            headers={"x-upsert": "false"},
            timeout=timeout,
        )
        return self.public_url(path)

    async def create_signed_upload_url(self, path: str) -> str:
        """Request a short-lived URL that accepts an unauthenticated ``PUT``.

        Returns
        -------
        str
            Absolute signed URL, including its ``token`` query parameter.
        """
        body: dict[str, Any] = await self._transport.request(
            "POST",
            f"{_STORAGE_PREFIX}/object/upload/sign/{self.bucket}/{_quote_path(path)}",
        )
        url = body.get("url") or body.get("signedURL") or ""
        if not url:
            raise BackendValidationError(
                message=f"Signed upload URL missing from response for {path!r}",
                context={"path": path, "body": body},
            )
        if url.startswith("http://") or url.startswith("https://"):
            return url
        return f"{self._transport.base_url}{_STORAGE_PREFIX}{url}"

    async def put_signed(
        self,
        signed_url: str,
        data: bytes,
        content_type: str,
        timeout: float | None = None,
    ) -> None:
        """``PUT`` *data* to a signed upload URL without an auth header."""
        await self._transport.send(
            "PUT",
            signed_url,
            auth=False,
            content=data,
            headers={
                "Content-Type": content_type,
                "Cache-Control": f"max-age={self._cache_control}",
                "x-upsert": "false",
            },
            timeout=timeout,
        )

    async def get(self, path: str) -> bytes:
        """Download an object's bytes."""
        response = await self._transport.send("GET", self._object_path(path))
        return response.content

    async def delete(self, path: str) -> None:
        """Remove an object.  Removing a missing object is not an error."""
        await self._transport.send(
            "DELETE",
            f"{_STORAGE_PREFIX}/object/{self.bucket}",
            json={"prefixes": [path]},
        )

    def public_url(self, path: str) -> str:
        """Return the public URL of *path* (no request is made)."""
        return (
            f"{self._transport.base_url}{_STORAGE_PREFIX}/object/public/"
            f"{self.bucket}/{_quote_path(path)}"
        )
