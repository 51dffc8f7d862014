"""Interchangeable transports for moving one payload into object storage.

Each strategy exposes a ``name`` and one coroutine::

    await strategy.upload(data, path, content_type, timeout) -> public_url

They are composed, in order of preference, by
:class:`~campusnotes.upload.chain.UploadStrategyChain`:

1. :class:`NativeSdkStrategy` -- the storage client's own upload call.
2. :class:`MultipartFormStrategy` -- a ``multipart/form-data`` POST with an
   explicit bearer token.
3. :class:`PresignedPutStrategy` -- obtain a signed URL, then ``PUT`` the
   bytes to it without an auth header.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from campusnotes.backend.auth import SessionProvider
from campusnotes.backend.storage import StorageClient
from campusnotes.errors import UnauthenticatedError


@runtime_checkable
class UploadStrategy(Protocol):
    """A single way of transferring bytes to a storage path."""

    name: str

    async def upload(
        self,
        data: bytes,
        path: str,
        content_type: str,
        timeout: float | None = None,
    ) -> str:
        ...


class NativeSdkStrategy:
    """Upload through the storage client's ``put`` primitive.

    Preferred: the client handles auth headers and content metadata itself.
    """

    name = "native_sdk"

    def __init__(self, storage: StorageClient) -> None:
        self._storage = storage

    async def upload(
        self,
        data: bytes,
        path: str,
        content_type: str,
        timeout: float | None = None,
    ) -> str:
        return await self._storage.put(path, data, content_type, timeout=timeout)


class MultipartFormStrategy:
    """POST the payload as ``multipart/form-data`` with the caller's access
    token attached explicitly.
    """

    name = "multipart_form"

    def __init__(self, storage: StorageClient, session: SessionProvider) -> None:
        self._storage = storage
        self._session = session

    async def upload(
        self,
        data: bytes,
        path: str,
        content_type: str,
        timeout: float | None = None,
    ) -> str:
        token = await self._session.access_token()
        if not token:
            raise UnauthenticatedError(
                message="No access token available for multipart upload",
                context={"operation": "multipart_upload"},
            )
        return await self._storage.put_multipart(
            path, data, content_type, token, timeout=timeout,
        )


class PresignedPutStrategy:
    """Request a short-lived signed upload URL, then ``PUT`` to it.

    Last resort: costs an extra round trip for the URL.
    """

    name = "presigned_put"

    def __init__(self, storage: StorageClient) -> None:
        self._storage = storage

    async def upload(
        self,
        data: bytes,
        path: str,
        content_type: str,
        timeout: float | None = None,
    ) -> str:
        signed_url = await self._storage.create_signed_upload_url(path)
        await self._storage.put_signed(signed_url, data, content_type, timeout=timeout)
        return self._storage.public_url(path)


def default_strategies(
    storage: StorageClient,
    session: SessionProvider,
) -> list[UploadStrategy]:
    """Return the standard strategy order for *storage*."""
    return [
        NativeSdkStrategy(storage),
        MultipartFormStrategy(storage, session),
        PresignedPutStrategy(storage),
    ]
