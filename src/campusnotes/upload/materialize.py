"""Turn a :class:`FileReference` into a single in-memory byte payload.

Pickers hand over either bytes or only a URI.  Supported URI forms:

* ``file://`` URIs and bare filesystem paths -- read from disk;
* ``data:`` URIs -- decoded (base64 or percent-encoded);
* ``http://`` / ``https://`` URLs -- fetched.

An empty result always means the picker or filesystem failed, never a
legitimate upload, so it is rejected before anything touches the network.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import re
from pathlib import Path
from urllib.parse import unquote, unquote_to_bytes, urlparse

import httpx

from campusnotes.errors import FileFetchError
from campusnotes.models import FileReference

# Regex to parse data URIs: data:[<mediatype>][;base64],<data>
_DATA_URI_RE = re.compile(
    r"^data:(?P<mime>[^;,]+)?(?:;[^;,=]+=[^;,]+)*(?:;(?P<encoding>base64))?,(?P<data>.*)$",
    re.IGNORECASE | re.DOTALL,
)


def _truncate_uri(uri: str, max_len: int = 200) -> str:
    """Truncate a URI for inclusion in error context."""
    if len(uri) <= max_len:
        return uri
    return uri[:max_len] + "..."


def _decode_data_uri(uri: str) -> bytes:
    match = _DATA_URI_RE.match(uri)
    if not match:
        raise FileFetchError(
            message="Invalid data URI format",
            context={"uri": _truncate_uri(uri), "reason": "malformed_data_uri"},
        )
    raw = match.group("data")
    if match.group("encoding"):
        try:
            return base64.b64decode(raw, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise FileFetchError(
                message="Failed to decode base64 data URI",
                context={"uri": _truncate_uri(uri), "reason": "base64_decode_error"},
                cause=exc,
            ) from exc
    return unquote_to_bytes(raw)


class BlobMaterializer:
    """Normalise file references into bytes.

    Parameters
    ----------
    max_bytes:
        Largest accepted payload.
    timeout:
        Timeout (seconds) for fetching ``http(s)`` URIs.
    client:
        Optional ``httpx.AsyncClient`` for remote URIs.
    """

    def __init__(
        self,
        max_bytes: int = 50 * 1024 * 1024,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._max_bytes = max_bytes
        self._timeout = timeout
        self._client = client

    async def materialize(self, ref: FileReference) -> bytes:
        """Return the bytes behind *ref*.

        Raises
        ------
        FileFetchError
            If the URI is unsupported or unreadable, or the payload is
            empty or larger than ``max_bytes``.
        """
        if ref.data is not None:
            data = ref.data
            source = "<bytes>"
        else:
            source = _truncate_uri(ref.uri or "")
            data = await self._read_uri(ref.uri or "")

        if not data:
            raise FileFetchError(
                message="Selected file is empty",
                context={"uri": source, "reason": "zero_bytes"},
            )
        if len(data) > self._max_bytes:
            raise FileFetchError(
                message=(
                    f"File size {len(data)} bytes exceeds maximum "
                    f"{self._max_bytes} bytes"
                ),
                context={"uri": source, "reason": "too_large", "size_bytes": len(data)},
            )
        return data

    async def _read_uri(self, uri: str) -> bytes:
        if uri.lower().startswith("data:"):
            return _decode_data_uri(uri)

        parsed = urlparse(uri)
        scheme = parsed.scheme.lower()
        if scheme in ("http", "https"):
            return await self._fetch(uri)
        if scheme == "file":
            return await self._read_file(Path(unquote(parsed.path)), uri)
        if scheme == "" or (len(scheme) == 1 and uri[1:3] in (":\\", ":/")):
            # Bare path; a single-letter "scheme" is a Windows drive.
            return await self._read_file(Path(uri).expanduser(), uri)

        raise FileFetchError(
            message=f"Unsupported URI scheme {scheme!r}",
            context={"uri": _truncate_uri(uri), "reason": "unsupported_scheme"},
        )

    async def _read_file(self, path: Path, uri: str) -> bytes:
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise FileFetchError(
                message=f"Could not read file: {exc.strerror or exc}",
                context={"uri": _truncate_uri(uri), "reason": "read_error"},
                cause=exc,
            ) from exc

    async def _fetch(self, uri: str) -> bytes:
        try:
            if self._client is not None:
                request = self._client.build_request("GET", uri, timeout=self._timeout)
                # The backend key is only sent to the backend.
                if request.url.host != self._client.base_url.host:
                    request.headers.pop("apikey", None)
                response = await self._client.send(request)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.get(uri)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise FileFetchError(
                message=f"Could not fetch file: {exc}",
                context={"uri": _truncate_uri(uri), "reason": "fetch_error"},
                cause=exc,
            ) from exc
        return response.content
