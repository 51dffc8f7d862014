"""File-type classification: ``pdf`` or ``image``.

Platforms routinely misreport MIME types for picked files (a PDF arriving
as ``text/plain;charset=UTF-8`` is common), so the declared type is only
trusted when it is specific.  Placeholder types fall back to the file
extension, and finally to the file's magic bytes.
"""

from __future__ import annotations

from pathlib import PurePosixPath

from campusnotes.config import IMAGE_EXTENSION_MIMES, PDF_MIME, PLACEHOLDER_MIMES
from campusnotes.errors import UnsupportedFileTypeError
from campusnotes.models import FileKind, FileReference

# Map of magic bytes to MIME types for sniffing.
_MAGIC_BYTES: list[tuple[bytes, str]] = [
    (b"%PDF-", PDF_MIME),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"RIFF", "image/webp"),  # RIFF....WEBP (check further)
    (b"II*\x00", "image/tiff"),
    (b"MM\x00*", "image/tiff"),
    (b"BM", "image/bmp"),
]


def _normalise_mime(mime: str | None) -> str:
    """Lowercase and drop parameters: ``Text/Plain; charset=UTF-8`` ->
    ``text/plain``.
    """
    if not mime:
        return ""
    return mime.split(";", 1)[0].strip().lower()


def _sniff_mime(data: bytes) -> str | None:
    """Attempt to detect a supported MIME type from the first bytes."""
    for magic, mime in _MAGIC_BYTES:
        if data[:len(magic)] == magic:
            if magic == b"RIFF" and data[8:12] != b"WEBP":
                continue
            return mime
    return None


def _kind_for(mime: str) -> FileKind | None:
    if mime == PDF_MIME:
        return FileKind.PDF
    if mime.startswith("image/"):
        return FileKind.IMAGE
    return None


def resolve_file_type(
    ref: FileReference,
    data: bytes | None = None,
) -> tuple[FileKind, str]:
    """Classify a file and return its canonical MIME type.

    Parameters
    ----------
    ref:
        The file reference with its declared name and MIME type.
    data:
        The file's bytes, if already materialised.  Used for magic-byte
        sniffing when neither the MIME type nor the name is conclusive.

    Returns
    -------
    tuple[FileKind, str]
        ``(kind, content_type)``.  For a misreported MIME type the
        corrected canonical type is returned (``.jpg`` -> ``image/jpeg``).

    Raises
    ------
    UnsupportedFileTypeError
        If the file is neither a PDF nor an image.
    """
    declared = _normalise_mime(ref.content_type)
    name = ref.display_name or ""

    kind = _kind_for(declared)
    if kind is not None:
        return kind, declared

    if not declared or declared in PLACEHOLDER_MIMES:
        suffix = PurePosixPath(name.lower()).suffix
        if suffix == ".pdf":
            return FileKind.PDF, PDF_MIME
        if suffix in IMAGE_EXTENSION_MIMES:
            return FileKind.IMAGE, IMAGE_EXTENSION_MIMES[suffix]

        if data:
            sniffed = _sniff_mime(data)
            if sniffed is not None:
                return _kind_for(sniffed), sniffed  # type: ignore[return-value]

    raise UnsupportedFileTypeError(
        message=(
            f"Unsupported file type: {ref.content_type or 'unknown'}. "
            "Only PDF and image files are supported."
        ),
        context={"declared_mime": ref.content_type, "name": name or None},
    )


def classify(ref: FileReference, data: bytes | None = None) -> FileKind:
    """Return only the :class:`FileKind` of *ref*.

    See :func:`resolve_file_type` for the inference rules.
    """
    kind, _ = resolve_file_type(ref, data)
    return kind
